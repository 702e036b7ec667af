import errno
import logging
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from typing import Optional

from config import config


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False
_METRICS_PORT: Optional[int] = None

SESSION_STATES = ('idle', 'running', 'stopping')


def _get_port_scan_limit() -> int:
    try:
        return int(config.monitoring.get('prometheus_port_scan', 0))
    except (TypeError, ValueError):
        return 0


class MetricsCollector:
    def __init__(self):
        self.ticks = Counter('trader_ticks_total', 'Completed trading ticks')
        self.tick_duration = Histogram('trader_tick_duration_seconds', 'Wall time of one pass over all instruments')
        self.instruments_evaluated = Counter('trader_instruments_evaluated_total', 'Instruments evaluated by the signal engine')
        self.instrument_errors = Counter('trader_instrument_errors_total', 'Per-instrument failures during a tick', ['stage'])

        self.signals = Counter('trader_signals_total', 'Signals produced', ['side'])
        self.rsi_value = Gauge('trader_rsi_last', 'Last RSI value per instrument', ['market'])

        self.orders_submitted = Counter('trader_orders_submitted_total', 'Orders accepted by the exchange', ['side', 'type'])
        self.orders_skipped = Counter('trader_orders_skipped_total', 'Signals that did not produce an order', ['reason'])
        self.order_failures = Counter('trader_order_failures_total', 'Order submissions that failed', ['side'])
        self.order_send_latency = Histogram('trader_order_send_latency_seconds', 'Latency from order send to exchange reply')

        self.liquidations = Counter('trader_liquidation_orders_total', 'Liquidation market sells', ['outcome'])
        self.liquidation_sweeps = Counter('trader_liquidation_sweeps_total', 'Liquidation sweeps run')

        self.session_state = Gauge('trader_session_state', 'Current session state (1 = active)', ['state'])
        self.session_transitions = Counter('trader_session_transitions_total', 'Session state transitions', ['state', 'reason'])
        self.quote_balance = Gauge('trader_quote_balance', 'Free quote currency balance at last lookup')

    def record_tick(self, duration_seconds: float):
        self.ticks.inc()
        self.tick_duration.observe(duration_seconds)

    def record_instrument(self):
        self.instruments_evaluated.inc()

    def record_instrument_error(self, stage: str):
        self.instrument_errors.labels(stage=stage).inc()

    def record_signal(self, side: str):
        self.signals.labels(side=side).inc()

    def update_rsi(self, market: str, rsi: Optional[float]):
        if rsi is not None:
            self.rsi_value.labels(market=market).set(rsi)

    def record_order_submitted(self, side: str, order_type: str, latency_seconds: Optional[float] = None):
        self.orders_submitted.labels(side=side, type=order_type).inc()
        if latency_seconds is not None:
            self.order_send_latency.observe(latency_seconds)

    def record_order_skipped(self, reason: str):
        self.orders_skipped.labels(reason=reason).inc()

    def record_order_failure(self, side: str):
        self.order_failures.labels(side=side).inc()

    def record_liquidation(self, outcome: str):
        self.liquidations.labels(outcome=outcome).inc()

    def record_sweep(self):
        self.liquidation_sweeps.inc()

    def update_session_state(self, state: str, reason: Optional[str] = None):
        for name in SESSION_STATES:
            self.session_state.labels(state=name).set(1 if name == state else 0)
        self.session_transitions.labels(state=state, reason=reason or 'none').inc()

    def update_quote_balance(self, amount: float):
        self.quote_balance.set(amount)


def start_metrics_server(port: int = 9108) -> Optional[int]:
    global _METRICS_SERVER_STARTED, _METRICS_PORT
    if _METRICS_SERVER_STARTED:
        return _METRICS_PORT
    port_scan_limit = max(0, _get_port_scan_limit())
    last_error: Optional[OSError] = None
    for offset in range(port_scan_limit + 1):
        candidate = port + offset
        try:
            start_http_server(candidate)
        except OSError as exc:
            last_error = exc
            if exc.errno == errno.EADDRINUSE:
                logger.warning(
                    "Prometheus metrics server port %s already in use; trying next candidate",
                    candidate,
                )
                continue
            raise
        _METRICS_SERVER_STARTED = True
        _METRICS_PORT = candidate
        logger.info("Prometheus metrics server started on port %s", candidate)
        return candidate
    if last_error and last_error.errno == errno.EADDRINUSE:
        raise RuntimeError(
            f"Unable to bind Prometheus metrics server on ports {port}-{port + port_scan_limit}"
        ) from last_error
    if last_error:
        raise last_error
    return None

metrics = MetricsCollector()

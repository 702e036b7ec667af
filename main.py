import asyncio
import logging
import signal
from typing import Any, Dict, List, Optional

from api.alerts import AlertWebhook, alert_webhook
from api.metrics import start_metrics_server
from config import SessionSettings, config
from config.utils import get_config_section
from ingest.candle_store import CandleStore
from ingest.market_data import ExchangeCandleSource
from ingest.upbit_auth import UpbitAuthorizer
from ingest.upbit_rest import UpbitRESTClient
from monitoring.logging_utils import SessionLogStream, setup_logging
from orchestration.session import SessionController, SessionState
from risk.order_sizer import OrderSizer
from strategy.execution import OrderExecutor
from strategy.execution_types import Balance
from strategy.liquidation import LiquidationSweeper
from strategy.signal_engine import SignalConfig, SignalEngine
from strategy.simulators.paper import PaperExchange
from strategy.transports.upbit import UpbitTransport


logger = logging.getLogger(__name__)


class TradingSystem:
    """Wire the session controller and its collaborators from configuration."""

    def __init__(
        self,
        config_obj: Optional[Any] = None,
        gateway=None,
        market_data=None,
        alerts: Optional[AlertWebhook] = None,
    ):
        self.config = config_obj or config
        self.settings = SessionSettings.from_config(self.config)
        self.monitoring_cfg = get_config_section(self.config, 'monitoring')
        self.signal_cfg = dict(self.settings.signals)
        settings = self.settings

        self.log_stream = SessionLogStream(capacity=int(self.monitoring_cfg.get('log_buffer_size') or 500))
        self.transport = None
        if gateway is None:
            self.transport = self._build_transport()
            gateway = self.transport
            if settings.paper:
                gateway = PaperExchange(
                    self.transport,
                    quote_currency=settings.quote_currency,
                    initial_quote_balance=settings.paper_quote_balance,
                    fee_rate=settings.fee_rate,
                )
        self.gateway = gateway
        self.market_data = market_data or self._build_market_data()

        self.signal_engine = SignalEngine(SignalConfig.from_dict(self.signal_cfg))
        self.sizer = OrderSizer(
            allocation_fraction=settings.allocation_fraction,
            price_offset_pct=settings.price_offset_pct,
            min_order_value=settings.min_order_value,
            max_order_value=settings.max_order_value,
            round_to_tick=settings.round_to_tick,
        )
        self.executor = OrderExecutor(self.gateway, self.sizer, settings.quote_currency, settings.fee_rate)
        self.sweeper = LiquidationSweeper(
            self.gateway,
            quote_currency=settings.quote_currency,
            excluded=settings.excluded_currencies,
            delay_s=settings.liquidation_delay_s,
        )
        self.controller = SessionController(
            self.gateway,
            self.market_data,
            self.signal_engine,
            self.executor,
            self.sweeper,
            quote_currency=settings.quote_currency,
            tick_interval_s=settings.tick_interval_s,
            max_duration_s=settings.max_duration_s,
            history_window=int(self.signal_cfg.get('history_window') or 30),
            instrument_spacing_s=settings.instrument_spacing_s,
        )
        self.alerts = alerts or alert_webhook
        self.controller.subscribe(self.alerts.on_session_event)
        self.running = False

    def _build_transport(self) -> UpbitTransport:
        settings = self.settings
        authorizer = None
        if settings.has_credentials:
            authorizer = UpbitAuthorizer(settings.access_key, settings.secret_key)
        elif not settings.paper:
            logger.warning("Upbit credentials not configured; sessions cannot be started")
        rest = UpbitRESTClient(settings.base_url, authorizer, timeout_s=settings.request_timeout_s)
        return UpbitTransport(rest)

    def _build_market_data(self):
        if self.settings.market_data_source == 'store':
            return CandleStore(get_config_section(self.config, 'database'))
        return ExchangeCandleSource(self.transport or self.gateway)

    async def start(self, serve_metrics: bool = True):
        if self.running:
            return
        self.log_stream.attach()
        if serve_metrics and self.monitoring_cfg.get('prometheus_port'):
            start_metrics_server(int(self.monitoring_cfg['prometheus_port']))
        self.running = True
        logger.info(
            "Trading system ready (quote=%s, paper=%s, market data=%s)",
            self.settings.quote_currency,
            self.settings.paper,
            self.settings.market_data_source,
        )

    async def stop(self):
        if self.controller.state == SessionState.RUNNING:
            await self.controller.stop('shutdown')
        await self.controller.wait_closed()
        await self.alerts.drain()
        await self.market_data.close()
        await self.gateway.close()
        self.log_stream.detach()
        self.running = False

    async def fetch_balances(self) -> List[Balance]:
        return await self.gateway.fetch_balances()

    def status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'paper': self.settings.paper,
            'quote_currency': self.settings.quote_currency,
            'session': self.controller.snapshot().as_dict(),
        }


async def main():
    system = TradingSystem(config)
    await system.start()
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            pass

    try:
        await system.controller.start()
        closed = asyncio.ensure_future(system.controller.wait_closed())
        interrupted = asyncio.ensure_future(shutdown.wait())
        await asyncio.wait({closed, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        for fut in (closed, interrupted):
            fut.cancel()
        if shutdown.is_set():
            logger.info("System shutting down on interrupt")
    finally:
        await system.stop()

if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())

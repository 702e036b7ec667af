import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from api.metrics import metrics
from config.settings import ConfigurationError
from ingest.market_data import MARKET_DATA_ERRORS
from ingest.models import Instrument


logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPING = 'stopping'


@dataclass(frozen=True)
class SessionEvent:
    state: SessionState
    previous: SessionState
    reason: str
    timestamp: datetime
    detail: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'previous': self.previous.value,
            'reason': self.reason,
            'timestamp': self.timestamp.isoformat(),
            'detail': self.detail,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    started_at: Optional[datetime]
    elapsed_s: float
    max_duration_s: float
    tick_count: int
    last_reason: Optional[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'elapsed_s': round(self.elapsed_s, 3),
            'max_duration_s': self.max_duration_s,
            'tick_count': self.tick_count,
            'last_reason': self.last_reason,
        }


SessionListener = Callable[[SessionEvent], None]


class SessionController:
    """Owns the Idle/Running/Stopping lifecycle of one trading session.

    A session is a single background task that ticks over every tradable
    instrument until it is stopped by hand or runs out of time. Stopping sets
    an event rather than cancelling the task: the inter-tick wait wakes
    immediately, an in-flight tick finishes the instrument it is on, and only
    then does the liquidation sweep run. A crash in the loop returns the
    controller to Idle without liquidating.
    """

    def __init__(
        self,
        gateway,
        market_data,
        signal_engine,
        executor,
        sweeper,
        *,
        quote_currency: str = 'KRW',
        tick_interval_s: float = 30.0,
        max_duration_s: float = 6.5 * 60 * 60,
        history_window: int = 30,
        instrument_spacing_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.market_data = market_data
        self.signal_engine = signal_engine
        self.executor = executor
        self.sweeper = sweeper
        self.quote_currency = quote_currency.upper()
        self.tick_interval_s = tick_interval_s
        self.max_duration_s = max_duration_s
        self.history_window = history_window
        self.instrument_spacing_s = instrument_spacing_s
        self._clock = clock
        self._sleep = sleep

        self._state = SessionState.IDLE
        self._started_mono: Optional[float] = None
        self._started_at: Optional[datetime] = None
        self._tick_count = 0
        self._last_reason: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._listeners: List[SessionListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_trading(self) -> bool:
        return self._state == SessionState.RUNNING

    def subscribe(self, listener: SessionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            started_at=self._started_at,
            elapsed_s=self._elapsed(),
            max_duration_s=self.max_duration_s,
            tick_count=self._tick_count,
            last_reason=self._last_reason,
        )

    async def toggle(self) -> SessionState:
        if self._state == SessionState.RUNNING:
            await self.stop('manual')
        elif self._state == SessionState.IDLE:
            await self.start()
        else:
            logger.info("Toggle ignored while session is stopping")
        return self._state

    async def start(self) -> bool:
        if self._state != SessionState.IDLE:
            logger.info("Start ignored; session is %s", self._state.value)
            return False
        if not self.gateway.has_credentials():
            raise ConfigurationError("Exchange credentials are required to start a session")

        self._stop_event.clear()
        self._idle.clear()
        self._started_mono = self._clock()
        self._started_at = datetime.now(timezone.utc)
        self._tick_count = 0
        self._transition(SessionState.RUNNING, 'manual')
        logger.info(
            "Trading session started (tick %.1fs, max duration %.0fs)",
            self.tick_interval_s,
            self.max_duration_s,
        )
        self._task = asyncio.create_task(self._run())
        return True

    async def stop(self, reason: str = 'manual') -> None:
        if self._state != SessionState.RUNNING:
            logger.info("Stop ignored; session is %s", self._state.value)
            return
        self._transition(SessionState.STOPPING, reason)
        self._stop_event.set()
        task = self._task
        if task is None or task.done():
            await self._liquidate_and_idle(reason)
        elif task is not asyncio.current_task():
            # the loop task finishes its instrument and runs the sweep itself;
            # cancelling this caller must not cancel it
            await asyncio.shield(task)

    async def wait_closed(self) -> None:
        await self._idle.wait()

    async def run_tick(self) -> int:
        """Process every tradable instrument once; returns how many were processed."""
        started = time.perf_counter()
        try:
            instruments = await self.gateway.list_instruments(self.quote_currency)
        except MARKET_DATA_ERRORS as exc:
            logger.error("Failed to fetch tradable instruments: %s", exc)
            metrics.record_instrument_error('instruments')
            return 0

        processed = 0
        for index, instrument in enumerate(instruments):
            if self._stop_event.is_set():
                logger.info("Stop requested; ending tick after %d instruments", processed)
                break
            if index and self.instrument_spacing_s > 0:
                await self._sleep(self.instrument_spacing_s)
            await self._process_instrument(instrument)
            processed += 1

        self._tick_count += 1
        metrics.record_tick(time.perf_counter() - started)
        return processed

    async def _process_instrument(self, instrument: Instrument) -> None:
        try:
            series = await self.market_data.recent_series(instrument.id, self.history_window)
        except MARKET_DATA_ERRORS as exc:
            logger.error("Candle fetch failed for %s (%s): %s", instrument.id, instrument.display_name, exc)
            metrics.record_instrument_error('candles')
            return

        metrics.record_instrument()
        snapshot = self.signal_engine.evaluate(series)
        if snapshot is None:
            logger.debug("Not enough history for %s (%d samples)", instrument.id, len(series))
            return
        metrics.update_rsi(instrument.id, snapshot.rsi)

        signal = self.signal_engine.decide(snapshot)
        if signal is None:
            return
        metrics.record_signal(signal.value)
        logger.info(
            "%s signal for %s (%s): close=%s short=%.2f long=%.2f rsi=%s",
            signal.value.capitalize(),
            instrument.id,
            instrument.display_name,
            snapshot.close,
            snapshot.short_ma,
            snapshot.long_ma,
            f"{snapshot.rsi:.2f}" if snapshot.rsi is not None else None,
        )
        await self.executor.execute(instrument, signal)

    async def _run(self) -> None:
        try:
            while self._state == SessionState.RUNNING and not self._stop_event.is_set():
                if self._elapsed() >= self.max_duration_s:
                    logger.info("Session reached its maximum duration of %.0fs; stopping", self.max_duration_s)
                    self._transition(SessionState.STOPPING, 'timeout')
                    self._stop_event.set()
                    break
                await self.run_tick()
                remaining = self.max_duration_s - self._elapsed()
                if remaining > 0:
                    await self._wait(min(self.tick_interval_s, remaining))
        except Exception:
            logger.exception("Trading loop crashed; session returns to idle without liquidation")
            self._transition(SessionState.IDLE, 'crash')
            self._idle.set()
            return
        if self._state == SessionState.STOPPING:
            await self._liquidate_and_idle(self._last_reason or 'manual')

    async def _wait(self, seconds: float) -> None:
        """Sleep for ``seconds`` or until a stop is requested, whichever comes first."""
        if self._stop_event.is_set():
            return
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (sleeper, stopper):
                if not fut.done():
                    fut.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)

    async def _liquidate_and_idle(self, reason: str) -> None:
        detail: Dict[str, Any] = {}
        try:
            report = await self.sweeper.liquidate_all()
            detail['liquidation'] = report.as_dict()
        except Exception as exc:
            logger.exception("Liquidation sweep failed")
            detail['liquidation'] = {'error': str(exc)}
        finally:
            self._transition(SessionState.IDLE, reason, detail)
            self._idle.set()
        logger.info("Trading session stopped (%s) after %d ticks", reason, self._tick_count)

    def _elapsed(self) -> float:
        if self._started_mono is None or self._state == SessionState.IDLE:
            return 0.0
        return max(0.0, self._clock() - self._started_mono)

    def _transition(self, state: SessionState, reason: str, detail: Optional[Dict[str, Any]] = None) -> None:
        previous = self._state
        self._state = state
        self._last_reason = reason
        metrics.update_session_state(state.value, reason)
        event = SessionEvent(
            state=state,
            previous=previous,
            reason=reason,
            timestamp=datetime.now(timezone.utc),
            detail=detail or {},
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener %r failed", listener)

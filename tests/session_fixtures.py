"""Fakes shared by the session tests: no network, no database."""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from ingest.models import Instrument, PriceSample
from ingest.upbit_rest import UpbitAPIError
from strategy.execution_types import Balance, Order, OrderResult
from strategy.liquidation import LiquidationReport
from strategy.transports.upbit import KST


def make_series(closes: Iterable[float], volumes: Optional[Iterable[float]] = None, market: str = 'KRW-BTC') -> List[PriceSample]:
    closes = list(closes)
    volumes = list(volumes) if volumes is not None else [100.0] * len(closes)
    start = datetime(2024, 1, 1, 9, 0, tzinfo=KST)
    return [
        PriceSample(
            market=market,
            open=close,
            high=close,
            low=close,
            close=close,
            timestamp=start + timedelta(days=i),
            volume=volume,
        )
        for i, (close, volume) in enumerate(zip(closes, volumes))
    ]


def rising_series(market: str = 'KRW-BTC', n: int = 12) -> List[PriceSample]:
    closes = [100.0 + i for i in range(n)]
    volumes = [100.0] * (n - 1) + [1000.0]
    return make_series(closes, volumes, market)


def falling_series(market: str = 'KRW-BTC', n: int = 12) -> List[PriceSample]:
    closes = [100.0 + n - i for i in range(n)]
    volumes = [100.0] * (n - 1) + [1000.0]
    return make_series(closes, volumes, market)


class FakeGateway:
    def __init__(
        self,
        instruments: Optional[List[Instrument]] = None,
        balances: Optional[List[Balance]] = None,
        prices: Optional[Dict[str, float]] = None,
        credentials: bool = True,
        balance_error: Optional[Exception] = None,
        ticker_error: Optional[Exception] = None,
        instrument_error: Optional[Exception] = None,
        failing_markets: Iterable[str] = (),
    ):
        self.instruments = instruments or []
        self.balances = balances or []
        self.prices = prices or {}
        self.credentials = credentials
        self.balance_error = balance_error
        self.ticker_error = ticker_error
        self.instrument_error = instrument_error
        self.failing_markets = set(failing_markets)
        self.orders: List[Order] = []
        self.instrument_calls = 0
        self.closed = False

    def has_credentials(self) -> bool:
        return self.credentials

    async def list_instruments(self, quote_currency: str) -> List[Instrument]:
        self.instrument_calls += 1
        if self.instrument_error is not None:
            raise self.instrument_error
        return [i for i in self.instruments if i.id.startswith(f"{quote_currency}-")]

    async def fetch_ticker_price(self, market: str) -> float:
        if self.ticker_error is not None:
            raise self.ticker_error
        return self.prices[market]

    async def fetch_balances(self) -> List[Balance]:
        if self.balance_error is not None:
            raise self.balance_error
        return list(self.balances)

    async def submit_order(self, order: Order) -> OrderResult:
        if order.market in self.failing_markets:
            raise UpbitAPIError(400, 'invalid_order', 'rejected', '{}')
        self.orders.append(order)
        return OrderResult(
            uuid=f"order-{len(self.orders)}",
            market=order.market,
            side=order.side.value,
            ord_type=order.ord_type.value,
            state='wait',
            price=order.price,
            volume=order.volume,
        )

    async def close(self) -> None:
        self.closed = True


class FakeMarketData:
    def __init__(self, series: Optional[Dict[str, List[PriceSample]]] = None, errors: Optional[Dict[str, Exception]] = None):
        self.series = series or {}
        self.errors = errors or {}
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def recent_series(self, instrument_id: str, window: int) -> List[PriceSample]:
        self.calls.append(instrument_id)
        if self.gate is not None:
            await self.gate.wait()
        if instrument_id in self.errors:
            raise self.errors[instrument_id]
        return self.series.get(instrument_id, [])[-window:]

    async def latest_stored_timestamp(self, instrument_id: str):
        samples = self.series.get(instrument_id)
        return samples[-1].timestamp if samples else None

    async def close(self) -> None:
        return None


class RecordingExecutor:
    def __init__(self):
        self.calls = []

    async def execute(self, instrument, signal):
        self.calls.append((instrument.id, signal))
        return None


class RecordingSweeper:
    def __init__(self):
        self.calls = 0

    async def liquidate_all(self):
        self.calls += 1
        return LiquidationReport()


class FakeClock:
    """Monotonic clock whose sleeps advance time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def candle_payload(series: List[PriceSample]) -> List[dict]:
    """Render samples the way /candles/days returns them, newest first."""
    return [
        {
            'market': s.market,
            'candle_date_time_kst': s.timestamp.strftime('%Y-%m-%dT%H:%M:%S'),
            'opening_price': s.open,
            'high_price': s.high,
            'low_price': s.low,
            'trade_price': s.close,
            'candle_acc_trade_volume': s.volume,
        }
        for s in reversed(series)
    ]


class FakeResponse:
    """Just enough of aiohttp.ClientResponse for UpbitRESTClient._request."""

    def __init__(self, body: bytes, status: int = 200, content_type: str = 'application/json'):
        self.body = body
        self.status = status
        self.headers = {'Content-Type': content_type}

    async def text(self, encoding: Optional[str] = None, errors: str = 'strict') -> str:
        return self.body.decode(encoding or 'utf-8', errors)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeHTTPSession:
    """Stands in for aiohttp.ClientSession; ``respond(method, path, params)`` builds each reply."""

    closed = False

    def __init__(self, respond):
        self.respond = respond
        self.requests = []

    def request(self, method, url, params=None, json=None, headers=None):
        path = '/' + url.split('/v1/', 1)[-1]
        self.requests.append((method, path, params or json))
        return self.respond(method, path, params or json or {})

    async def close(self):
        self.closed = True

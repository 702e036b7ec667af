"""Market data gateways consumed by the session controller.

Both sources answer the same two questions for an instrument: the most
recent ``window`` daily candles, oldest first, and the freshest timestamp the
source knows about. They are stateless between calls, so a failed call can
simply be repeated on the next tick.
"""
from datetime import datetime
from typing import List, Optional

import asyncpg

from ingest.models import PriceSample
from ingest.upbit_rest import TRANSIENT_ERRORS


MARKET_DATA_ERRORS = TRANSIENT_ERRORS + (asyncpg.PostgresError, OSError)


class ExchangeCandleSource:
    """Reads daily candles straight from the exchange candle endpoint."""

    def __init__(self, transport):
        self.transport = transport

    async def recent_series(self, instrument_id: str, window: int) -> List[PriceSample]:
        return await self.transport.fetch_daily_candles(instrument_id, window)

    async def latest_stored_timestamp(self, instrument_id: str) -> Optional[datetime]:
        samples = await self.transport.fetch_daily_candles(instrument_id, 1)
        if not samples:
            return None
        return samples[-1].timestamp

    async def close(self) -> None:
        return None

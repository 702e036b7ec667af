import logging
import re
from datetime import datetime
from typing import Any, List, Mapping, Optional

import asyncpg

from ingest.models import PriceSample
from strategy.transports.upbit import KST


logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_.]*$')


class CandleStore:
    """Read-only view over the backfilled ``market_prices`` table.

    Backfill writes one or more rows per day; reads keep only the latest row
    of each calendar day and only look back ``lookback_days``.
    """

    def __init__(self, db_config: Mapping[str, Any], table: str = 'market_prices', lookback_days: int = 365):
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self.db_config = dict(db_config)
        self.table = table
        self.lookback_days = int(lookback_days)
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        if self.pool is not None:
            return
        self.pool = await asyncpg.create_pool(
            host=self.db_config.get('host'),
            port=self.db_config.get('port'),
            database=self.db_config.get('database'),
            user=self.db_config.get('user'),
            password=self.db_config.get('password'),
            min_size=1,
            max_size=5,
        )
        logger.info("Candle store connected (%s, lookback %d days)", self.table, self.lookback_days)

    async def close(self):
        if self.pool:
            await self.pool.close()
            self.pool = None

    async def recent_series(self, instrument_id: str, window: int) -> List[PriceSample]:
        await self.initialize()
        query = f'''
            SELECT * FROM (
                SELECT DISTINCT ON (timestamp::date)
                       market_id, opening_price, high_price, low_price, trade_price,
                       timestamp, candle_acc_trade_volume
                FROM {self.table}
                WHERE market_id = $1
                  AND timestamp >= NOW() - make_interval(days => $3)
                ORDER BY timestamp::date DESC, timestamp DESC
            ) AS daily
            ORDER BY timestamp DESC
            LIMIT $2'''
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, instrument_id, int(window), self.lookback_days)
        samples = [self._row_to_sample(row) for row in rows]
        samples.reverse()
        return samples

    async def latest_stored_timestamp(self, instrument_id: str) -> Optional[datetime]:
        await self.initialize()
        async with self.pool.acquire() as conn:
            value = await conn.fetchval(
                f'SELECT MAX(timestamp) FROM {self.table} WHERE market_id = $1',
                instrument_id,
            )
        return self._localize(value) if value is not None else None

    @classmethod
    def _row_to_sample(cls, row: Mapping[str, Any]) -> PriceSample:
        return PriceSample(
            market=row['market_id'],
            open=float(row['opening_price']),
            high=float(row['high_price']),
            low=float(row['low_price']),
            close=float(row['trade_price']),
            timestamp=cls._localize(row['timestamp']),
            volume=float(row['candle_acc_trade_volume']),
        )

    @staticmethod
    def _localize(value: datetime) -> datetime:
        # backfill stores naive exchange-local times
        if value.tzinfo is None:
            return value.replace(tzinfo=KST)
        return value.astimezone(KST)

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Instrument:
    """A tradable market such as ``KRW-BTC``; equality is by identifier only."""

    id: str
    korean_name: str = field(default='', compare=False)
    english_name: Optional[str] = field(default=None, compare=False)

    @property
    def quote_currency(self) -> str:
        return self.id.split('-', 1)[0]

    @property
    def base_currency(self) -> str:
        return self.id.split('-', 1)[-1]

    @property
    def display_name(self) -> str:
        return self.korean_name or self.english_name or self.id


@dataclass(frozen=True)
class PriceSample:
    market: str
    open: float
    high: float
    low: float
    close: float
    timestamp: datetime
    volume: float

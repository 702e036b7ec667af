from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class OrderSide(str, Enum):
    BID = 'bid'
    ASK = 'ask'


class OrderType(str, Enum):
    LIMIT = 'limit'
    MARKET = 'market'


@dataclass(frozen=True)
class Balance:
    currency: str
    free: float
    locked: float = 0.0
    avg_buy_price: float = 0.0
    unit_currency: str = 'KRW'


def format_decimal(value: float, places: int = 8) -> str:
    """Render a float the way the exchange expects: fixed point, no trailing zeros."""
    text = f"{value:.{places}f}".rstrip('0').rstrip('.')
    return text or '0'


@dataclass(frozen=True)
class Order:
    market: str
    side: OrderSide
    volume: float
    price: Optional[float] = None
    ord_type: OrderType = OrderType.LIMIT

    def to_params(self) -> Dict[str, str]:
        params = {
            'market': self.market,
            'side': self.side.value,
            'volume': format_decimal(self.volume),
            'ord_type': self.ord_type.value,
        }
        if self.price is not None:
            params['price'] = format_decimal(self.price)
        return params


@dataclass
class OrderResult:
    """Normalized view of an order acknowledgement across live and paper flows."""

    uuid: str
    market: str
    side: str
    ord_type: str
    state: Optional[str] = None
    price: Optional[float] = None
    volume: Optional[float] = None
    executed_volume: float = 0.0
    remaining_volume: Optional[float] = None
    paid_fee: float = 0.0
    reserved_fee: float = 0.0
    created_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.uuid

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.uuid,
            'market': self.market,
            'side': self.side,
            'ord_type': self.ord_type,
            'state': self.state,
            'price': self.price,
            'volume': self.volume,
            'executed_volume': self.executed_volume,
            'remaining_volume': self.remaining_volume,
            'paid_fee': self.paid_fee,
            'reserved_fee': self.reserved_fee,
            'created_at': self.created_at,
        }
        if self.raw:
            data['raw'] = self.raw
        return data

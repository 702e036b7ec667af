from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_DOWN, ROUND_FLOOR, Decimal
from typing import Optional
import logging

from config.settings import ConfigurationError


logger = logging.getLogger(__name__)

QUANTITY_PLACES = Decimal('0.00000001')

# (lower bound, tick) for KRW markets, highest band first
KRW_TICK_TABLE = (
    (Decimal('2000000'), Decimal('1000')),
    (Decimal('1000000'), Decimal('500')),
    (Decimal('500000'), Decimal('100')),
    (Decimal('100000'), Decimal('50')),
    (Decimal('10000'), Decimal('10')),
    (Decimal('1000'), Decimal('5')),
    (Decimal('100'), Decimal('1')),
    (Decimal('10'), Decimal('0.1')),
    (Decimal('1'), Decimal('0.01')),
    (Decimal('0.1'), Decimal('0.001')),
)
SMALLEST_TICK = Decimal('0.0001')


def krw_tick_size(price) -> Decimal:
    value = price if isinstance(price, Decimal) else Decimal(str(price))
    for lower, tick in KRW_TICK_TABLE:
        if value >= lower:
            return tick
    return SMALLEST_TICK


def round_to_tick(price, upward: bool) -> float:
    value = price if isinstance(price, Decimal) else Decimal(str(price))
    tick = krw_tick_size(value)
    steps = (value / tick).to_integral_value(rounding=ROUND_CEILING if upward else ROUND_FLOOR)
    return float(steps * tick)


def truncate_quantity(quantity: float) -> float:
    if quantity <= 0:
        return 0.0
    return float(Decimal(str(quantity)).quantize(QUANTITY_PLACES, rounding=ROUND_DOWN))


@dataclass(frozen=True)
class OrderPlan:
    price: float
    quantity: float

    @property
    def value(self) -> float:
        return self.price * self.quantity


class OrderSizer:
    def __init__(
        self,
        allocation_fraction: float,
        price_offset_pct: float = 0.001,
        min_order_value: float = 5000.0,
        max_order_value: Optional[float] = None,
        round_to_tick: bool = True,
    ):
        if allocation_fraction is None or not 0 < allocation_fraction <= 1:
            raise ConfigurationError(f"allocation_fraction must be in (0, 1], got {allocation_fraction!r}")
        if not 0 <= price_offset_pct < 1:
            raise ConfigurationError(f"price_offset_pct must be in [0, 1), got {price_offset_pct!r}")
        if max_order_value is not None and max_order_value <= 0:
            raise ConfigurationError("max_order_value must be positive when set")
        self.allocation_fraction = float(allocation_fraction)
        self.price_offset_pct = float(price_offset_pct)
        self.min_order_value = float(min_order_value or 0.0)
        self.max_order_value = float(max_order_value) if max_order_value is not None else None
        self.round_to_tick = round_to_tick

    def buy_price(self, ticker_price: float) -> float:
        price = Decimal(str(ticker_price)) * (1 - Decimal(str(self.price_offset_pct)))
        return round_to_tick(price, upward=False) if self.round_to_tick else float(price)

    def sell_price(self, ticker_price: float) -> float:
        price = Decimal(str(ticker_price)) * (1 + Decimal(str(self.price_offset_pct)))
        return round_to_tick(price, upward=True) if self.round_to_tick else float(price)

    def size_buy(self, ticker_price: float, free_quote_balance: float, fee_rate: float) -> Optional[OrderPlan]:
        if ticker_price <= 0 or free_quote_balance <= 0:
            return None
        price = self.buy_price(ticker_price)
        if price <= 0:
            return None
        allocated = free_quote_balance * self.allocation_fraction
        if self.max_order_value is not None:
            allocated = min(allocated, self.max_order_value)
        quantity = truncate_quantity(allocated / price * (1.0 - fee_rate))
        return self._checked(OrderPlan(price=price, quantity=quantity))

    def size_sell(self, ticker_price: float, free_holding_amount: float, fee_rate: float) -> Optional[OrderPlan]:
        if ticker_price <= 0 or free_holding_amount <= 0:
            return None
        price = self.sell_price(ticker_price)
        quantity = truncate_quantity(free_holding_amount * (1.0 - fee_rate))
        return self._checked(OrderPlan(price=price, quantity=quantity))

    def _checked(self, plan: OrderPlan) -> Optional[OrderPlan]:
        if plan.quantity <= 0:
            return None
        if plan.value < self.min_order_value:
            logger.debug("Order value %.2f below minimum %.2f", plan.value, self.min_order_value)
            return None
        return plan

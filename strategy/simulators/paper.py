import logging
import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, List, Mapping

from ingest.upbit_rest import UpbitAPIError
from strategy.execution_types import Balance, Order, OrderResult, OrderSide


logger = logging.getLogger(__name__)


class PaperExchange:
    """In-memory ExchangeGateway: real public market data, simulated wallet.

    Orders fill immediately and in full at their limit price (market orders
    at the current ticker), with the fee charged on the quote leg.
    """

    def __init__(
        self,
        market_data,
        quote_currency: str = 'KRW',
        initial_quote_balance: float = 1_000_000.0,
        fee_rate: float = 0.0005,
    ) -> None:
        self.market_data = market_data
        self.quote_currency = quote_currency.upper()
        self.fee_rate = fee_rate
        self._holdings: Dict[str, float] = {self.quote_currency: float(initial_quote_balance)}
        self._avg_price: Dict[str, float] = {}
        self._orders: Dict[str, OrderResult] = {}

    @property
    def holdings(self) -> Mapping[str, float]:
        return MappingProxyType(self._holdings)

    @property
    def orders(self) -> Mapping[str, OrderResult]:
        return MappingProxyType(self._orders)

    def has_credentials(self) -> bool:
        return True

    async def list_instruments(self, quote_currency: str):
        return await self.market_data.list_instruments(quote_currency)

    async def fetch_ticker_price(self, market: str) -> float:
        return await self.market_data.fetch_ticker_price(market)

    async def fetch_daily_candles(self, market: str, count: int, to=None):
        return await self.market_data.fetch_daily_candles(market, count, to)

    async def fetch_balances(self) -> List[Balance]:
        return [
            Balance(
                currency=currency,
                free=amount,
                avg_buy_price=self._avg_price.get(currency, 0.0),
                unit_currency=self.quote_currency,
            )
            for currency, amount in self._holdings.items()
        ]

    async def submit_order(self, order: Order) -> OrderResult:
        price = order.price
        if price is None:
            price = await self.market_data.fetch_ticker_price(order.market)
        base = order.market.split('-', 1)[-1]
        notional = price * order.volume
        fee = notional * self.fee_rate

        if order.side == OrderSide.BID:
            cost = notional + fee
            if cost > self._holdings.get(self.quote_currency, 0.0):
                raise UpbitAPIError(400, 'insufficient_funds_bid', 'Insufficient paper balance', '')
            self._credit(self.quote_currency, -cost)
            held = self._holdings.get(base, 0.0)
            self._avg_price[base] = (self._avg_price.get(base, 0.0) * held + notional) / (held + order.volume)
            self._credit(base, order.volume)
        else:
            if order.volume > self._holdings.get(base, 0.0) + 1e-12:
                raise UpbitAPIError(400, 'insufficient_funds_ask', 'Insufficient paper holding', '')
            self._credit(base, -order.volume)
            self._credit(self.quote_currency, notional - fee)

        result = OrderResult(
            uuid=f"paper-{uuid.uuid4().hex[:12]}",
            market=order.market,
            side=order.side.value,
            ord_type=order.ord_type.value,
            state='done',
            price=price,
            volume=order.volume,
            executed_volume=order.volume,
            remaining_volume=0.0,
            paid_fee=fee,
            created_at=datetime.now(timezone.utc).isoformat(),
            raw={'paper': True},
        )
        self._orders[result.uuid] = result
        logger.info(
            "Paper %s %s %s @ %s (fee %.2f)",
            order.ord_type.value,
            order.side.value,
            order.volume,
            price,
            fee,
        )
        return result

    async def close(self) -> None:
        await self.market_data.close()

    def _credit(self, currency: str, amount: float) -> None:
        value = self._holdings.get(currency, 0.0) + amount
        if abs(value) < 1e-12:
            value = 0.0
        self._holdings[currency] = value
        if value == 0.0 and currency != self.quote_currency:
            self._holdings.pop(currency, None)
            self._avg_price.pop(currency, None)

import logging
import time
from typing import List, Optional

from api.metrics import metrics
from ingest.models import Instrument
from ingest.upbit_rest import TRANSIENT_ERRORS, UpbitAPIError
from risk.order_sizer import OrderPlan, OrderSizer
from strategy.execution_types import Balance, Order, OrderResult, OrderSide, OrderType
from strategy.signal_engine import Signal


logger = logging.getLogger(__name__)


def free_balance(balances: List[Balance], currency: str) -> float:
    currency = currency.upper()
    for balance in balances:
        if balance.currency == currency:
            return balance.free
    return 0.0


class OrderExecutor:
    """Turn a signal into at most one priced limit order.

    Balances and the ticker are read fresh on every call. Exchange, network
    and decode failures are logged with the instrument and swallowed so a
    single market never aborts the tick.
    """

    def __init__(self, gateway, sizer: OrderSizer, quote_currency: str = 'KRW', fee_rate: float = 0.0005):
        self.gateway = gateway
        self.sizer = sizer
        self.quote_currency = quote_currency.upper()
        self.fee_rate = float(fee_rate)

    async def execute(self, instrument: Instrument, signal: Signal) -> Optional[OrderResult]:
        side = OrderSide.BID if signal == Signal.BUY else OrderSide.ASK
        try:
            ticker_price = await self.gateway.fetch_ticker_price(instrument.id)
            balances = await self.gateway.fetch_balances()
        except TRANSIENT_ERRORS as exc:
            self._log_transport_error("price/balance lookup", instrument, exc)
            metrics.record_instrument_error('lookup')
            return None

        plan = self._plan(side, instrument, ticker_price, balances)
        if plan is None:
            logger.info(
                "Skipping %s for %s (%s): insufficient balance or order below minimum",
                signal.value,
                instrument.id,
                instrument.display_name,
            )
            metrics.record_order_skipped('insufficient_balance')
            return None

        order = Order(
            market=instrument.id,
            side=side,
            volume=plan.quantity,
            price=plan.price,
            ord_type=OrderType.LIMIT,
        )
        started = time.perf_counter()
        try:
            result = await self.gateway.submit_order(order)
        except TRANSIENT_ERRORS as exc:
            self._log_transport_error(f"{side.value} order", instrument, exc)
            metrics.record_order_failure(side.value)
            return None

        metrics.record_order_submitted(side.value, OrderType.LIMIT.value, time.perf_counter() - started)
        logger.info(
            "%s order placed for %s (%s): id=%s price=%s quantity=%s",
            "Buy" if side == OrderSide.BID else "Sell",
            instrument.id,
            instrument.display_name,
            result.id,
            plan.price,
            plan.quantity,
        )
        return result

    def _plan(self, side: OrderSide, instrument: Instrument, ticker_price: float, balances: List[Balance]) -> Optional[OrderPlan]:
        if side == OrderSide.BID:
            available = free_balance(balances, self.quote_currency)
            metrics.update_quote_balance(available)
            return self.sizer.size_buy(ticker_price, available, self.fee_rate)
        holding = free_balance(balances, instrument.base_currency)
        return self.sizer.size_sell(ticker_price, holding, self.fee_rate)

    @staticmethod
    def _log_transport_error(action: str, instrument: Instrument, error: Exception) -> None:
        if isinstance(error, UpbitAPIError):
            logger.error(
                "Upbit %s failed for %s (%s): %s",
                action,
                instrument.id,
                instrument.display_name,
                error,
            )
        else:
            logger.error("%s failed for %s (%s): %r", action, instrument.id, instrument.display_name, error)

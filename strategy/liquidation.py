import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional

from api.metrics import metrics
from ingest.upbit_rest import TRANSIENT_ERRORS
from strategy.execution_types import Balance, Order, OrderResult, OrderSide, OrderType


logger = logging.getLogger(__name__)


@dataclass
class LiquidationReport:
    submitted: List[OrderResult] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed

    def as_dict(self) -> dict:
        return {
            'submitted': [r.as_dict() for r in self.submitted],
            'failed': list(self.failed),
            'skipped': list(self.skipped),
            'error': self.error,
        }


class LiquidationSweeper:
    """Market-sell every non-quote holding at session end, minus the exclusion set."""

    def __init__(
        self,
        gateway,
        quote_currency: str = 'KRW',
        excluded: Iterable[str] = (),
        delay_s: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.quote_currency = quote_currency.upper()
        self.excluded: FrozenSet[str] = frozenset(c.upper() for c in excluded)
        self.delay_s = delay_s
        self._sleep = sleep

    async def liquidate_all(self) -> LiquidationReport:
        report = LiquidationReport()
        metrics.record_sweep()
        try:
            balances = await self.gateway.fetch_balances()
        except TRANSIENT_ERRORS as exc:
            logger.error("Liquidation aborted, balance lookup failed: %s", exc)
            report.error = str(exc)
            return report

        targets = [b for b in balances if self._is_target(b)]
        if not targets:
            logger.info("Nothing to liquidate")
        for index, balance in enumerate(targets):
            if index:
                await self._sleep(self.delay_s)
            market = f"{self.quote_currency}-{balance.currency}"
            order = Order(market=market, side=OrderSide.ASK, volume=balance.free, ord_type=OrderType.MARKET)
            try:
                result = await self.gateway.submit_order(order)
            except TRANSIENT_ERRORS as exc:
                logger.error("Liquidation sell failed for %s (%s): %s", market, balance.free, exc)
                metrics.record_liquidation('failed')
                report.failed.append(market)
                continue
            logger.info("Liquidated %s %s via %s (order id=%s)", balance.free, balance.currency, market, result.id)
            metrics.record_liquidation('submitted')
            report.submitted.append(result)

        if targets:
            logger.info(
                "Liquidation finished: %d of %d holdings sold, %d failed",
                len(report.submitted),
                len(targets),
                len(report.failed),
            )

        for balance in balances:
            if balance.currency in self.excluded and balance.free > 0:
                logger.info("Excluded from liquidation: %s %s", balance.currency, balance.free)
                report.skipped.append(balance.currency)
        return report

    def _is_target(self, balance: Balance) -> bool:
        return (
            balance.currency != self.quote_currency
            and balance.currency not in self.excluded
            and balance.free > 0
        )

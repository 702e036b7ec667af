from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from ingest.models import Instrument, PriceSample
from ingest.upbit_rest import UpbitAPIError, UpbitDecodeError, UpbitRESTClient
from strategy.execution_types import Balance, Order, OrderResult


__all__ = ["UpbitTransport", "UpbitAPIError", "UpbitDecodeError", "KST"]

KST = ZoneInfo("Asia/Seoul")
MAX_CANDLES_PER_REQUEST = 200


class UpbitTransport:
    """Thin adapter around Upbit REST with typed responses.

    This is the live ExchangeGateway: every method performs exactly one
    request and either returns parsed values or raises ``UpbitAPIError`` /
    ``UpbitDecodeError`` / an aiohttp error for the caller to log.
    """

    def __init__(self, rest: UpbitRESTClient) -> None:
        self._rest = rest

    def has_credentials(self) -> bool:
        return self._rest.has_credentials

    async def list_instruments(self, quote_currency: str) -> List[Instrument]:
        payload = await self._rest.get("/market/all", params={"isDetails": "false"})
        if not isinstance(payload, list):
            raise UpbitDecodeError("market list", payload)
        prefix = f"{quote_currency}-"
        instruments: List[Instrument] = []
        for item in payload:
            market = item.get("market") if isinstance(item, dict) else None
            if not market or not market.startswith(prefix):
                continue
            instruments.append(
                Instrument(
                    id=market,
                    korean_name=item.get("korean_name") or "",
                    english_name=item.get("english_name"),
                )
            )
        return instruments

    async def fetch_ticker_price(self, market: str) -> float:
        payload = await self._rest.get("/ticker", params={"markets": market})
        if not isinstance(payload, list) or not payload:
            raise UpbitDecodeError("ticker", payload)
        price = self._as_float(payload[0].get("trade_price")) if isinstance(payload[0], dict) else None
        if price is None:
            raise UpbitDecodeError("ticker", payload)
        return price

    async def fetch_balances(self) -> List[Balance]:
        payload = await self._rest.get("/accounts", signed=True)
        if not isinstance(payload, list):
            raise UpbitDecodeError("accounts", payload)
        return [self._parse_balance(item) for item in payload]

    async def submit_order(self, order: Order) -> OrderResult:
        payload = await self._rest.post("/orders", params=order.to_params(), signed=True)
        result = self._parse_order_result(payload)
        if result is None:
            raise UpbitDecodeError("order", payload)
        return result

    async def fetch_daily_candles(
        self,
        market: str,
        count: int,
        to: Optional[datetime] = None,
    ) -> List[PriceSample]:
        params: Dict[str, Any] = {"market": market, "count": max(1, min(int(count), MAX_CANDLES_PER_REQUEST))}
        if to is not None:
            params["to"] = to.astimezone(KST).isoformat(timespec="seconds")
        payload = await self._rest.get("/candles/days", params=params)
        if not isinstance(payload, list):
            raise UpbitDecodeError("candles", payload)
        samples = [self._parse_candle(item) for item in payload]
        # exchange returns newest first
        samples.sort(key=lambda s: s.timestamp)
        return samples

    async def close(self) -> None:
        await self._rest.close()

    def _parse_balance(self, item: Any) -> Balance:
        if not isinstance(item, dict) or not item.get("currency"):
            raise UpbitDecodeError("account entry", item)
        free = self._as_float(item.get("balance"))
        if free is None:
            raise UpbitDecodeError("account balance", item)
        return Balance(
            currency=str(item["currency"]).upper(),
            free=free,
            locked=self._as_float(item.get("locked")) or 0.0,
            avg_buy_price=self._as_float(item.get("avg_buy_price")) or 0.0,
            unit_currency=item.get("unit_currency") or "KRW",
        )

    def _parse_candle(self, item: Any) -> PriceSample:
        if not isinstance(item, dict):
            raise UpbitDecodeError("candle", item)
        try:
            ts = datetime.fromisoformat(item["candle_date_time_kst"]).replace(tzinfo=KST)
            return PriceSample(
                market=item["market"],
                open=float(item["opening_price"]),
                high=float(item["high_price"]),
                low=float(item["low_price"]),
                close=float(item["trade_price"]),
                timestamp=ts,
                volume=float(item["candle_acc_trade_volume"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UpbitDecodeError("candle", item) from exc

    def _parse_order_result(self, payload: Any) -> Optional[OrderResult]:
        if not isinstance(payload, dict) or not payload.get("uuid"):
            return None
        return OrderResult(
            uuid=str(payload["uuid"]),
            market=payload.get("market", ""),
            side=payload.get("side") or "",
            ord_type=payload.get("ord_type") or "",
            state=payload.get("state"),
            price=self._as_float(payload.get("price")),
            volume=self._as_float(payload.get("volume")),
            executed_volume=self._as_float(payload.get("executed_volume")) or 0.0,
            remaining_volume=self._as_float(payload.get("remaining_volume")),
            paid_fee=self._as_float(payload.get("paid_fee")) or 0.0,
            reserved_fee=self._as_float(payload.get("reserved_fee")) or 0.0,
            created_at=payload.get("created_at"),
            raw=payload,
        )

    @staticmethod
    def _as_float(value: Any) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

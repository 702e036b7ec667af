"""Validated, typed view over the raw YAML configuration.

The trading core never reads the YAML tree directly. ``SessionSettings``
collects every value the session engine consumes, coerces the strings that
environment expansion produces (``"false"``, ``"0.5"``) into proper types and
raises :class:`ConfigurationError` for anything missing or out of range.
Credentials are the one exception: their absence is only fatal when a
session is started, so the settings can still be built for read-only use.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from .utils import get_config_section, is_unresolved


class ConfigurationError(RuntimeError):
    """Missing or invalid configuration; fatal to starting a session."""


_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off', ''}
MARKET_DATA_SOURCES = ('exchange', 'store')


def _as_bool(name: str, value: Any, default: bool) -> bool:
    if is_unresolved(value):
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"'{name}' must be a boolean, got {value!r}")


def _as_float(name: str, value: Any, default: Optional[float] = None, required: bool = False) -> Optional[float]:
    if is_unresolved(value):
        if required:
            raise ConfigurationError(f"'{name}' is required")
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{name}' must be a number, got {value!r}") from exc


def _as_secret(value: Any) -> Optional[str]:
    if is_unresolved(value):
        return None
    return str(value).strip()


@dataclass(frozen=True)
class SessionSettings:
    quote_currency: str
    allocation_fraction: float
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    base_url: str = 'https://api.upbit.com/v1'
    paper: bool = False
    paper_quote_balance: float = 1_000_000.0
    request_timeout_s: float = 10.0
    tick_interval_s: float = 30.0
    instrument_spacing_s: float = 0.0
    max_duration_s: float = 6.5 * 60 * 60
    signals: Dict[str, Any] = field(default_factory=dict)
    max_order_value: Optional[float] = None
    min_order_value: float = 5000.0
    price_offset_pct: float = 0.001
    fee_rate: float = 0.0005
    round_to_tick: bool = True
    excluded_currencies: FrozenSet[str] = frozenset()
    liquidation_delay_s: float = 0.5
    market_data_source: str = 'exchange'

    def __post_init__(self):
        if not self.quote_currency:
            raise ConfigurationError("'exchange.quote_currency' is required")
        if not 0.0 < self.allocation_fraction <= 1.0:
            raise ConfigurationError(
                f"'sizing.allocation_fraction' must be in (0, 1], got {self.allocation_fraction}"
            )
        if not 0.0 <= self.fee_rate < 1.0:
            raise ConfigurationError(f"'sizing.fee_rate' must be in [0, 1), got {self.fee_rate}")
        if not 0.0 <= self.price_offset_pct < 1.0:
            raise ConfigurationError(
                f"'sizing.price_offset_pct' must be in [0, 1), got {self.price_offset_pct}"
            )
        if self.tick_interval_s <= 0:
            raise ConfigurationError("'session.tick_interval_s' must be positive")
        if self.max_duration_s <= 0:
            raise ConfigurationError("'session.max_duration_s' must be positive")
        if self.max_order_value is not None and self.max_order_value <= 0:
            raise ConfigurationError("'sizing.max_order_value' must be positive when set")
        if self.market_data_source not in MARKET_DATA_SOURCES:
            raise ConfigurationError(
                f"'market_data.source' must be one of {MARKET_DATA_SOURCES}, got {self.market_data_source!r}"
            )

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_key and self.secret_key)

    def require_credentials(self) -> None:
        if not self.has_credentials:
            raise ConfigurationError("Upbit access/secret key unavailable")

    @classmethod
    def from_config(cls, source: Any) -> 'SessionSettings':
        exchange = get_config_section(source, 'exchange')
        session = get_config_section(source, 'session')
        sizing = get_config_section(source, 'sizing')
        liquidation = get_config_section(source, 'liquidation')
        market_data = get_config_section(source, 'market_data')

        quote = str(exchange.get('quote_currency') or '').strip().upper()
        excluded = liquidation.get('excluded_currencies') or []
        if isinstance(excluded, str):
            excluded = excluded.split(',')

        return cls(
            quote_currency=quote,
            allocation_fraction=_as_float(
                'sizing.allocation_fraction', sizing.get('allocation_fraction'), required=True
            ),
            access_key=_as_secret(exchange.get('access_key')),
            secret_key=_as_secret(exchange.get('secret_key')),
            base_url=str(exchange.get('base_url') or cls.base_url).rstrip('/'),
            paper=_as_bool('exchange.paper', exchange.get('paper'), False),
            paper_quote_balance=_as_float(
                'exchange.paper_quote_balance', exchange.get('paper_quote_balance'), 1_000_000.0
            ),
            request_timeout_s=_as_float('exchange.request_timeout_s', exchange.get('request_timeout_s'), 10.0),
            tick_interval_s=_as_float('session.tick_interval_s', session.get('tick_interval_s'), 30.0),
            instrument_spacing_s=_as_float(
                'session.instrument_spacing_s', session.get('instrument_spacing_s'), 0.0
            ),
            max_duration_s=_as_float('session.max_duration_s', session.get('max_duration_s'), 6.5 * 60 * 60),
            signals=dict(get_config_section(source, 'signals')),
            max_order_value=_as_float('sizing.max_order_value', sizing.get('max_order_value')),
            min_order_value=_as_float('sizing.min_order_value', sizing.get('min_order_value'), 5000.0),
            price_offset_pct=_as_float('sizing.price_offset_pct', sizing.get('price_offset_pct'), 0.001),
            fee_rate=_as_float('sizing.fee_rate', sizing.get('fee_rate'), 0.0005),
            round_to_tick=_as_bool('sizing.round_to_tick', sizing.get('round_to_tick'), True),
            excluded_currencies=frozenset(str(c).strip().upper() for c in excluded if str(c).strip()),
            liquidation_delay_s=_as_float('liquidation.delay_s', liquidation.get('delay_s'), 0.5),
            market_data_source=str(market_data.get('source') or 'exchange').strip().lower(),
        )

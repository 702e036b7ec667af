import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from analytics import indicators
from config.settings import ConfigurationError
from ingest.models import PriceSample


logger = logging.getLogger(__name__)


class Signal(str, Enum):
    BUY = 'buy'
    SELL = 'sell'


@dataclass(frozen=True)
class SignalConfig:
    min_samples: int = 10
    ma_type: str = 'ema'
    short_window: int = 5
    long_window: int = 10
    rsi_period: int = 9
    rsi_buy_min: float = 50.0
    rsi_buy_max: float = 70.0
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    volume_window: int = 5
    volume_multiplier: float = 1.5
    bollinger_enabled: bool = False
    bollinger_window: int = 20
    bollinger_k: float = 2.0

    def __post_init__(self):
        if self.ma_type not in ('ema', 'sma'):
            raise ConfigurationError(f"signals.ma_type must be 'ema' or 'sma', got {self.ma_type!r}")
        for name in ('min_samples', 'short_window', 'long_window', 'rsi_period', 'volume_window', 'bollinger_window'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"signals.{name} must be positive")
        if self.short_window >= self.long_window:
            raise ConfigurationError("signals.short_window must be smaller than signals.long_window")
        # upper bound is exclusive; a value above 100 leaves the band open at the top
        if not 0 <= self.rsi_buy_min < self.rsi_buy_max:
            raise ConfigurationError("signals.rsi_buy_min/rsi_buy_max must satisfy 0 <= min < max")
        if self.volume_multiplier < 0:
            raise ConfigurationError("signals.volume_multiplier must be non-negative")

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]]) -> 'SignalConfig':
        if not values:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, raw in values.items():
            if key not in known or raw is None:
                continue
            default = getattr(cls, key)
            try:
                if isinstance(default, bool):
                    kwargs[key] = raw if isinstance(raw, bool) else str(raw).strip().lower() in ('1', 'true', 'yes', 'on')
                elif isinstance(default, int):
                    kwargs[key] = int(raw)
                elif isinstance(default, float):
                    kwargs[key] = float(raw)
                else:
                    kwargs[key] = str(raw).lower()
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"signals.{key} is invalid: {raw!r}") from exc
        return cls(**kwargs)


@dataclass(frozen=True)
class IndicatorSnapshot:
    close: float
    short_ma: float
    long_ma: float
    rsi: Optional[float]
    volume: float
    average_volume: float
    bollinger_lower: Optional[float] = None
    bollinger_upper: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class SignalEngine:
    """Trend/momentum/volume decision over a daily candle series.

    Buy needs price above a rising MA stack, RSI inside the buy band and a
    volume surge; Sell needs the mirrored MA stack, RSI outside the
    oversold/overbought range and the same surge.
    """

    def __init__(self, cfg: Optional[SignalConfig] = None):
        self.cfg = cfg or SignalConfig()

    def evaluate(self, series: Sequence[PriceSample]) -> Optional[IndicatorSnapshot]:
        cfg = self.cfg
        if len(series) < cfg.min_samples:
            return None
        closes = [s.close for s in series]
        volumes = [s.volume for s in series]

        short_ma = indicators.moving_average(closes, cfg.short_window, cfg.ma_type)
        long_ma = indicators.moving_average(closes, cfg.long_window, cfg.ma_type)
        avg_volume = indicators.average_volume(volumes, cfg.volume_window)

        lower = upper = None
        if cfg.bollinger_enabled:
            bands = indicators.bollinger_bands(closes, cfg.bollinger_window, cfg.bollinger_k)
            if bands is not None:
                lower, _, upper = bands

        return IndicatorSnapshot(
            close=float(closes[-1]),
            short_ma=float(short_ma[-1]),
            long_ma=float(long_ma[-1]),
            rsi=indicators.rsi(closes, cfg.rsi_period),
            volume=float(volumes[-1]),
            average_volume=float(avg_volume or 0.0),
            bollinger_lower=lower,
            bollinger_upper=upper,
        )

    def analyze(self, series: Sequence[PriceSample]) -> Optional[Signal]:
        snap = self.evaluate(series)
        if snap is None:
            logger.debug("Not enough samples (%d < %d)", len(series), self.cfg.min_samples)
        return self.decide(snap)

    def decide(self, snap: Optional[IndicatorSnapshot]) -> Optional[Signal]:
        if snap is None or snap.rsi is None:
            return None
        cfg = self.cfg

        volume_surge = snap.volume > snap.average_volume * cfg.volume_multiplier
        if not volume_surge:
            return None

        if snap.close > snap.short_ma > snap.long_ma and cfg.rsi_buy_min < snap.rsi < cfg.rsi_buy_max:
            if cfg.bollinger_enabled and (snap.bollinger_upper is None or snap.close > snap.bollinger_upper):
                return None
            return Signal.BUY

        if snap.close < snap.short_ma < snap.long_ma and (
            snap.rsi < cfg.rsi_oversold or snap.rsi > cfg.rsi_overbought
        ):
            if cfg.bollinger_enabled and (snap.bollinger_lower is None or snap.close < snap.bollinger_lower):
                return None
            return Signal.SELL

        return None

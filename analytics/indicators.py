import numpy as np
from typing import Optional, Sequence, Tuple


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def ema(values: Sequence[float], period: int) -> np.ndarray:
    """Exponential moving average seeded with the first sample, k = 2 / (period + 1)."""
    prices = _as_array(values)
    out = np.empty_like(prices)
    if prices.size == 0:
        return out
    k = 2.0 / (period + 1.0)
    out[0] = prices[0]
    for i in range(1, prices.size):
        out[i] = prices[i] * k + out[i - 1] * (1.0 - k)
    return out


def sma(values: Sequence[float], period: int) -> np.ndarray:
    """Simple moving average; the first ``period - 1`` entries average what is available."""
    prices = _as_array(values)
    if prices.size == 0:
        return prices.copy()
    csum = np.cumsum(prices)
    out = np.empty_like(prices)
    head = min(period, prices.size)
    out[:head] = csum[:head] / np.arange(1, head + 1)
    if prices.size > period:
        out[period:] = (csum[period:] - csum[:-period]) / period
    return out


def moving_average(values: Sequence[float], period: int, kind: str = 'ema') -> np.ndarray:
    if kind == 'ema':
        return ema(values, period)
    if kind == 'sma':
        return sma(values, period)
    raise ValueError(f"Unknown moving average type: {kind}")


def rsi(values: Sequence[float], period: int) -> Optional[float]:
    prices = _as_array(values)
    if period <= 0 or prices.size < period + 1:
        return None
    deltas = np.diff(prices)[-period:]
    avg_gain = float(np.mean(np.maximum(deltas, 0.0)))
    avg_loss = float(np.mean(np.maximum(-deltas, 0.0)))
    if avg_loss == 0.0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def bollinger_bands(values: Sequence[float], window: int, k: float) -> Optional[Tuple[float, float, float]]:
    """Latest (lower, middle, upper) band using population standard deviation."""
    prices = _as_array(values)
    if window <= 0 or prices.size < window:
        return None
    tail = prices[-window:]
    mid = float(np.mean(tail))
    sigma = float(np.std(tail))
    return mid - k * sigma, mid, mid + k * sigma


def average_volume(values: Sequence[float], window: int) -> Optional[float]:
    """Trailing mean over the last ``window`` samples, current sample included."""
    volumes = _as_array(values)
    if window <= 0 or volumes.size == 0:
        return None
    return float(np.mean(volumes[-window:]))

from __future__ import annotations
from typing import Dict, List, Optional, Sequence

from .models import Candle, IndicatorSeries

RSI = "RSI"
SMA = "SMA"
EMA = "EMA"

DEFAULT_PERIODS: Dict[str, int] = {RSI: 14, SMA: 20, EMA: 20}


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def rma_next(prev: float, x: float, length: int) -> float:
    """Wilder's smoothing step."""
    return (prev * (length - 1) + x) / float(length)


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi_wilder_series(closes: Sequence[float], length: int = 14) -> List[float]:
    """One value per close from index `length` on; empty below length + 1 closes."""
    if length <= 0 or len(closes) < length + 1:
        return []
    gains = 0.0
    losses = 0.0
    for i in range(1, length + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / length
    avg_loss = losses / length
    out = [_rsi_from_avgs(avg_gain, avg_loss)]
    for i in range(length + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = rma_next(avg_gain, max(ch, 0.0), length)
        avg_loss = rma_next(avg_loss, max(-ch, 0.0), length)
        out.append(_rsi_from_avgs(avg_gain, avg_loss))
    return out


def sma_series(values: Sequence[float], length: int) -> List[float]:
    if length <= 0 or len(values) < length:
        return []
    window = sum(values[:length])
    out = [window / float(length)]
    for i in range(length, len(values)):
        window += values[i] - values[i - length]
        out.append(window / float(length))
    return out


def ema_series(values: Sequence[float], length: int) -> List[float]:
    """EMA seeded with the SMA of the first `length` values."""
    seed = sma_series(values[:length], length)
    if not seed:
        return []
    out = [seed[0]]
    for x in values[length:]:
        out.append(ema_next(out[-1], x, length))
    return out


def compute(kind: str, candles: Sequence[Candle], period: Optional[int] = None) -> IndicatorSeries:
    """Recompute an indicator over the full candle sequence.

    Not having enough candles yet yields an empty series rather than an error.
    """
    kind = (kind or "").strip().upper()
    if kind not in DEFAULT_PERIODS:
        raise ValueError(f"Unsupported indicator: {kind}")
    n = int(period) if period is not None else DEFAULT_PERIODS[kind]
    closes = [c.close for c in candles]

    if kind == RSI:
        values = rsi_wilder_series(closes, n)
        offset = n
    elif kind == SMA:
        values = sma_series(closes, n)
        offset = n - 1
    else:
        values = ema_series(closes, n)
        offset = n - 1

    if not values:
        return IndicatorSeries(kind=kind)
    return IndicatorSeries(kind=kind, offset=offset, values=tuple(values))

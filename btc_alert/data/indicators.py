"""Indicator helpers used by the decision engine."""

from __future__ import annotations

from math import isfinite, nextafter
from typing import Iterable, Sequence

from btc_alert.exceptions import InsufficientData


def ema_series(values: Sequence[float], period: int) -> list[float]:
    """Return the EMA series, seeded with the first value."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if not values:
        raise InsufficientData("ema requires at least one value", required=1, available=0)

    k = 2.0 / (period + 1.0)
    acc = float(values[0])
    out = [acc]
    for v in values[1:]:
        acc = acc + k * (v - acc)
        out.append(acc)
    return out


def ema(values: Sequence[float], period: int) -> float:
    """Return EMA of the full series using the last value as current signal."""
    return ema_series(values, period)[-1]


def pct(from_value: float, to_value: float) -> float:
    """Safe percentage change, in percent."""
    if not isfinite(from_value) or not isfinite(to_value) or from_value == 0:
        return 0.0
    return (to_value - from_value) / from_value * 100.0


def rsi(values: Sequence[float], period: int = 14) -> float:
    """Compute RSI with Wilder smoothing."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(values) < period + 1:
        raise InsufficientData(
            f"rsi({period}) requires {period + 1} values, got {len(values)}",
            required=period + 1,
            available=len(values),
        )

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        delta = values[i] - values[i - 1]
        if delta >= 0:
            gains += delta
        else:
            losses -= delta
    avg_gain = gains / period
    avg_loss = losses / period

    for i in range(period + 1, len(values)):
        delta = values[i] - values[i - 1]
        gain = delta if delta > 0 else 0.0
        loss = -delta if delta < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    value = 100.0 - (100.0 / (1.0 + rs))
    # Only a zero average loss may reach exactly 100.
    return max(0.0, min(nextafter(100.0, 0.0), value))


def rebound_from_window(values: Sequence[float], window: int) -> float:
    """Percent recovery of the latest value from the minimum of the last `window` values."""
    if window <= 0:
        raise ValueError("window must be > 0")
    if not values:
        raise InsufficientData("rebound requires at least one value", required=1, available=0)
    return pct(min(values[-window:]), values[-1])


def sanitize_closes(values: Iterable[float]) -> tuple[list[float], int]:
    """Drop non-finite and non-positive closes; return (clean, dropped_count)."""
    clean: list[float] = []
    dropped = 0
    for v in values:
        try:
            f = float(v)
        except (TypeError, ValueError):
            dropped += 1
            continue
        if isfinite(f) and f > 0:
            clean.append(f)
        else:
            dropped += 1
    return clean, dropped

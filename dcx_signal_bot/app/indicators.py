"""Indicator helpers used by the signal engine."""

from __future__ import annotations

import math
from statistics import pstdev
from typing import Sequence


def sma(values: Sequence[float], period: int) -> float:
    """Mean of the last `period` values, or of all values when fewer exist."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if not values:
        raise ValueError("values cannot be empty")
    window = values[-period:]
    return math.fsum(window) / len(window)


def rsi(values: Sequence[float], period: int = 14) -> float:
    """RSI over the last `period` deltas using simple average gains/losses."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(values) < 2:
        return 50.0

    count = min(period, len(values) - 1)
    gains = 0.0
    losses = 0.0
    for i in range(len(values) - count, len(values)):
        delta = values[i] - values[i - 1]
        if delta > 0:
            gains += delta
        else:
            losses -= delta

    avg_gain = gains / count
    avg_loss = losses / count
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def pct_change(new_value: float, old_value: float) -> float:
    """Safe percentage change."""
    if old_value == 0:
        return 0.0
    return (new_value - old_value) / old_value


def returns(values: Sequence[float]) -> list[float]:
    return [pct_change(values[i], values[i - 1]) for i in range(1, len(values))]


def volatility(values: Sequence[float]) -> float:
    """Population standard deviation of period-over-period returns."""
    rets = returns(values)
    if not rets:
        return 0.0
    return pstdev(rets)

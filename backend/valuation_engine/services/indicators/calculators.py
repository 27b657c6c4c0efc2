# backend/valuation_engine/services/indicators/calculators.py
"""
Pure indicator calculations.

These functions and accumulators have NO database dependencies.

Indicators:
- Simple moving average over the trailing N available bars
- Exponential moving average, seeded with the simple mean of the first
  `period` values, then ema = price * a + prev * (1 - a), a = 2 / (period + 1)
- MACD: fast EMA (12) minus slow EMA (26), with a 9-period signal EMA
  of that difference
- RSI with Wilder smoothing: average gain/loss seeded with the simple mean
  of the first `period` changes, then avg = (prev * (period - 1) + x) / period

Streaming:
    EMA and RSI are recurrences. EmaState and WilderState carry the
    accumulator between calls, and serialize to plain dicts, so a run
    resumed from a stored state performs exactly the same floating-point
    operations as an uninterrupted pass over the whole series.

All arithmetic is binary floating point. Means use math.fsum so a window's
value does not depend on where the series happened to start.
"""

import math
from dataclasses import dataclass, field
from typing import Any

from valuation_engine.services.constants import RSI_MAX, RSI_MIN


# =============================================================================
# SIMPLE MOVING AVERAGE
# =============================================================================

def mean(values: list[float]) -> float:
    """Correctly rounded arithmetic mean."""
    return math.fsum(values) / len(values)


def simple_moving_average(values: list[float], window: int) -> list[float | None]:
    """
    Trailing simple moving average.

    Element i is the mean of values[i - window + 1 .. i], or None when
    fewer than `window` values are available.

    Example:
        >>> simple_moving_average([1.0, 2.0, 3.0, 4.0], 2)
        [None, 1.5, 2.5, 3.5]
    """
    if window < 1:
        raise ValueError(f"window must be positive, got {window}")
    result: list[float | None] = []
    for i in range(len(values)):
        if i + 1 < window:
            result.append(None)
        else:
            result.append(mean(values[i + 1 - window:i + 1]))
    return result


# =============================================================================
# EXPONENTIAL MOVING AVERAGE
# =============================================================================

@dataclass
class EmaState:
    """
    Streaming EMA accumulator.

    Attributes:
        period: EMA period
        seed: Values collected before the EMA is defined
        value: Current EMA, None until `period` values were seen
    """

    period: int
    seed: list[float] = field(default_factory=list)
    value: float | None = None

    @property
    def alpha(self) -> float:
        return 2.0 / (self.period + 1)

    def update(self, price: float) -> float | None:
        """Feed one value; return the EMA after it (None during warm-up)."""
        if self.value is None:
            self.seed.append(price)
            if len(self.seed) == self.period:
                self.value = mean(self.seed)
                self.seed = []
            return self.value

        alpha = self.alpha
        self.value = price * alpha + self.value * (1 - alpha)
        return self.value

    def to_dict(self) -> dict[str, Any]:
        return {"period": self.period, "seed": list(self.seed), "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmaState":
        return cls(period=int(data["period"]), seed=[float(v) for v in data["seed"]], value=data["value"])


def exponential_moving_average(values: list[float], period: int) -> list[float | None]:
    """
    EMA of a series; None for the first period - 1 elements.

    Example:
        >>> exponential_moving_average([1.0, 2.0, 3.0], 2)
        [None, 1.5, 2.5]
    """
    state = EmaState(period)
    return [state.update(v) for v in values]


# =============================================================================
# RSI (WILDER)
# =============================================================================

def rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    """
    RSI from smoothed average gain and loss.

    A zero average loss gives 100, including the flat case where both
    averages are zero. Otherwise a zero average gain gives 0.
    """
    if avg_loss == 0:
        return RSI_MAX
    if avg_gain == 0:
        return RSI_MIN
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


@dataclass
class WilderState:
    """
    Streaming RSI accumulator with Wilder smoothing.

    Attributes:
        period: RSI lookback
        prev_price: Last price seen (None before the first)
        gains/losses: Changes collected before the averages are seeded
        avg_gain/avg_loss: Smoothed averages, None until seeded
    """

    period: int
    prev_price: float | None = None
    gains: list[float] = field(default_factory=list)
    losses: list[float] = field(default_factory=list)
    avg_gain: float | None = None
    avg_loss: float | None = None

    def update(self, price: float) -> float | None:
        """Feed one price; return the RSI after it (None during warm-up)."""
        if self.prev_price is None:
            self.prev_price = price
            return None

        change = price - self.prev_price
        self.prev_price = price
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0

        if self.avg_gain is None:
            self.gains.append(gain)
            self.losses.append(loss)
            if len(self.gains) < self.period:
                return None
            self.avg_gain = mean(self.gains)
            self.avg_loss = mean(self.losses)
            self.gains = []
            self.losses = []
        else:
            n = self.period
            self.avg_gain = (self.avg_gain * (n - 1) + gain) / n
            self.avg_loss = (self.avg_loss * (n - 1) + loss) / n

        return rsi_from_averages(self.avg_gain, self.avg_loss)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "prev_price": self.prev_price,
            "gains": list(self.gains),
            "losses": list(self.losses),
            "avg_gain": self.avg_gain,
            "avg_loss": self.avg_loss,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WilderState":
        return cls(
            period=int(data["period"]),
            prev_price=data["prev_price"],
            gains=[float(v) for v in data["gains"]],
            losses=[float(v) for v in data["losses"]],
            avg_gain=data["avg_gain"],
            avg_loss=data["avg_loss"],
        )


def relative_strength_index(values: list[float], period: int) -> list[float | None]:
    """
    Wilder RSI of a series; the first value is defined at index `period`.
    """
    state = WilderState(period)
    return [state.update(v) for v in values]

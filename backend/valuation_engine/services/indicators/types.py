# backend/valuation_engine/services/indicators/types.py
"""
Internal data types for the indicator engine.

Indicator values are floats (they are persisted in double-precision
columns). Prices coming from the store are Decimal and are converted
once, at the engine boundary.

Type Hierarchy:
    PricePoint       - One input bar reduced to what the engine needs
    IndicatorRow     - Computed indicators for one bar
    RecurrenceState  - EMA/Wilder accumulators after the last bar
    IndicatorRecord  - Stored indicators for one date, as returned to callers
    RecomputeResult  - Outcome of recomputing one symbol/region
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from valuation_engine.services.constants import (
    MACD_FAST_PERIOD,
    MACD_SIGNAL_PERIOD,
    MACD_SLOW_PERIOD,
    RSI_PERIODS,
)
from valuation_engine.services.indicators.calculators import EmaState, WilderState


@dataclass(frozen=True)
class PricePoint:
    """One bar as seen by the engine."""

    date: date
    price: float
    bar_id: int | None = None


@dataclass
class IndicatorRow:
    """Indicators computed for one bar. None means not yet defined."""

    date: date
    source_bar_id: int | None = None
    ma50: float | None = None
    ma200: float | None = None
    fast_ema: float | None = None
    slow_ema: float | None = None
    histogram: float | None = None
    signal: float | None = None
    rsi_9: float | None = None
    rsi_14: float | None = None
    rsi_21: float | None = None


@dataclass
class RecurrenceState:
    """
    Accumulators for every recurrence, as of the last processed bar.

    price_field records which bar field the state was built from; a state
    built from a different field cannot be resumed.
    """

    fast: EmaState = field(default_factory=lambda: EmaState(MACD_FAST_PERIOD))
    slow: EmaState = field(default_factory=lambda: EmaState(MACD_SLOW_PERIOD))
    signal: EmaState = field(default_factory=lambda: EmaState(MACD_SIGNAL_PERIOD))
    rsi: dict[int, WilderState] = field(
        default_factory=lambda: {p: WilderState(p) for p in RSI_PERIODS}
    )
    price_field: str = "close"

    def to_dict(self) -> dict[str, Any]:
        return {
            "fast": self.fast.to_dict(),
            "slow": self.slow.to_dict(),
            "signal": self.signal.to_dict(),
            "rsi": {str(p): s.to_dict() for p, s in self.rsi.items()},
            "price_field": self.price_field,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecurrenceState:
        return cls(
            fast=EmaState.from_dict(data["fast"]),
            slow=EmaState.from_dict(data["slow"]),
            signal=EmaState.from_dict(data["signal"]),
            rsi={int(p): WilderState.from_dict(s) for p, s in data["rsi"].items()},
            price_field=data.get("price_field", "close"),
        )


@dataclass(frozen=True)
class IndicatorRecord:
    """
    Stored indicators for one (symbol, date, region).

    Returned by get_indicators. Any field may be None: moving averages
    before enough bars exist, EMAs before their seed, RSI before its
    first `period` changes.

    source_bar_id is the id of the price bar the values were computed
    from; it is a plain reference and never cascades.
    """

    symbol: str
    region: str
    date: date
    ma50: float | None = None
    ma200: float | None = None
    fast_ema: float | None = None
    slow_ema: float | None = None
    histogram: float | None = None
    signal: float | None = None
    rsi_9: float | None = None
    rsi_14: float | None = None
    rsi_21: float | None = None
    source_bar_id: int | None = None


class RecomputeMode(str, enum.Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    NOOP = "noop"


@dataclass
class RecomputeResult:
    """Outcome of recomputing indicators for one symbol/region."""

    symbol: str
    region: str
    mode: RecomputeMode
    rows_written: int = 0
    last_computed_date: date | None = None
    revision: int = 0
    reason: str | None = None

# backend/valuation_engine/services/indicators/__init__.py
"""
Indicator Engine Package.

This package keeps technical indicator series current for every stored
price series:
- Moving averages (MA50, MA200)
- MACD (EMA12 - EMA26) with its signal line and histogram
- RSI over 9, 14 and 21 periods with Wilder smoothing

Usage:
    from valuation_engine.services.indicators import IndicatorService

    service = IndicatorService(store)

    # Bring one series up to date (incremental when possible)
    result = service.recompute(db, "AAPL", "USD")

    # Latest 100 indicator records, oldest first
    records = service.get_indicators(db, "AAPL", "USD")

Architecture:
    indicators/
    ├── __init__.py              # This file - package exports
    ├── calculators.py           # Pure MA/EMA/RSI functions and recurrence states
    ├── engine.py                # Streaming computation over a bar window
    ├── types.py                 # Data classes
    └── service.py               # IndicatorService (recompute + reads)

Data Flow:
    PriceBar rows → IndicatorEngine → IndicatorRow + RecurrenceState
    IndicatorRow → moving_average_data / macd_data / rsi_data
    RecurrenceState → indicator_status.recurrence_state
"""

from valuation_engine.services.indicators.calculators import (
    EmaState,
    WilderState,
    exponential_moving_average,
    mean,
    relative_strength_index,
    rsi_from_averages,
    simple_moving_average,
)
from valuation_engine.services.indicators.engine import IndicatorEngine
from valuation_engine.services.indicators.service import IndicatorService
from valuation_engine.services.indicators.types import (
    IndicatorRecord,
    IndicatorRow,
    PricePoint,
    RecomputeMode,
    RecomputeResult,
    RecurrenceState,
)

__all__ = [
    # Main service
    "IndicatorService",
    "IndicatorEngine",
    # Calculators
    "mean",
    "simple_moving_average",
    "exponential_moving_average",
    "relative_strength_index",
    "rsi_from_averages",
    "EmaState",
    "WilderState",
    # Types
    "PricePoint",
    "IndicatorRow",
    "IndicatorRecord",
    "RecurrenceState",
    "RecomputeMode",
    "RecomputeResult",
]

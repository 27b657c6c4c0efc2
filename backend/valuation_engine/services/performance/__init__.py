# backend/valuation_engine/services/performance/__init__.py
"""
Performance history: portfolio and benchmark rebased to a common start.
"""

from valuation_engine.services.performance.builder import (
    PerformanceHistoryBuilder,
    align,
    calculate_simple_return,
)
from valuation_engine.services.performance.time_ranges import (
    TimeRange,
    parse_time_range,
    window_start,
)
from valuation_engine.services.performance.types import PerformancePoint

__all__ = [
    "PerformanceHistoryBuilder",
    "PerformancePoint",
    "TimeRange",
    "align",
    "calculate_simple_return",
    "parse_time_range",
    "window_start",
]

# backend/valuation_engine/services/performance/types.py
"""
Internal data types for performance history.

Returns are decimal fractions (0.10 = 10%), never percentages.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class PerformancePoint:
    """
    Portfolio vs benchmark on one date, rebased to the window start.

    Attributes:
        portfolio_cumulative_return: value / value at window start - 1
        benchmark_cumulative_return: same for the benchmark
        relative_performance: portfolio minus benchmark cumulative return
        portfolio_daily_return: change vs the previous aligned date
            (None on the first date)
        benchmark_daily_return: same for the benchmark
    """

    region: str
    date: date
    portfolio_value: Decimal
    benchmark_value: Decimal
    portfolio_cumulative_return: Decimal
    benchmark_cumulative_return: Decimal
    relative_performance: Decimal
    portfolio_daily_return: Decimal | None = None
    benchmark_daily_return: Decimal | None = None

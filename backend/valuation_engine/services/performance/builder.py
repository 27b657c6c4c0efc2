# backend/valuation_engine/services/performance/builder.py
"""
Performance History Builder: portfolio vs benchmark, rebased.

Aligns the portfolio value series with the benchmark series on common
dates only (no interpolation), rebases both at the first common date
where the book is fully priced and both values are positive, and derives
cumulative, relative and daily returns. Dates with too little of the
book priced are left out rather than shown as a drop.

Formulas:
    cumulative[i] = value[i] / value[0] - 1
    relative[i]   = portfolio_cumulative[i] - benchmark_cumulative[i]
    daily[i]      = value[i] / value[i-1] - 1

Example:
    Portfolio [100, 110, 121], benchmark [50, 55, 60.5]
    -> cumulative [0, 0.10, 0.21] for both, relative [0, 0, 0]
"""

import logging
from datetime import date
from decimal import Decimal

from valuation_engine.services.constants import MIN_PRICED_COVERAGE
from valuation_engine.services.performance.types import PerformancePoint
from valuation_engine.services.valuation.types import PortfolioValuationPoint

logger = logging.getLogger(__name__)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def align(
        portfolio_values: dict[date, Decimal],
        benchmark_values: dict[date, Decimal | None],
) -> list[tuple[date, Decimal, Decimal]]:
    """
    Inner-join two value series on date.

    Dates present in only one series, or with a None benchmark value,
    are dropped.

    Returns:
        (date, portfolio_value, benchmark_value) ascending by date
    """
    common = sorted(
        d for d in portfolio_values.keys() & benchmark_values.keys()
        if benchmark_values[d] is not None
    )
    return [(d, portfolio_values[d], benchmark_values[d]) for d in common]


def calculate_simple_return(start_value: Decimal, end_value: Decimal) -> Decimal | None:
    """
    Simple return between two values; None when the start value is not positive.

    Example:
        >>> calculate_simple_return(Decimal("100"), Decimal("110"))
        Decimal('0.1')
    """
    if start_value <= 0:
        return None
    return end_value / start_value - 1


# =============================================================================
# BUILDER
# =============================================================================

class PerformanceHistoryBuilder:
    """
    Builds rebased performance series from valuation points.

    Attributes:
        _min_coverage: Least priced share of the book for a date to be kept
    """

    def __init__(self, min_coverage: Decimal = MIN_PRICED_COVERAGE) -> None:
        self._min_coverage = min_coverage

    def build(
            self,
            region: str,
            valuation_points: list[PortfolioValuationPoint],
            window_start: date | None = None,
    ) -> list[PerformancePoint]:
        """
        Performance series for one region.

        The baseline is the first aligned date in the window where every
        priced holding has a bar and both values are positive. After it,
        dates with less than min_coverage of the book priced are skipped
        and logged.

        Args:
            region: Portfolio region
            valuation_points: Output of the valuation aggregator
            window_start: Earliest date eligible as the rebasing baseline

        Returns:
            One PerformancePoint per kept date from the baseline on.
            Empty when no fully priced common date exists.
        """
        coverage = {p.date: p.coverage for p in valuation_points}
        aligned = align(
            {p.date: p.portfolio_value for p in valuation_points},
            {p.date: p.benchmark_value for p in valuation_points},
        )
        if window_start is not None:
            aligned = [row for row in aligned if row[0] >= window_start]

        baseline_index = next(
            (
                i for i, (d, pv, bv) in enumerate(aligned)
                if pv > 0 and bv > 0 and coverage[d] >= 1
            ),
            None,
        )
        if baseline_index is None:
            logger.warning(f"No fully priced common date with positive values for {region}")
            return []

        for d, _, _ in aligned[:baseline_index]:
            self._log_skip(region, d, coverage[d], "before the first fully priced date")

        aligned = aligned[baseline_index:]
        _, base_portfolio, base_benchmark = aligned[0]

        points: list[PerformancePoint] = []
        prev: tuple[Decimal, Decimal] | None = None
        for d, pv, bv in aligned:
            if pv <= 0 or coverage[d] < self._min_coverage:
                self._log_skip(region, d, coverage[d], "insufficient price data")
                continue

            portfolio_cum = pv / base_portfolio - 1
            benchmark_cum = bv / base_benchmark - 1
            points.append(
                PerformancePoint(
                    region=region,
                    date=d,
                    portfolio_value=pv,
                    benchmark_value=bv,
                    portfolio_cumulative_return=portfolio_cum,
                    benchmark_cumulative_return=benchmark_cum,
                    relative_performance=portfolio_cum - benchmark_cum,
                    portfolio_daily_return=calculate_simple_return(prev[0], pv) if prev else None,
                    benchmark_daily_return=calculate_simple_return(prev[1], bv) if prev else None,
                )
            )
            prev = (pv, bv)

        logger.debug(
            f"Built {len(points)} performance points for {region} from {aligned[0][0]}"
        )
        return points

    @staticmethod
    def _log_skip(region: str, d: date, coverage: Decimal, reason: str) -> None:
        logger.info(f"Skipping {d} for {region}: {reason} ({float(coverage):.0%} of holdings priced)")

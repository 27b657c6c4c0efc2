# tests/services/performance/test_performance_builder.py
"""
Unit tests for PerformanceHistoryBuilder.

Returns are rebased to the first aligned, fully priced date where both
the portfolio and the benchmark are positive. Thinly priced dates are
left out.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from tests.conftest import make_bars
from valuation_engine.services.performance.builder import (
    PerformanceHistoryBuilder,
    align,
    calculate_simple_return,
)
from valuation_engine.services.price_store import PriceBarInput
from valuation_engine.services.valuation.aggregator import ValuationAggregator
from valuation_engine.services.valuation.types import HoldingLot, PortfolioValuationPoint


def _points(
        portfolio: list,
        benchmark: list,
        coverage: list | None = None,
        start: date = date(2024, 1, 1),
) -> list[PortfolioValuationPoint]:
    coverage = coverage or [1] * len(portfolio)
    return [
        PortfolioValuationPoint(
            region="USD",
            date=start + timedelta(days=i),
            portfolio_value=Decimal(str(pv)),
            benchmark_value=Decimal(str(bv)) if bv is not None else None,
            coverage=Decimal(str(cov)),
        )
        for i, (pv, bv, cov) in enumerate(zip(portfolio, benchmark, coverage))
    ]


@pytest.fixture
def builder() -> PerformanceHistoryBuilder:
    return PerformanceHistoryBuilder()


class TestAlign:
    """Tests for align."""

    def test_inner_join(self):
        """Should keep only dates present in both series."""
        d1, d2, d3 = date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)
        aligned = align({d1: Decimal("1"), d2: Decimal("2")}, {d2: Decimal("20"), d3: Decimal("30")})
        assert aligned == [(d2, Decimal("2"), Decimal("20"))]

    def test_drops_missing_benchmark(self):
        """Should drop dates whose benchmark value is None."""
        d1 = date(2024, 1, 1)
        assert align({d1: Decimal("1")}, {d1: None}) == []


class TestSimpleReturn:
    """Tests for calculate_simple_return."""

    def test_gain(self):
        """Should compute end / start - 1."""
        assert calculate_simple_return(Decimal("100"), Decimal("110")) == Decimal("0.1")

    def test_zero_start(self):
        """Should return None for a zero start value."""
        assert calculate_simple_return(Decimal("0"), Decimal("110")) is None


class TestBuild:
    """Tests for the rebased series."""

    def test_matching_growth(self, builder):
        """Should give equal cumulative returns and zero relative performance."""
        points = builder.build("USD", _points([100, 110, 121], [50, 55, "60.5"]))

        assert [p.portfolio_cumulative_return for p in points] == [Decimal("0"), Decimal("0.1"), Decimal("0.21")]
        assert [p.benchmark_cumulative_return for p in points] == [Decimal("0"), Decimal("0.1"), Decimal("0.21")]
        assert all(p.relative_performance == 0 for p in points)

    def test_daily_returns(self, builder):
        """Should compute day-over-day returns after the first point."""
        points = builder.build("USD", _points([100, 110, 121], [50, 55, "60.5"]))

        assert points[0].portfolio_daily_return is None
        assert points[1].portfolio_daily_return == Decimal("0.1")
        assert points[2].benchmark_daily_return == Decimal("0.1")

    def test_outperformance(self, builder):
        """Should report portfolio minus benchmark cumulative return."""
        points = builder.build("USD", _points([100, 120], [100, 105]))
        assert points[-1].relative_performance == Decimal("0.15")

    def test_baseline_skips_zero_values(self, builder):
        """Should rebase on the first date with both values positive."""
        points = builder.build("USD", _points([0, 200, 220], [50, 50, 55]))

        assert points[0].date == date(2024, 1, 2)
        assert points[0].portfolio_cumulative_return == 0
        assert points[-1].portfolio_cumulative_return == Decimal("0.1")

    def test_dates_without_benchmark_dropped(self, builder):
        """Should skip dates the benchmark has no bar for."""
        points = builder.build("USD", _points([100, 105, 110], [50, None, 55]))
        assert [p.date for p in points] == [date(2024, 1, 1), date(2024, 1, 3)]

    def test_window_start(self, builder):
        """Should not rebase before the window start."""
        points = builder.build("USD", _points([100, 200, 220], [50, 50, 55]), window_start=date(2024, 1, 2))

        assert points[0].date == date(2024, 1, 2)
        assert points[-1].portfolio_cumulative_return == Decimal("0.1")

    def test_no_common_positive_date(self, builder):
        """Should return an empty series."""
        assert builder.build("USD", _points([0, 0], [50, 50])) == []
        assert builder.build("USD", []) == []


class TestCoverage:
    """Tests for baseline selection and thinly priced dates."""

    def test_baseline_waits_for_full_coverage(self, builder):
        """Should not rebase on a date where part of the book is unpriced."""
        points = builder.build("USD", _points([100, 200, 220], [50, 50, 55], coverage=[0.5, 1, 1]))

        assert points[0].date == date(2024, 1, 2)
        assert points[0].portfolio_cumulative_return == 0
        assert points[-1].portfolio_cumulative_return == Decimal("0.1")

    def test_under_covered_dates_dropped(self, builder):
        """Should leave out dates below the coverage threshold after the baseline."""
        points = builder.build(
            "USD",
            _points([100, 40, 105, 110], [50, 50, 50, 50], coverage=[1, "0.4", "0.9", 1]),
        )

        assert [p.date for p in points] == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 4)]
        assert points[1].portfolio_daily_return == Decimal("0.05")

    def test_skipped_dates_logged(self, builder, caplog):
        """Should log each skipped date."""
        with caplog.at_level("INFO", logger="valuation_engine.services.performance.builder"):
            builder.build("USD", _points([100, 40, 110], [50, 50, 50], coverage=[1, "0.4", 1]))

        assert "Skipping 2024-01-02 for USD" in caplog.text

    def test_never_fully_covered(self, builder):
        """Should return an empty series without a fully priced date."""
        assert builder.build("USD", _points([100, 100], [50, 50], coverage=["0.9", "0.9"])) == []

    def test_custom_threshold(self):
        """Should honor a configured minimum coverage."""
        builder = PerformanceHistoryBuilder(min_coverage=Decimal("0.95"))
        points = builder.build("USD", _points([100, 100, 100], [50, 50, 50], coverage=[1, "0.9", 1]))

        assert len(points) == 2


class TestTradingCalendars:
    """End to end: valuation through performance across calendars."""

    def test_benchmark_only_trading_day_not_a_crash(self, db, store, builder):
        """Should not report a loss on a day only the benchmark traded."""
        store.upsert_many(db, [
            PriceBarInput("BP.L", "INTL", date(2024, 1, 2), close=Decimal("50")),
            PriceBarInput("BP.L", "INTL", date(2024, 1, 4), close=Decimal("50")),
        ])
        store.upsert_many(db, make_bars("ACWX", "USD", [50, 50, 50], start=date(2024, 1, 2)))

        valuation = ValuationAggregator(store).calculate(db, "INTL", [HoldingLot("BP.L", "INTL", 10)])
        points = builder.build("INTL", valuation.points)

        assert [(p.date, p.portfolio_value) for p in points] == [
            (date(2024, 1, 2), Decimal("500")),
            (date(2024, 1, 4), Decimal("500")),
        ]
        assert all(p.portfolio_cumulative_return == 0 for p in points)

    def test_partially_priced_first_day_not_baseline(self, db, store, builder):
        """Should rebase on the first day both holdings are priced."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100, 100], start=date(2024, 1, 2)))
        store.upsert(db, PriceBarInput("MSFT", "USD", date(2024, 1, 3), close=Decimal("100")))
        store.upsert_many(db, make_bars("SPY", "USD", [50, 50], start=date(2024, 1, 2)))
        holdings = [HoldingLot("AAPL", "USD", 1), HoldingLot("MSFT", "USD", 1)]

        valuation = ValuationAggregator(store).calculate(db, "USD", holdings)
        points = builder.build("USD", valuation.points)

        assert valuation.points[0].coverage == Decimal("0.5")
        assert [p.date for p in points] == [date(2024, 1, 3)]
        assert points[0].portfolio_value == Decimal("200")
        assert points[0].portfolio_cumulative_return == 0

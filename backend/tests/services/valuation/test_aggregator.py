# tests/services/valuation/test_aggregator.py
"""
Integration tests for ValuationAggregator.

Key Properties Tested:
1. Portfolio value = sum(quantity x close), CASH at par
2. A holding without a bar contributes 0 and is reported, never fatal
3. Held symbols resolve to suffixed / unsuffixed stored series
4. Allocation weights stay exact; rounding is for display only
"""

from datetime import date
from decimal import Decimal

import pytest

from tests.conftest import make_bars
from valuation_engine.services.exceptions import MalformedDateError, UnknownRegionError
from valuation_engine.services.price_store import PriceBarInput
from valuation_engine.services.valuation.aggregator import ValuationAggregator, allocation_for
from valuation_engine.services.valuation.types import HoldingLot, PortfolioValuationPoint


@pytest.fixture
def aggregator(store) -> ValuationAggregator:
    return ValuationAggregator(store)


class TestPortfolioValue:
    """Tests for per-date portfolio value."""

    def test_single_holding_with_empty_cash(self, db, store, aggregator):
        """Should value 10 AAPL at 150 plus 0 cash at 1500."""
        store.upsert(db, PriceBarInput("AAPL", "USD", date(2024, 1, 2), close=Decimal("150")))
        holdings = [
            HoldingLot("AAPL", "USD", Decimal("10")),
            HoldingLot("CASH", "USD", Decimal("0")),
        ]

        series = aggregator.calculate(db, "USD", holdings, date(2024, 1, 2), date(2024, 1, 2))

        assert len(series.points) == 1
        assert series.points[0].portfolio_value == Decimal("1500.00")
        assert series.points[0].is_complete

    def test_cash_valued_at_par(self, db, store, aggregator):
        """Should add cash units one for one."""
        store.upsert(db, PriceBarInput("AAPL", "USD", date(2024, 1, 2), close=Decimal("150")))
        holdings = [
            HoldingLot("AAPL", "USD", Decimal("2")),
            HoldingLot("CASH", "USD", Decimal("250.50")),
        ]

        point = aggregator.calculate(db, "USD", holdings).points[0]

        assert point.portfolio_value == Decimal("550.50")
        assert point.nav_by_stock_type["Cash"] == Decimal("250.50")

    def test_missing_bar_contributes_zero(self, db, store, aggregator):
        """Should value a gap at 0 and list the symbol."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100, 110]))
        store.upsert_many(db, make_bars("MSFT", "USD", [300]))
        holdings = [
            HoldingLot("AAPL", "USD", Decimal("1")),
            HoldingLot("MSFT", "USD", Decimal("1")),
        ]

        series = aggregator.calculate(db, "USD", holdings)

        assert [p.portfolio_value for p in series.points] == [Decimal("400"), Decimal("110")]
        assert series.points[1].missing_symbols == ("MSFT",)
        assert series.points[0].coverage == 1
        assert series.points[1].coverage == Decimal("110") / Decimal("410")
        assert len(series.warnings) == 1

    def test_unresolvable_symbol_reported(self, db, store, aggregator):
        """Should report a holding with no stored series at all."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100]))
        holdings = [HoldingLot("AAPL", "USD", 1), HoldingLot("NOPE", "USD", 5)]

        series = aggregator.calculate(db, "USD", holdings)

        assert series.unresolved_symbols == ["NOPE"]
        assert series.points[0].portfolio_value == Decimal("100")
        assert series.points[0].missing_symbols == ("NOPE",)

    def test_benchmark_alongside(self, db, store, aggregator):
        """Should attach the benchmark close for each date."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100, 110]))
        store.upsert_many(db, make_bars("SPY", "USD", [400]))

        series = aggregator.calculate(db, "USD", [HoldingLot("AAPL", "USD", 1)])

        assert series.points[0].benchmark_value == Decimal("400")
        assert series.points[1].benchmark_value is None

    def test_benchmark_only_dates_not_valued(self, db, store, aggregator):
        """Should value only dates the holdings traded on."""
        store.upsert_many(db, [
            PriceBarInput("BP.L", "INTL", date(2024, 1, 2), close=Decimal("50")),
            PriceBarInput("BP.L", "INTL", date(2024, 1, 4), close=Decimal("50")),
        ])
        store.upsert_many(db, make_bars("ACWX", "USD", [50, 50, 50], start=date(2024, 1, 2)))

        series = aggregator.calculate(db, "INTL", [HoldingLot("BP.L", "INTL", 10)])

        assert [p.date for p in series.points] == [date(2024, 1, 2), date(2024, 1, 4)]
        assert all(p.is_fully_covered for p in series.points)

    def test_cash_only_book_uses_benchmark_dates(self, db, store, aggregator):
        """Should value a cash-only book on the benchmark's dates."""
        store.upsert_many(db, make_bars("SPY", "USD", [400, 401]))

        series = aggregator.calculate(db, "USD", [HoldingLot("CASH", "USD", 250)])

        assert [p.portfolio_value for p in series.points] == [Decimal("250"), Decimal("250")]
        assert all(p.coverage == 1 for p in series.points)

    def test_unresolved_symbol_carries_no_weight(self, db, store, aggregator):
        """Should keep coverage at 1 when only a series-less holding is missing."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100]))

        series = aggregator.calculate(db, "USD", [HoldingLot("AAPL", "USD", 1), HoldingLot("NOPE", "USD", 5)])

        assert series.points[0].coverage == 1
        assert not series.points[0].is_complete

    def test_other_region_lots_ignored(self, db, store, aggregator):
        """Should only value lots of the requested region."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100]))
        holdings = [HoldingLot("AAPL", "USD", 1), HoldingLot("RY", "CAD", 100)]

        series = aggregator.calculate(db, "USD", holdings)

        assert series.points[0].portfolio_value == Decimal("100")

    def test_explicit_dates(self, db, store, aggregator):
        """Should value exactly the requested dates."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100, 110, 120]))

        series = aggregator.calculate(
            db, "USD", [HoldingLot("AAPL", "USD", 1)], dates=[date(2024, 1, 3), date(2024, 1, 1)]
        )

        assert [p.date for p in series.points] == [date(2024, 1, 1), date(2024, 1, 3)]

    def test_unknown_region(self, db, aggregator):
        """Should reject unknown regions."""
        with pytest.raises(UnknownRegionError):
            aggregator.calculate(db, "EUR", [])

    def test_reversed_range(self, db, aggregator):
        """Should reject start after end."""
        with pytest.raises(MalformedDateError):
            aggregator.calculate(db, "USD", [], date(2024, 2, 1), date(2024, 1, 1))


class TestSymbolResolution:
    """Tests for exchange suffix resolution."""

    def test_bare_symbol_uses_suffixed_series(self, db, store, aggregator):
        """Should price RY from RY.TO bars."""
        store.upsert_many(db, make_bars("RY.TO", "CAD", [130]))

        series = aggregator.calculate(db, "CAD", [HoldingLot("RY", "CAD", 10)])

        assert series.resolved_symbols == {"RY": "RY.TO"}
        assert series.points[0].portfolio_value == Decimal("1300")

    def test_suffixed_symbol_uses_bare_series(self, db, store, aggregator):
        """Should price SHOP.TO from SHOP bars."""
        store.upsert_many(db, make_bars("SHOP", "CAD", [95]))

        series = aggregator.calculate(db, "CAD", [HoldingLot("SHOP.TO", "CAD", 2)])

        assert series.resolved_symbols == {"SHOP.TO": "SHOP"}
        assert series.points[0].portfolio_value == Decimal("190")

    def test_exact_match_preferred(self, db, store, aggregator):
        """Should prefer the symbol as held when both spellings exist."""
        store.upsert_many(db, make_bars("RY", "CAD", [1]) + make_bars("RY.TO", "CAD", [130]))

        series = aggregator.calculate(db, "CAD", [HoldingLot("RY", "CAD", 1)])

        assert series.resolved_symbols == {"RY": "RY"}


class TestAllocation:
    """Tests for allocation weights."""

    def _point(self, by_type: dict[str, Decimal]) -> PortfolioValuationPoint:
        return PortfolioValuationPoint(
            region="USD",
            date=date(2024, 1, 2),
            portfolio_value=sum(by_type.values(), Decimal("0")),
            nav_by_stock_type=by_type,
            nav_by_rating={"Unrated": sum(by_type.values(), Decimal("0"))},
        )

    def test_weights_sum_to_100(self):
        """Should keep full precision so weights sum to 100."""
        allocation = allocation_for(self._point({
            "Growth": Decimal("1"),
            "Value": Decimal("1"),
            "Income": Decimal("1"),
        }))

        total = sum(allocation.by_stock_type.values(), Decimal("0"))
        assert abs(total - Decimal("100")) < Decimal("1e-20")
        assert allocation.by_rating == {"Unrated": Decimal("100")}

    def test_rounded_weights_for_display(self):
        """Should round half-up to whole percent, which may not sum to 100."""
        allocation = allocation_for(self._point({
            "Growth": Decimal("1"),
            "Value": Decimal("1"),
            "Income": Decimal("1"),
        }))

        rounded = allocation.rounded_stock_type_weights()
        assert rounded == {"Growth": Decimal("33"), "Value": Decimal("33"), "Income": Decimal("33")}

    def test_zero_portfolio_has_no_weights(self):
        """Should return empty weights for a zero total."""
        allocation = allocation_for(self._point({"Growth": Decimal("0")}))
        assert allocation.by_stock_type == {}

    def test_groups_from_holdings(self, db, store, aggregator):
        """Should group NAV by stock type and rating with defaults."""
        store.upsert_many(db, make_bars("AAPL", "USD", [100]) + make_bars("XOM", "USD", [100]))
        holdings = [
            HoldingLot("AAPL", "USD", 3, stock_type="Growth", rating="1"),
            HoldingLot("XOM", "USD", 1),
        ]

        allocation = allocation_for(aggregator.calculate(db, "USD", holdings).points[0])

        assert allocation.by_stock_type == {"Growth": Decimal("75"), "Unclassified": Decimal("25")}
        assert allocation.by_rating == {"1": Decimal("75"), "Unrated": Decimal("25")}

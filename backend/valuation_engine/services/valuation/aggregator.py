# backend/valuation_engine/services/valuation/aggregator.py
"""
Valuation Aggregator: portfolio value per date from holdings and bars.

This aggregator generates a portfolio value time series efficiently by:
1. Resolving every held symbol to a stored series (1 query)
2. Batch-fetching all closes in the date range (1 query)
3. Fetching the region benchmark (1 query)
4. Iterating through dates using in-memory lookups

Missing Data:
    A holding with no bar on a date contributes 0 to that date's value and
    is listed on the point. Computation never stops for a gap. Each
    affected symbol is logged once per run with its number of gaps.

    Each point carries its coverage: the share of the book (by each
    holding's latest value) priced on that date. The performance builder
    uses it to pick a baseline and to drop thinly priced dates.

Calendars:
    Dates come from the holdings' own bars. A date only the benchmark
    traded on (a foreign holiday for the book) is never valued.

Cash:
    The CASH pseudo-symbol is valued at par (1 unit = 1 unit of the
    region's currency) on every date.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from valuation_engine.services.constants import CASH_PRICE, PERCENT
from valuation_engine.services.exceptions import MissingDataError
from valuation_engine.services.price_store import PriceSeriesStore
from valuation_engine.services.regions import validate_region
from valuation_engine.services.valuation.symbols import SymbolResolver
from valuation_engine.services.valuation.types import (
    AllocationBreakdown,
    HoldingLot,
    PortfolioValuationPoint,
    ValuationSeries,
)
from valuation_engine.services.dates import validate_range

logger = logging.getLogger(__name__)

UNCLASSIFIED = "Unclassified"
UNRATED = "Unrated"
CASH_STOCK_TYPE = "Cash"


class ValuationAggregator:
    """
    Values a holdings snapshot over time against stored bars.

    Attributes:
        _store: Price series store for batch close lookups
        _resolver: Maps held symbols to stored series
    """

    def __init__(self, store: PriceSeriesStore, resolver: SymbolResolver | None = None) -> None:
        self._store = store
        self._resolver = resolver or SymbolResolver(store)

    def calculate(
            self,
            db: Session,
            region: str,
            holdings: list[HoldingLot],
            start_date: date | None = None,
            end_date: date | None = None,
            dates: list[date] | None = None,
    ) -> ValuationSeries:
        """
        Value the holdings on every date in range.

        Args:
            db: Database session
            region: Portfolio region
            holdings: Snapshot lots; lots from other regions are ignored
            start_date: First date (inclusive), None for no lower bound
            end_date: Last date (inclusive), None for no upper bound
            dates: Explicit date index. Defaults to the union of bar dates
                of the held symbols in range. Benchmark-only dates (another
                market's trading days) are not valued. A book with no
                priced symbols (cash only) uses the benchmark dates.

        Returns:
            ValuationSeries with one point per date, ascending

        Raises:
            UnknownRegionError: Unknown region
            MalformedDateError: Reversed range
        """
        region = validate_region(region)
        validate_range(start_date, end_date)

        lots = [lot for lot in holdings if validate_region(lot.region) == region]
        skipped = len(holdings) - len(lots)
        if skipped:
            logger.warning(f"Ignoring {skipped} holdings from other regions when valuing {region}")

        series = ValuationSeries(region=region, start_date=start_date, end_date=end_date)

        priced_symbols = sorted({lot.symbol for lot in lots if not lot.is_cash})
        resolved = self._resolver.resolve_many(db, priced_symbols, region, start_date, end_date)
        series.resolved_symbols = resolved

        close_map = self._store.get_close_map(
            db,
            sorted({s for s in resolved.values() if s is not None}),
            region,
            start_date,
            end_date,
        )
        benchmark = {
            bar.date: bar.close
            for bar in self._store.query_benchmark(db, region, start_date, end_date)
        }

        if dates is not None:
            date_index = sorted(set(dates))
        elif priced_symbols:
            date_index = sorted({d for (_, d) in close_map})
        else:
            date_index = sorted(benchmark)

        weights = _reference_values(lots, resolved, close_map)
        gaps: dict[str, int] = defaultdict(int)
        for d in date_index:
            point = self._value_on(region, d, lots, resolved, close_map, benchmark.get(d), weights)
            for symbol in point.missing_symbols:
                gaps[symbol] += 1
            series.points.append(point)

        for symbol, count in sorted(gaps.items()):
            message = f"{symbol} ({region}) has no price on {count} of {len(date_index)} dates; valued at 0 there"
            logger.warning(message)
            series.warnings.append(message)

        logger.info(
            f"Valued {region} portfolio: {len(lots)} lots, {len(date_index)} dates, "
            f"{len(series.unresolved_symbols)} unresolved symbols"
        )
        return series

    def _value_on(
            self,
            region: str,
            d: date,
            lots: list[HoldingLot],
            resolved: dict[str, str | None],
            close_map: dict[tuple[str, date], Decimal],
            benchmark_close: Decimal | None,
            weights: list[Decimal],
    ) -> PortfolioValuationPoint:
        total = Decimal("0")
        priced_weight = Decimal("0")
        missing: set[str] = set()
        by_type: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        by_rating: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))

        for lot, weight in zip(lots, weights):
            if lot.is_cash:
                price = CASH_PRICE
                stock_type = lot.stock_type or CASH_STOCK_TYPE
            else:
                stock_type = lot.stock_type or UNCLASSIFIED
                try:
                    price = self._close_on(lot.symbol, region, d, resolved, close_map)
                except MissingDataError:
                    missing.add(lot.symbol)
                    continue

            priced_weight += weight
            nav = lot.quantity * price
            total += nav
            by_type[stock_type] += nav
            by_rating[lot.rating or UNRATED] += nav

        return PortfolioValuationPoint(
            region=region,
            date=d,
            portfolio_value=total,
            benchmark_value=benchmark_close,
            missing_symbols=tuple(sorted(missing)),
            coverage=_coverage(priced_weight, sum(weights, Decimal("0"))),
            nav_by_stock_type=dict(by_type),
            nav_by_rating=dict(by_rating),
        )

    @staticmethod
    def _close_on(
            symbol: str,
            region: str,
            d: date,
            resolved: dict[str, str | None],
            close_map: dict[tuple[str, date], Decimal],
    ) -> Decimal:
        """Close of a held symbol on d; raises MissingDataError if absent."""
        series_symbol = resolved.get(symbol)
        price = close_map.get((series_symbol, d)) if series_symbol else None
        if price is None:
            raise MissingDataError(symbol, region, d)
        return price


# =============================================================================
# COVERAGE
# =============================================================================

def _reference_values(
        lots: list[HoldingLot],
        resolved: dict[str, str | None],
        close_map: dict[tuple[str, date], Decimal],
) -> list[Decimal]:
    """
    Weight of each lot for coverage: quantity x its latest close in range.

    Cash weighs its par value; a lot with no price series weighs 0.
    """
    latest: dict[str, Decimal] = {}
    for (symbol, _), close in sorted(close_map.items(), key=lambda item: item[0][1]):
        latest[symbol] = close

    values = []
    for lot in lots:
        if lot.is_cash:
            price = CASH_PRICE
        else:
            price = latest.get(resolved.get(lot.symbol), Decimal("0"))
        values.append(abs(lot.quantity * price))
    return values


def _coverage(priced: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return Decimal("1")
    return priced / total


# =============================================================================
# ALLOCATION
# =============================================================================

def _weights(nav: dict[str, Decimal], total: Decimal) -> dict[str, Decimal]:
    if total == 0:
        return {}
    return {group: value / total * PERCENT for group, value in nav.items()}


def allocation_for(point: PortfolioValuationPoint) -> AllocationBreakdown:
    """
    Weights by stock type and rating for one valuation point.

    Example:
        Growth 2/3, Value 1/3 of NAV -> by_stock_type
        {"Growth": Decimal("66.666..."), "Value": Decimal("33.333...")}
    """
    return AllocationBreakdown(
        region=point.region,
        date=point.date,
        total_value=point.portfolio_value,
        by_stock_type=_weights(point.nav_by_stock_type, point.portfolio_value),
        by_rating=_weights(point.nav_by_rating, point.portfolio_value),
    )

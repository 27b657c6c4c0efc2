# backend/valuation_engine/services/portfolio_service.py
"""
Portfolio Analytics Service: the engine's exposed operations.

This service coordinates:
1. Refreshing bars from the bars source and recomputing indicators,
   one unit of work per (symbol, region), on a bounded worker pool
2. Valuing the current holdings snapshot against stored bars
3. Building rebased performance against the region benchmark
4. Caching computed series per region until the next recompute
5. Trailing MTD/YTD/6M/52-week returns for each holding

Upstream Calls:
    fetch_bars and fetch_holdings run on a dedicated pool and are waited
    on with a deadline. A timeout or error becomes
    UpstreamUnavailableError. A hung call keeps its pool thread until it
    returns, but never blocks the caller past the deadline.

Usage:
    with PortfolioAnalyticsService(bars_source=vendor, holdings_source=book) as service:
        summary = service.recompute_portfolio("CAD")
        with session_scope() as db:
            perf = service.get_performance_series(db, "CAD", "YTD")
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import date, timedelta
from functools import partial
from typing import Any, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from valuation_engine.config import settings
from valuation_engine.database import SessionLocal, session_scope
from valuation_engine.models import Region
from valuation_engine.services.batch import BatchRunner, BatchSummary, BatchTask
from valuation_engine.services.cache import SeriesCache
from valuation_engine.services.constants import CASH_SYMBOL
from valuation_engine.services.exceptions import (
    RecomputeCancelledError,
    UpstreamUnavailableError,
)
from valuation_engine.services.indicators.service import IndicatorService
from valuation_engine.services.indicators.types import IndicatorRecord, RecomputeResult
from valuation_engine.services.performance.builder import PerformanceHistoryBuilder
from valuation_engine.services.performance.time_ranges import parse_time_range, window_start
from valuation_engine.services.performance.types import PerformancePoint
from valuation_engine.services.price_store import PriceSeriesStore, SymbolPeriodReturns
from valuation_engine.services.protocols import BarsSource, HoldingsSource
from valuation_engine.services.regions import (
    benchmark_storage_region,
    benchmark_symbol,
    validate_region,
)
from valuation_engine.services.valuation.aggregator import ValuationAggregator, allocation_for
from valuation_engine.services.valuation.symbols import SymbolResolver
from valuation_engine.services.valuation.types import (
    AllocationBreakdown,
    HoldingLot,
    PortfolioValuationPoint,
)
from valuation_engine.utils.context import run_in_context, run_scope

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How far back get_allocation looks for the latest valued date
ALLOCATION_LOOKBACK_DAYS: int = 14


class PortfolioAnalyticsService:
    """
    Main orchestrator for indicators, valuation and performance.

    Attributes:
        _store: Price series store shared by all units
        _indicators: Indicator recompute/read service
        _aggregator: Holdings valuation
        _resolver: Held symbol to stored series mapping for holding returns
        _builder: Performance rebasing
        _runner: Bounded batch executor
        _cache: Per-region series cache
    """

    def __init__(
            self,
            bars_source: BarsSource,
            holdings_source: HoldingsSource,
            session_factory: sessionmaker = SessionLocal,
            store: PriceSeriesStore | None = None,
            indicators: IndicatorService | None = None,
            aggregator: ValuationAggregator | None = None,
            builder: PerformanceHistoryBuilder | None = None,
            runner: BatchRunner | None = None,
            cache: SeriesCache | None = None,
            upstream_timeout: float | None = None,
    ) -> None:
        self._bars_source = bars_source
        self._holdings_source = holdings_source
        self._session_factory = session_factory
        self._store = store or PriceSeriesStore()
        self._indicators = indicators or IndicatorService(self._store)
        self._aggregator = aggregator or ValuationAggregator(self._store)
        self._resolver = SymbolResolver(self._store)
        self._builder = builder or PerformanceHistoryBuilder()
        self._runner = runner or BatchRunner()
        self._cache = cache or SeriesCache()
        self._upstream_timeout = upstream_timeout or settings.upstream_timeout_seconds
        self._upstream_pool = ThreadPoolExecutor(
            max_workers=settings.recompute_max_workers + 1,
            thread_name_prefix="upstream",
        )

    def close(self) -> None:
        """Release the upstream pool without waiting for hung calls."""
        self._upstream_pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "PortfolioAnalyticsService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # =========================================================================
    # UPSTREAM
    # =========================================================================

    def _call_upstream(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """
        Call a collaborator with a deadline.

        Raises:
            UpstreamUnavailableError: The call raised or exceeded the deadline
        """
        future = self._upstream_pool.submit(run_in_context(fn), *args)
        try:
            return future.result(timeout=self._upstream_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.error(f"Upstream {operation}{args} timed out after {self._upstream_timeout}s")
            raise UpstreamUnavailableError(operation, f"timed out after {self._upstream_timeout}s") from None
        except Exception as e:
            logger.error(f"Upstream {operation}{args} failed: {e}")
            raise UpstreamUnavailableError(operation, str(e)) from e

    def _fetch_holdings(self, region: str) -> list[HoldingLot]:
        return self._call_upstream("fetch_holdings", self._holdings_source.fetch_holdings, region)

    # =========================================================================
    # INDICATORS
    # =========================================================================

    def get_indicators(self, db: Session, symbol: str, region: str, limit: int = 100) -> list[IndicatorRecord]:
        """Latest `limit` indicator records for a series, ascending by date."""
        return self._indicators.get_indicators(db, symbol, region, limit)

    def recompute_indicators(
            self,
            db: Session,
            symbol: str,
            region: str,
            force_full: bool = False,
    ) -> RecomputeResult:
        """Recompute indicators for one series from its stored bars."""
        result = self._indicators.recompute(db, symbol, region, force_full=force_full)
        self._cache.invalidate(result.region)
        return result

    def recompute_portfolio(
            self,
            region: str,
            cancel_event: threading.Event | None = None,
    ) -> BatchSummary:
        """
        Refresh bars and indicators for every holding of a region and its benchmark.

        Raises:
            UnknownRegionError: Unknown region
            UpstreamUnavailableError: Holdings could not be fetched

        Returns:
            BatchSummary with one unit per series (holdings, then benchmark)
        """
        region = validate_region(region)
        with run_scope(region=region) as run_id:
            logger.info(f"Recompute for {region} portfolio started (run {run_id})")
            return self._recompute_region(region, cancel_event)

    def _recompute_region(self, region: str, cancel_event: threading.Event | None) -> BatchSummary:
        holdings = self._fetch_holdings(region)
        symbols = sorted({lot.symbol for lot in holdings if lot.symbol != CASH_SYMBOL})
        series = [(symbol, region) for symbol in symbols]
        benchmark = (benchmark_symbol(region), benchmark_storage_region())
        if benchmark not in series:
            series.append(benchmark)

        tasks = [
            BatchTask(
                key=f"{symbol}:{series_region}",
                fn=partial(self._refresh_series, symbol, series_region, cancel_event),
            )
            for symbol, series_region in series
        ]
        summary = self._runner.run(tasks, cancel_event=cancel_event, label=region)

        self._cache.invalidate(region)
        return summary

    def recompute_all_portfolios(
            self,
            cancel_event: threading.Event | None = None,
    ) -> dict[str, BatchSummary]:
        """
        Recompute every region. A region whose holdings are unavailable is
        reported as failed and the remaining regions still run.
        """
        summaries: dict[str, BatchSummary] = {}
        for region in Region:
            if cancel_event is not None and cancel_event.is_set():
                summaries[region.value] = BatchSummary(label=region.value, cancelled=True)
                continue
            try:
                summaries[region.value] = self.recompute_portfolio(region.value, cancel_event)
            except UpstreamUnavailableError as e:
                summaries[region.value] = BatchSummary(label=region.value, error=str(e))
        return summaries

    def _refresh_series(
            self,
            symbol: str,
            region: str,
            cancel_event: threading.Event | None,
    ) -> RecomputeResult:
        """One unit of work: fetch new bars, store them, recompute indicators."""
        with session_scope(self._session_factory) as db:
            since = self._store.latest_date(db, symbol, region)
            bars = self._call_upstream("fetch_bars", self._bars_source.fetch_bars, symbol, region, since)

            if cancel_event is not None and cancel_event.is_set():
                raise RecomputeCancelledError(symbol, region)

            stored = self._store.upsert_many(db, bars)
            if stored.rejected_count:
                logger.warning(f"{stored.rejected_count} bars rejected for {symbol} ({region})")

            return self._indicators.recompute(db, symbol, region, cancel_event=cancel_event)

    # =========================================================================
    # VALUATION & PERFORMANCE
    # =========================================================================

    def get_valuation_series(
            self,
            db: Session,
            region: str,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> list[PortfolioValuationPoint]:
        """
        Portfolio and benchmark value per date for the current holdings.

        Raises:
            UnknownRegionError: Unknown region
            UpstreamUnavailableError: Holdings could not be fetched
        """
        region = validate_region(region)
        key = self._cache.make_key(region, "valuation", start_date, end_date)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        holdings = self._fetch_holdings(region)
        points = self._aggregator.calculate(db, region, holdings, start_date, end_date).points
        self._cache.set(key, points)
        return points

    def get_allocation(self, db: Session, region: str, as_of: date | None = None) -> AllocationBreakdown:
        """
        Allocation weights by stock type and rating on the latest valued
        date on or before as_of (default today).
        """
        region = validate_region(region)
        as_of = as_of or date.today()
        points = self.get_valuation_series(
            db, region, as_of - timedelta(days=ALLOCATION_LOOKBACK_DAYS), as_of
        )
        valued = [p for p in points if p.portfolio_value > 0]
        if not valued:
            return AllocationBreakdown(region=region, date=None)
        return allocation_for(valued[-1])

    def get_holding_returns(
            self,
            db: Session,
            region: str,
            as_of: date | None = None,
    ) -> dict[str, SymbolPeriodReturns]:
        """
        MTD, YTD, 6M and 52-week figures for every held symbol, in one query.

        Keyed by the symbol as held; holdings without a stored series (and
        cash) are absent. Cached per region until the next recompute.

        Raises:
            UnknownRegionError: Unknown region
            UpstreamUnavailableError: Holdings could not be fetched
        """
        region = validate_region(region)
        as_of = as_of or date.today()
        key = self._cache.make_key(region, "holding_returns", as_of)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        holdings = self._fetch_holdings(region)
        held = sorted({lot.symbol for lot in holdings if validate_region(lot.region) == region and not lot.is_cash})
        resolved = self._resolver.resolve_many(db, held, region, end_date=as_of)
        returns = self._store.get_period_returns(
            db, sorted({s for s in resolved.values() if s is not None}), region, as_of
        )

        results = {
            symbol: returns[series]
            for symbol, series in resolved.items()
            if series is not None and series in returns
        }
        self._cache.set(key, results)
        return results

    def get_performance_series(
            self,
            db: Session,
            region: str,
            time_range: str,
            as_of: date | None = None,
    ) -> list[PerformancePoint]:
        """
        Rebased portfolio vs benchmark performance over a time range.

        Raises:
            UnknownRegionError: Unknown region
            InvalidTimeRangeError: Unsupported range code
            UpstreamUnavailableError: Holdings could not be fetched
        """
        region = validate_region(region)
        tr = parse_time_range(time_range)
        as_of = as_of or date.today()

        key = self._cache.make_key(region, "performance", tr.value, as_of)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        start = window_start(tr, as_of)
        valuation = self.get_valuation_series(db, region, start, as_of)
        points = self._builder.build(region, valuation, window_start=start)
        self._cache.set(key, points)
        return points

# backend/valuation_engine/services/__init__.py
"""
Service layer for the valuation engine.

Services:
- Receive database sessions as parameters
- Raise domain-specific exceptions (see exceptions.py)
- Reach vendors only through the BarsSource / HoldingsSource protocols

Usage:
    from valuation_engine.services import PortfolioAnalyticsService
    from valuation_engine.services import PriceSeriesStore, PriceBarInput
    from valuation_engine.services import (
        UnknownRegionError,
        InvalidTimeRangeError,
        UpstreamUnavailableError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Indicator windows, batch sizes, retry timings
    ├── protocols.py                 # Collaborator interfaces (Protocol classes)
    ├── dates.py                     # Calendar day parsing and month arithmetic
    ├── regions.py                   # Region validation, benchmarks, suffixes
    ├── price_store.py               # PriceSeriesStore (bars + revisions)
    ├── batch.py                     # Bounded parallel units of work
    ├── cache.py                     # Per-region series cache
    ├── portfolio_service.py         # PortfolioAnalyticsService (exposed operations)
    ├── indicators/                  # MA, MACD, RSI computation and storage
    ├── valuation/                   # Holdings valuation and allocation
    └── performance/                 # Rebased performance history
"""

# Exceptions
from valuation_engine.services.exceptions import (
    # Base exceptions
    ServiceError,
    # Validation
    ValidationError,
    InvalidBarError,
    UnknownRegionError,
    MalformedDateError,
    InvalidTimeRangeError,
    # Data
    DataIntegrityError,
    MissingDataError,
    # Recompute
    RecomputeError,
    RecomputeConflictError,
    RecomputeCancelledError,
    # Upstream
    UpstreamUnavailableError,
)
# Price Series Store
from valuation_engine.services.price_store import (
    PriceSeriesStore,
    PriceBarInput,
    UpsertBatchResult,
    UpsertOutcome,
    SymbolPeriodReturns,
)
# Indicators
from valuation_engine.services.indicators import (
    IndicatorEngine,
    IndicatorRecord,
    IndicatorService,
    RecomputeMode,
    RecomputeResult,
)
# Valuation
from valuation_engine.services.valuation import (
    AllocationBreakdown,
    HoldingLot,
    PortfolioValuationPoint,
    ValuationAggregator,
)
# Performance
from valuation_engine.services.performance import (
    PerformanceHistoryBuilder,
    PerformancePoint,
    TimeRange,
)
# Batch execution
from valuation_engine.services.batch import BatchRunner, BatchSummary, BatchTask, UnitOutcome
from valuation_engine.services.cache import SeriesCache
from valuation_engine.services.protocols import BarsSource, HoldingsSource
# Orchestrator
from valuation_engine.services.portfolio_service import PortfolioAnalyticsService

__all__ = [
    # ==========================================================================
    # Services
    # ==========================================================================
    "PortfolioAnalyticsService",
    # Price Series Store
    "PriceSeriesStore",
    "PriceBarInput",
    "UpsertBatchResult",
    "UpsertOutcome",
    "SymbolPeriodReturns",
    # Indicators
    "IndicatorService",
    "IndicatorEngine",
    "IndicatorRecord",
    "RecomputeMode",
    "RecomputeResult",
    # Valuation
    "ValuationAggregator",
    "HoldingLot",
    "PortfolioValuationPoint",
    "AllocationBreakdown",
    # Performance
    "PerformanceHistoryBuilder",
    "PerformancePoint",
    "TimeRange",
    # Batch
    "BatchRunner",
    "BatchSummary",
    "BatchTask",
    "UnitOutcome",
    "SeriesCache",
    # Protocols
    "BarsSource",
    "HoldingsSource",

    # ==========================================================================
    # Exceptions
    # ==========================================================================
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    "InvalidBarError",
    "UnknownRegionError",
    "MalformedDateError",
    "InvalidTimeRangeError",
    # Data
    "DataIntegrityError",
    "MissingDataError",
    # Recompute
    "RecomputeError",
    "RecomputeConflictError",
    "RecomputeCancelledError",
    # Upstream
    "UpstreamUnavailableError",
]

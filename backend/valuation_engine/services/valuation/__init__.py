# backend/valuation_engine/services/valuation/__init__.py
"""
Valuation Package.

Values a regional holdings snapshot on every date of a range:
- Portfolio value = sum(quantity * close) over holdings
- Benchmark close on the same dates
- Allocation by stock type and rating

Usage:
    from valuation_engine.services.valuation import ValuationAggregator, HoldingLot

    aggregator = ValuationAggregator(store)
    series = aggregator.calculate(
        db,
        "USD",
        [HoldingLot("AAPL", "USD", Decimal("10"))],
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
    )
"""

from valuation_engine.services.valuation.aggregator import ValuationAggregator, allocation_for
from valuation_engine.services.valuation.symbols import SymbolResolver, symbol_candidates
from valuation_engine.services.valuation.types import (
    AllocationBreakdown,
    HoldingLot,
    PortfolioValuationPoint,
    ValuationSeries,
)

__all__ = [
    "ValuationAggregator",
    "allocation_for",
    "SymbolResolver",
    "symbol_candidates",
    "HoldingLot",
    "PortfolioValuationPoint",
    "ValuationSeries",
    "AllocationBreakdown",
]

# backend/valuation_engine/services/valuation/types.py
"""
Internal data types for the Valuation Aggregator.

Design Principles:
- Use Decimal for ALL monetary values (never float)
- Use date (not datetime) for valuation dates
- Full precision internally; rounding happens only in presentation helpers
- Missing prices are recorded on the point, not raised

Type Hierarchy:
    HoldingLot               - One position from the holdings snapshot
    PortfolioValuationPoint  - Portfolio and benchmark value on one date
    ValuationSeries          - Time series result with data quality notes
    AllocationBreakdown      - Weights by stock type and by rating
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from valuation_engine.services.constants import CASH_SYMBOL


# =============================================================================
# HOLDINGS
# =============================================================================

@dataclass(frozen=True)
class HoldingLot:
    """
    A read-only position from the holdings snapshot.

    Attributes:
        symbol: Ticker as held (suffix optional, e.g. "RY" or "RY.TO")
        region: USD, CAD or INTL
        quantity: Shares held (or currency units for CASH)
        stock_type: Grouping for allocation (e.g. "Growth", "Value", "Cash")
        rating: Grouping for allocation (e.g. "1".."5")
    """

    symbol: str
    region: str
    quantity: Decimal
    stock_type: str | None = None
    rating: str | None = None

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValueError("symbol is required")
        object.__setattr__(self, "symbol", self.symbol.strip().upper())
        if not isinstance(self.quantity, Decimal):
            object.__setattr__(self, "quantity", Decimal(str(self.quantity)))

    @property
    def is_cash(self) -> bool:
        return self.symbol == CASH_SYMBOL


# =============================================================================
# VALUATION SERIES
# =============================================================================

@dataclass
class PortfolioValuationPoint:
    """
    Portfolio value on one date.

    portfolio_value is the sum of quantity x close over holdings that had a
    bar on this date; holdings without one contribute 0 and are listed in
    missing_symbols. benchmark_value is the benchmark close, or None if the
    benchmark has no bar on this date.

    coverage is the share of the book, weighted by each holding's latest
    value in the range, that had a price on this date (1 = fully priced).
    Holdings with no price series at all carry no weight.
    """

    region: str
    date: date
    portfolio_value: Decimal
    benchmark_value: Decimal | None = None
    missing_symbols: tuple[str, ...] = ()
    coverage: Decimal = Decimal("1")
    nav_by_stock_type: dict[str, Decimal] = field(default_factory=dict)
    nav_by_rating: dict[str, Decimal] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.missing_symbols

    @property
    def is_fully_covered(self) -> bool:
        return self.coverage >= 1


@dataclass
class ValuationSeries:
    """
    Result of valuing a holdings snapshot over a date range.

    Attributes:
        resolved_symbols: Held symbol -> symbol whose bars were used
            (None when no candidate had bars)
        warnings: Data quality notes, one per affected symbol
    """

    region: str
    start_date: date | None
    end_date: date | None
    points: list[PortfolioValuationPoint] = field(default_factory=list)
    resolved_symbols: dict[str, str | None] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def unresolved_symbols(self) -> list[str]:
        return sorted(s for s, r in self.resolved_symbols.items() if r is None)


# =============================================================================
# ALLOCATION
# =============================================================================

def _round_weights(weights: dict[str, Decimal]) -> dict[str, Decimal]:
    return {k: v.quantize(Decimal("1"), rounding=ROUND_HALF_UP) for k, v in weights.items()}


@dataclass
class AllocationBreakdown:
    """
    Portfolio weights (percent of total NAV) on one date.

    Weights are kept at full Decimal precision so they sum to 100 exactly
    (up to Decimal context precision). Use the rounded_* helpers for
    display only; rounded weights need not sum to 100.
    """

    region: str
    date: date | None
    total_value: Decimal = Decimal("0")
    by_stock_type: dict[str, Decimal] = field(default_factory=dict)
    by_rating: dict[str, Decimal] = field(default_factory=dict)

    def rounded_stock_type_weights(self) -> dict[str, Decimal]:
        """Stock type weights rounded half-up to whole percent."""
        return _round_weights(self.by_stock_type)

    def rounded_rating_weights(self) -> dict[str, Decimal]:
        """Rating weights rounded half-up to whole percent."""
        return _round_weights(self.by_rating)

# backend/valuation_engine/services/protocols.py
"""
Protocol interfaces for the engine's collaborators.

Using typing.Protocol enables structural subtyping:
- Vendor clients satisfy these without importing the engine
- Test doubles work without explicit inheritance

Both calls may block, fail or hang. The engine always calls them through
a deadline (see PortfolioAnalyticsService) and never retries them.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from valuation_engine.services.price_store import PriceBarInput
    from valuation_engine.services.valuation.types import HoldingLot


class BarsSource(Protocol):
    """Supplies daily bars for one symbol, newest data included."""

    def fetch_bars(
        self,
        symbol: str,
        region: str,
        since: date | None,
    ) -> list[PriceBarInput]:
        ...


class HoldingsSource(Protocol):
    """Supplies the current holdings snapshot for a region."""

    def fetch_holdings(self, region: str) -> list[HoldingLot]:
        ...

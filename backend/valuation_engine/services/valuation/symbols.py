# backend/valuation_engine/services/valuation/symbols.py
"""
Symbol resolution between held tickers and stored price series.

Holdings and bar vendors disagree on exchange suffixes: a CAD holding may
be recorded as "RY" while its bars are stored as "RY.TO", or the other
way round. The resolver tries each spelling and uses the first one that
has bars in the requested range.
"""

import logging
from datetime import date

from sqlalchemy.orm import Session

from valuation_engine.services.price_store import PriceSeriesStore
from valuation_engine.services.regions import exchange_suffix, validate_region

logger = logging.getLogger(__name__)


def symbol_candidates(symbol: str, region: str) -> list[str]:
    """
    Spellings to try for a held symbol, in priority order.

    Example:
        >>> symbol_candidates("RY", "CAD")
        ['RY', 'RY.TO']
        >>> symbol_candidates("SHOP.TO", "CAD")
        ['SHOP.TO', 'SHOP']
        >>> symbol_candidates("AAPL", "USD")
        ['AAPL']
    """
    symbol = symbol.strip().upper()
    candidates = [symbol]
    suffix = exchange_suffix(region)
    if suffix:
        if symbol.endswith(suffix):
            candidates.append(symbol[: -len(suffix)])
        elif "." not in symbol:
            candidates.append(f"{symbol}{suffix}")
    return candidates


class SymbolResolver:
    """Maps held symbols to the stored series that prices them."""

    def __init__(self, store: PriceSeriesStore) -> None:
        self._store = store

    def resolve_many(
            self,
            db: Session,
            symbols: list[str],
            region: str,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> dict[str, str | None]:
        """
        Resolve every symbol with one availability query.

        Returns:
            Held symbol -> stored symbol, or None if no spelling has bars
        """
        region = validate_region(region)
        candidates_by_symbol = {s: symbol_candidates(s, region) for s in symbols}
        all_candidates = sorted({c for cands in candidates_by_symbol.values() for c in cands})
        available = self._store.available_symbols(db, all_candidates, region, start_date, end_date)

        resolved: dict[str, str | None] = {}
        for symbol, candidates in candidates_by_symbol.items():
            resolved[symbol] = next((c for c in candidates if c in available), None)
            if resolved[symbol] is None:
                logger.warning(f"No price series for {symbol} ({region}); tried {candidates}")
            elif resolved[symbol] != symbol.strip().upper():
                logger.debug(f"Resolved {symbol} ({region}) to {resolved[symbol]}")
        return resolved

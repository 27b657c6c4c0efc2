# backend/valuation_engine/services/regions.py
"""
Region validation and per-region market conventions.

Benchmarks and exchange suffixes come from settings so a deployment can
swap the CAD benchmark without a code change.
"""

from valuation_engine.config import settings
from valuation_engine.models import Region
from valuation_engine.services.exceptions import UnknownRegionError


def validate_region(region: object) -> str:
    """
    Normalize a region to its canonical string.

    Accepts Region members or case-insensitive strings.

    Raises:
        UnknownRegionError: For anything that is not USD, CAD or INTL
    """
    if isinstance(region, Region):
        return region.value
    if isinstance(region, str):
        candidate = region.strip().upper()
        if candidate in Region.__members__:
            return candidate
    raise UnknownRegionError(str(region))


def benchmark_symbol(region: str) -> str:
    """Benchmark ETF ticker for a portfolio region (e.g. CAD -> XIC.TO)."""
    return settings.benchmark_for(validate_region(region))


def benchmark_storage_region() -> str:
    """Region benchmark bars are stored under, whatever the portfolio region."""
    return settings.base_region


def exchange_suffix(region: str) -> str | None:
    """Exchange suffix for bare tickers in a region, or None (USD)."""
    return settings.region_suffixes.get(validate_region(region))

# backend/valuation_engine/services/constants.py
"""
Centralized constants for the valuation engine services.

Indicator periods are industry conventions and are deliberately NOT
configurable: stored indicator rows would silently change meaning if
they were.

Usage:
    from valuation_engine.services.constants import (
        MA_WINDOWS,
        RSI_PERIODS,
        CASH_SYMBOL,
    )
"""

from decimal import Decimal


# =============================================================================
# INDICATOR PERIODS
# =============================================================================

# Simple moving average windows, in available bars
MA_SHORT_WINDOW: int = 50
MA_LONG_WINDOW: int = 200
MA_WINDOWS: tuple[int, ...] = (MA_SHORT_WINDOW, MA_LONG_WINDOW)

# MACD exponential moving averages and signal line
MACD_FAST_PERIOD: int = 12
MACD_SLOW_PERIOD: int = 26
MACD_SIGNAL_PERIOD: int = 9

# RSI lookbacks, Wilder smoothing
RSI_PERIODS: tuple[int, ...] = (9, 14, 21)

# RSI when the average loss is zero (includes a perfectly flat series)
RSI_MAX: float = 100.0
RSI_MIN: float = 0.0


# =============================================================================
# HOLDINGS
# =============================================================================

# Cash is held as a pseudo-symbol and valued at par in the region's currency
CASH_SYMBOL: str = "CASH"
CASH_PRICE: Decimal = Decimal("1")

# Pseudo-symbol accepted by PriceSeriesStore.query for the region benchmark
BENCHMARK_ALIAS: str = "benchmark"


# =============================================================================
# PERSISTENCE
# =============================================================================

# Rows per INSERT ... ON CONFLICT statement
WRITE_BATCH_SIZE: int = 100

# How far before the six-month mark to look for a start price (holidays)
PERIOD_RETURN_LOOKBACK_DAYS: int = 14


# =============================================================================
# RECOMPUTE RETRY
# =============================================================================

# Backoff between conflict retries (seconds)
RETRY_MIN_WAIT: float = 0.1
RETRY_MAX_WAIT: float = 2.0
RETRY_MULTIPLIER: float = 0.2


# =============================================================================
# CACHE SETTINGS
# =============================================================================

# Maximum cached valuation/performance series across all regions and ranges
SERIES_CACHE_MAX_SIZE: int = 256


# =============================================================================
# PERFORMANCE
# =============================================================================

# Dates where less than this share of the book (by value) is priced are
# left out of performance series
MIN_PRICED_COVERAGE: Decimal = Decimal("0.8")


# =============================================================================
# PRESENTATION
# =============================================================================

# Allocation weights are reported in percent
PERCENT: Decimal = Decimal("100")

# backend/valuation_engine/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO transport
knowledge. Callers (schedulers, API layers) map them to their own responses.

Two families matter to callers:
- Structural errors (validation, integrity) are raised immediately and
  never retried.
- Transient data gaps (MissingDataError) are normally absorbed by the
  services: the affected point degrades to absent/zero and is logged.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   ├── InvalidBarError
    │   ├── UnknownRegionError
    │   ├── MalformedDateError
    │   └── InvalidTimeRangeError
    ├── DataIntegrityError
    ├── MissingDataError
    ├── RecomputeError
    │   ├── RecomputeConflictError
    │   └── RecomputeCancelledError
    └── UpstreamUnavailableError
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidBarError(ValidationError):
    """
    Raised when a price bar is rejected at ingestion.

    Nothing is persisted for a rejected bar.

    Attributes:
        symbol: Symbol of the bar (may be None if that was the problem)
        bar_date: Date of the bar, if it could be read
        reason: Why the bar was rejected
    """

    def __init__(
            self,
            reason: str,
            symbol: str | None = None,
            bar_date: date | None = None,
            field: str | None = None,
    ) -> None:
        self.symbol = symbol
        self.bar_date = bar_date
        self.reason = reason
        where = f" for {symbol} on {bar_date}" if symbol else ""
        super().__init__(f"Invalid bar{where}: {reason}", field=field)


class UnknownRegionError(ValidationError):
    """
    Raised when a region is not one of USD, CAD, INTL.
    """

    def __init__(self, region: str) -> None:
        self.region = region
        super().__init__(
            f"Unknown region: '{region}'. Valid options: USD, CAD, INTL",
            field="region",
        )


class MalformedDateError(ValidationError):
    """
    Raised when a value cannot be read as a calendar day.
    """

    def __init__(self, value: object, field: str | None = "date") -> None:
        self.value = value
        super().__init__(f"Malformed date: {value!r}", field=field)


class InvalidTimeRangeError(ValidationError):
    """
    Raised when an unsupported performance time range is requested.
    """

    def __init__(self, time_range: str, valid: list[str]) -> None:
        self.time_range = time_range
        super().__init__(
            f"Invalid time range: '{time_range}'. Valid options: {', '.join(valid)}",
            field="time_range",
        )


# =============================================================================
# DATA ERRORS
# =============================================================================


class DataIntegrityError(ServiceError):
    """
    Raised when stored data violates a structural guarantee.

    Example: two bars for the same (symbol, date, region) in a legacy
    table that predates the unique constraint. Run deduplication first.
    """

    def __init__(self, message: str, symbol: str | None = None, region: str | None = None) -> None:
        self.symbol = symbol
        self.region = region
        super().__init__(message)


class MissingDataError(ServiceError):
    """
    Raised when a bar needed for a data point does not exist.

    Services catch this per point and degrade the point (absent or zero
    contribution) rather than failing the whole computation.
    """

    def __init__(self, symbol: str, region: str, missing_date: date | None = None) -> None:
        self.symbol = symbol
        self.region = region
        self.date = missing_date
        when = f" on {missing_date}" if missing_date else ""
        super().__init__(f"No price data for {symbol} ({region}){when}")


# =============================================================================
# RECOMPUTE ERRORS
# =============================================================================


class RecomputeError(ServiceError):
    """
    Base exception for indicator recompute failures.

    Attributes:
        symbol: Symbol being recomputed
        region: Region being recomputed
    """

    def __init__(self, message: str, symbol: str, region: str) -> None:
        self.symbol = symbol
        self.region = region
        super().__init__(message)


class RecomputeConflictError(RecomputeError):
    """
    Raised when bars for a series changed while it was being recomputed.

    The recompute's writes are rolled back. This is a retryable error:
    the whole symbol/region is recomputed again from fresh bars.
    """

    def __init__(self, symbol: str, region: str, expected_revision: int, actual_revision: int) -> None:
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        super().__init__(
            f"Bars for {symbol} ({region}) changed during recompute "
            f"(revision {expected_revision} -> {actual_revision})",
            symbol=symbol,
            region=region,
        )


class RecomputeCancelledError(RecomputeError):
    """
    Raised when a recompute is cancelled before it wrote anything.

    Previously stored indicator rows are left untouched.
    """

    def __init__(self, symbol: str, region: str) -> None:
        super().__init__(f"Recompute cancelled for {symbol} ({region})", symbol=symbol, region=region)


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================


class UpstreamUnavailableError(ServiceError):
    """
    Raised when a collaborator (bars or holdings source) fails or times out.

    The engine does not retry upstream calls; the caller decides.

    Attributes:
        operation: Collaborator call that failed (e.g. "fetch_bars")
        reason: Error text or timeout description
    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"Upstream '{operation}' unavailable: {reason}")


__all__ = [
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

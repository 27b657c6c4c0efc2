# backend/valuation_engine/services/price_store.py
"""
Price Series Store: durable daily bars keyed by (symbol, date, region).

This service handles:
- Validating bars at ingestion (close required, calendar-day dates, known region)
- Idempotent upsert with last-writer-wins per key
- Series revision tracking so indicator recomputes can detect backfills
- Ordered range queries, including the region benchmark alias
- Explicit deletion and legacy duplicate cleanup
- Batched MTD/YTD/6M/52-week returns per symbol

Design Principles:
- No Transport Knowledge: Raises domain exceptions only
- Idempotent: Re-writing an identical bar is a no-op and does not bump
  the series revision
- Non-owning: Deleting bars never touches indicator rows; the series is
  flagged for a full recompute instead

Concurrency:
    Writers of the same key serialize on an in-process keyed lock around
    the compare-and-write, and the write itself is a single
    INSERT ... ON CONFLICT DO UPDATE, so concurrent ingestion of the same
    bar from several threads ends with exactly one row.

Usage:
    store = PriceSeriesStore()

    outcome = store.upsert(db, PriceBarInput("AAPL", "USD", date(2024, 1, 2), Decimal("185.64")))
    bars = store.query(db, "AAPL", "USD", start_date=date(2024, 1, 1))
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.orm import Session

from valuation_engine.models import PriceBar, IndicatorStatus
from valuation_engine.services.constants import (
    BENCHMARK_ALIAS,
    PERIOD_RETURN_LOOKBACK_DAYS,
    WRITE_BATCH_SIZE,
)
from valuation_engine.services.exceptions import (
    DataIntegrityError,
    InvalidBarError,
    MalformedDateError,
    UnknownRegionError,
)
from valuation_engine.services.regions import (
    benchmark_storage_region,
    benchmark_symbol,
    validate_region,
)
from valuation_engine.services.dates import parse_date, shift_months, validate_range
from valuation_engine.utils.locks import KeyedLock
from valuation_engine.utils.sql import chunked, upsert_statement

logger = logging.getLogger(__name__)

_PRICE_QUANTUM = Decimal("0.00000001")
_KEY_COLUMNS = ["symbol", "date", "region"]
_PRICE_COLUMNS = ("open", "high", "low", "close", "adjusted_close")
_COMPARED_COLUMNS = _PRICE_COLUMNS + ("volume", "provider")


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class PriceBarInput:
    """
    A bar as received from a bars source, before validation.

    Prices may be Decimal, int, float or numeric strings; the date may be
    a date or an ISO "YYYY-MM-DD" string. Validation happens in the store.
    """

    symbol: str
    region: str
    date: date | str
    close: Decimal | float | int | str | None
    open: Decimal | float | int | str | None = None
    high: Decimal | float | int | str | None = None
    low: Decimal | float | int | str | None = None
    volume: int | None = None
    adjusted_close: Decimal | float | int | str | None = None
    provider: str | None = None


class UpsertOutcome(str, enum.Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class UpsertBatchResult:
    """
    Result of writing a batch of bars.

    Invalid bars are reported in rejected and do not stop the batch.
    """

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    rejected: list[tuple[PriceBarInput, str]] = field(default_factory=list)

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


@dataclass(frozen=True)
class SymbolPeriodReturns:
    """
    Trailing returns of one series as of its latest close.

    Returns are fractions (0.1 = +10%). A return is None when the series
    has no usable start price for that period.

    Attributes:
        close_date: Date of the latest close on or before the as-of date
        mtd_return: From the first close of the month
        ytd_return: From the first close of the year
        six_month_return: From the last close on or before six months back
        fifty_two_week_high: Highest close over the last 52 weeks
        from_fifty_two_week_high: Latest close relative to that high (<= 0)
    """

    symbol: str
    region: str
    close_date: date
    close: Decimal
    mtd_return: Decimal | None = None
    ytd_return: Decimal | None = None
    six_month_return: Decimal | None = None
    fifty_two_week_high: Decimal | None = None
    from_fifty_two_week_high: Decimal | None = None


# =============================================================================
# VALIDATION
# =============================================================================

def _to_price(value: object, name: str, symbol: str, bar_date: date | None, required: bool) -> Decimal | None:
    if value is None:
        if required:
            raise InvalidBarError(f"{name} is required", symbol=symbol, bar_date=bar_date, field=name)
        return None
    if isinstance(value, bool):
        raise InvalidBarError(f"{name} must be numeric", symbol=symbol, bar_date=bar_date, field=name)
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidBarError(f"{name} is not a number: {value!r}", symbol=symbol, bar_date=bar_date, field=name) from None
    if not price.is_finite() or price <= 0:
        raise InvalidBarError(f"{name} must be positive, got {value}", symbol=symbol, bar_date=bar_date, field=name)
    return price.quantize(_PRICE_QUANTUM)


def validate_bar(bar: PriceBarInput) -> dict:
    """
    Validate a bar and return the column values to persist.

    Raises:
        InvalidBarError: Missing/non-positive close, bad symbol or date
        UnknownRegionError: Region is not USD, CAD or INTL
    """
    symbol = (bar.symbol or "").strip().upper()
    if not symbol:
        raise InvalidBarError("symbol is required", field="symbol")

    region = validate_region(bar.region)

    try:
        bar_date = parse_date(bar.date)
    except MalformedDateError as e:
        raise InvalidBarError(str(e), symbol=symbol, field="date") from e

    record = {
        "symbol": symbol,
        "region": region,
        "date": bar_date,
        "close": _to_price(bar.close, "close", symbol, bar_date, required=True),
        "open": _to_price(bar.open, "open", symbol, bar_date, required=False),
        "high": _to_price(bar.high, "high", symbol, bar_date, required=False),
        "low": _to_price(bar.low, "low", symbol, bar_date, required=False),
        "adjusted_close": _to_price(bar.adjusted_close, "adjusted_close", symbol, bar_date, required=False),
        "volume": bar.volume,
        "provider": bar.provider,
    }

    if record["high"] is not None and record["low"] is not None and record["high"] < record["low"]:
        raise InvalidBarError(
            f"high ({record['high']}) cannot be less than low ({record['low']})",
            symbol=symbol,
            bar_date=bar_date,
        )
    if bar.volume is not None and (isinstance(bar.volume, bool) or not isinstance(bar.volume, int) or bar.volume < 0):
        raise InvalidBarError(f"volume must be a non-negative integer, got {bar.volume!r}", symbol=symbol, bar_date=bar_date, field="volume")

    return record


def bar_price(bar: PriceBar, price_field: str = "close") -> Decimal:
    """Price an indicator reads from a bar; adjusted close falls back to close."""
    if price_field == "adjusted_close" and bar.adjusted_close is not None:
        return bar.adjusted_close
    return bar.close


# =============================================================================
# PERIOD RETURNS
# =============================================================================

def _first_on_or_after(rows: list[tuple[date, Decimal]], start: date) -> Decimal | None:
    return next((close for d, close in rows if d >= start), None)


def _last_on_or_before(rows: list[tuple[date, Decimal]], end: date, not_before: date) -> Decimal | None:
    return next((close for d, close in reversed(rows) if not_before <= d <= end), None)


def _period_return(start: Decimal | None, end: Decimal) -> Decimal | None:
    if start is None or start <= 0:
        return None
    return end / start - 1


# =============================================================================
# STORE
# =============================================================================

class PriceSeriesStore:
    """
    Durable store of daily price bars.

    Thread-safe: one instance is shared by all batch workers. Each call
    takes the caller's session and commits its own writes.
    """

    def __init__(self, write_batch_size: int = WRITE_BATCH_SIZE) -> None:
        self._locks = KeyedLock()
        self._write_batch_size = write_batch_size

    # =========================================================================
    # WRITES
    # =========================================================================

    def upsert(self, db: Session, bar: PriceBarInput) -> UpsertOutcome:
        """
        Insert or overwrite the bar for its (symbol, date, region).

        Raises:
            InvalidBarError: The bar failed validation; nothing is persisted
            UnknownRegionError: The bar's region is unknown
        """
        record = validate_bar(bar)
        outcomes = self._write_records(db, [record])
        return outcomes[0]

    def upsert_many(self, db: Session, bars: list[PriceBarInput]) -> UpsertBatchResult:
        """
        Validate and write a batch of bars in one transaction.

        Bars failing validation are rejected individually; the rest are
        written. When the same key appears more than once, the last one wins.
        """
        result = UpsertBatchResult()
        by_key: dict[tuple, dict] = {}

        for bar in bars:
            try:
                record = validate_bar(bar)
            except (InvalidBarError, UnknownRegionError) as e:
                logger.warning(f"Rejected bar {bar.symbol} {bar.date}: {e}")
                result.rejected.append((bar, str(e)))
                continue
            by_key[(record["symbol"], record["date"], record["region"])] = record

        if not by_key:
            return result

        for outcome in self._write_records(db, list(by_key.values())):
            if outcome is UpsertOutcome.INSERTED:
                result.inserted += 1
            elif outcome is UpsertOutcome.UPDATED:
                result.updated += 1
            else:
                result.unchanged += 1

        logger.info(
            f"Stored bars: {result.inserted} inserted, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.rejected_count} rejected"
        )
        return result

    def _write_records(self, db: Session, records: list[dict]) -> list[UpsertOutcome]:
        keys = [(r["symbol"], r["date"], r["region"]) for r in records]

        with self._locks.hold_many(keys):
            try:
                existing = self._existing_rows(db, records)
                outcomes: list[UpsertOutcome] = []
                changed_by_series: dict[tuple[str, str], list[dict]] = defaultdict(list)

                for record, key in zip(records, keys):
                    row = existing.get(key)
                    if row is None:
                        outcomes.append(UpsertOutcome.INSERTED)
                    elif all(getattr(row, col) == record[col] for col in _COMPARED_COLUMNS):
                        outcomes.append(UpsertOutcome.UNCHANGED)
                        continue
                    else:
                        outcomes.append(UpsertOutcome.UPDATED)
                    changed_by_series[(record["symbol"], record["region"])].append(record)

                now = datetime.now(timezone.utc)
                for (symbol, region), changed in changed_by_series.items():
                    revision = self._mark_series_changed(
                        db, symbol, region, min(r["date"] for r in changed)
                    )
                    rows = [{**r, "revision": revision, "updated_at": now} for r in changed]
                    for batch in chunked(rows, self._write_batch_size):
                        db.execute(upsert_statement(db, PriceBar, list(batch), _KEY_COLUMNS))

                db.commit()
            except Exception:
                db.rollback()
                raise

        return outcomes

    def _existing_rows(self, db: Session, records: list[dict]) -> dict[tuple, PriceBar]:
        """Fetch current rows for the given keys, one query per series."""
        dates_by_series: dict[tuple[str, str], list[date]] = defaultdict(list)
        for r in records:
            dates_by_series[(r["symbol"], r["region"])].append(r["date"])

        existing: dict[tuple, PriceBar] = {}
        for (symbol, region), dates in dates_by_series.items():
            rows = db.scalars(
                select(PriceBar).where(
                    and_(
                        PriceBar.symbol == symbol,
                        PriceBar.region == region,
                        PriceBar.date.in_(dates),
                    )
                )
            ).all()
            for row in rows:
                existing[(row.symbol, row.date, row.region)] = row
        return existing

    def _mark_series_changed(self, db: Session, symbol: str, region: str, earliest_date: date | None) -> int:
        """
        Bump the series revision and flag backfills for a full recompute.

        Returns:
            The new series revision
        """
        stmt = upsert_statement(
            db,
            IndicatorStatus,
            {"symbol": symbol, "region": region, "bars_revision": 1, "computed_revision": 0,
             "needs_full_recompute": False},
            ["symbol", "region"],
            update_columns=[],
            set_overrides={"bars_revision": IndicatorStatus.bars_revision + 1},
        )
        db.execute(stmt)

        backfill = IndicatorStatus.last_computed_date.is_not(None)
        if earliest_date is not None:
            backfill = and_(backfill, IndicatorStatus.last_computed_date >= earliest_date)
        flagged = db.execute(
            update(IndicatorStatus)
            .where(and_(IndicatorStatus.symbol == symbol, IndicatorStatus.region == region, backfill))
            .values(needs_full_recompute=True)
            .execution_options(synchronize_session=False)
        )
        if flagged.rowcount:
            logger.info(f"Backfill detected for {symbol} ({region}) at {earliest_date}; full recompute required")

        return db.scalar(
            select(IndicatorStatus.bars_revision).where(
                and_(IndicatorStatus.symbol == symbol, IndicatorStatus.region == region)
            )
        )

    def delete_bars(self, db: Session, symbol: str, region: str, dates: list[date] | None = None) -> int:
        """
        Explicitly delete bars for a series (all of them if dates is None).

        Indicator rows are left alone; the series is flagged for a full
        recompute, which removes rows whose bar no longer exists.

        Returns:
            Number of bars deleted
        """
        symbol = symbol.strip().upper()
        region = validate_region(region)

        stmt = delete(PriceBar).where(and_(PriceBar.symbol == symbol, PriceBar.region == region))
        if dates is not None:
            stmt = stmt.where(PriceBar.date.in_([parse_date(d) for d in dates]))

        try:
            deleted = db.execute(stmt.execution_options(synchronize_session=False)).rowcount
            if deleted:
                self._mark_series_changed(db, symbol, region, None)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"Deleted {deleted} bars for {symbol} ({region})")
        return deleted

    def deduplicate(self, db: Session) -> int:
        """
        Remove duplicate bars, keeping the highest id per key.

        Only legacy tables without the unique constraint can hold
        duplicates. Affected series are flagged for a full recompute.

        Returns:
            Number of rows removed
        """
        ranked = select(
            PriceBar.id,
            PriceBar.symbol,
            PriceBar.region,
            func.row_number().over(
                partition_by=(PriceBar.symbol, PriceBar.date, PriceBar.region),
                order_by=PriceBar.id.desc(),
            ).label("rn"),
        ).subquery()

        duplicates = db.execute(
            select(ranked.c.id, ranked.c.symbol, ranked.c.region).where(ranked.c.rn > 1)
        ).all()
        if not duplicates:
            return 0

        try:
            db.execute(
                delete(PriceBar)
                .where(PriceBar.id.in_([d.id for d in duplicates]))
                .execution_options(synchronize_session=False)
            )
            for symbol, region in {(d.symbol, d.region) for d in duplicates}:
                self._mark_series_changed(db, symbol, region, None)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.warning(f"Removed {len(duplicates)} duplicate bars")
        return len(duplicates)

    # =========================================================================
    # READS
    # =========================================================================

    def query(
            self,
            db: Session,
            symbol: str,
            region: str,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> list[PriceBar]:
        """
        Bars for a series in [start_date, end_date], ascending by date.

        symbol may be "benchmark", which resolves to the region's benchmark
        ETF (stored under the base region).

        Raises:
            UnknownRegionError: Unknown region
            MalformedDateError: Reversed or malformed range
            DataIntegrityError: Two bars share a date
        """
        region = validate_region(region)
        if symbol.strip().lower() == BENCHMARK_ALIAS:
            return self.query_benchmark(db, region, start_date, end_date)
        return self._query_series(db, symbol.strip().upper(), region, start_date, end_date)

    def query_benchmark(
            self,
            db: Session,
            portfolio_region: str,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> list[PriceBar]:
        """Benchmark bars for a portfolio region."""
        ticker = benchmark_symbol(portfolio_region)
        return self._query_series(db, ticker, benchmark_storage_region(), start_date, end_date)

    def _query_series(
            self,
            db: Session,
            symbol: str,
            region: str,
            start_date: date | None,
            end_date: date | None,
    ) -> list[PriceBar]:
        start_date = parse_date(start_date, "start_date") if start_date is not None else None
        end_date = parse_date(end_date, "end_date") if end_date is not None else None
        validate_range(start_date, end_date)

        stmt = select(PriceBar).where(and_(PriceBar.symbol == symbol, PriceBar.region == region))
        if start_date is not None:
            stmt = stmt.where(PriceBar.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(PriceBar.date <= end_date)

        bars = list(db.scalars(stmt.order_by(PriceBar.date, PriceBar.id)).all())
        for prev, cur in zip(bars, bars[1:]):
            if prev.date == cur.date:
                raise DataIntegrityError(
                    f"Duplicate bars for {symbol} ({region}) on {cur.date}; run deduplication",
                    symbol=symbol,
                    region=region,
                )
        return bars

    def query_tail(
            self,
            db: Session,
            symbol: str,
            region: str,
            on_or_before: date,
            limit: int,
    ) -> list[PriceBar]:
        """The last `limit` bars on or before a date, ascending."""
        region = validate_region(region)
        rows = db.scalars(
            select(PriceBar)
            .where(
                and_(
                    PriceBar.symbol == symbol.strip().upper(),
                    PriceBar.region == region,
                    PriceBar.date <= on_or_before,
                )
            )
            .order_by(PriceBar.date.desc())
            .limit(limit)
        ).all()
        return list(reversed(rows))

    def get_close_map(
            self,
            db: Session,
            symbols: list[str],
            region: str,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> dict[tuple[str, date], Decimal]:
        """
        Batch-fetch closes for many symbols in one query.

        Returns:
            Mapping (symbol, date) -> close
        """
        region = validate_region(region)
        validate_range(start_date, end_date)
        if not symbols:
            return {}

        stmt = select(PriceBar.symbol, PriceBar.date, PriceBar.close).where(
            and_(PriceBar.symbol.in_(symbols), PriceBar.region == region)
        )
        if start_date is not None:
            stmt = stmt.where(PriceBar.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(PriceBar.date <= end_date)

        return {(row.symbol, row.date): row.close for row in db.execute(stmt).all()}

    def get_period_returns(
            self,
            db: Session,
            symbols: list[str],
            region: str,
            as_of: date,
    ) -> dict[str, SymbolPeriodReturns]:
        """
        Batch-compute MTD, YTD, 6M and 52-week figures for many symbols.

        One query reads every close from the earliest period start to
        as_of; each symbol is then evaluated in memory.

        Returns:
            Symbol -> SymbolPeriodReturns, for symbols with a close on or
            before as_of in the window

        Example:
            Closes 100 on Jan 2 and 110 on Mar 15, as_of Mar 15
            -> ytd_return Decimal("0.1")
        """
        region = validate_region(region)
        as_of = parse_date(as_of, field="as_of")
        if not symbols:
            return {}

        month_start = as_of.replace(day=1)
        year_start = date(as_of.year, 1, 1)
        six_months_ago = shift_months(as_of, -6)
        year_ago = as_of - timedelta(weeks=52)
        six_month_floor = six_months_ago - timedelta(days=PERIOD_RETURN_LOOKBACK_DAYS)
        lower = min(year_start, year_ago, six_month_floor)

        stmt = (
            select(PriceBar.symbol, PriceBar.date, PriceBar.close)
            .where(
                and_(
                    PriceBar.symbol.in_(symbols),
                    PriceBar.region == region,
                    PriceBar.date >= lower,
                    PriceBar.date <= as_of,
                )
            )
            .order_by(PriceBar.symbol, PriceBar.date)
        )
        closes: dict[str, list[tuple[date, Decimal]]] = defaultdict(list)
        for row in db.execute(stmt).all():
            closes[row.symbol].append((row.date, row.close))

        results: dict[str, SymbolPeriodReturns] = {}
        for symbol, rows in closes.items():
            close_date, close = rows[-1]
            high = max((c for d, c in rows if d >= year_ago), default=None)
            results[symbol] = SymbolPeriodReturns(
                symbol=symbol,
                region=region,
                close_date=close_date,
                close=close,
                mtd_return=_period_return(_first_on_or_after(rows, month_start), close),
                ytd_return=_period_return(_first_on_or_after(rows, year_start), close),
                six_month_return=_period_return(_last_on_or_before(rows, six_months_ago, six_month_floor), close),
                fifty_two_week_high=high,
                from_fifty_two_week_high=_period_return(high, close),
            )

        logger.debug(f"Computed period returns for {len(results)} of {len(symbols)} symbols ({region})")
        return results

    def available_symbols(
            self,
            db: Session,
            candidates: list[str],
            region: str,
            start_date: date | None = None,
            end_date: date | None = None,
    ) -> set[str]:
        """Which of the candidate symbols have at least one bar in range."""
        region = validate_region(region)
        if not candidates:
            return set()
        stmt = select(PriceBar.symbol).where(
            and_(PriceBar.symbol.in_(candidates), PriceBar.region == region)
        )
        if start_date is not None:
            stmt = stmt.where(PriceBar.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(PriceBar.date <= end_date)
        return set(db.scalars(stmt.distinct()).all())

    def latest_date(self, db: Session, symbol: str, region: str) -> date | None:
        """Date of the newest bar for a series, or None if it has no bars."""
        region = validate_region(region)
        return db.scalar(
            select(func.max(PriceBar.date)).where(
                and_(PriceBar.symbol == symbol.strip().upper(), PriceBar.region == region)
            )
        )

    def changed_on_or_before(self, db: Session, symbol: str, region: str, as_of: date, revision: int) -> bool:
        """True if any bar on or before as_of was written after the given revision."""
        found = db.scalar(
            select(PriceBar.id)
            .where(
                and_(
                    PriceBar.symbol == symbol,
                    PriceBar.region == region,
                    PriceBar.date <= as_of,
                    PriceBar.revision > revision,
                )
            )
            .limit(1)
        )
        return found is not None

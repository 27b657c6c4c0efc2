# backend/valuation_engine/services/indicators/service.py
"""
Indicator Service: persistence and recompute policy for indicators.

This service handles:
- Choosing between a full and an incremental recompute per series
- Writing MA/MACD/RSI rows and the recompute bookkeeping in one transaction
- Detecting bars that changed mid-recompute, and retrying the series
- Honouring cancellation before anything is written
- Reading stored indicators back as IndicatorRecords

Recompute Policy:
    FULL when any of:
    - the series was never computed (no status or no stored state)
    - a backfill flagged it (needs_full_recompute)
    - a bar on or before last_computed_date was written after the
      revision the indicators reflect
    - the configured price field differs from the stored state's
    - the caller forces it
    Otherwise INCREMENTAL from the stored accumulators over bars after
    last_computed_date, or NOOP when there are none.

    A full recompute replaces the whole series, removing rows for dates
    that no longer have a bar.

Concurrency:
    The series revision is re-read (SELECT ... FOR UPDATE on PostgreSQL)
    right before writing. If it moved, the transaction is rolled back and
    RecomputeConflictError is raised; recompute() retries the whole
    series with tenacity.
"""

import logging
import threading
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select, delete, and_
from sqlalchemy.orm import Session
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from valuation_engine.config import settings
from valuation_engine.models import (
    IndicatorStatus,
    MacdData,
    MovingAverageData,
    PriceBar,
    RsiData,
)
from valuation_engine.services.constants import (
    MA_LONG_WINDOW,
    RETRY_MAX_WAIT,
    RETRY_MIN_WAIT,
    RETRY_MULTIPLIER,
    WRITE_BATCH_SIZE,
)
from valuation_engine.services.exceptions import (
    RecomputeCancelledError,
    RecomputeConflictError,
    ValidationError,
)
from valuation_engine.services.indicators.engine import IndicatorEngine
from valuation_engine.services.indicators.types import (
    IndicatorRecord,
    IndicatorRow,
    PricePoint,
    RecomputeMode,
    RecomputeResult,
    RecurrenceState,
)
from valuation_engine.services.price_store import PriceSeriesStore, bar_price
from valuation_engine.services.regions import validate_region
from valuation_engine.utils.sql import chunked, upsert_statement

logger = logging.getLogger(__name__)

_KEY_COLUMNS = ["symbol", "date", "region"]
_INDICATOR_MODELS = (MovingAverageData, MacdData, RsiData)


def _points(bars: list[PriceBar], price_field: str) -> list[PricePoint]:
    return [PricePoint(date=b.date, price=float(bar_price(b, price_field)), bar_id=b.id) for b in bars]


class IndicatorService:
    """
    Recomputes and serves technical indicators for one series at a time.

    Thread-safe as long as each thread passes its own Session.
    """

    def __init__(
            self,
            store: PriceSeriesStore,
            engine: IndicatorEngine | None = None,
            price_field: str | None = None,
            max_attempts: int | None = None,
            write_batch_size: int = WRITE_BATCH_SIZE,
    ) -> None:
        self._store = store
        self._engine = engine or IndicatorEngine()
        self._price_field = price_field or settings.indicator_price_field
        self._max_attempts = max_attempts or settings.recompute_conflict_retries
        self._write_batch_size = write_batch_size

    # =========================================================================
    # RECOMPUTE
    # =========================================================================

    def recompute(
            self,
            db: Session,
            symbol: str,
            region: str,
            force_full: bool = False,
            cancel_event: threading.Event | None = None,
    ) -> RecomputeResult:
        """
        Bring stored indicators for a series up to date with its bars.

        Args:
            db: Database session (committed on success, rolled back on failure)
            symbol: Ticker
            region: USD, CAD or INTL
            force_full: Recompute the whole series regardless of policy
            cancel_event: When set, the recompute stops before writing

        Returns:
            RecomputeResult describing what was done

        Raises:
            UnknownRegionError: Unknown region
            RecomputeConflictError: Bars kept changing for every attempt
            RecomputeCancelledError: cancel_event was set before the write
        """
        symbol = symbol.strip().upper()
        region = validate_region(region)

        @retry(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(
                multiplier=RETRY_MULTIPLIER,
                min=RETRY_MIN_WAIT,
                max=RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type(RecomputeConflictError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> RecomputeResult:
            return self._recompute_once(db, symbol, region, force_full, cancel_event)

        return _inner()

    def _recompute_once(
            self,
            db: Session,
            symbol: str,
            region: str,
            force_full: bool,
            cancel_event: threading.Event | None,
    ) -> RecomputeResult:
        status = self._get_status(db, symbol, region)
        start_revision = status.bars_revision if status else 0
        full_reason = self._full_recompute_reason(db, symbol, region, status, force_full)

        if full_reason:
            logger.debug(f"Full recompute for {symbol} ({region}): {full_reason}")
            bars = self._store.query(db, symbol, region)
            if not bars and status is None:
                return RecomputeResult(symbol, region, RecomputeMode.NOOP, reason="no bars")
            rows, state = self._engine.compute(_points(bars, self._price_field), price_field=self._price_field)
            mode = RecomputeMode.FULL
        else:
            since = status.last_computed_date + timedelta(days=1)
            bars = self._store.query(db, symbol, region, start_date=since)
            if not bars:
                logger.debug(f"Indicators for {symbol} ({region}) already current at {status.last_computed_date}")
                return RecomputeResult(
                    symbol,
                    region,
                    RecomputeMode.NOOP,
                    last_computed_date=status.last_computed_date,
                    revision=status.computed_revision,
                    reason="up to date",
                )
            history = self._store.query_tail(db, symbol, region, status.last_computed_date, MA_LONG_WINDOW - 1)
            rows, state = self._engine.compute(
                _points(bars, self._price_field),
                state=RecurrenceState.from_dict(status.recurrence_state),
                history=[float(bar_price(b, self._price_field)) for b in history],
                price_field=self._price_field,
            )
            mode = RecomputeMode.INCREMENTAL

        self._check_cancelled(cancel_event, symbol, region)

        last_date = rows[-1].date if rows else None

        self._write(
            db,
            symbol,
            region,
            rows,
            state,
            start_revision,
            replace_all=mode is RecomputeMode.FULL,
            last_date=last_date,
            cancel_event=cancel_event,
        )

        logger.info(f"Recomputed {symbol} ({region}): {mode.value}, {len(rows)} rows")
        return RecomputeResult(
            symbol,
            region,
            mode,
            rows_written=len(rows),
            last_computed_date=last_date,
            revision=start_revision,
            reason=full_reason,
        )

    def _full_recompute_reason(
            self,
            db: Session,
            symbol: str,
            region: str,
            status: IndicatorStatus | None,
            force_full: bool,
    ) -> str | None:
        if force_full:
            return "forced"
        if status is None or status.recurrence_state is None or status.last_computed_date is None:
            return "never computed"
        if status.needs_full_recompute:
            return "backfill flagged"
        if status.recurrence_state.get("price_field", "close") != self._price_field:
            return "price field changed"
        if self._store.changed_on_or_before(
                db, symbol, region, status.last_computed_date, status.computed_revision
        ):
            return "bars changed before last computed date"
        return None

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None, symbol: str, region: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RecomputeCancelledError(symbol, region)

    def _write(
            self,
            db: Session,
            symbol: str,
            region: str,
            rows: list[IndicatorRow],
            state: RecurrenceState,
            start_revision: int,
            replace_all: bool,
            last_date: date | None,
            cancel_event: threading.Event | None,
    ) -> None:
        """Write rows and bookkeeping atomically, or not at all."""
        try:
            current_revision = db.scalar(
                select(IndicatorStatus.bars_revision)
                .where(and_(IndicatorStatus.symbol == symbol, IndicatorStatus.region == region))
                .with_for_update()
            ) or 0
            if current_revision != start_revision:
                raise RecomputeConflictError(symbol, region, start_revision, current_revision)

            if replace_all:
                for model in _INDICATOR_MODELS:
                    db.execute(
                        delete(model)
                        .where(and_(model.symbol == symbol, model.region == region))
                        .execution_options(synchronize_session=False)
                    )

            for batch in chunked(rows, self._write_batch_size):
                self._upsert_rows(db, symbol, region, batch)

            db.execute(
                upsert_statement(
                    db,
                    IndicatorStatus,
                    {
                        "symbol": symbol,
                        "region": region,
                        "bars_revision": current_revision,
                        "computed_revision": current_revision,
                        "last_computed_date": last_date,
                        "last_computed_at": datetime.now(timezone.utc),
                        "needs_full_recompute": False,
                        "recurrence_state": state.to_dict(),
                        "last_error": None,
                    },
                    ["symbol", "region"],
                    update_columns=[
                        "computed_revision",
                        "last_computed_date",
                        "last_computed_at",
                        "needs_full_recompute",
                        "recurrence_state",
                        "last_error",
                    ],
                )
            )

            self._check_cancelled(cancel_event, symbol, region)
            db.commit()
        except Exception:
            db.rollback()
            raise

    def _upsert_rows(self, db: Session, symbol: str, region: str, rows: list[IndicatorRow]) -> None:
        base = [{"symbol": symbol, "region": region, "date": r.date, "source_bar_id": r.source_bar_id} for r in rows]

        db.execute(upsert_statement(
            db,
            MovingAverageData,
            [{**b, "ma50": r.ma50, "ma200": r.ma200} for b, r in zip(base, rows)],
            _KEY_COLUMNS,
        ))
        db.execute(upsert_statement(
            db,
            MacdData,
            [
                {**b, "fast_ema": r.fast_ema, "slow_ema": r.slow_ema, "histogram": r.histogram, "signal": r.signal}
                for b, r in zip(base, rows)
            ],
            _KEY_COLUMNS,
        ))
        db.execute(upsert_statement(
            db,
            RsiData,
            [{**b, "rsi_9": r.rsi_9, "rsi_14": r.rsi_14, "rsi_21": r.rsi_21} for b, r in zip(base, rows)],
            _KEY_COLUMNS,
        ))

    def record_failure(self, db: Session, symbol: str, region: str, error: str) -> None:
        """Remember why the last recompute of a series failed."""
        try:
            db.execute(
                upsert_statement(
                    db,
                    IndicatorStatus,
                    {"symbol": symbol, "region": region, "bars_revision": 0, "computed_revision": 0,
                     "needs_full_recompute": False, "last_error": error[:1000]},
                    ["symbol", "region"],
                    update_columns=["last_error"],
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    # =========================================================================
    # READS
    # =========================================================================

    def _get_status(self, db: Session, symbol: str, region: str) -> IndicatorStatus | None:
        # populate_existing: another session may have bumped the revision
        return db.scalar(
            select(IndicatorStatus)
            .where(and_(IndicatorStatus.symbol == symbol, IndicatorStatus.region == region))
            .execution_options(populate_existing=True)
        )

    def get_status(self, db: Session, symbol: str, region: str) -> IndicatorStatus | None:
        """Recompute bookkeeping for a series, or None if never written."""
        return self._get_status(db, symbol.strip().upper(), validate_region(region))

    def get_indicators(
            self,
            db: Session,
            symbol: str,
            region: str,
            limit: int = 100,
    ) -> list[IndicatorRecord]:
        """
        The latest `limit` indicator records for a series, ascending by date.

        Raises:
            ValidationError: limit is not positive
            UnknownRegionError: Unknown region
        """
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}", field="limit")
        symbol = symbol.strip().upper()
        region = validate_region(region)

        dates = db.scalars(
            select(MovingAverageData.date)
            .where(and_(MovingAverageData.symbol == symbol, MovingAverageData.region == region))
            .order_by(MovingAverageData.date.desc())
            .limit(limit)
        ).all()
        if not dates:
            return []

        def _by_date(model):
            rows = db.scalars(
                select(model).where(
                    and_(model.symbol == symbol, model.region == region, model.date.in_(dates))
                )
            ).all()
            return {row.date: row for row in rows}

        ma, macd, rsi = (_by_date(m) for m in _INDICATOR_MODELS)

        records = []
        for d in sorted(dates):
            m, c, r = ma.get(d), macd.get(d), rsi.get(d)
            records.append(
                IndicatorRecord(
                    symbol=symbol,
                    region=region,
                    date=d,
                    ma50=m.ma50 if m else None,
                    ma200=m.ma200 if m else None,
                    fast_ema=c.fast_ema if c else None,
                    slow_ema=c.slow_ema if c else None,
                    histogram=c.histogram if c else None,
                    signal=c.signal if c else None,
                    rsi_9=r.rsi_9 if r else None,
                    rsi_14=r.rsi_14 if r else None,
                    rsi_21=r.rsi_21 if r else None,
                    source_bar_id=next((row.source_bar_id for row in (m, c, r) if row is not None), None),
                )
            )
        return records

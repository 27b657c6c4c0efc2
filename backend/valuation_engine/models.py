# backend/valuation_engine/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Date,
    DateTime,
    Numeric,
    UniqueConstraint,
    Boolean,
    JSON,
    BigInteger,
    Integer,
    Double,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class Region(str, enum.Enum):
    """Portfolio regions. Each region is valued in its own currency."""
    USD = "USD"
    CAD = "CAD"
    INTL = "INTL"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceBar(Base):
    """
    One trading day's OHLC data for a symbol in a region.

    Uniquely identified by (symbol, date, region). Close is the only
    mandatory price; everything else may be absent for thin vendors.

    revision is the series revision (see IndicatorStatus.bars_revision)
    at which this bar was last written. The recompute planner compares it
    with the revision indicators were computed at to detect backfills.
    """
    __tablename__ = "price_bars"
    __table_args__ = (
        UniqueConstraint('symbol', 'date', 'region', name='uq_price_bar_key'),
        Index('ix_price_bars_symbol_region_date', 'symbol', 'region', 'date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(32))
    region: Mapped[str] = mapped_column(String(8))
    date: Mapped[date] = mapped_column(Date)

    # Numeric(18, 8) supports values up to 9,999,999,999.99999999
    open: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    high: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    low: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    close: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    adjusted_close: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    volume: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# =============================================================================
# INDICATOR TABLES
# =============================================================================
# source_bar_id is a lookup key only. Bars are never deleted through it and
# deleting a bar leaves indicator rows in place until the next recompute.

class MovingAverageData(Base):
    __tablename__ = "moving_average_data"
    __table_args__ = (
        UniqueConstraint('symbol', 'date', 'region', name='uq_moving_average_key'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(32))
    region: Mapped[str] = mapped_column(String(8))
    date: Mapped[date] = mapped_column(Date)
    source_bar_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    ma50: Mapped[float | None] = mapped_column(Double, nullable=True)
    ma200: Mapped[float | None] = mapped_column(Double, nullable=True)


class MacdData(Base):
    __tablename__ = "macd_data"
    __table_args__ = (
        UniqueConstraint('symbol', 'date', 'region', name='uq_macd_key'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(32))
    region: Mapped[str] = mapped_column(String(8))
    date: Mapped[date] = mapped_column(Date)
    source_bar_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    fast_ema: Mapped[float | None] = mapped_column(Double, nullable=True)
    slow_ema: Mapped[float | None] = mapped_column(Double, nullable=True)
    histogram: Mapped[float | None] = mapped_column(Double, nullable=True)
    signal: Mapped[float | None] = mapped_column(Double, nullable=True)


class RsiData(Base):
    __tablename__ = "rsi_data"
    __table_args__ = (
        UniqueConstraint('symbol', 'date', 'region', name='uq_rsi_key'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(32))
    region: Mapped[str] = mapped_column(String(8))
    date: Mapped[date] = mapped_column(Date)
    source_bar_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    rsi_9: Mapped[float | None] = mapped_column(Double, nullable=True)
    rsi_14: Mapped[float | None] = mapped_column(Double, nullable=True)
    rsi_21: Mapped[float | None] = mapped_column(Double, nullable=True)


class IndicatorStatus(Base):
    """
    Recompute bookkeeping for one (symbol, region) series.

    bars_revision increases on every bar write or delete for the series.
    computed_revision is the bars_revision the stored indicators reflect.
    recurrence_state holds the EMA/Wilder accumulators as of
    last_computed_date so incremental runs can resume without a full pass.
    """
    __tablename__ = "indicator_status"
    __table_args__ = (
        UniqueConstraint('symbol', 'region', name='uq_indicator_status_key'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String(32))
    region: Mapped[str] = mapped_column(String(8))

    bars_revision: Mapped[int] = mapped_column(Integer, default=0)
    computed_revision: Mapped[int] = mapped_column(Integer, default=0)
    last_computed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    needs_full_recompute: Mapped[bool] = mapped_column(Boolean, default=False)

    recurrence_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_error: Mapped[str | None] = mapped_column(String, nullable=True)

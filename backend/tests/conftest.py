# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Mock bars and holdings sources
- Sample bar factories
"""

import math
import os
import threading
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterator

# Set required environment variables BEFORE importing engine modules
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from valuation_engine.models import Base
from valuation_engine.services.price_store import PriceBarInput, PriceSeriesStore
from valuation_engine.services.valuation.types import HoldingLot


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    """Session factory bound to the test engine (for services that open their own sessions)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Iterator[Session]:
    """Create a database session for testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def store() -> PriceSeriesStore:
    """Create a PriceSeriesStore for testing."""
    return PriceSeriesStore()


# =============================================================================
# SAMPLE DATA
# =============================================================================

def make_bars(
        symbol: str,
        region: str,
        closes: list,
        start: date = date(2024, 1, 1),
        provider: str | None = "mock",
) -> list[PriceBarInput]:
    """One bar per consecutive calendar day starting at start."""
    return [
        PriceBarInput(
            symbol=symbol,
            region=region,
            date=start + timedelta(days=i),
            close=Decimal(str(close)),
            volume=1000 + i,
            provider=provider,
        )
        for i, close in enumerate(closes)
    ]


def wavy_closes(count: int, base: float = 100.0) -> list[Decimal]:
    """Deterministic closes with both up and down moves, rounded to cents."""
    return [
        Decimal(str(round(base + 8 * math.sin(i / 5) + 3 * math.cos(i / 3) + i * 0.05, 2)))
        for i in range(count)
    ]


# =============================================================================
# MOCK COLLABORATORS
# =============================================================================

class MockBarsSource:
    """
    Configurable BarsSource for testing.

    Returns configured bars newer than `since`; can raise or hang per series.
    """

    def __init__(self):
        self._bars: dict[tuple[str, str], list[PriceBarInput]] = {}
        self._errors: dict[tuple[str, str], Exception] = {}
        self._hang: set[tuple[str, str]] = set()
        self.release = threading.Event()
        self.calls: list[tuple[str, str, date | None]] = []
        self._lock = threading.Lock()

    def add_bars(self, symbol: str, region: str, bars: list[PriceBarInput]) -> None:
        self._bars.setdefault((symbol, region), []).extend(bars)

    def add_error(self, symbol: str, region: str, error: Exception) -> None:
        self._errors[(symbol, region)] = error

    def hang_on(self, symbol: str, region: str) -> None:
        """Block fetch_bars for this series until release is set."""
        self._hang.add((symbol, region))

    def fetch_bars(self, symbol: str, region: str, since: date | None) -> list[PriceBarInput]:
        key = (symbol, region)
        with self._lock:
            self.calls.append((symbol, region, since))
        if key in self._hang:
            self.release.wait(timeout=10)
        if key in self._errors:
            raise self._errors[key]
        return [
            bar for bar in self._bars.get(key, [])
            if since is None or bar.date > since
        ]


class MockHoldingsSource:
    """Configurable HoldingsSource for testing."""

    def __init__(self):
        self._holdings: dict[str, list[HoldingLot]] = {}
        self._errors: dict[str, Exception] = {}
        self._hang: set[str] = set()
        self.release = threading.Event()
        self.call_count = 0

    def set_holdings(self, region: str, holdings: list[HoldingLot]) -> None:
        self._holdings[region] = list(holdings)

    def add_error(self, region: str, error: Exception) -> None:
        self._errors[region] = error

    def hang_on(self, region: str) -> None:
        self._hang.add(region)

    def fetch_holdings(self, region: str) -> list[HoldingLot]:
        self.call_count += 1
        if region in self._hang:
            self.release.wait(timeout=10)
        if region in self._errors:
            raise self._errors[region]
        return list(self._holdings.get(region, []))


@pytest.fixture
def bars_source() -> Iterator[MockBarsSource]:
    source = MockBarsSource()
    yield source
    source.release.set()


@pytest.fixture
def holdings_source() -> Iterator[MockHoldingsSource]:
    source = MockHoldingsSource()
    yield source
    source.release.set()

# tests/test_database.py
"""
Tests for the session scope and schema creation.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, inspect, select

from valuation_engine import database
from valuation_engine.database import init_db, session_scope
from valuation_engine.models import PriceBar


def _bar() -> PriceBar:
    return PriceBar(symbol="AAPL", region="USD", date=date(2024, 1, 2), close=Decimal("100"))


class TestSessionScope:
    """Tests for session_scope."""

    def test_error_rolls_back(self, session_factory):
        """Should discard uncommitted work when the block raises."""
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as db:
                db.add(_bar())
                db.flush()
                raise RuntimeError("boom")

        with session_scope(session_factory) as db:
            assert db.scalar(select(func.count()).select_from(PriceBar)) == 0

    def test_commit_is_left_to_the_caller(self, session_factory):
        """Should keep rows the block committed itself."""
        with session_scope(session_factory) as db:
            db.add(_bar())
            db.commit()

        with session_scope(session_factory) as db:
            assert db.scalar(select(func.count()).select_from(PriceBar)) == 1


class TestInitDb:
    """Tests for init_db."""

    def test_creates_tables(self):
        """Should create the bar, indicator and status tables."""
        init_db()

        tables = set(inspect(database.engine).get_table_names())
        assert {"price_bars", "indicator_status"} <= tables

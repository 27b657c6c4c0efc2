# tests/test_config.py
"""
Tests for environment-aware settings validation.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")

import pytest

from valuation_engine.config import Settings


class TestDatabaseConfig:
    """Tests for validate_database_config."""

    def test_test_environment_defaults_to_sqlite_memory(self):
        """Should fall back to in-memory SQLite in test."""
        s = Settings(environment="test", database_url=None)
        assert s.database_url == "sqlite:///:memory:"
        assert s.is_sqlite
        assert s.is_test

    def test_development_requires_database_url(self):
        """Should reject a missing DATABASE_URL outside test."""
        with pytest.raises(ValueError, match="DATABASE_URL is required"):
            Settings(environment="development", database_url=None)

    def test_production_requires_postgres(self):
        """Should reject SQLite in production."""
        with pytest.raises(ValueError, match="requires PostgreSQL"):
            Settings(environment="production", database_url="sqlite:///prod.db")

    def test_production_accepts_postgres(self):
        """Should accept a PostgreSQL URL in production."""
        s = Settings(environment="production", database_url="postgresql://u:p@localhost:5432/engine")
        assert s.is_production
        assert not s.is_sqlite

    def test_development_sqlite_warns(self):
        """Should warn when developing against SQLite."""
        with pytest.warns(UserWarning, match="SQLite"):
            Settings(environment="development", database_url="sqlite:///dev.db")


class TestRegionConfig:
    """Tests for validate_regions."""

    def test_default_benchmarks(self):
        """Should map every region to its benchmark ETF."""
        s = Settings(environment="test")
        assert s.benchmark_for("USD") == "SPY"
        assert s.benchmark_for("CAD") == "XIC.TO"
        assert s.benchmark_for("INTL") == "ACWX"

    def test_unknown_base_region(self):
        """Should reject a base region outside USD/CAD/INTL."""
        with pytest.raises(ValueError, match="BASE_REGION"):
            Settings(environment="test", base_region="EUR")

    def test_unknown_region_in_suffixes(self):
        """Should reject suffixes for unknown regions."""
        with pytest.raises(ValueError, match="Unknown regions"):
            Settings(environment="test", region_suffixes={"EUR": ".PA"})

    def test_missing_benchmark(self):
        """Should require a benchmark for every region."""
        with pytest.raises(ValueError, match="missing regions"):
            Settings(environment="test", benchmark_symbols={"USD": "SPY"})

    def test_worker_bounds(self):
        """Should reject a zero-sized worker pool."""
        with pytest.raises(ValueError):
            Settings(environment="test", recompute_max_workers=0)

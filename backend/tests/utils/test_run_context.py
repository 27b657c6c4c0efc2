# tests/utils/test_run_context.py
"""
Tests for run ID context management and logging integration.
"""

import io
import json
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from valuation_engine.utils.context import (
    clear_run_context,
    clear_run_id,
    get_run_context,
    get_run_id,
    new_run_id,
    run_in_context,
    run_scope,
    set_run_context,
    set_run_id,
)
from valuation_engine.utils.logging import JsonFormatter, RunIdFilter, _get_log_level, setup_logging


@pytest.fixture(autouse=True)
def _reset_context():
    clear_run_id()
    clear_run_context()
    yield
    clear_run_id()
    clear_run_context()


class TestRunIdContext:
    """Tests for run ID context functions."""

    def test_get_returns_none_when_not_set(self):
        """Should return None when run ID is not set."""
        assert get_run_id() is None

    def test_set_and_get_run_id(self):
        """Should set and retrieve run ID."""
        set_run_id("run-123")
        assert get_run_id() == "run-123"

    def test_new_run_id_becomes_current(self):
        """Should generate a short ID and make it current."""
        run_id = new_run_id()
        assert len(run_id) == 12
        assert get_run_id() == run_id

    def test_run_context_returns_copy(self):
        """Should not expose the stored dict for mutation."""
        set_run_context("region", "CAD")
        ctx = get_run_context()
        ctx["region"] = "USD"
        assert get_run_context() == {"region": "CAD"}


class TestRunScope:
    """Tests for scoped runs."""

    def test_sets_run_id_and_context(self):
        """Should expose a fresh run ID and the given context inside the block."""
        with run_scope(region="CAD", trigger="nightly") as run_id:
            assert get_run_id() == run_id
            assert get_run_context() == {"region": "CAD", "trigger": "nightly"}

    def test_restores_caller_context(self):
        """Should put back the caller's run ID and context on exit."""
        set_run_id("outer")
        set_run_context("trigger", "manual")

        with run_scope(region="USD"):
            pass

        assert get_run_id() == "outer"
        assert get_run_context() == {"trigger": "manual"}

    def test_restores_on_error(self):
        """Should reset the context even when the block raises."""
        with pytest.raises(RuntimeError):
            with run_scope(region="INTL"):
                raise RuntimeError("boom")

        assert get_run_id() is None
        assert get_run_context() == {}


class TestRunInContext:
    """Tests for propagating context into worker threads."""

    def test_worker_sees_caller_run_id(self):
        """Should expose the caller's run ID inside a pool thread."""
        run_id = new_run_id()
        with ThreadPoolExecutor(max_workers=2) as pool:
            bound = pool.submit(run_in_context(get_run_id)).result()

        assert bound == run_id

    def test_worker_changes_do_not_leak_back(self):
        """Should isolate context changes made by the worker."""
        set_run_id("outer")

        def change():
            set_run_id("inner")
            return get_run_id()

        assert run_in_context(change)() == "inner"
        assert get_run_id() == "outer"


class TestLogging:
    """Tests for the run ID filter and formatters."""

    def _record(self) -> logging.LogRecord:
        return logging.LogRecord("valuation_engine.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)

    def test_filter_adds_run_id(self):
        """Should stamp the current run ID on the record."""
        set_run_id("abc")
        record = self._record()
        RunIdFilter().filter(record)
        assert record.run_id == "abc"

    def test_filter_uses_placeholder_without_run(self):
        """Should stamp '-' when no run is active."""
        record = self._record()
        RunIdFilter().filter(record)
        assert record.run_id == "-"

    def test_json_formatter(self):
        """Should emit a JSON object with message and run ID."""
        set_run_id("abc")
        record = self._record()
        RunIdFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))
        assert payload["message"] == "hello world"
        assert payload["run_id"] == "abc"
        assert payload["level"] == "INFO"

    def test_filter_adds_region_and_context(self):
        """Should stamp the region and keep the rest of the run context."""
        record = self._record()
        with run_scope(region="CAD", trigger="nightly"):
            RunIdFilter().filter(record)

        assert record.region == "CAD"
        assert record.run_context == {"trigger": "nightly"}

    def test_json_formatter_run_fields(self):
        """Should include region, thread, run context and extras."""
        with run_scope(region="INTL", trigger="nightly") as run_id:
            record = self._record()
            record.symbol = "BP.L"
            RunIdFilter().filter(record)
        payload = json.loads(JsonFormatter().format(record))

        assert payload["run_id"] == run_id
        assert payload["region"] == "INTL"
        assert payload["thread"] == record.threadName
        assert payload["context"] == {"trigger": "nightly"}
        assert payload["extra"] == {"symbol": "BP.L"}

    def test_setup_logging_text_line(self):
        """Should write run ID and region on each text line."""
        stream = io.StringIO()
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        try:
            setup_logging("INFO", "text", stream=stream)
            with run_scope(region="CAD") as run_id:
                logging.getLogger("valuation_engine.test").info("refreshed RY.TO")
        finally:
            root.handlers[:] = saved[1]
            root.setLevel(saved[0])

        line = stream.getvalue().strip().splitlines()[-1]
        assert f"| {run_id} | CAD |" in line
        assert line.endswith("refreshed RY.TO")

    def test_invalid_log_level(self):
        """Should reject unknown level names."""
        with pytest.raises(ValueError, match="Invalid log level"):
            _get_log_level("LOUD")

    def test_log_level_case_insensitive(self):
        """Should accept lower case and WARN."""
        assert _get_log_level("debug") == logging.DEBUG
        assert _get_log_level("warn") == logging.WARNING

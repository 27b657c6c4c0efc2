# backend/valuation_engine/utils/logging.py
"""
Logging configuration for the valuation engine.

Every record is stamped with the run it belongs to: the run ID of the
recompute batch and the region being processed, taken from the run
context (see utils/context.py). Worker threads see the batch's context
through run_in_context, so one region's recompute can be followed across
the pool by grepping a single run ID.

Usage:
    from valuation_engine.utils import setup_logging

    setup_logging()                      # settings.log_level / log_format
    setup_logging("DEBUG", "json")

Text output:
    2024-03-15 18:02:11 | INFO     | 3f2a9c1b7d4e | CAD | recompute_0 | valuation_engine.services.batch | ...

Log Levels:
    DEBUG   - Recompute planning decisions, cache hits/misses
    INFO    - Batch start/finish, rows written per symbol, skipped dates
    WARNING - Missing bars, unresolvable symbols, conflict retries
    ERROR   - Upstream failures, failed recompute units
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

from valuation_engine.config import settings
from valuation_engine.utils.context import get_run_context, get_run_id

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TEXT_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(run_id)s | %(region)s | %(threadName)s | %(name)s | %(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Stamped when a record is logged outside any run
NO_RUN = "-"

# SQL echo is controlled by settings.debug on the engine, not by log level
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")

# Record attributes that are not caller-supplied extras
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "run_id", "region", "run_context",
}


# =============================================================================
# RUN CONTEXT FILTER
# =============================================================================

class RunIdFilter(logging.Filter):
    """
    Stamps run_id, region and the remaining run context on each record.

    Access in format strings: %(run_id)s, %(region)s
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_run_context()
        record.run_id = get_run_id() or NO_RUN
        record.region = context.pop("region", NO_RUN)
        record.run_context = context
        return True


# =============================================================================
# JSON FORMATTER
# =============================================================================

class JsonFormatter(logging.Formatter):
    """
    One JSON object per record for log shippers.

    Output format:
    {
        "timestamp": "2024-03-15T18:02:11.123456+00:00",
        "level": "WARNING",
        "logger": "valuation_engine.services.valuation.aggregator",
        "run_id": "3f2a9c1b7d4e",
        "region": "CAD",
        "thread": "recompute_0",
        "message": "RY (CAD) has no price on 2 of 61 dates; valued at 0 there",
        "context": {"trigger": "nightly"},
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", NO_RUN),
            "region": getattr(record, "region", NO_RUN),
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        context = getattr(record, "run_context", None)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


# =============================================================================
# SETUP
# =============================================================================

def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        stream: TextIO | None = None,
) -> None:
    """
    Configure the root logger for a worker process.

    Replaces existing root handlers, so calling it twice does not double
    every line.

    Args:
        level: Level name; defaults to settings.log_level
        log_format: 'text' or 'json'; defaults to settings.log_format
        stream: Output stream; defaults to stdout
    """
    level_name = level or settings.log_level
    format_type = (log_format or settings.log_format).lower()

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=DEFAULT_TEXT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RunIdFilter())

    root = logging.getLogger()
    root.setLevel(_get_log_level(level_name))
    root.handlers.clear()
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: level={level_name}, format={format_type}")


def _get_log_level(level_str: str) -> int:
    """
    Level number for a level name (case-insensitive, WARN accepted).

    Raises:
        ValueError: If level_str is not a valid log level
    """
    levels = logging.getLevelNamesMapping()
    name = level_str.upper().strip()
    if name not in levels or name == "NOTSET":
        raise ValueError(f"Invalid log level: '{level_str}'. Valid levels are: DEBUG, INFO, WARNING, ERROR, CRITICAL")
    return levels[name]

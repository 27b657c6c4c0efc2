# backend/valuation_engine/utils/__init__.py
"""
Utility modules for the valuation engine.

This package contains cross-cutting utilities used throughout the engine:
- logging: Logging setup; records carry the run ID and region
- context: Run ID and run context for recompute batches
- locks: Per-key locks for serializing writes to one series
- sql: Dialect-aware upsert construction

Usage:
    from valuation_engine.utils import setup_logging
    from valuation_engine.utils import run_scope, get_run_id
    from valuation_engine.utils import upsert_statement
"""

from valuation_engine.utils.context import (
    get_run_id,
    set_run_id,
    new_run_id,
    clear_run_id,
    get_run_context,
    set_run_context,
    clear_run_context,
    run_in_context,
    run_scope,
)
from valuation_engine.utils.locks import KeyedLock
from valuation_engine.utils.logging import setup_logging
from valuation_engine.utils.sql import chunked, upsert_statement

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_run_id",
    "set_run_id",
    "new_run_id",
    "clear_run_id",
    "get_run_context",
    "set_run_context",
    "clear_run_context",
    "run_in_context",
    "run_scope",
    # Locks
    "KeyedLock",
    # SQL
    "chunked",
    "upsert_statement",
]

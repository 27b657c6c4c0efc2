# backend/valuation_engine/utils/context.py
"""
Run context management for the valuation engine.

This module provides context storage for run-scoped data:
- Run ID for tracing one recompute batch across worker threads
- Arbitrary run metadata (region, trigger)

Uses Python's contextvars. Values do NOT flow into ThreadPoolExecutor
workers on their own; submit work through run_in_context() (or
contextvars.copy_context().run) so log lines emitted by workers keep
the run ID of the batch that spawned them.

Usage:
    from valuation_engine.utils.context import run_in_context, run_scope

    with run_scope(region="CAD") as run_id:
        executor.submit(run_in_context(task), arg)
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, copy_context
from typing import Any, Callable

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)

_run_context_var: ContextVar[dict[str, Any]] = ContextVar("run_context", default={})


# =============================================================================
# RUN ID
# =============================================================================

def get_run_id() -> str | None:
    """
    Get the current run ID.

    Returns:
        The run ID for the current batch, or None if not set.
    """
    return _run_id_var.get()


def set_run_id(run_id: str) -> None:
    """
    Set the run ID for the current context.

    Args:
        run_id: Unique identifier for this run
    """
    _run_id_var.set(run_id)


def new_run_id() -> str:
    """Generate a short run ID and make it current."""
    run_id = uuid.uuid4().hex[:12]
    _run_id_var.set(run_id)
    return run_id


def clear_run_id() -> None:
    """Clear the run ID."""
    _run_id_var.set(None)


# =============================================================================
# EXTENDED CONTEXT
# =============================================================================

def get_run_context() -> dict[str, Any]:
    """Get a copy of the run context dictionary."""
    return _run_context_var.get().copy()


def set_run_context(key: str, value: Any) -> None:
    """
    Set a value in the run context.

    Args:
        key: Context key
        value: Context value
    """
    ctx = _run_context_var.get().copy()
    ctx[key] = value
    _run_context_var.set(ctx)


def clear_run_context() -> None:
    """Clear all run context."""
    _run_context_var.set({})


@contextmanager
def run_scope(**context: Any) -> Iterator[str]:
    """
    Start a run: fresh run ID plus context values, restored on exit.

    The caller's run ID and context are put back when the block ends,
    so a finished batch never leaves its ID on later log lines.

    Yields:
        The new run ID
    """
    run_id = uuid.uuid4().hex[:12]
    id_token = _run_id_var.set(run_id)
    context_token = _run_context_var.set({**_run_context_var.get(), **context})
    try:
        yield run_id
    finally:
        _run_context_var.reset(context_token)
        _run_id_var.reset(id_token)


# =============================================================================
# THREAD PROPAGATION
# =============================================================================

def run_in_context(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Bind fn to a snapshot of the caller's context.

    The returned callable runs fn inside the copied context, so run ID
    and run context set by the caller are visible in worker threads.
    """
    ctx = copy_context()

    def _runner(*args: Any, **kwargs: Any) -> Any:
        return ctx.copy().run(fn, *args, **kwargs)

    return _runner

# backend/valuation_engine/services/batch.py
"""
Bounded parallel execution of independent units of work.

A portfolio recompute fans out into one unit per (symbol, region). Units
are independent: a failing unit is recorded and the others continue,
like a partial market data sync.

Cancellation:
    The cancel event is checked when a unit starts. Units that had not
    started when it was set are reported as skipped; a unit already
    running is expected to check the event itself before it writes.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from valuation_engine.config import settings
from valuation_engine.services.exceptions import RecomputeCancelledError, ServiceError
from valuation_engine.utils.context import get_run_id, run_in_context

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class BatchTask:
    """One unit of work. fn takes no arguments."""

    key: str
    fn: Callable[[], Any]


@dataclass
class UnitOutcome:
    """Result of running one unit."""

    key: str
    status: str  # "succeeded", "skipped", "failed"
    reason: str | None = None
    result: Any = None


@dataclass
class BatchSummary:
    """
    Complete result of a batch run.

    Attributes:
        label: What the batch was for (e.g. the region)
        outcomes: One entry per unit, in completion order
        error: Set when the batch could not start (e.g. holdings unavailable)
    """

    label: str
    run_id: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    outcomes: list[UnitOutcome] = field(default_factory=list)
    cancelled: bool = False
    error: str | None = None

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def succeeded(self) -> int:
        return self._count("succeeded")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def reasons(self) -> dict[str, str]:
        """Unit key -> reason for every unit that did not succeed."""
        return {o.key: o.reason for o in self.outcomes if o.status != "succeeded" and o.reason}

    @property
    def status(self) -> str:
        """'completed', 'partial', 'cancelled' or 'failed'."""
        if self.error is not None:
            return "failed"
        if self.cancelled:
            return "cancelled"
        if self.failed == 0 and self.skipped == 0:
            return "completed"
        if self.succeeded == 0 and self.total > 0:
            return "failed"
        return "partial"

    def outcome(self, key: str) -> UnitOutcome | None:
        return next((o for o in self.outcomes if o.key == key), None)


# =============================================================================
# RUNNER
# =============================================================================

class BatchRunner:
    """
    Runs BatchTasks on a bounded thread pool.

    The run ID of the calling context is propagated into every worker so
    log lines from one batch can be correlated.
    """

    def __init__(self, max_workers: int | None = None) -> None:
        self._max_workers = max_workers or settings.recompute_max_workers

    def run(
            self,
            tasks: list[BatchTask],
            cancel_event: threading.Event | None = None,
            label: str = "batch",
    ) -> BatchSummary:
        """
        Run all tasks and summarize their outcomes.

        Never raises for a failing unit; see BatchSummary.
        """
        summary = BatchSummary(label=label, run_id=get_run_id())
        logger.info(f"Batch {label} started: {len(tasks)} units, {self._max_workers} workers")

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="recompute") as pool:
            futures = {
                pool.submit(run_in_context(self._run_unit), task, cancel_event): task
                for task in tasks
            }
            for future in as_completed(futures):
                summary.outcomes.append(future.result())

        summary.cancelled = cancel_event is not None and cancel_event.is_set()
        summary.finished_at = datetime.now(timezone.utc)

        log = logger.error if summary.failed else logger.info
        log(
            f"Batch {label} finished ({summary.status}): {summary.succeeded} succeeded, "
            f"{summary.skipped} skipped, {summary.failed} failed"
        )
        return summary

    @staticmethod
    def _run_unit(task: BatchTask, cancel_event: threading.Event | None) -> UnitOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return UnitOutcome(task.key, "skipped", reason="cancelled")

        try:
            result = task.fn()
        except RecomputeCancelledError:
            logger.info(f"Unit {task.key} cancelled before writing")
            return UnitOutcome(task.key, "skipped", reason="cancelled")
        except ServiceError as e:
            logger.error(f"Unit {task.key} failed: {e}")
            return UnitOutcome(task.key, "failed", reason=str(e))
        except Exception as e:
            logger.exception(f"Unit {task.key} failed unexpectedly")
            return UnitOutcome(task.key, "failed", reason=f"{type(e).__name__}: {e}")

        return UnitOutcome(task.key, "succeeded", result=result)

"""Progress reporting for long-running bulk operations.

This module provides:
- SyncDiagnostics: last known outcome of a bulk operation
- DiagnosticsStore: persists diagnostics in the local state database
- ProgressReporter: fans (done, total, message) out to observers
- run_bulk: runs an operation over a list of items with progress,
  cancellation and diagnostics
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from syncbridge.sync.types import Clock, ProgressCallback, now_ms

if TYPE_CHECKING:
    from syncbridge.client.state import LocalState

logger = logging.getLogger(__name__)

STATUS_STARTING = "Starting sync"
STATUS_COMPLETE = "Sync complete"
STATUS_CANCELLED = "Sync cancelled"
STATUS_EMPTY = "No items to sync"


@dataclass
class SyncDiagnostics:
    """Last known outcome of a bulk operation (times in epoch ms)."""

    last_start: int = 0
    last_end: int = 0
    last_total: int = 0
    last_done: int = 0
    last_status: str | None = None
    last_error: str | None = None


class DiagnosticsStore:
    """Diagnostics of bulk operations, keyed by operation name.

    Values live in the ``engine_state`` key/value table, under
    ``diagnostics.<name>.<field>``.
    """

    def __init__(self, state: LocalState, clock: Clock = now_ms) -> None:
        self._state = state
        self._clock = clock

    def _key(self, name: str, field_name: str) -> str:
        return f"diagnostics.{name}.{field_name}"

    def _put(self, name: str, **values: Any) -> None:
        for field_name, value in values.items():
            self._state.set_state(
                self._key(name, field_name),
                None if value is None else str(value),
            )

    def read(self, name: str) -> SyncDiagnostics:
        """Get the diagnostics of an operation."""

        def get_int(field_name: str) -> int:
            value = self._state.get_state(self._key(name, field_name))
            return int(value) if value else 0

        return SyncDiagnostics(
            last_start=get_int("last_start"),
            last_end=get_int("last_end"),
            last_total=get_int("last_total"),
            last_done=get_int("last_done"),
            last_status=self._state.get_state(self._key(name, "last_status")),
            last_error=self._state.get_state(self._key(name, "last_error")),
        )

    def mark_start(self, name: str) -> None:
        self._put(
            name,
            last_start=self._clock(),
            last_end=0,
            last_total=0,
            last_done=0,
            last_status=STATUS_STARTING,
            last_error=None,
        )

    def update_progress(self, name: str, done: int, total: int, status: str) -> None:
        self._put(name, last_done=done, last_total=total, last_status=status)

    def mark_complete(self, name: str, done: int, total: int) -> None:
        self._put(
            name,
            last_end=self._clock(),
            last_done=done,
            last_total=total,
            last_status=STATUS_COMPLETE,
        )

    def mark_cancelled(self, name: str, done: int, total: int) -> None:
        self._put(
            name,
            last_end=self._clock(),
            last_done=done,
            last_total=total,
            last_status=STATUS_CANCELLED,
        )

    def mark_failed(self, name: str, error: str | None) -> None:
        self._put(
            name,
            last_end=self._clock(),
            last_status="Sync failed",
            last_error=error or "Unknown error",
        )


class ProgressReporter:
    """Progress observer surface.

    Observers are called with ``(done, total, message)`` on the thread that
    reports progress. A failing observer is logged and does not stop the
    others.
    """

    def __init__(self) -> None:
        self._observers: list[ProgressCallback] = []
        self._lock = threading.Lock()

    def add_observer(self, callback: ProgressCallback) -> None:
        with self._lock:
            self._observers.append(callback)

    def remove_observer(self, callback: ProgressCallback) -> None:
        with self._lock:
            if callback in self._observers:
                self._observers.remove(callback)

    def report(self, done: int, total: int, message: str) -> None:
        """Notify every observer."""
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(done, total, message)
            except Exception:
                logger.exception("Progress observer failed")


@dataclass
class BulkResult:
    """Outcome of run_bulk."""

    done: int
    total: int
    status: str
    error: str | None = None


def run_bulk(
    name: str,
    items: Iterable[Any],
    operation: Callable[[Any], None],
    reporter: ProgressReporter,
    diagnostics: DiagnosticsStore | None = None,
    cancel_check: Callable[[], bool] | None = None,
) -> BulkResult:
    """Run an operation over every item, reporting progress.

    Processing stops at the first failing item, or as soon as
    ``cancel_check`` returns True.

    Args:
        name: Operation name, used for diagnostics.
        items: Items to process.
        operation: Called once per item.
        reporter: Receives progress updates.
        diagnostics: Optional persistent diagnostics.
        cancel_check: Polled before each item.

    Returns:
        BulkResult with status "complete", "cancelled", "failed" or "empty".
    """
    items = list(items)
    total = len(items)

    if diagnostics:
        diagnostics.mark_start(name)

    if not total:
        reporter.report(0, 0, STATUS_EMPTY)
        if diagnostics:
            diagnostics.mark_complete(name, 0, 0)
        return BulkResult(done=0, total=0, status="empty")

    logger.info("Starting %s over %d items", name, total)
    done = 0
    for item in items:
        if cancel_check and cancel_check():
            logger.info("%s cancelled at %d/%d", name, done, total)
            reporter.report(done, total, STATUS_CANCELLED)
            if diagnostics:
                diagnostics.mark_cancelled(name, done, total)
            return BulkResult(done=done, total=total, status="cancelled")

        try:
            operation(item)
        except Exception as e:
            logger.exception("%s failed at item %d/%d", name, done + 1, total)
            error = str(e) or type(e).__name__
            reporter.report(done, total, f"Sync failed: {error}")
            if diagnostics:
                diagnostics.mark_failed(name, error)
            return BulkResult(done=done, total=total, status="failed", error=error)

        done += 1
        message = f"Syncing {done} of {total}"
        reporter.report(done, total, message)
        if diagnostics:
            diagnostics.update_progress(name, done, total, message)

    reporter.report(done, total, STATUS_COMPLETE)
    if diagnostics:
        diagnostics.mark_complete(name, done, total)
    logger.info("%s complete (%d items)", name, done)
    return BulkResult(done=done, total=total, status="complete")

"""Timer service for delayed and periodic engine work.

This module provides:
- TimerHandle: cancellable handle returned for every armed timer
- TimerService: protocol used by the engine (one-shot and periodic timers)
- APSchedulerTimers: production implementation on an APScheduler
  BackgroundScheduler

Debounced pushes, periodic re-checks, scheduled item timers and the
scheduled-items rescan all go through a TimerService, so tests can swap in
a virtual clock.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle of an armed timer."""

    def cancel(self) -> None:
        """Disarm the timer. Cancelling twice, or after it fired, is a no-op."""
        ...


class TimerService(Protocol):
    """Source of one-shot and periodic timers."""

    def call_later(
        self,
        delay: float,
        func: Callable[[], None],
        name: str | None = None,
    ) -> TimerHandle:
        """Run ``func`` once, ``delay`` seconds from now."""
        ...

    def call_every(
        self,
        interval: float,
        func: Callable[[], None],
        name: str | None = None,
    ) -> TimerHandle:
        """Run ``func`` every ``interval`` seconds until cancelled."""
        ...

    def shutdown(self) -> None:
        """Cancel every timer and release resources."""
        ...


def _guarded(func: Callable[[], None], name: str) -> Callable[[], None]:
    """Wrap a timer callback so a failure is logged instead of lost."""

    def run() -> None:
        try:
            func()
        except Exception:
            logger.exception("Error in timer job %s", name)

    return run


class _JobHandle:
    """TimerHandle backed by an APScheduler job."""

    def __init__(self, scheduler: BackgroundScheduler, job_id: str) -> None:
        self._scheduler = scheduler
        self._job_id = job_id

    @property
    def job_id(self) -> str:
        return self._job_id

    def cancel(self) -> None:
        # One-shot jobs are removed by the scheduler once they ran
        with contextlib.suppress(JobLookupError):
            self._scheduler.remove_job(self._job_id)


class APSchedulerTimers:
    """TimerService running jobs on a background APScheduler.

    The scheduler is started lazily on first use.

    Usage:
        timers = APSchedulerTimers()
        handle = timers.call_later(1.0, publish)
        handle.cancel()
        timers.shutdown()
    """

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self._lock = threading.Lock()

    def _ensure_started(self) -> None:
        with self._lock:
            if not self._scheduler.running:
                self._scheduler.start()
                logger.debug("Timer scheduler started")

    def call_later(
        self,
        delay: float,
        func: Callable[[], None],
        name: str | None = None,
    ) -> TimerHandle:
        self._ensure_started()
        job_id = f"{name or 'timer'}-{uuid.uuid4().hex[:12]}"
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(delay, 0.0))
        self._scheduler.add_job(
            _guarded(func, job_id),
            trigger=DateTrigger(run_date=run_date),
            id=job_id,
            name=name or job_id,
            misfire_grace_time=None,
        )
        return _JobHandle(self._scheduler, job_id)

    def call_every(
        self,
        interval: float,
        func: Callable[[], None],
        name: str | None = None,
    ) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._ensure_started()
        job_id = f"{name or 'periodic'}-{uuid.uuid4().hex[:12]}"
        self._scheduler.add_job(
            _guarded(func, job_id),
            trigger=IntervalTrigger(seconds=interval),
            id=job_id,
            name=name or job_id,
            coalesce=True,
            max_instances=1,
        )
        return _JobHandle(self._scheduler, job_id)

    def shutdown(self) -> None:
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
                logger.debug("Timer scheduler stopped")

"""Scheduled delivery subsystem.

This module provides:
- ScheduledDelivery: executes (payload, execute-at) requests through an
  actuator, with cancellable timers, bounded retries and status reporting

Lifecycle of an item (see domain/scheduled.py for the state machine):

    schedule(item)
        │
        ├── execute_at <= now ──► execute(item) immediately
        └── otherwise ──────────► timer at execute_at ──► execute(item)

    execute(item)
        ├── actuator ok ────► SENT, reported upstream
        └── actuator fails ─► retry_count += 1
                              ├── < max_retries ─► PENDING, re-armed after backoff
                              └── otherwise ─────► FAILED, reported with last error

A periodic rescan fetches PENDING items from the backend and schedules the
ones this process does not know yet, so an item never gets two timers.
Items left PENDING while stopped are re-armed by the next start().
Finished items move to a bounded history so rescans keep ignoring them.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import TYPE_CHECKING

from syncbridge.sync.domain.scheduled import record_failure, transition
from syncbridge.sync.retry import DEFAULT_MAX_RETRIES, BackoffPolicy, FixedBackoff
from syncbridge.sync.types import (
    ActuatorError,
    Clock,
    ScheduledItem,
    ScheduledStatus,
    SyncError,
    now_ms,
)

if TYPE_CHECKING:
    from syncbridge.client.backend import Actuator, Backend
    from syncbridge.sync.timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

DEFAULT_RESCAN_INTERVAL = 10.0  # seconds
DEFAULT_DELIVERY_ACTION = "send_message"
# Finished or cancelled ids remembered after they leave the active table
DEFAULT_HISTORY_SIZE = 1000


class ScheduledDelivery:
    """Scheduled delivery of items through an actuator.

    Usage:
        delivery = ScheduledDelivery(backend, sms_actuator, timers)
        delivery.start()  # periodic rescan of PENDING items

        delivery.schedule(item)
        delivery.cancel(item.id)

        delivery.stop()
    """

    def __init__(
        self,
        backend: Backend,
        actuator: Actuator,
        timers: TimerService,
        clock: Clock = now_ms,
        action: str = DEFAULT_DELIVERY_ACTION,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: BackoffPolicy | None = None,
        rescan_interval: float = DEFAULT_RESCAN_INTERVAL,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        """Initialize the subsystem.

        Args:
            backend: Backend collaborator (status reports and rescans).
            actuator: Performs the delivery.
            timers: Timer service for item timers and the rescan.
            clock: Returns the current time in epoch milliseconds.
            action: Action name passed to the actuator.
            max_retries: Failed attempts before an item is FAILED.
            backoff: Delay before re-arming a failed item.
            rescan_interval: Seconds between rescans.
            history_size: Finished ids remembered to keep rescans from
                re-running them.
        """
        self._backend = backend
        self._actuator = actuator
        self._timers = timers
        self._clock = clock
        self._action = action
        self._max_retries = max_retries
        self._backoff: BackoffPolicy = backoff or FixedBackoff()
        self._rescan_interval = rescan_interval
        self._history_size = history_size

        self._lock = threading.RLock()
        # Items not finished yet, by id
        self._items: dict[str, ScheduledItem] = {}
        # Next attempt time (epoch ms) of items waiting for a retry
        self._retry_at: dict[str, int] = {}
        # Armed timers, by item id
        self._armed: dict[str, TimerHandle] = {}
        # Items whose actuator call is in flight
        self._committed: set[str] = set()
        # Recently finished items; None for ids cancelled before they were seen
        self._finished: OrderedDict[str, ScheduledItem | None] = OrderedDict()

        self._rescan_handle: TimerHandle | None = None
        self._stopped = False

    @property
    def armed_ids(self) -> frozenset[str]:
        """Ids of items with an armed timer."""
        with self._lock:
            return frozenset(self._armed)

    @property
    def running(self) -> bool:
        """Check if the periodic rescan is active."""
        return self._rescan_handle is not None

    def get(self, item_id: str) -> ScheduledItem | None:
        """Get a known item by id."""
        with self._lock:
            item = self._items.get(item_id)
            return item if item is not None else self._finished.get(item_id)

    def items(self) -> list[ScheduledItem]:
        """Get every known item, active ones first."""
        with self._lock:
            finished = [item for item in self._finished.values() if item is not None]
            return [*self._items.values(), *finished]

    # === Lifecycle ===

    def start(self) -> None:
        """Start the periodic rescan and run one right away.

        PENDING items left without a timer by stop() are re-armed, or
        executed when already due.
        """
        with self._lock:
            self._stopped = False
            if self._rescan_handle is not None:
                return
            self._rescan_handle = self._timers.call_every(
                self._rescan_interval,
                self.rescan,
                name="scheduled-rescan",
            )
            due = self._resume_pending()
        logger.info("Scheduled delivery started")
        for item in due:
            self.execute(item)
        self.rescan()

    def stop(self) -> None:
        """Cancel the rescan and every armed timer."""
        with self._lock:
            self._stopped = True
            if self._rescan_handle is not None:
                self._rescan_handle.cancel()
                self._rescan_handle = None
            handles = list(self._armed.values())
            self._armed.clear()

        for handle in handles:
            handle.cancel()
        logger.info("Scheduled delivery stopped (%d timers disarmed)", len(handles))

    # === Operations ===

    def schedule(self, item: ScheduledItem) -> bool:
        """Accept an item for delivery.

        Items already known to this process, and items that are not
        PENDING, are ignored. While stopped the item is only recorded;
        start() arms it.

        Args:
            item: The item to deliver.

        Returns:
            True if the item was accepted.
        """
        with self._lock:
            if item.id in self._items:
                logger.debug("Item %s already scheduled, skipping", item.id)
                return False
            if item.id in self._finished:
                logger.debug("Item %s already finished or cancelled, skipping", item.id)
                return False
            if item.status != ScheduledStatus.PENDING:
                logger.debug("Item %s is %s, skipping", item.id, item.status.value)
                return False

            self._items[item.id] = item
            if self._stopped:
                logger.info("Item %s recorded, waiting for start", item.id)
                return True
            delay_ms = item.execute_at - self._clock()
            if delay_ms > 0:
                self._arm(item, delay_ms / 1000)
                logger.info("Item %s scheduled in %dms", item.id, delay_ms)
                return True

        logger.info("Item %s is due, executing immediately", item.id)
        self.execute(item)
        return True

    def execute(self, item: ScheduledItem) -> ScheduledStatus:
        """Run the actuator for a PENDING item.

        Args:
            item: The item to execute.

        Returns:
            The item's status after the attempt.
        """
        with self._lock:
            if item.status != ScheduledStatus.PENDING or self._stopped:
                logger.debug(
                    "Not executing %s (status=%s)", item.id, item.status.value
                )
                return item.status
            transition(item, ScheduledStatus.SENDING)
            self._committed.add(item.id)

        try:
            self._actuator.execute(self._action, item.payload)
        except Exception as e:
            if isinstance(e, ActuatorError):
                logger.warning("Delivery of %s failed: %s", item.id, e)
            else:
                logger.exception("Unexpected error delivering %s", item.id)
            self._handle_failure(item, str(e) or type(e).__name__)
            return item.status

        with self._lock:
            self._committed.discard(item.id)
            transition(item, ScheduledStatus.SENT)
            self._retire(item.id, item)
        logger.info("Item %s sent", item.id)
        self._report(item.id, ScheduledStatus.SENT)
        return item.status

    def _handle_failure(self, item: ScheduledItem, error: str) -> None:
        with self._lock:
            self._committed.discard(item.id)
            will_retry = record_failure(item, error, self._max_retries)
            if will_retry:
                delay = self._backoff.delay(item.retry_count)
                self._retry_at[item.id] = self._clock() + int(delay * 1000)
                if self._stopped:
                    logger.info("Retry of %s deferred until start", item.id)
                    return
                self._arm(item, delay)
                logger.info(
                    "Retrying %s in %.0fs (attempt %d/%d)",
                    item.id,
                    delay,
                    item.retry_count + 1,
                    self._max_retries,
                )
                return
            self._retire(item.id, item)

        logger.error(
            "Item %s failed after %d attempts: %s",
            item.id,
            item.retry_count,
            error,
        )
        self._report(item.id, ScheduledStatus.FAILED, error)

    def cancel(self, item_id: str) -> bool:
        """Cancel an item that has not been delivered yet.

        Args:
            item_id: Id of the item.

        Returns:
            True if the item was cancelled, False if it already reached a
            state that cannot be cancelled.
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                finished = self._finished.get(item_id)
                if finished is not None:
                    logger.warning(
                        "Cannot cancel %s: already %s", item_id, finished.status.value
                    )
                    return False
                # Not seen yet: make sure a later rescan does not pick it up
                self._retire(item_id, None)
                handle = None
            else:
                uncommitted = item.status == ScheduledStatus.PENDING or (
                    item.status == ScheduledStatus.SENDING
                    and item_id not in self._committed
                )
                if not uncommitted:
                    logger.warning(
                        "Cannot cancel %s: already %s", item_id, item.status.value
                    )
                    return False
                transition(item, ScheduledStatus.CANCELLED)
                handle = self._armed.pop(item_id, None)
                self._retire(item_id, item)

        if handle is not None:
            handle.cancel()
        logger.info("Item %s cancelled", item_id)
        self._report(item_id, ScheduledStatus.CANCELLED)
        return True

    def rescan(self) -> int:
        """Schedule PENDING items from the backend that are not known yet.

        Returns:
            Number of newly accepted items.
        """
        if self._stopped:
            return 0

        try:
            if not self._backend.is_authenticated():
                logger.debug("Not authenticated, skipping scheduled rescan")
                return 0
            pending = self._backend.fetch_scheduled_items(ScheduledStatus.PENDING)
        except SyncError as e:
            logger.warning("Failed to fetch scheduled items: %s", e)
            return 0

        accepted = 0
        for item in pending:
            if self._stopped:
                break
            try:
                if self.schedule(item):
                    accepted += 1
            except Exception:
                logger.exception("Error scheduling item %s", item.id)

        if accepted:
            logger.info("Rescan accepted %d scheduled items", accepted)
        return accepted

    # === Internals ===

    def _arm(self, item: ScheduledItem, delay: float) -> None:
        """Arm the timer of an item (lock held)."""
        previous = self._armed.pop(item.id, None)
        if previous is not None:
            previous.cancel()
        item_id = item.id
        self._armed[item_id] = self._timers.call_later(
            delay,
            lambda: self._fire(item_id),
            name=f"scheduled-{item_id}",
        )

    def _resume_pending(self) -> list[ScheduledItem]:
        """Re-arm PENDING items without a timer (lock held).

        Returns:
            Items already due, to be executed outside the lock.
        """
        now = self._clock()
        due: list[ScheduledItem] = []
        armed = 0
        for item in self._items.values():
            if item.status != ScheduledStatus.PENDING or item.id in self._armed:
                continue
            delay_ms = self._retry_at.get(item.id, item.execute_at) - now
            if delay_ms > 0:
                self._arm(item, delay_ms / 1000)
                armed += 1
            else:
                due.append(item)
        if armed or due:
            logger.info("Resumed %d pending items (%d due now)", armed + len(due), len(due))
        return due

    def _retire(self, item_id: str, item: ScheduledItem | None) -> None:
        """Move an id to the bounded history of finished items (lock held)."""
        self._items.pop(item_id, None)
        self._retry_at.pop(item_id, None)
        self._finished[item_id] = item
        self._finished.move_to_end(item_id)
        while len(self._finished) > self._history_size:
            self._finished.popitem(last=False)

    def _fire(self, item_id: str) -> None:
        with self._lock:
            self._armed.pop(item_id, None)
            self._retry_at.pop(item_id, None)
            item = self._items.get(item_id)
            if item is None or item.status != ScheduledStatus.PENDING:
                logger.debug("Timer for %s fired but item is no longer pending", item_id)
                return
        self.execute(item)

    def _report(
        self,
        item_id: str,
        status: ScheduledStatus,
        error: str | None = None,
    ) -> None:
        """Report a status upstream; failures are logged only."""
        try:
            self._backend.update_scheduled_item_status(item_id, status, error)
        except SyncError as e:
            logger.warning(
                "Failed to report %s as %s: %s", item_id, status.value, e
            )

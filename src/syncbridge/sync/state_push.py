"""Debounced, change-aware state publisher.

This module provides:
- StatePushChannel: pushes a feature's StateSnapshot to the backend only
  when it carries new information

Three entry points share one publish path:
- publish(): immediate, skipped when equal to the last published snapshot
  unless forced
- debounced_publish(): bursts of triggers collapse into one publish at the
  end of the debounce window (cancel-and-reschedule, last trigger wins)
- start_periodic(): periodic re-check, still subject to the no-op rule

The publish path holds a per-channel lock and evaluates the snapshot under
it, so a publish never sends an older snapshot after a newer one was
confirmed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from syncbridge.sync.types import (
    AuthenticationRequired,
    SnapshotProvider,
    StateSnapshot,
    SyncError,
)

if TYPE_CHECKING:
    from syncbridge.client.backend import Backend
    from syncbridge.sync.timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_WINDOW = 1.0  # seconds
DEFAULT_STATE_POLL_INTERVAL = 5.0  # seconds


class StatePushChannel:
    """State publisher for one feature namespace.

    Usage:
        channel = StatePushChannel("media", backend, read_media_state, timers)
        channel.publish(force=True)  # initial push
        channel.start_periodic()

        # on every OS-level change:
        channel.debounced_publish()

        channel.stop()
    """

    def __init__(
        self,
        namespace: str,
        backend: Backend,
        snapshot_provider: SnapshotProvider,
        timers: TimerService,
        debounce_window: float = DEFAULT_DEBOUNCE_WINDOW,
        periodic_interval: float = DEFAULT_STATE_POLL_INTERVAL,
        should_publish: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            namespace: Feature namespace.
            backend: Backend collaborator.
            snapshot_provider: Builds a fresh snapshot of the local state.
            timers: Timer service for the debounce and periodic timers.
            debounce_window: Seconds to wait for a burst to settle.
            periodic_interval: Seconds between periodic re-checks.
            should_publish: Optional gate (e.g. a user preference); when it
                returns False nothing is pushed.
        """
        self._namespace = namespace
        self._backend = backend
        self._provider = snapshot_provider
        self._timers = timers
        self._debounce_window = debounce_window
        self._periodic_interval = periodic_interval
        self._should_publish = should_publish

        self._publish_lock = threading.Lock()
        self._timer_lock = threading.Lock()
        self._last_published: StateSnapshot | None = None
        self._pending_snapshot: StateSnapshot | None = None
        self._debounce_handle: TimerHandle | None = None
        # Bumped on every re-arm; a fire carrying an older value is ignored
        self._debounce_generation = 0
        self._periodic_handle: TimerHandle | None = None
        self._stopped = False

        self.push_count = 0

    @property
    def namespace(self) -> str:
        """Feature namespace."""
        return self._namespace

    @property
    def last_published(self) -> StateSnapshot | None:
        """Last snapshot the backend confirmed."""
        return self._last_published

    @property
    def debounce_pending(self) -> bool:
        """Check if a debounced publish is armed."""
        return self._debounce_handle is not None

    def publish(
        self,
        snapshot: StateSnapshot | None = None,
        force: bool = False,
    ) -> bool:
        """Push a snapshot unless it brings nothing new.

        Args:
            snapshot: Snapshot to push; evaluated from the provider if None.
            force: Push even if equal to the last published snapshot.

        Returns:
            True if the backend accepted a push.
        """
        with self._publish_lock:
            if self._stopped:
                return False

            if self._should_publish is not None and not self._should_publish():
                logger.debug("Publishing disabled for %s", self._namespace)
                return False

            if snapshot is None:
                try:
                    snapshot = self._provider()
                except Exception:
                    logger.exception("Failed to read %s state", self._namespace)
                    return False

            if not force and snapshot == self._last_published:
                return False

            try:
                if not self._backend.is_authenticated():
                    logger.debug("Not authenticated, skipping %s push", self._namespace)
                    return False
                self._backend.push_state(self._namespace, snapshot)
            except AuthenticationRequired:
                logger.debug("Authentication required, skipping %s push", self._namespace)
                return False
            except SyncError as e:
                logger.warning("Failed to push %s state: %s", self._namespace, e)
                return False

            self._last_published = snapshot
            self.push_count += 1
            logger.debug("Pushed %s state: %s", self._namespace, snapshot.to_dict())
            return True

    def debounced_publish(self, snapshot: StateSnapshot | None = None) -> None:
        """Request a publish at the end of the debounce window.

        Each call cancels the pending publish and re-arms it. When the timer
        fires, the snapshot of the latest call is pushed, or a fresh one is
        read from the provider if the latest call passed none.

        Args:
            snapshot: Snapshot observed by the trigger, if any.
        """
        with self._timer_lock:
            if self._stopped:
                return
            if self._debounce_handle is not None:
                self._debounce_handle.cancel()
            self._pending_snapshot = snapshot
            self._debounce_generation += 1
            generation = self._debounce_generation
            self._debounce_handle = self._timers.call_later(
                self._debounce_window,
                lambda: self._debounce_fired(generation),
                name=f"debounce-{self._namespace}",
            )

    def _debounce_fired(self, generation: int) -> None:
        with self._timer_lock:
            if generation != self._debounce_generation:
                logger.debug("Dropping superseded %s debounce", self._namespace)
                return
            snapshot = self._pending_snapshot
            self._pending_snapshot = None
            self._debounce_handle = None
        self.publish(snapshot)

    def start_periodic(self, interval: float | None = None) -> None:
        """Start the periodic re-check.

        Args:
            interval: Seconds between re-checks (defaults to the configured
                interval).
        """
        with self._timer_lock:
            if self._stopped:
                return
            if self._periodic_handle is not None:
                self._periodic_handle.cancel()
            self._periodic_handle = self._timers.call_every(
                interval or self._periodic_interval,
                self.publish,
                name=f"state-{self._namespace}",
            )
        logger.debug("Periodic %s state re-check started", self._namespace)

    def stop_periodic(self) -> None:
        """Stop the periodic re-check."""
        with self._timer_lock:
            if self._periodic_handle is not None:
                self._periodic_handle.cancel()
                self._periodic_handle = None

    def stop(self) -> None:
        """Cancel every timer; nothing is pushed afterwards."""
        with self._timer_lock:
            self._stopped = True
            if self._debounce_handle is not None:
                self._debounce_handle.cancel()
                self._debounce_handle = None
            self._pending_snapshot = None
            self._debounce_generation += 1
            if self._periodic_handle is not None:
                self._periodic_handle.cancel()
                self._periodic_handle = None
        logger.debug("State channel %s stopped", self._namespace)

    def reset(self) -> None:
        """Allow the channel to be used again after stop().

        The last published snapshot is forgotten so the next publish is sent.
        """
        with self._timer_lock, self._publish_lock:
            self._stopped = False
            self._last_published = None

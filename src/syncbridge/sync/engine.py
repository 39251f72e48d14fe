"""Synchronization engine facade.

This module provides:
- Feature: declaration of a synchronized feature (namespace, handlers,
  state provider)
- SyncEngine: owns the channels of every registered feature, the
  scheduled delivery subsystem and the mirror manager

Architecture:
    OS trigger ─► notify_changed ─► StatePushChannel ─┐
    Backend ─► CommandChannel ─► handlers ─► Actuator │
                      └─ on_processed ─► debounce ────┤
    Timers ─► ScheduledDelivery ─► Actuator           ├─► Backend
    Producer ─► MirrorManager ────────────────────────┘
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from syncbridge.core.config import EngineConfig
from syncbridge.sync.commands import CommandChannel, CommandJournal
from syncbridge.sync.dedup import DedupCache, EvictionPolicy
from syncbridge.sync.mirror import MirrorManager
from syncbridge.sync.progress import (
    BulkResult,
    DiagnosticsStore,
    ProgressReporter,
    run_bulk,
)
from syncbridge.sync.retry import FixedBackoff
from syncbridge.sync.scheduled import ScheduledDelivery
from syncbridge.sync.state_push import StatePushChannel
from syncbridge.sync.timers import APSchedulerTimers, TimerService
from syncbridge.sync.types import (
    Clock,
    CommandHandler,
    ProgressCallback,
    ScheduledItem,
    SnapshotProvider,
    StateSnapshot,
    SyncError,
    now_ms,
)

if TYPE_CHECKING:
    from syncbridge.client.backend import Actuator, Backend

logger = logging.getLogger(__name__)

# Namespace controlling the scheduled delivery rescan
SCHEDULED_NAMESPACE = "scheduled"


@dataclass
class Feature:
    """A synchronized feature.

    Attributes:
        namespace: Feature namespace (e.g. "dnd", "media").
        handlers: Action name -> command handler.
        snapshot_provider: Builds the feature's current state; features
            without one only receive commands.
        should_publish: Optional gate for state pushes.
    """

    namespace: str
    handlers: Mapping[str, CommandHandler]
    snapshot_provider: SnapshotProvider | None = None
    should_publish: Callable[[], bool] | None = None


class SyncEngine:
    """Facade over the synchronization components.

    Usage:
        engine = SyncEngine(backend, EngineConfig(), actuator=sms_actuator)
        engine.register_feature(dnd_feature(dnd_actuator, read_dnd_state))
        engine.start("dnd")
        engine.start("scheduled")

        engine.notify_changed("dnd")  # a setting changed locally

        engine.shutdown()
    """

    def __init__(
        self,
        backend: Backend,
        config: EngineConfig | None = None,
        timers: TimerService | None = None,
        clock: Clock | None = None,
        journal: CommandJournal | None = None,
        actuator: Actuator | None = None,
        diagnostics: DiagnosticsStore | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            backend: Backend shared by every component.
            config: Engine tunables.
            timers: Timer service (an APScheduler one by default).
            clock: Returns the current time in epoch milliseconds.
            journal: Command journal making re-delivered commands no-ops.
            actuator: Actuator used by scheduled delivery; without one,
                scheduling is unavailable.
            diagnostics: Persistent diagnostics for bulk operations.
        """
        self._backend = backend
        self._config = config or EngineConfig()
        self._timers: TimerService = timers or APSchedulerTimers()
        self._clock: Clock = clock or now_ms
        self._journal = journal
        self._diagnostics = diagnostics

        self._lock = threading.RLock()
        self._features: dict[str, Feature] = {}
        self._command_channels: dict[str, CommandChannel] = {}
        self._state_channels: dict[str, StatePushChannel] = {}
        self._running: set[str] = set()

        self._delivery: ScheduledDelivery | None = None
        if actuator is not None:
            self._delivery = ScheduledDelivery(
                backend,
                actuator,
                self._timers,
                clock=self._clock,
                max_retries=self._config.max_retries,
                backoff=FixedBackoff(self._config.retry_backoff),
                rescan_interval=self._config.scheduled_rescan_interval,
            )

        self._mirror = MirrorManager(
            backend,
            capacity=self._config.mirror_capacity,
            dedup=DedupCache(
                capacity=self._config.dedup_capacity,
                policy=EvictionPolicy(self._config.dedup_policy),
            ),
            clock=self._clock,
        )
        self._progress = ProgressReporter()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def mirror(self) -> MirrorManager:
        """Mirror capacity manager."""
        return self._mirror

    @property
    def delivery(self) -> ScheduledDelivery | None:
        """Scheduled delivery subsystem, if an actuator was given."""
        return self._delivery

    @property
    def running_namespaces(self) -> frozenset[str]:
        """Namespaces currently started."""
        with self._lock:
            return frozenset(self._running)

    def command_channel(self, namespace: str) -> CommandChannel:
        """Get the command channel of a feature."""
        return self._command_channels[namespace]

    def state_channel(self, namespace: str) -> StatePushChannel | None:
        """Get the state channel of a feature, if it publishes state."""
        return self._state_channels.get(namespace)

    # === Features ===

    def register_feature(self, feature: Feature) -> None:
        """Register a feature and build its channels.

        Raises:
            ValueError: If the namespace is reserved or already registered.
        """
        namespace = feature.namespace
        with self._lock:
            if namespace == SCHEDULED_NAMESPACE:
                raise ValueError(f"Namespace {namespace!r} is reserved")
            if namespace in self._features:
                raise ValueError(f"Feature {namespace!r} already registered")

            state_channel: StatePushChannel | None = None
            if feature.snapshot_provider is not None:
                state_channel = StatePushChannel(
                    namespace,
                    self._backend,
                    feature.snapshot_provider,
                    self._timers,
                    debounce_window=self._config.debounce_window,
                    periodic_interval=self._config.state_recheck_interval,
                    should_publish=feature.should_publish,
                )
                self._state_channels[namespace] = state_channel

            self._command_channels[namespace] = CommandChannel(
                namespace,
                self._backend,
                feature.handlers,
                poll_interval=self._config.command_poll_interval,
                staleness_window=self._config.staleness_window_ms,
                clock=self._clock,
                journal=self._journal,
                on_processed=self._after_commands(state_channel),
                on_permission_denied=self._after_permission_denied(state_channel),
            )
            self._features[namespace] = feature
        logger.info("Registered feature %s", namespace)

    @staticmethod
    def _after_commands(
        channel: StatePushChannel | None,
    ) -> Callable[[], None] | None:
        if channel is None:
            return None
        return lambda: channel.debounced_publish()

    @staticmethod
    def _after_permission_denied(
        channel: StatePushChannel | None,
    ) -> Callable[[], None] | None:
        if channel is None:
            return None
        # The provider reports hasPermission=false
        return lambda: channel.publish(force=True)

    def _require_feature(self, namespace: str) -> None:
        if namespace not in self._features:
            raise ValueError(f"Unknown feature {namespace!r}")

    # === Lifecycle ===

    def start(self, namespace: str) -> None:
        """Start a feature's channels, or the scheduled delivery rescan."""
        if namespace == SCHEDULED_NAMESPACE:
            delivery = self._require_delivery()
            with self._lock:
                self._running.add(namespace)
            delivery.start()
            return

        with self._lock:
            self._require_feature(namespace)
            if namespace in self._running:
                logger.debug("Feature %s already started", namespace)
                return
            self._running.add(namespace)
            command_channel = self._command_channels[namespace]
            state_channel = self._state_channels.get(namespace)

        if state_channel is not None:
            state_channel.reset()
            state_channel.publish(force=True)
            state_channel.start_periodic()
        command_channel.start()
        logger.info("Feature %s started", namespace)

    def stop(self, namespace: str) -> None:
        """Stop a feature's channels, or the scheduled delivery rescan."""
        if namespace == SCHEDULED_NAMESPACE:
            with self._lock:
                self._running.discard(namespace)
            if self._delivery is not None:
                self._delivery.stop()
            return

        with self._lock:
            self._require_feature(namespace)
            self._running.discard(namespace)
            command_channel = self._command_channels[namespace]
            state_channel = self._state_channels.get(namespace)

        command_channel.stop()
        if state_channel is not None:
            state_channel.stop()
        logger.info("Feature %s stopped", namespace)

    def shutdown(self) -> None:
        """Stop every feature and the timer service."""
        for namespace in sorted(self.running_namespaces):
            try:
                self.stop(namespace)
            except Exception:
                logger.exception("Error stopping %s", namespace)
        self._timers.shutdown()
        logger.info("Sync engine shut down")

    # === Triggers ===

    def notify_changed(
        self,
        namespace: str,
        snapshot: StateSnapshot | None = None,
    ) -> None:
        """Signal a local state change of a feature (debounced push)."""
        self._require_feature(namespace)
        channel = self._state_channels.get(namespace)
        if channel is None:
            logger.debug("Feature %s has no state to publish", namespace)
            return
        channel.debounced_publish(snapshot)

    def wake(self, namespace: str | None = None) -> None:
        """Poll a feature's commands now (every running feature if None)."""
        with self._lock:
            if namespace is None:
                channels = [
                    self._command_channels[ns]
                    for ns in self._running
                    if ns in self._command_channels
                ]
            elif namespace in self._command_channels:
                channels = [self._command_channels[namespace]]
            else:
                logger.debug("No command channel for %s", namespace)
                channels = []
        for channel in channels:
            channel.wake()

    # === Scheduled delivery ===

    def _require_delivery(self) -> ScheduledDelivery:
        if self._delivery is None:
            raise SyncError("Scheduled delivery needs an actuator")
        return self._delivery

    def schedule_item(self, item: ScheduledItem) -> bool:
        """Accept a scheduled item for delivery."""
        return self._require_delivery().schedule(item)

    def cancel_item(self, item_id: str) -> bool:
        """Cancel a scheduled item that has not been delivered yet."""
        return self._require_delivery().cancel(item_id)

    # === Progress ===

    def add_progress_observer(self, callback: ProgressCallback) -> None:
        """Register a (done, total, message) observer for bulk operations."""
        self._progress.add_observer(callback)

    def remove_progress_observer(self, callback: ProgressCallback) -> None:
        self._progress.remove_observer(callback)

    def run_bulk(
        self,
        name: str,
        items: Iterable[Any],
        operation: Callable[[Any], None],
        cancel_check: Callable[[], bool] | None = None,
    ) -> BulkResult:
        """Run a bulk operation, reporting progress to the observers."""
        return run_bulk(
            name,
            items,
            operation,
            self._progress,
            diagnostics=self._diagnostics,
            cancel_check=cancel_check,
        )

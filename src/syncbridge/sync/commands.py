"""Poll-based command channel.

This module provides:
- ChannelState: lifecycle of a channel
- CommandJournal: protocol for remembering executed command ids
- CommandChannel: fetches commands for one feature, executes them through
  a handler table and acknowledges them

Processing rules, per fetched command and in arrival order:

    | Condition                         | Handler | Acknowledge |
    |-----------------------------------|---------|-------------|
    | Duplicate id in the same batch    | no      | no          |
    | Already acknowledged in this run  | no      | no          |
    | Older than the staleness window   | no      | yes         |
    | Already in the command journal    | no      | yes         |
    | Unknown action                    | no      | yes         |
    | Otherwise                         | yes     | yes         |

A failing handler is logged and the command is still acknowledged, so a
broken command is never re-delivered forever. Execution is at-least-once:
if the process dies between the handler and the acknowledgment, the
command comes back on the next run.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from enum import IntEnum, auto
from typing import TYPE_CHECKING, Protocol

from syncbridge.sync.dedup import DedupCache
from syncbridge.sync.staleness import DEFAULT_STALENESS_WINDOW_MS, is_actionable
from syncbridge.sync.types import (
    AuthenticationRequired,
    ChannelStats,
    Clock,
    Command,
    CommandHandler,
    PermissionDenied,
    SyncError,
    now_ms,
)

if TYPE_CHECKING:
    from syncbridge.client.backend import Backend

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_POLL_INTERVAL = 2.0  # seconds

# Acknowledged ids remembered per run
ACKED_IDS_CAPACITY = 1000


class ChannelState(IntEnum):
    """State of a channel."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


class CommandJournal(Protocol):
    """Persistent record of commands whose handler already ran."""

    def was_executed(self, namespace: str, command_id: str) -> bool: ...

    def record_executed(self, namespace: str, command_id: str) -> None: ...


class CommandChannel:
    """Command channel for one feature namespace.

    The channel runs in its own thread, polling the backend every
    ``poll_interval`` seconds. ``poll_once`` can also be called directly.

    Usage:
        channel = CommandChannel(
            "dnd",
            backend,
            handlers={"enable": enable_dnd, "disable": disable_dnd},
        )
        channel.start()

        # ... commands are processed automatically ...

        channel.stop()
    """

    def __init__(
        self,
        namespace: str,
        backend: Backend,
        handlers: Mapping[str, CommandHandler],
        poll_interval: float = DEFAULT_COMMAND_POLL_INTERVAL,
        staleness_window: int = DEFAULT_STALENESS_WINDOW_MS,
        clock: Clock = now_ms,
        journal: CommandJournal | None = None,
        on_processed: Callable[[], None] | None = None,
        on_permission_denied: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            namespace: Feature namespace (e.g. "dnd", "media").
            backend: Backend collaborator.
            handlers: Action name -> handler taking the command args.
            poll_interval: Seconds between polls.
            staleness_window: Maximum command age in milliseconds.
            clock: Returns the current time in epoch milliseconds.
            journal: Optional journal making re-delivered commands no-ops.
            on_processed: Called after a batch in which a handler ran.
            on_permission_denied: Called when a handler raised PermissionDenied.
        """
        self._namespace = namespace
        self._backend = backend
        self._handlers = dict(handlers)
        self._poll_interval = poll_interval
        self._staleness_window = staleness_window
        self._clock = clock
        self._journal = journal
        self._on_processed = on_processed
        self._on_permission_denied = on_permission_denied

        # State
        self._state = ChannelState.STOPPED
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

        # Ids acknowledged during this run
        self._acked = DedupCache(capacity=ACKED_IDS_CAPACITY)

        self._stats = ChannelStats()

    @property
    def namespace(self) -> str:
        """Feature namespace."""
        return self._namespace

    @property
    def state(self) -> ChannelState:
        """Get current channel state."""
        return self._state

    @property
    def stats(self) -> ChannelStats:
        """Get channel statistics."""
        return self._stats

    @property
    def poll_interval(self) -> float:
        """Seconds between polls."""
        return self._poll_interval

    def register_handler(self, action: str, handler: CommandHandler) -> None:
        """Register (or replace) the handler of an action."""
        with self._lock:
            self._handlers[action] = handler
        logger.debug("Registered %s handler for %s", self._namespace, action)

    def start(self) -> None:
        """Start the polling thread."""
        with self._lock:
            if self._state != ChannelState.STOPPED:
                logger.warning("Command channel %s already running", self._namespace)
                return

            self._state = ChannelState.RUNNING
            self._stop_event.clear()
            self._wake_event.clear()
            self._thread = threading.Thread(
                target=self.run,
                name=f"CommandChannel-{self._namespace}",
                daemon=True,
            )
            self._thread.start()
            logger.info("Command channel %s started", self._namespace)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the polling thread.

        Args:
            timeout: Maximum time to wait for the thread to stop.
        """
        with self._lock:
            if self._state == ChannelState.STOPPED:
                return

            self._state = ChannelState.STOPPING
            self._stop_event.set()
            self._wake_event.set()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

        with self._lock:
            self._state = ChannelState.STOPPED
            self._thread = None
            logger.info("Command channel %s stopped", self._namespace)

    def wake(self) -> None:
        """Cut the current sleep short and poll right away."""
        self._wake_event.set()

    def run(self) -> None:
        """Main polling loop."""
        logger.debug("Command channel %s loop started", self._namespace)

        while not self._stop_event.is_set():
            try:
                if self._backend.is_authenticated():
                    self.poll_once()
                else:
                    logger.debug(
                        "Not authenticated, skipping %s command poll", self._namespace
                    )
            except Exception:
                logger.exception("Error polling %s commands", self._namespace)
                self._stats.errors += 1

            self._wake_event.wait(timeout=self._poll_interval)
            self._wake_event.clear()

        logger.debug("Command channel %s loop ended", self._namespace)

    def poll_once(self) -> int:
        """Fetch and process one batch of commands.

        Returns:
            Number of handlers executed.
        """
        if self._stop_event.is_set():
            return 0

        self._stats.polls += 1
        try:
            commands = self._backend.fetch_pending_commands(self._namespace)
        except AuthenticationRequired:
            logger.debug("Authentication required, skipping %s poll", self._namespace)
            return 0
        except SyncError as e:
            logger.warning("Failed to fetch %s commands: %s", self._namespace, e)
            self._stats.errors += 1
            return 0

        if commands:
            logger.debug("Fetched %d %s commands", len(commands), self._namespace)
        self._stats.fetched += len(commands)

        executed = 0
        seen: set[str] = set()
        for command in commands:
            if self._stop_event.is_set():
                logger.debug("Channel %s stopping, leaving batch", self._namespace)
                break

            if command.id in seen or command.id in self._acked:
                self._stats.duplicates += 1
                continue
            seen.add(command.id)

            if self._process(command):
                executed += 1

        if executed and self._on_processed and not self._stop_event.is_set():
            self._on_processed()

        return executed

    def _process(self, command: Command) -> bool:
        """Process one command.

        Returns:
            True if its handler ran.
        """
        if not is_actionable(command.created_at, self._clock(), self._staleness_window):
            logger.debug(
                "Dropping stale %s command %s (%s)",
                self._namespace,
                command.id,
                command.action,
            )
            self._stats.stale += 1
            self._acknowledge(command)
            return False

        if self._journal and self._journal.was_executed(self._namespace, command.id):
            logger.info(
                "%s command %s already executed, acknowledging",
                self._namespace,
                command.id,
            )
            self._acknowledge(command)
            return False

        with self._lock:
            handler = self._handlers.get(command.action)

        if handler is None:
            logger.info(
                "Ignoring unknown %s action %r (command %s)",
                self._namespace,
                command.action,
                command.id,
            )
            self._stats.unknown += 1
            self._acknowledge(command)
            return False

        logger.info("Executing %s command: %s", self._namespace, command.action)
        self._run_handler(command, handler)
        self._stats.executed += 1

        if self._journal:
            try:
                self._journal.record_executed(self._namespace, command.id)
            except Exception:
                logger.exception("Failed to journal %s command %s", self._namespace, command.id)

        self._acknowledge(command)
        return True

    def _run_handler(self, command: Command, handler: CommandHandler) -> None:
        """Run a handler; failures are logged, never raised."""
        try:
            handler(command.args)
        except PermissionDenied as e:
            logger.warning(
                "Permission denied for %s %s: %s",
                self._namespace,
                command.action,
                e,
            )
            self._stats.handler_failures += 1
            if self._on_permission_denied:
                self._on_permission_denied()
        except Exception:
            logger.exception(
                "Handler for %s %s failed (command %s)",
                self._namespace,
                command.action,
                command.id,
            )
            self._stats.handler_failures += 1

    def _acknowledge(self, command: Command) -> bool:
        """Acknowledge a command.

        Returns:
            True if the backend accepted the acknowledgment.
        """
        try:
            self._backend.acknowledge_command(self._namespace, command.id)
        except SyncError as e:
            logger.warning(
                "Failed to acknowledge %s command %s: %s",
                self._namespace,
                command.id,
                e,
            )
            self._stats.errors += 1
            return False

        self._acked.check_and_add(command.id)
        self._stats.acknowledged += 1
        return True

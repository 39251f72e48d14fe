"""In-process backend.

This module provides:
- MemoryBackend: thread-safe Backend keeping everything in memory

Besides the Backend methods it exposes the producer side (enqueue_command,
add_scheduled_item) and a few inspection helpers, so the engine can be
driven end to end without a server.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

from syncbridge.sync.types import (
    AuthenticationRequired,
    BackendError,
    Command,
    MirroredRecord,
    ScheduledItem,
    ScheduledStatus,
    StateSnapshot,
    now_ms,
)

logger = logging.getLogger(__name__)


class MemoryBackend:
    """Backend keeping commands, state, scheduled items and mirrors in memory.

    Usage:
        backend = MemoryBackend()
        backend.enqueue_command("dnd", Command(id="c1", action="toggle", created_at=now_ms()))
        engine = SyncEngine(backend)
    """

    def __init__(self, authenticated: bool = True) -> None:
        self._lock = threading.RLock()
        self._authenticated = authenticated

        self._commands: dict[str, list[Command]] = {}
        self._acknowledged: dict[str, list[str]] = {}
        self._states: dict[str, StateSnapshot] = {}
        self._pushes: dict[str, list[StateSnapshot]] = {}
        self._scheduled: dict[str, ScheduledItem] = {}
        self._status_reports: list[tuple[str, ScheduledStatus, str | None]] = []
        self._mirror: dict[str, MirroredRecord] = {}
        self._mirror_writes = 0
        self._mirror_deletes: list[str] = []

    # === Session ===

    def is_authenticated(self) -> bool:
        return self._authenticated

    def set_authenticated(self, authenticated: bool) -> None:
        self._authenticated = authenticated

    def _check_auth(self) -> None:
        if not self._authenticated:
            raise AuthenticationRequired("Not authenticated")

    # === Commands ===

    def enqueue_command(self, namespace: str, command: Command) -> None:
        """Add a command for the device (producer side)."""
        with self._lock:
            self._commands.setdefault(namespace, []).append(command)

    def fetch_pending_commands(self, namespace: str) -> list[Command]:
        self._check_auth()
        with self._lock:
            return list(self._commands.get(namespace, []))

    def acknowledge_command(self, namespace: str, command_id: str) -> None:
        self._check_auth()
        with self._lock:
            pending = self._commands.get(namespace, [])
            self._commands[namespace] = [c for c in pending if c.id != command_id]
            self._acknowledged.setdefault(namespace, []).append(command_id)

    def acknowledged(self, namespace: str) -> list[str]:
        """Ids acknowledged for a namespace, in order."""
        with self._lock:
            return list(self._acknowledged.get(namespace, []))

    # === State ===

    def push_state(self, namespace: str, snapshot: StateSnapshot) -> None:
        self._check_auth()
        with self._lock:
            self._states[namespace] = snapshot
            self._pushes.setdefault(namespace, []).append(snapshot)

    def get_state(self, namespace: str) -> StateSnapshot | None:
        """Last pushed snapshot of a namespace."""
        with self._lock:
            return self._states.get(namespace)

    def pushes(self, namespace: str) -> list[StateSnapshot]:
        """Every snapshot pushed for a namespace, in order."""
        with self._lock:
            return list(self._pushes.get(namespace, []))

    # === Scheduled items ===

    def add_scheduled_item(
        self,
        payload: Mapping[str, Any],
        execute_at: int,
        item_id: str | None = None,
    ) -> ScheduledItem:
        """Create a scheduled item (producer side)."""
        with self._lock:
            item = ScheduledItem(
                id=item_id or f"sched_{len(self._scheduled) + 1}",
                payload=dict(payload),
                execute_at=execute_at,
            )
            self._scheduled[item.id] = item
            return item

    def fetch_scheduled_items(self, status: ScheduledStatus) -> list[ScheduledItem]:
        self._check_auth()
        status = ScheduledStatus(status)
        with self._lock:
            # Copies: the engine owns the status of the items it schedules
            return [
                ScheduledItem.from_dict(item.to_dict())
                for item in sorted(self._scheduled.values(), key=lambda i: i.execute_at)
                if item.status == status
            ]

    def update_scheduled_item_status(
        self,
        item_id: str,
        status: ScheduledStatus,
        error: str | None = None,
    ) -> None:
        self._check_auth()
        status = ScheduledStatus(status)
        with self._lock:
            self._status_reports.append((item_id, status, error))
            item = self._scheduled.get(item_id)
            if item is not None:
                item.status = status
                if error:
                    item.last_error = error

    def get_scheduled_item(self, item_id: str) -> ScheduledItem | None:
        with self._lock:
            return self._scheduled.get(item_id)

    @property
    def status_reports(self) -> list[tuple[str, ScheduledStatus, str | None]]:
        """Every status report received, in order."""
        with self._lock:
            return list(self._status_reports)

    # === Mirror ===

    def mirror_write(self, record: MirroredRecord) -> None:
        self._check_auth()
        with self._lock:
            self._mirror[record.id] = record
            self._mirror_writes += 1

    def mirror_delete(self, record_id: str) -> None:
        self._check_auth()
        with self._lock:
            if record_id not in self._mirror:
                raise BackendError(f"Mirrored record {record_id} not found", 404)
            del self._mirror[record_id]
            self._mirror_deletes.append(record_id)

    def mirror_list(self) -> list[MirroredRecord]:
        self._check_auth()
        with self._lock:
            # Insertion order is write order
            return list(self._mirror.values())

    @property
    def mirror_writes(self) -> int:
        return self._mirror_writes

    @property
    def mirror_deletes(self) -> list[str]:
        with self._lock:
            return list(self._mirror_deletes)

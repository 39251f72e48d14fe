"""Backend and actuator capabilities consumed by the engine.

This module provides:
- Backend: the single backend collaborator shared by every channel
- Actuator: the opaque device control capability of a feature

Implementations must be safe for concurrent use: command channels, state
channels and the scheduled delivery rescan call them from different
threads.

Architecture:
    CommandChannel ─┐
    StatePushChannel ├─► Backend ─► (HTTP server, in-memory store, ...)
    ScheduledDelivery┤
    MirrorManager ──┘
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from syncbridge.sync.types import (
    Command,
    MirroredRecord,
    ScheduledItem,
    ScheduledStatus,
    StateSnapshot,
)


class Backend(Protocol):
    """Backend collaborator.

    Methods raise TransientNetworkError when the backend is unreachable and
    AuthenticationRequired when the session is not valid.
    """

    def is_authenticated(self) -> bool:
        """Check whether a session is available."""
        ...

    def fetch_pending_commands(self, namespace: str) -> list[Command]:
        """Get the commands waiting for this device, oldest first."""
        ...

    def acknowledge_command(self, namespace: str, command_id: str) -> None:
        """Mark a command processed so it is not delivered again."""
        ...

    def push_state(self, namespace: str, snapshot: StateSnapshot) -> None:
        """Publish the current state of a feature."""
        ...

    def fetch_scheduled_items(self, status: ScheduledStatus) -> list[ScheduledItem]:
        """Get scheduled items with the given status."""
        ...

    def update_scheduled_item_status(
        self,
        item_id: str,
        status: ScheduledStatus,
        error: str | None = None,
    ) -> None:
        """Report a scheduled item's new status."""
        ...

    def mirror_write(self, record: MirroredRecord) -> None:
        """Store a mirrored record."""
        ...

    def mirror_delete(self, record_id: str) -> None:
        """Delete a mirrored record."""
        ...

    def mirror_list(self) -> list[MirroredRecord]:
        """List mirrored records ordered by write time, oldest first."""
        ...


class Actuator(Protocol):
    """Device control capability.

    ``execute`` returns nothing on success and raises ActuatorError (or
    PermissionDenied) on failure.
    """

    def execute(self, action: str, args: Mapping[str, Any]) -> None:
        """Perform a device operation."""
        ...

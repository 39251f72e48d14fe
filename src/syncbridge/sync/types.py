"""Shared types and dataclasses for the synchronization engine.

This module provides:
- SyncError and its subclasses: the engine's error taxonomy
- Command: a remote command fetched from the backend
- StateSnapshot: a flat key/value view of one feature's local state
- ScheduledStatus, ScheduledItem: scheduled delivery records
- MirroredRecord: a mirrored event (e.g. a notification) stored remotely
- ChannelStats: counters for a command channel
- Type aliases for callbacks

All timestamps are epoch milliseconds. The ``from_dict``/``to_dict`` pairs
use the camelCase keys of the backend's JSON payloads.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Get the current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# Type alias for injectable clocks (returns epoch milliseconds)
Clock = Callable[[], int]


# =============================================================================
# Errors
# =============================================================================


class SyncError(Exception):
    """Base exception for synchronization errors."""


class TransientNetworkError(SyncError):
    """The backend could not be reached; retry on the next cycle."""


class AuthenticationRequired(SyncError):
    """No valid session; polling and pushing are suspended until it recovers."""


class BackendError(SyncError):
    """The backend rejected a request.

    Attributes:
        status_code: HTTP status code when the backend speaks HTTP.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ActuatorError(SyncError):
    """A device control operation failed."""


class PermissionDenied(ActuatorError):
    """The device refused the operation for lack of a permission.

    Surfaced to the remote peer as ``hasPermission: false`` in the next
    state snapshot rather than as an error.
    """


class InvalidTransitionError(SyncError):
    """Raised when attempting an invalid scheduled item state transition."""


# =============================================================================
# Commands
# =============================================================================

_COMMAND_KEYS = {"id", "action", "timestamp", "createdAt", "args", "targetDeviceScope"}


@dataclass(frozen=True)
class Command:
    """A command produced by the remote peer.

    Attributes:
        id: Backend identifier, used for acknowledgment and dedup.
        action: Handler name (e.g. "toggle", "set_volume").
        args: Action arguments.
        created_at: Creation time in epoch milliseconds.
        target_device_scope: Device or session the command is addressed to.
    """

    id: str
    action: str
    args: Mapping[str, Any] = field(default_factory=dict)
    created_at: int = 0
    target_device_scope: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        """Create from an API response dictionary.

        Extra top-level keys (the backend sends ``volume`` next to
        ``action``) are merged into ``args``.
        """
        args = dict(data.get("args") or {})
        for key, value in data.items():
            if key not in _COMMAND_KEYS and value is not None:
                args.setdefault(key, value)
        created_at = data.get("createdAt", data.get("timestamp", 0))
        return cls(
            id=str(data["id"]),
            action=str(data["action"]),
            args=args,
            created_at=int(created_at or 0),
            target_device_scope=data.get("targetDeviceScope"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to an API payload."""
        data: dict[str, Any] = {
            "id": self.id,
            "action": self.action,
            "args": dict(self.args),
            "timestamp": self.created_at,
        }
        if self.target_device_scope is not None:
            data["targetDeviceScope"] = self.target_device_scope
        return data


# Handler signature for the command channel
CommandHandler = Callable[[Mapping[str, Any]], None]


@dataclass
class ChannelStats:
    """Counters for a command channel."""

    polls: int = 0
    fetched: int = 0
    executed: int = 0
    stale: int = 0
    unknown: int = 0
    duplicates: int = 0
    handler_failures: int = 0
    acknowledged: int = 0
    errors: int = 0


# =============================================================================
# State snapshots
# =============================================================================


@dataclass(frozen=True)
class StateSnapshot:
    """Observable local state of one feature.

    Snapshots are compared field by field to decide whether a push is
    warranted. They are built fresh for every evaluation.

    Attributes:
        namespace: Feature the snapshot belongs to.
        fields: Flat key/value record.
    """

    namespace: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Get a field value."""
        return self.fields.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Convert to an API payload (a copy of the fields)."""
        return dict(self.fields)

    @classmethod
    def from_dict(cls, namespace: str, data: Mapping[str, Any]) -> StateSnapshot:
        """Create from a payload dictionary."""
        return cls(namespace=namespace, fields=dict(data))


SnapshotProvider = Callable[[], StateSnapshot]


# =============================================================================
# Scheduled delivery
# =============================================================================


class ScheduledStatus(str, Enum):
    """Status of a scheduled item (values match the backend)."""

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ScheduledItem:
    """A delivery request to execute at a given time.

    Attributes:
        id: Backend identifier.
        payload: Data handed to the actuator (recipient, message, sim slot...).
        execute_at: When to execute, in epoch milliseconds.
        created_at: When the request was created, in epoch milliseconds.
        status: Current status (only the delivery subsystem writes it).
        retry_count: Number of failed attempts so far.
        last_error: Message of the last failure.
    """

    id: str
    payload: dict[str, Any]
    execute_at: int
    created_at: int = field(default_factory=now_ms)
    status: ScheduledStatus = ScheduledStatus.PENDING
    retry_count: int = 0
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        """Check if the item reached a terminal state."""
        return self.status in (
            ScheduledStatus.SENT,
            ScheduledStatus.FAILED,
            ScheduledStatus.CANCELLED,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduledItem:
        """Create from an API response dictionary.

        Accepts both the generic layout (``payload``/``executeAt``) and the
        scheduled-message layout (``recipientNumber``/``message``/
        ``scheduledTime``).
        """
        if "payload" in data:
            payload = dict(data["payload"])
        else:
            payload = {
                key: value
                for key, value in data.items()
                if key
                not in (
                    "id",
                    "scheduledTime",
                    "executeAt",
                    "createdAt",
                    "status",
                    "retryCount",
                    "lastError",
                    "errorMessage",
                )
            }
        return cls(
            id=str(data["id"]),
            payload=payload,
            execute_at=int(data.get("executeAt", data.get("scheduledTime", 0))),
            created_at=int(data.get("createdAt", 0)),
            status=ScheduledStatus(data.get("status", "pending")),
            retry_count=int(data.get("retryCount", 0)),
            last_error=data.get("lastError", data.get("errorMessage")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to an API payload."""
        return {
            "id": self.id,
            "payload": dict(self.payload),
            "executeAt": self.execute_at,
            "createdAt": self.created_at,
            "status": self.status.value,
            "retryCount": self.retry_count,
            "lastError": self.last_error,
        }


# =============================================================================
# Mirroring
# =============================================================================


@dataclass(frozen=True)
class MirroredRecord:
    """An event mirrored to the backend for display on the other endpoint.

    Attributes:
        id: Record identifier on the backend.
        source_key: Fingerprint used for deduplication.
        payload: Record content.
        first_seen_at: When the producer first saw the event (epoch ms).
    """

    id: str
    source_key: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    first_seen_at: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MirroredRecord:
        """Create from an API response dictionary."""
        return cls(
            id=str(data["id"]),
            source_key=str(data.get("sourceKey", "")),
            payload=dict(data.get("payload") or {}),
            first_seen_at=int(data.get("firstSeenAt", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to an API payload."""
        return {
            "id": self.id,
            "sourceKey": self.source_key,
            "payload": dict(self.payload),
            "firstSeenAt": self.first_seen_at,
        }


# =============================================================================
# Progress
# =============================================================================

# Progress observer signature: (done, total, message)
ProgressCallback = Callable[[int, int, str], None]

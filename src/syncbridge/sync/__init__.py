"""Command/state synchronization engine.

Architecture:
    Backend ─► CommandChannel ─► handlers ─► Actuator
    local change ─► StatePushChannel ─► Backend
    Timers ─► ScheduledDelivery ─► Actuator ─► status report
    event stream ─► MirrorManager ─► Backend

Components:
- **Staleness filter**: drops commands older than the staleness window
- **CommandChannel**: polls, executes and acknowledges commands of one feature
- **StatePushChannel**: debounced, change-aware state publisher
- **ScheduledDelivery**: executes scheduled items with retry/backoff
- **DedupCache / MirrorManager**: bounded, deduplicated mirrored streams
- **SyncEngine**: facade wiring the above for every registered feature

All public symbols are re-exported here.
"""

from syncbridge.sync.commands import (
    DEFAULT_COMMAND_POLL_INTERVAL,
    ChannelState,
    CommandChannel,
    CommandJournal,
)
from syncbridge.sync.dedup import (
    DEFAULT_DEDUP_CAPACITY,
    DedupCache,
    EvictionPolicy,
    fingerprint,
)
from syncbridge.sync.engine import SCHEDULED_NAMESPACE, Feature, SyncEngine
from syncbridge.sync.mirror import DEFAULT_MIRROR_CAPACITY, MirrorManager
from syncbridge.sync.progress import (
    BulkResult,
    DiagnosticsStore,
    ProgressReporter,
    SyncDiagnostics,
    run_bulk,
)
from syncbridge.sync.push_listener import CommandWakeListener
from syncbridge.sync.retry import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    BackoffPolicy,
    ExponentialBackoff,
    FixedBackoff,
)
from syncbridge.sync.scheduled import DEFAULT_RESCAN_INTERVAL, ScheduledDelivery
from syncbridge.sync.staleness import DEFAULT_STALENESS_WINDOW_MS, is_actionable
from syncbridge.sync.state_push import (
    DEFAULT_DEBOUNCE_WINDOW,
    DEFAULT_STATE_POLL_INTERVAL,
    StatePushChannel,
)
from syncbridge.sync.timers import APSchedulerTimers, TimerHandle, TimerService
from syncbridge.sync.types import (
    ActuatorError,
    AuthenticationRequired,
    BackendError,
    ChannelStats,
    Command,
    InvalidTransitionError,
    MirroredRecord,
    PermissionDenied,
    ProgressCallback,
    ScheduledItem,
    ScheduledStatus,
    StateSnapshot,
    SyncError,
    TransientNetworkError,
    now_ms,
)

__all__ = [
    # Commands
    "DEFAULT_COMMAND_POLL_INTERVAL",
    "ChannelState",
    "CommandChannel",
    "CommandJournal",
    # Dedup and mirroring
    "DEFAULT_DEDUP_CAPACITY",
    "DEFAULT_MIRROR_CAPACITY",
    "DedupCache",
    "EvictionPolicy",
    "MirrorManager",
    "fingerprint",
    # Engine
    "SCHEDULED_NAMESPACE",
    "Feature",
    "SyncEngine",
    # Progress
    "BulkResult",
    "DiagnosticsStore",
    "ProgressReporter",
    "SyncDiagnostics",
    "run_bulk",
    # Push listener
    "CommandWakeListener",
    # Retry
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_DELAY",
    "BackoffPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    # Scheduled delivery
    "DEFAULT_RESCAN_INTERVAL",
    "ScheduledDelivery",
    # Staleness
    "DEFAULT_STALENESS_WINDOW_MS",
    "is_actionable",
    # State push
    "DEFAULT_DEBOUNCE_WINDOW",
    "DEFAULT_STATE_POLL_INTERVAL",
    "StatePushChannel",
    # Timers
    "APSchedulerTimers",
    "TimerHandle",
    "TimerService",
    # Types
    "ActuatorError",
    "AuthenticationRequired",
    "BackendError",
    "ChannelStats",
    "Command",
    "InvalidTransitionError",
    "MirroredRecord",
    "PermissionDenied",
    "ProgressCallback",
    "ScheduledItem",
    "ScheduledStatus",
    "StateSnapshot",
    "SyncError",
    "TransientNetworkError",
    "now_ms",
]

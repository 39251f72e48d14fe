"""Scheduled item state machine.

States:
    PENDING -> SENDING -> SENT
                       -> PENDING    (retryable failure, re-armed)
                       -> FAILED     (retry budget exhausted)
                       -> CANCELLED  (before the actuator call is committed)
    PENDING -> CANCELLED

All state transitions are validated.
"""

from __future__ import annotations

from syncbridge.sync.types import (
    InvalidTransitionError,
    ScheduledItem,
    ScheduledStatus,
)

# Valid state transitions
VALID_TRANSITIONS: dict[ScheduledStatus, set[ScheduledStatus]] = {
    ScheduledStatus.PENDING: {ScheduledStatus.SENDING, ScheduledStatus.CANCELLED},
    ScheduledStatus.SENDING: {
        ScheduledStatus.SENT,
        ScheduledStatus.PENDING,
        ScheduledStatus.FAILED,
        ScheduledStatus.CANCELLED,
    },
    ScheduledStatus.SENT: set(),  # Terminal
    ScheduledStatus.FAILED: set(),  # Terminal
    ScheduledStatus.CANCELLED: set(),  # Terminal
}


def transition(item: ScheduledItem, new_status: ScheduledStatus) -> None:
    """Move an item to a new status with validation.

    Raises:
        InvalidTransitionError: If the transition is not allowed.
    """
    if new_status not in VALID_TRANSITIONS[item.status]:
        raise InvalidTransitionError(
            f"Cannot transition {item.id} from {item.status.name} to {new_status.name}"
        )
    item.status = new_status


def can_transition(item: ScheduledItem, new_status: ScheduledStatus) -> bool:
    """Check whether a transition is allowed."""
    return new_status in VALID_TRANSITIONS[item.status]


def record_failure(item: ScheduledItem, error: str, max_retries: int) -> bool:
    """Record a failed attempt on a SENDING item.

    Increments ``retry_count``, keeps the error and moves the item back to
    PENDING while retries remain, or to FAILED once they are exhausted.

    Args:
        item: The item that failed (must be SENDING).
        error: Failure message.
        max_retries: Retry budget.

    Returns:
        True if the item will be retried.
    """
    item.retry_count += 1
    item.last_error = error
    if item.retry_count < max_retries:
        transition(item, ScheduledStatus.PENDING)
        return True
    transition(item, ScheduledStatus.FAILED)
    return False

"""Domain modules for engine business rules.

This package centralizes business logic without external dependencies:
- scheduled: scheduled item state machine and retry accounting

Implementation details (timers, backend calls) stay in the sync package.
"""

from syncbridge.sync.domain.scheduled import (
    VALID_TRANSITIONS,
    can_transition,
    record_failure,
    transition,
)

__all__ = [
    "VALID_TRANSITIONS",
    "can_transition",
    "record_failure",
    "transition",
]

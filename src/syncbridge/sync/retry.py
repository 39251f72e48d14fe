"""Backoff policies for scheduled delivery retries.

This module provides:
- BackoffPolicy: protocol returning the delay before a given retry
- FixedBackoff: the same delay for every retry (default, 5 minutes)
- ExponentialBackoff: growing delay, capped

Both are bounded and never return a smaller delay for a later attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 300.0  # seconds
DEFAULT_INITIAL_BACKOFF = 30.0  # seconds
DEFAULT_MAX_BACKOFF = 1800.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


class BackoffPolicy(Protocol):
    """Delay before re-arming a failed item."""

    def delay(self, retry_count: int) -> float:
        """Get the delay in seconds before attempt ``retry_count + 1``.

        Args:
            retry_count: Number of failures so far (>= 1).
        """
        ...


@dataclass(frozen=True)
class FixedBackoff:
    """Same delay for every retry."""

    seconds: float = DEFAULT_RETRY_DELAY

    def delay(self, retry_count: int) -> float:
        return self.seconds


@dataclass(frozen=True)
class ExponentialBackoff:
    """Delay multiplied after each failure, capped at ``maximum``."""

    initial: float = DEFAULT_INITIAL_BACKOFF
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    maximum: float = DEFAULT_MAX_BACKOFF

    def delay(self, retry_count: int) -> float:
        exponent = max(retry_count - 1, 0)
        return min(self.initial * (self.multiplier**exponent), self.maximum)

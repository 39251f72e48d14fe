"""Bounded deduplication cache for mirrored event streams.

This module provides:
- EvictionPolicy: what to do when the cache overflows
- DedupCache: thread-safe bounded set of recently seen keys
- fingerprint: stable source key for a mirrored event

The cache only suppresses repeats within a session; it is not persisted.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_CAPACITY = 100

# Number of content characters that take part in the fingerprint
FINGERPRINT_TEXT_PREFIX = 50


class EvictionPolicy(str, Enum):
    """Overflow behaviour of the dedup cache.

    FIFO drops the single oldest key. CLEAR empties the whole cache, which
    is cruder but matches the legacy notification mirror.
    """

    FIFO = "fifo"
    CLEAR = "clear"


def fingerprint(
    origin: str,
    identity: str | int,
    title: str | None,
    text: str | None,
) -> str:
    """Build the dedup key of a mirrored event.

    Args:
        origin: Producer of the event (e.g. the app package name).
        identity: Producer-side id of the event.
        title: Event title.
        text: Event body; only its first characters are used.

    Returns:
        Key of the form ``origin:identity:title:text-prefix``.
    """
    prefix = (text or "")[:FINGERPRINT_TEXT_PREFIX]
    return f"{origin}:{identity}:{title or ''}:{prefix}"


class DedupCache:
    """Thread-safe bounded set of recently seen keys.

    Keys are kept in insertion order so the oldest one can be evicted.

    Usage:
        cache = DedupCache(capacity=100)
        if cache.check_and_add(key):
            ...  # first time we see this key
    """

    def __init__(
        self,
        capacity: int = DEFAULT_DEDUP_CAPACITY,
        policy: EvictionPolicy = EvictionPolicy.FIFO,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._policy = EvictionPolicy(policy)
        self._keys: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """Maximum number of keys kept."""
        return self._capacity

    @property
    def policy(self) -> EvictionPolicy:
        """Overflow policy."""
        return self._policy

    def check_and_add(self, key: str) -> bool:
        """Insert a key unless it is already present.

        Args:
            key: The key to check.

        Returns:
            True if the key was new (and is now cached), False if it is a
            repeat.
        """
        with self._lock:
            if key in self._keys:
                return False
            self._keys[key] = None
            if len(self._keys) > self._capacity:
                self._evict()
            return True

    def _evict(self) -> None:
        """Shrink the cache back to capacity (lock held)."""
        if self._policy == EvictionPolicy.CLEAR:
            logger.debug("Dedup cache full (%d), clearing", len(self._keys))
            self._keys.clear()
            return
        while len(self._keys) > self._capacity:
            self._keys.popitem(last=False)

    def discard(self, key: str) -> None:
        """Forget a key so the next occurrence is accepted again."""
        with self._lock:
            self._keys.pop(key, None)

    def clear(self) -> None:
        """Forget every key."""
        with self._lock:
            self._keys.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

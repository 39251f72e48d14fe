"""Mirror capacity manager.

This module provides:
- MirrorManager: writes mirrored events (notifications, calls...) to the
  backend once per source key and keeps the remote collection bounded

Insert-then-evict and explicit removals run under one lock, and every id
the manager deleted is remembered, so a record is never deleted twice when
a removal signal races with a capacity eviction.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from syncbridge.sync.dedup import DedupCache
from syncbridge.sync.types import Clock, MirroredRecord, SyncError, now_ms

if TYPE_CHECKING:
    from syncbridge.client.backend import Backend

logger = logging.getLogger(__name__)

DEFAULT_MIRROR_CAPACITY = 20

# Deleted record ids remembered for the double-delete guard
DELETED_IDS_CAPACITY = 1000


def _new_record_id() -> str:
    return uuid.uuid4().hex


class MirrorManager:
    """Bounded, deduplicated mirror of a local event stream.

    Usage:
        mirror = MirrorManager(backend, capacity=20)
        key = fingerprint(pkg, notification_id, title, text)
        mirror.mirror(notification_id, payload, key)

        # when the event disappears locally:
        mirror.remove(notification_id)
    """

    def __init__(
        self,
        backend: Backend,
        capacity: int = DEFAULT_MIRROR_CAPACITY,
        dedup: DedupCache | None = None,
        clock: Clock = now_ms,
        id_factory: Callable[[], str] = _new_record_id,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._backend = backend
        self._capacity = capacity
        self._dedup = dedup or DedupCache()
        self._clock = clock
        self._id_factory = id_factory

        self._lock = threading.RLock()
        # Producer identity -> record id, and back
        self._record_ids: dict[str, str] = {}
        self._identities: dict[str, str] = {}
        self._deleted = DedupCache(capacity=DELETED_IDS_CAPACITY)

    @property
    def capacity(self) -> int:
        """Maximum number of records kept remotely."""
        return self._capacity

    @property
    def dedup(self) -> DedupCache:
        """Dedup cache of source keys."""
        return self._dedup

    def should_mirror(self, source_key: str) -> bool:
        """Check whether an event with this key would be written."""
        return source_key not in self._dedup

    def mirror(
        self,
        identity: str | int,
        payload: Mapping[str, Any],
        source_key: str,
    ) -> MirroredRecord | None:
        """Write an event to the backend unless its key was seen already.

        Args:
            identity: Producer-side id, used by remove().
            payload: Record content.
            source_key: Dedup fingerprint.

        Returns:
            The written record, or None if it was a duplicate or the write
            failed.
        """
        if not self._dedup.check_and_add(source_key):
            logger.debug("Skipping duplicate mirror event %s", source_key)
            return None

        record = MirroredRecord(
            id=self._id_factory(),
            source_key=source_key,
            payload=dict(payload),
            first_seen_at=self._clock(),
        )

        with self._lock:
            try:
                self._backend.mirror_write(record)
            except SyncError as e:
                logger.warning("Failed to mirror %s: %s", source_key, e)
                # Let the producer retry the same event
                self._dedup.discard(source_key)
                return None

            key = str(identity)
            previous = self._record_ids.get(key)
            if previous is not None:
                self._identities.pop(previous, None)
            self._record_ids[key] = record.id
            self._identities[record.id] = key
            logger.debug("Mirrored %s as %s", source_key, record.id)

            self.after_mirror()
        return record

    def after_mirror(self) -> int:
        """Evict the oldest remote records above capacity.

        Returns:
            Number of records evicted.
        """
        with self._lock:
            try:
                records = self._backend.mirror_list()
            except SyncError as e:
                logger.warning("Failed to list mirrored records: %s", e)
                return 0

            records = [r for r in records if r.id not in self._deleted]
            excess = len(records) - self._capacity
            if excess <= 0:
                return 0

            evicted = 0
            for record in records[:excess]:
                if self._delete(record.id):
                    evicted += 1
            if evicted:
                logger.info("Evicted %d mirrored records over capacity", evicted)
            return evicted

    def remove(self, identity: str | int) -> bool:
        """Delete the record of an event that disappeared locally.

        Returns:
            True if a record was deleted.
        """
        with self._lock:
            record_id = self._record_ids.get(str(identity))
            if record_id is None:
                logger.debug("No mirrored record for %s", identity)
                return False
            return self._delete(record_id)

    def _delete(self, record_id: str) -> bool:
        """Delete a record once (lock held)."""
        if record_id in self._deleted:
            return False
        try:
            self._backend.mirror_delete(record_id)
        except SyncError as e:
            logger.warning("Failed to delete mirrored record %s: %s", record_id, e)
            return False

        self._deleted.check_and_add(record_id)
        identity = self._identities.pop(record_id, None)
        if identity is not None:
            self._record_ids.pop(identity, None)
        return True

"""Local state for the synchronization engine.

This module provides:
- LocalState: SQLite-backed key/value store and command journal

Architecture:
    The command journal records the ids of commands whose handler already
    ran. When a command is re-delivered (the process died between running
    the handler and acknowledging it), the channel acknowledges it without
    running the handler again. This is what makes non-idempotent actions
    such as "toggle" safe under at-least-once delivery.

    The key/value table backs the bulk sync diagnostics.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path

logger = logging.getLogger(__name__)

# Number of journal entries kept per namespace
DEFAULT_JOURNAL_SIZE = 500


class LocalState:
    """SQLite-based local state.

    Pass ``":memory:"`` as the path for a throwaway store.
    """

    def __init__(
        self,
        db_path: Path | str,
        journal_size: int = DEFAULT_JOURNAL_SIZE,
    ) -> None:
        """Open (or create) the state database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            journal_size: Maximum journal entries kept per namespace.
        """
        self._journal_size = journal_size

        if str(db_path) != ":memory:":
            db_path = Path(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row

        if str(db_path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create the journal and engine state tables."""
        self._conn.executescript("""
            -- Commands whose handler already ran
            CREATE TABLE IF NOT EXISTS command_journal (
                namespace TEXT NOT NULL,
                command_id TEXT NOT NULL,
                executed_at REAL NOT NULL,
                PRIMARY KEY (namespace, command_id)
            );

            -- Key-value engine state
            CREATE TABLE IF NOT EXISTS engine_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the connection; the store is unusable afterwards."""
        with self._lock:
            self._conn.close()

    # === Command journal ===

    def was_executed(self, namespace: str, command_id: str) -> bool:
        """Check whether a command's handler already ran."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT 1 FROM command_journal WHERE namespace = ? AND command_id = ?",
                (namespace, command_id),
            )
            return cursor.fetchone() is not None

    def record_executed(self, namespace: str, command_id: str) -> None:
        """Record that a command's handler ran, pruning the oldest entries."""
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO command_journal (namespace, command_id, executed_at)
                VALUES (?, ?, ?)
                """,
                (namespace, command_id, time.time()),
            )
            self._conn.execute(
                """
                DELETE FROM command_journal
                WHERE namespace = ? AND command_id NOT IN (
                    SELECT command_id FROM command_journal
                    WHERE namespace = ?
                    ORDER BY executed_at DESC, rowid DESC
                    LIMIT ?
                )
                """,
                (namespace, namespace, self._journal_size),
            )

    def journal_size(self, namespace: str) -> int:
        """Get the number of journal entries for a namespace."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT COUNT(*) FROM command_journal WHERE namespace = ?",
                (namespace,),
            )
            return int(cursor.fetchone()[0])

    # === Engine state ===

    def get_state(self, key: str) -> str | None:
        """Read a stored engine value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM engine_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return None if row is None else row["value"]

    def set_state(self, key: str, value: str | None) -> None:
        """Store an engine value (None deletes it)."""
        with self._lock:
            if value is None:
                self._conn.execute("DELETE FROM engine_state WHERE key = ?", (key,))
            else:
                self._conn.execute(
                    "INSERT OR REPLACE INTO engine_state (key, value) VALUES (?, ?)",
                    (key, value),
                )

"""Durable client-side storage: offline queue, device id and cached state."""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CLIENT_SCHEMA = """
-- Mutations not yet acknowledged by the server, in creation order
CREATE TABLE IF NOT EXISTS queue (
    local_seq INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

-- Small key/value settings (device id, cached snapshot)
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

DEVICE_ID_KEY = "device_id"
CACHED_STATE_KEY = "cached_state"


@dataclass
class QueuedEvent:
    """A mutation waiting in the offline queue."""

    local_seq: int
    type: str
    payload: dict[str, Any]
    created_at: str

    def to_wire(self, client_id: str) -> dict[str, Any]:
        """Render as an element of a ``POST /events`` batch."""
        return {
            "type": self.type,
            "payload": self.payload,
            "clientId": client_id,
            "localSeq": self.local_seq,
        }


class LocalStore:
    """SQLite file that survives restarts of the client.

    ``local_seq`` comes from an ``AUTOINCREMENT`` key, so it keeps growing
    across restarts and is never reused after entries are removed.
    """

    def __init__(self, db_path: str | Path):
        self._in_memory = str(db_path) == ":memory:"
        self.db_path = Path(db_path).expanduser() if not self._in_memory else Path(":memory:")
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if not self._in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(CLIENT_SCHEMA)
        self._conn.commit()

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    # ==================== Queue ====================

    def enqueue(self, event_type: str, payload: dict[str, Any]) -> QueuedEvent:
        conn = self._ensure_connected()
        created_at = datetime.now().isoformat()
        with conn:
            cursor = conn.execute(
                "INSERT INTO queue (type, payload, created_at) VALUES (?, ?, ?)",
                (event_type, json.dumps(payload), created_at),
            )
        logger.debug(f"Queued {event_type} as local_seq={cursor.lastrowid}")
        return QueuedEvent(
            local_seq=cursor.lastrowid,
            type=event_type,
            payload=payload,
            created_at=created_at,
        )

    def pending(self) -> list[QueuedEvent]:
        """Queued mutations in creation order."""
        conn = self._ensure_connected()
        rows = conn.execute(
            "SELECT local_seq, type, payload, created_at FROM queue ORDER BY local_seq"
        ).fetchall()
        return [
            QueuedEvent(
                local_seq=row["local_seq"],
                type=row["type"],
                payload=json.loads(row["payload"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def pending_count(self) -> int:
        conn = self._ensure_connected()
        return conn.execute("SELECT COUNT(*) FROM queue").fetchone()[0]

    def remove(self, local_seqs: list[int]) -> int:
        """Drop acknowledged entries from the queue.

        Returns:
            Number of entries removed.
        """
        if not local_seqs:
            return 0
        conn = self._ensure_connected()
        placeholders = ",".join("?" * len(local_seqs))
        with conn:
            cursor = conn.execute(
                f"DELETE FROM queue WHERE local_seq IN ({placeholders})",
                local_seqs,
            )
        return cursor.rowcount

    def clear(self) -> int:
        conn = self._ensure_connected()
        with conn:
            cursor = conn.execute("DELETE FROM queue")
        return cursor.rowcount

    # ==================== Settings ====================

    def _get(self, key: str) -> str | None:
        conn = self._ensure_connected()
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def _set(self, key: str, value: str) -> None:
        conn = self._ensure_connected()
        with conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def device_id(self) -> str:
        """Stable id of this device, generated on first use."""
        existing = self._get(DEVICE_ID_KEY)
        if existing:
            return existing
        device_id = str(uuid.uuid4())
        self._set(DEVICE_ID_KEY, device_id)
        logger.info(f"Generated device id {device_id}")
        return device_id

    def cache_state(self, state: dict[str, Any]) -> None:
        self._set(CACHED_STATE_KEY, json.dumps(state))

    def cached_state(self) -> dict[str, Any] | None:
        raw = self._get(CACHED_STATE_KEY)
        return json.loads(raw) if raw else None

"""Append-only event log backed by SQLite.

The log is the single source of truth. Sequence numbers come from an
``AUTOINCREMENT`` key so they are never reused, and every append commits
before it returns.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from ..errors import DurabilityError
from .types import Event

logger = logging.getLogger(__name__)

EVENTS_SCHEMA = """
-- Event log: append-only, sequence assigned by the database
CREATE TABLE IF NOT EXISTS events (
    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    payload TEXT NOT NULL,
    origin_device TEXT,
    local_seq INTEGER,
    appended_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_type ON events(type);
CREATE INDEX IF NOT EXISTS idx_events_origin ON events(origin_device, local_seq);
"""


class EventLog:
    """Durable, append-only sequence of typed mutation records."""

    def __init__(self, db_path: str | Path):
        """Initialize the event log.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self._in_memory = str(db_path) == ":memory:"
        self.db_path = Path(db_path).expanduser() if not self._in_memory else Path(":memory:")
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if not self._in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if not self._in_memory:
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = FULL")
        self._conn.executescript(EVENTS_SCHEMA)
        self._conn.commit()

        logger.info(
            f"EventLog connected to {self.db_path}, "
            f"latest_sequence={self.latest_sequence()}"
        )

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            sequence=row["sequence"],
            type=row["type"],
            payload=json.loads(row["payload"]),
            appended_at=datetime.fromisoformat(row["appended_at"]),
            origin_device=row["origin_device"],
            local_seq=row["local_seq"],
        )

    def append(
        self,
        event_type: str,
        payload: dict[str, Any],
        origin_device: str | None = None,
        local_seq: int | None = None,
    ) -> Event:
        """Append a single event and commit it.

        Raises:
            DurabilityError: If the record could not be persisted.
        """
        return self.append_batch([(event_type, payload, origin_device, local_seq)])[0]

    def append_batch(
        self,
        items: Iterable[tuple[str, dict[str, Any], str | None, int | None]],
    ) -> list[Event]:
        """Append several events in one transaction.

        Either every event is committed, in order, or none is.

        Args:
            items: ``(type, payload, origin_device, local_seq)`` tuples.

        Returns:
            The appended events with their assigned sequence numbers.

        Raises:
            DurabilityError: If the batch could not be persisted.
        """
        conn = self._ensure_connected()
        appended: list[Event] = []

        try:
            with conn:
                for event_type, payload, origin_device, local_seq in items:
                    appended_at = datetime.now(timezone.utc)
                    cursor = conn.execute(
                        """
                        INSERT INTO events (
                            type, payload, origin_device, local_seq, appended_at
                        ) VALUES (?, ?, ?, ?, ?)
                        """,
                        (
                            event_type,
                            json.dumps(payload),
                            origin_device,
                            local_seq,
                            appended_at.isoformat(),
                        ),
                    )
                    appended.append(
                        Event(
                            sequence=cursor.lastrowid,
                            type=event_type,
                            payload=payload,
                            appended_at=appended_at,
                            origin_device=origin_device,
                            local_seq=local_seq,
                        )
                    )
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Failed to append {len(appended) + 1} event(s): {e}")
            raise DurabilityError(f"Event log append failed: {e}") from e

        if appended:
            logger.debug(
                f"Appended {len(appended)} event(s), "
                f"sequence {appended[0].sequence}..{appended[-1].sequence}"
            )
        return appended

    def read(self, since: int | None = None) -> list[Event]:
        """Return events with sequence greater than ``since``, oldest first.

        Args:
            since: Exclusive lower bound. If None, returns the full history.
        """
        conn = self._ensure_connected()

        cursor = conn.execute(
            """
            SELECT sequence, type, payload, origin_device, local_seq, appended_at
            FROM events
            WHERE sequence > ?
            ORDER BY sequence ASC
            """,
            (since if since is not None else 0,),
        )
        return [self._row_to_event(row) for row in cursor]

    def find_duplicate(self, origin_device: str, local_seq: int) -> Event | None:
        """Find an event previously appended with the same idempotency key."""
        conn = self._ensure_connected()

        row = conn.execute(
            """
            SELECT sequence, type, payload, origin_device, local_seq, appended_at
            FROM events
            WHERE origin_device = ? AND local_seq = ?
            ORDER BY sequence ASC
            LIMIT 1
            """,
            (origin_device, local_seq),
        ).fetchone()
        return self._row_to_event(row) if row else None

    def latest_sequence(self) -> int:
        """Get the highest sequence number, or 0 if the log is empty."""
        conn = self._ensure_connected()

        row = conn.execute("SELECT MAX(sequence) FROM events").fetchone()
        return row[0] if row[0] is not None else 0

    def get_stats(self) -> dict[str, Any]:
        """Get log statistics."""
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"latest_sequence": self.latest_sequence()}

        cursor = conn.execute("SELECT COUNT(*) FROM events")
        stats["total_events"] = cursor.fetchone()[0]

        cursor = conn.execute("SELECT type, COUNT(*) FROM events GROUP BY type")
        stats["events_by_type"] = {row[0]: row[1] for row in cursor}

        cursor = conn.execute("SELECT COUNT(DISTINCT origin_device) FROM events")
        stats["devices"] = cursor.fetchone()[0]

        if not self._in_memory and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats

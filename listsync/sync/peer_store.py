"""Peer-side event store assigning the total order (seq) to replicated events.

Submissions are idempotent by event id: resubmitting a batch returns the
already-assigned sequence numbers instead of storing the events again.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import StorageError
from ..events import Event, event_from_dict

logger = logging.getLogger(__name__)

# Schema for the peer event table: seq is the reconciliation order
PEER_SCHEMA = """
CREATE TABLE IF NOT EXISTS peer_events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    item_id TEXT NOT NULL,
    type TEXT NOT NULL,
    field TEXT,
    value TEXT,
    timestamp INTEGER NOT NULL,
    author_id TEXT NOT NULL,
    received_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_peer_events_item ON peer_events(item_id);
CREATE INDEX IF NOT EXISTS idx_peer_events_author ON peer_events(author_id);
"""

_COLUMNS = "seq, id, item_id, type, field, value, timestamp, author_id"


class PeerStore:
    """SQLite-backed sequenced event store for the reconciliation peer."""

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(PEER_SCHEMA)
        self._conn.commit()

        logger.info(f"PeerStore connected to {self.db_path}")

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return event_from_dict(
            {
                "id": row["id"],
                "item_id": row["item_id"],
                "type": row["type"],
                "field": row["field"],
                "value": json.loads(row["value"]) if row["value"] is not None else None,
                "timestamp": row["timestamp"],
                "author_id": row["author_id"],
                "seq": row["seq"],
            }
        )

    def submit(self, events: list[Event]) -> list[Event]:
        """Store events, ignoring ids already present.

        Args:
            events: Events from a replica (their own seq is ignored).

        Returns:
            Every submitted event as stored, with its seq, ascending by seq.
        """
        if not events:
            return []

        conn = self._ensure_connected()
        received_at = datetime.now().isoformat()

        try:
            with conn:
                cursor = conn.executemany(
                    """
                    INSERT OR IGNORE INTO peer_events (
                        id, item_id, type, field, value, timestamp, author_id, received_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            e.id,
                            e.item_id,
                            e.type.value,
                            getattr(e, "field", None),
                            json.dumps(getattr(e, "value", None)),
                            e.timestamp,
                            e.author_id,
                            received_at,
                        )
                        for e in events
                    ],
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store submitted events: {e}") from e

        logger.debug(f"Stored {cursor.rowcount} of {len(events)} submitted events")

        ids = [e.id for e in events]
        placeholders = ",".join("?" * len(ids))
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM peer_events WHERE id IN ({placeholders}) ORDER BY seq ASC",
            ids,
        )
        return [self._row_to_event(row) for row in rows]

    def fetch(self, since_seq: int, limit: int = 500) -> list[Event]:
        """Get events with seq greater than since_seq, oldest first."""
        conn = self._ensure_connected()
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM peer_events WHERE seq > ? ORDER BY seq ASC LIMIT ?",
            (since_seq, limit),
        )
        return [self._row_to_event(row) for row in rows]

    def all_events(self) -> list[Event]:
        conn = self._ensure_connected()
        rows = conn.execute(f"SELECT {_COLUMNS} FROM peer_events ORDER BY seq ASC")
        return [self._row_to_event(row) for row in rows]

    def clear(self) -> int:
        """Delete every stored event. Returns the number removed."""
        conn = self._ensure_connected()
        with conn:
            cursor = conn.execute("DELETE FROM peer_events")
        logger.info(f"Cleared {cursor.rowcount} peer events")
        return cursor.rowcount

    def get_stats(self) -> dict[str, Any]:
        """Return store statistics."""
        conn = self._ensure_connected()

        stats: dict[str, Any] = {}
        stats["total_events"] = conn.execute("SELECT COUNT(*) FROM peer_events").fetchone()[0]
        stats["max_seq"] = conn.execute("SELECT MAX(seq) FROM peer_events").fetchone()[0] or 0
        stats["items"] = conn.execute(
            "SELECT COUNT(DISTINCT item_id) FROM peer_events"
        ).fetchone()[0]
        stats["events_by_author"] = {
            row[0]: row[1]
            for row in conn.execute(
                "SELECT author_id, COUNT(*) FROM peer_events GROUP BY author_id"
            )
        }
        return stats

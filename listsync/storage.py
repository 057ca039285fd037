"""Local key/blob persistence for a replica.

Each key holds one serialized blob; a write replaces the whole value in a
single transaction so readers never observe a partial write.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)

BLOB_SCHEMA = """
CREATE TABLE IF NOT EXISTS replica_blobs (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class BlobStore(ABC):
    """Abstract all-or-nothing key/blob store."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the blob stored under key, or None."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Atomically replace the blob stored under key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""

    def close(self) -> None:
        """Release any underlying resources."""


class SQLiteBlobStore(BlobStore):
    """BlobStore backed by a single SQLite table."""

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database and create the schema."""
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.executescript(BLOB_SCHEMA)
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open replica storage at {self.db_path}: {e}") from e

        logger.info(f"SQLiteBlobStore connected to {self.db_path}")

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: str) -> str | None:
        conn = self._ensure_connected()
        try:
            row = conn.execute(
                "SELECT value FROM replica_blobs WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        conn = self._ensure_connected()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO replica_blobs (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e

    def delete(self, key: str) -> None:
        conn = self._ensure_connected()
        try:
            with conn:
                conn.execute("DELETE FROM replica_blobs WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e

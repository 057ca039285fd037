"""Append-only, id-deduplicated log of mutation events.

The whole log is persisted as one JSON blob, so every write is all-or-nothing.
Events are never edited after creation except to record the peer-assigned
sequence number once.
"""

import json
import logging
from typing import Any, Iterable

from .context import EVENTS_KEY, ReplicaContext
from .errors import InvalidEventError, StorageError
from .events import Event, event_from_dict

logger = logging.getLogger(__name__)


class EventLog:
    """Event Log Store for one replica.

    A single writer per replica is assumed; callers embedding the log in a
    multi-threaded host must serialize appends themselves.
    """

    def __init__(self, context: ReplicaContext):
        """Initialize the log from storage.

        A corrupt stored log is treated as empty here (and only here).

        Args:
            context: Replica context providing storage.
        """
        self._context = context
        self._blob: str | None = None
        self._records: list[dict[str, Any]] = []
        self._ids: set[str] = set()

        try:
            self._refresh()
        except StorageError as e:
            if isinstance(e.__cause__, (ValueError, InvalidEventError)):
                logger.error(f"Stored event log is corrupt, starting empty: {e}")
                # Remember the corrupt blob so only the next write replaces it
                self._blob = self._context.storage.get(EVENTS_KEY)
                self._records, self._ids = [], set()
            else:
                raise

        logger.info(f"EventLog loaded {len(self._records)} events")

    def _refresh(self) -> None:
        """Re-read storage, picking up writes made outside this instance."""
        blob = self._context.storage.get(EVENTS_KEY)
        if blob == self._blob:
            return

        if blob is None:
            records = []
        else:
            try:
                records = json.loads(blob)
                if not isinstance(records, list):
                    raise ValueError("event log blob is not a list")
                # Validate every record up front
                for record in records:
                    event_from_dict(record)
            except (ValueError, InvalidEventError) as e:
                raise StorageError(f"Stored event log is unreadable: {e}") from e

        self._blob = blob
        self._records = records
        self._ids = {r["id"] for r in records}

    def _write(self, records: list[dict[str, Any]]) -> None:
        blob = json.dumps(records, separators=(",", ":"))
        # put() raises StorageError; in-memory state only moves after success
        self._context.storage.put(EVENTS_KEY, blob)
        self._blob = blob
        # Decoded from the blob so callers never share dicts with the log
        self._records = json.loads(blob)
        self._ids = {r["id"] for r in records}

    def raw(self) -> str:
        """Return the serialized log (empty log serializes as "[]")."""
        self._refresh()
        return self._blob if self._blob is not None else "[]"

    def __len__(self) -> int:
        self._refresh()
        return len(self._records)

    def __contains__(self, event_id: object) -> bool:
        self._refresh()
        return event_id in self._ids

    def load(self) -> list[Event]:
        """Return every event in append order.

        The result is freshly decoded; mutating it cannot affect the log.
        """
        self._refresh()
        return [event_from_dict(r) for r in self._records]

    def append(self, events: Iterable[Event]) -> list[Event]:
        """Append events whose id is not already in the log.

        Args:
            events: Events to append, in order.

        Returns:
            The events actually added (duplicates by id are skipped).

        Raises:
            StorageError: If the write fails. Nothing is appended in that case.
        """
        self._refresh()

        added: list[Event] = []
        seen = set(self._ids)
        for event in events:
            if event.id in seen:
                continue
            seen.add(event.id)
            added.append(event)

        if not added:
            return []

        self._write(self._records + [e.to_dict() for e in added])
        logger.debug(f"Appended {len(added)} events (log size {len(self._records)})")
        return added

    def merge_remote(self, events: Iterable[Event]) -> list[Event]:
        """Append peer events whose id is not present yet.

        Duplicate delivery is a no-op, so replaying a page is safe.
        """
        return self.append(events)

    def unacknowledged(self) -> list[Event]:
        """Return events the peer has not acknowledged yet, in log order."""
        return [e for e in self.load() if e.seq is None]

    def acknowledge(self, id_to_seq: dict[str, int]) -> int:
        """Record peer-assigned sequence numbers.

        A sequence number is only ever set once; events that already carry
        one are left untouched.

        Args:
            id_to_seq: Mapping of event id to peer sequence number.

        Returns:
            Number of events updated.
        """
        if not id_to_seq:
            return 0

        self._refresh()

        updated = 0
        records = []
        for record in self._records:
            seq = id_to_seq.get(record["id"])
            if seq is not None and record.get("seq") is None:
                record = {**record, "seq": seq}
                updated += 1
            records.append(record)

        if updated:
            self._write(records)
            logger.debug(f"Acknowledged {updated} events")
        return updated

    def replace(self, events: Iterable[Event]) -> None:
        """Atomically replace the entire log (used by compaction)."""
        self._refresh()
        self._write([e.to_dict() for e in events])

    def max_seq(self) -> int:
        """Highest peer sequence number in the log, or 0."""
        self._refresh()
        return max((r["seq"] for r in self._records if r.get("seq") is not None), default=0)

    def stats(self) -> dict[str, Any]:
        """Return log statistics."""
        self._refresh()

        by_type: dict[str, int] = {}
        for record in self._records:
            by_type[record["type"]] = by_type.get(record["type"], 0) + 1

        return {
            "total_events": len(self._records),
            "unacknowledged_events": sum(1 for r in self._records if r.get("seq") is None),
            "events_by_type": by_type,
            "max_seq": self.max_seq(),
            "size_bytes": len(self._blob or ""),
        }

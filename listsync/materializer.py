"""Cached projection of the event log with state-changed observers."""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Iterable

from .context import ITEMS_KEY, ReplicaContext
from .event_log import EventLog
from .events import Event
from .projection import Item, project

logger = logging.getLogger(__name__)


class ChangeOrigin(Enum):
    """Where a state change came from."""

    LOCAL = "local"  # appended by this replica
    REMOTE = "remote"  # merged from the peer
    COMPACTION = "compaction"  # log rewritten, state unchanged


@dataclass
class StateChange:
    """Notification delivered to state-changed handlers."""

    origin: ChangeOrigin
    events: list[Event] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)


StateHandler = Callable[[StateChange], None]


class Materializer:
    """Exposes current state and notifies observers after every write.

    The projection is cached against the serialized log, so any change to the
    log (including writes made outside this object) invalidates it.
    """

    def __init__(self, context: ReplicaContext, log: EventLog):
        self._context = context
        self._log = log
        self._cache_key: str | None = None
        self._cache: list[Item] = []
        self._handlers: list[StateHandler] = []

    @property
    def log(self) -> EventLog:
        return self._log

    def subscribe(self, handler: StateHandler) -> None:
        """Register a handler invoked synchronously after each successful write."""
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: StateHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def current_state(self) -> list[Item]:
        """Return the projected items, sorted by position.

        Returns copies; callers may mutate them freely.
        """
        return [replace(item) for item in self._project()]

    def _project(self) -> list[Item]:
        key = self._log.raw()
        if key != self._cache_key:
            self._cache = project(self._log.load())
            self._cache_key = key
        return self._cache

    def _materialize(self, origin: ChangeOrigin, events: list[Event]) -> None:
        items = self._project()
        # Cached derived state; always re-derivable from the log
        self._context.storage.put(
            ITEMS_KEY, json.dumps([item.to_dict() for item in items])
        )

        change = StateChange(
            origin=origin,
            events=list(events),
            items=[replace(item) for item in items],
        )
        for handler in list(self._handlers):
            try:
                handler(change)
            except Exception as e:
                logger.error(f"State handler {handler!r} failed: {e}", exc_info=True)

    def append(self, events: Iterable[Event]) -> list[Event]:
        """Append locally authored events and notify observers.

        Returns:
            The events actually added.

        Raises:
            StorageError: If the log cannot be written.
        """
        added = self._log.append(events)
        if added:
            self._materialize(ChangeOrigin.LOCAL, added)
        return added

    def merge_remote(self, events: Iterable[Event]) -> list[Event]:
        """Merge peer events, skipping ids already present."""
        added = self._log.merge_remote(events)
        if added:
            logger.info(f"Merged {len(added)} new events from peer")
            self._materialize(ChangeOrigin.REMOTE, added)
        return added

    def replace(self, events: Iterable[Event]) -> None:
        """Rewrite the whole log (compaction) and notify observers."""
        events = list(events)
        self._log.replace(events)
        self._materialize(ChangeOrigin.COMPACTION, events)

"""Replica facade: one local list wired to its log, projection and sync engine."""

import logging
import uuid
from typing import Any

from .clock import Clock, SystemClock
from .compactor import CompactionResult, Compactor
from .config import Config
from .context import ReplicaContext
from .event_log import EventLog
from .events import MERGEABLE_FIELDS, Event, EventFactory
from .identity import IdentityProvider
from .legacy import import_legacy_state
from .materializer import Materializer
from .positions import generate_between
from .projection import Item
from .storage import SQLiteBlobStore
from .sync.engine import ReplicationEngine, SyncSettings
from .sync.peer import HttpPeer, Peer

logger = logging.getLogger(__name__)


class Replica:
    """A single replica of the shared list.

    Mutations append events locally and return immediately; the replication
    engine (when a peer is configured and enabled) ships them in the
    background.
    """

    def __init__(
        self,
        context: ReplicaContext,
        peer: Peer | None = None,
        settings: SyncSettings | None = None,
    ):
        """Wire the replica's collaborators.

        Args:
            context: Storage and clock for this replica.
            peer: Reconciliation peer, or None for a local-only replica.
            settings: Replication engine settings.
        """
        self.context = context
        self.identity = IdentityProvider(context)
        self.log = EventLog(context)
        self.materializer = Materializer(context, self.log)
        self.factory = EventFactory(context, self.identity)
        self.compactor = Compactor(self.identity, self.log, self.materializer)
        self.engine = ReplicationEngine(
            context,
            self.identity,
            self.materializer,
            peer,
            settings=settings,
            compactor=self.compactor,
        )

        import_legacy_state(context, self.factory, self.materializer)

    @classmethod
    def open(
        cls,
        config: Config,
        peer: Peer | None = None,
        clock: Clock | None = None,
    ) -> "Replica":
        """Open the SQLite-backed replica described by config.

        An HttpPeer is created from sync.peer_url when no peer is passed and
        sync is enabled.
        """
        storage = SQLiteBlobStore(config.replica.data_path)
        storage.connect()
        context = ReplicaContext(
            storage=storage,
            clock=clock or SystemClock(),
            name=config.replica.name,
        )

        if peer is None and config.sync.enabled and config.sync.peer_url:
            peer = HttpPeer(config.sync.peer_url, timeout=config.sync.timeout_seconds)

        return cls(context, peer=peer, settings=config.sync.settings())

    @property
    def replica_id(self) -> str:
        return self.identity.get_or_create_id()

    def close(self) -> None:
        self.engine.disable()
        self.context.close()

    # ==================== Reads ====================

    def items(self) -> list[Item]:
        """Current items in display order."""
        return self.materializer.current_state()

    def get_item(self, item_id: str) -> Item | None:
        for item in self.materializer.current_state():
            if item.id == item_id:
                return item
        return None

    def _require_item(self, item_id: str) -> Item:
        item = self.get_item(item_id)
        if item is None:
            raise KeyError(f"Unknown item: {item_id}")
        return item

    def _position_between(
        self,
        before: str | None,
        after: str | None,
        exclude: str | None = None,
    ) -> str:
        """Position for an item placed between two neighbour items.

        Args:
            before: Id of the item that should precede, or None.
            after: Id of the item that should follow, or None.
            exclude: Id of an item being moved (ignored as a neighbour).

        Neighbours sharing a key with the named one are skipped, so the result
        always sorts strictly between two distinct keys.
        """
        items = [item for item in self.items() if item.id != exclude]
        index = {item.id: i for i, item in enumerate(items)}

        for neighbour in (before, after):
            if neighbour is not None and neighbour not in index:
                raise KeyError(f"Unknown item: {neighbour}")

        if before is None and after is None:
            lower = items[-1].position if items else None
            return generate_between(lower, None)

        if before is not None:
            i = index[before]
            lower = items[i].position
            if after is not None and items[index[after]].position > lower:
                return generate_between(lower, items[index[after]].position)
            # skip past neighbours sharing the same key
            upper = next((item.position for item in items[i + 1:] if item.position > lower), None)
            return generate_between(lower, upper)

        i = index[after]
        upper = items[i].position
        lower = next((item.position for item in reversed(items[:i]) if item.position < upper), None)
        return generate_between(lower, upper)

    # ==================== Mutations ====================

    def _append(self, events: list[Event]) -> None:
        self.materializer.append(events)

    def create_item(
        self,
        text: str = "",
        *,
        before: str | None = None,
        after: str | None = None,
        **fields: Any,
    ) -> Item:
        """Create an item, appended at the end unless neighbours are given.

        Args:
            text: Item text.
            before: Id of the item the new one follows.
            after: Id of the item the new one precedes.
            **fields: Other initial field values (important, kind, level, ...).

        Returns:
            The created item.
        """
        unknown = set(fields) - set(MERGEABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown item fields: {', '.join(sorted(unknown))}")

        item_id = str(uuid.uuid4())
        payload = {
            **fields,
            "text": text,
            "position": self._position_between(before, after),
        }
        self._append([self.factory.created(item_id, payload)])
        logger.debug(f"Created item {item_id}")
        return self._require_item(item_id)

    def update_item(self, item_id: str, **fields: Any) -> Item:
        """Set one or more fields; one event per field, appended together."""
        self._require_item(item_id)
        events = [
            self.factory.field_changed(item_id, name, value)
            for name, value in fields.items()
        ]
        if events:
            self._append(events)
        return self._require_item(item_id)

    def move_item(
        self,
        item_id: str,
        before: str | None = None,
        after: str | None = None,
    ) -> Item:
        """Reposition an item between two neighbours."""
        self._require_item(item_id)
        position = self._position_between(before, after, exclude=item_id)
        return self.update_item(item_id, position=position)

    def delete_item(self, item_id: str) -> None:
        self._require_item(item_id)
        self._append([self.factory.deleted(item_id)])
        logger.debug(f"Deleted item {item_id}")

    def compact(self) -> CompactionResult:
        return self.compactor.compact()

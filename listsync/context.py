"""Per-replica context threaded through every collaborator."""

from dataclasses import dataclass, field

from .clock import Clock, SystemClock
from .storage import BlobStore, SQLiteBlobStore

# Storage keys
EVENTS_KEY = "events"
ITEMS_KEY = "items"
CLIENT_ID_KEY = "client_id"
CURSOR_KEY = "cursor"
LEGACY_IMPORTED_KEY = "legacy_imported"


@dataclass
class ReplicaContext:
    """Storage and time capabilities for one replica.

    There is no module-level state: two contexts in one process behave as
    two independent replicas.
    """

    storage: BlobStore
    clock: Clock = field(default_factory=SystemClock)
    name: str = "listsync-replica"

    @classmethod
    def in_memory(cls, clock: Clock | None = None, name: str = "listsync-replica") -> "ReplicaContext":
        """Create a context backed by a private in-memory SQLite database."""
        storage = SQLiteBlobStore(":memory:")
        storage.connect()
        return cls(storage=storage, clock=clock or SystemClock(), name=name)

    def close(self) -> None:
        self.storage.close()

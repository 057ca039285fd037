"""listsync: offline-first replicated list.

Every mutation is an immutable event in a local append-only log; the visible
list is a projection of that log, and replicas converge by exchanging events
through a peer that assigns the total order.
"""

from .clock import Clock, SystemClock, VirtualClock
from .compactor import CompactionResult, Compactor
from .config import Config, load_config
from .context import ReplicaContext
from .errors import InvalidEventError, ListsyncError, PeerError, StorageError
from .event_log import EventLog
from .events import Event, EventFactory, EventType, FieldChanged, ItemCreated, ItemDeleted
from .identity import IdentityProvider
from .materializer import ChangeOrigin, Materializer, StateChange
from .positions import generate_between, initial_positions
from .projection import Item, ItemKind, project
from .replica import Replica

__version__ = "0.1.0"

__all__ = [
    "ChangeOrigin",
    "Clock",
    "CompactionResult",
    "Compactor",
    "Config",
    "Event",
    "EventFactory",
    "EventLog",
    "EventType",
    "FieldChanged",
    "IdentityProvider",
    "InvalidEventError",
    "Item",
    "ItemCreated",
    "ItemDeleted",
    "ItemKind",
    "ListsyncError",
    "Materializer",
    "PeerError",
    "Replica",
    "ReplicaContext",
    "StateChange",
    "StorageError",
    "SystemClock",
    "VirtualClock",
    "generate_between",
    "initial_positions",
    "load_config",
    "project",
]

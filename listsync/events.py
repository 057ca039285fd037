"""Mutation events: the unit of storage and replication.

Events form a tagged union with one variant per mutation type. Each variant
carries only the fields that are legal for it; the wire/storage form is a flat
JSON record with a "type" discriminator.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from .errors import InvalidEventError

if TYPE_CHECKING:
    from .context import ReplicaContext
    from .identity import IdentityProvider


class EventType(Enum):
    """Wire discriminator for event variants."""

    ITEM_CREATED = "item_created"
    FIELD_CHANGED = "field_changed"
    ITEM_DELETED = "item_deleted"


# Fields resolved independently with last-writer-wins
MERGEABLE_FIELDS = (
    "text",
    "important",
    "completed",
    "position",
    "kind",
    "level",
    "indented",
    "archived",
    "parent_id",
)


class _EventMixin:
    """Behaviour shared by every event variant."""

    type: EventType

    @property
    def acknowledged(self) -> bool:
        return self.seq is not None

    def with_seq(self, seq: int) -> "Event":
        """Return a copy of this event carrying the peer-assigned sequence."""
        return replace(self, seq=seq)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the flat wire/storage record."""
        return {
            "id": self.id,
            "item_id": self.item_id,
            "type": self.type.value,
            "field": getattr(self, "field", None),
            "value": getattr(self, "value", None),
            "timestamp": self.timestamp,
            "author_id": self.author_id,
            "seq": self.seq,
        }


@dataclass(frozen=True)
class ItemCreated(_EventMixin):
    """Establishes an item. value holds its initial (or snapshot) state."""

    id: str
    item_id: str
    value: dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0
    author_id: str = ""
    seq: int | None = None

    type = EventType.ITEM_CREATED


@dataclass(frozen=True)
class FieldChanged(_EventMixin):
    """Sets one mergeable field of an item."""

    id: str
    item_id: str
    field: str
    value: Any = None
    timestamp: int = 0
    author_id: str = ""
    seq: int | None = None

    type = EventType.FIELD_CHANGED


@dataclass(frozen=True)
class ItemDeleted(_EventMixin):
    """Removes an item."""

    id: str
    item_id: str
    timestamp: int = 0
    author_id: str = ""
    seq: int | None = None

    type = EventType.ITEM_DELETED


Event = Union[ItemCreated, FieldChanged, ItemDeleted]


def _require(data: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    value = data.get(key)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise InvalidEventError(f"Event field '{key}' is missing or malformed: {value!r}")
    return value


def event_from_dict(data: dict[str, Any]) -> Event:
    """Decode a wire/storage record into an event.

    Raises:
        InvalidEventError: If the record is not a well-formed event.
    """
    if not isinstance(data, dict):
        raise InvalidEventError(f"Event record must be an object, got {type(data).__name__}")

    event_id = _require(data, "id", str)
    item_id = _require(data, "item_id", str)
    timestamp = int(_require(data, "timestamp", (int, float)))
    author_id = data.get("author_id") or ""

    seq = data.get("seq")
    if seq is not None and (not isinstance(seq, int) or isinstance(seq, bool)):
        raise InvalidEventError(f"Event field 'seq' is malformed: {seq!r}")

    try:
        event_type = EventType(data.get("type"))
    except ValueError as e:
        raise InvalidEventError(f"Unknown event type: {data.get('type')!r}") from e

    if event_type is EventType.ITEM_CREATED:
        value = data.get("value") or {}
        if not isinstance(value, dict):
            raise InvalidEventError("item_created value must be an object")
        return ItemCreated(
            id=event_id,
            item_id=item_id,
            value=dict(value),
            timestamp=timestamp,
            author_id=author_id,
            seq=seq,
        )

    if event_type is EventType.FIELD_CHANGED:
        return FieldChanged(
            id=event_id,
            item_id=item_id,
            field=_require(data, "field", str),
            value=data.get("value"),
            timestamp=timestamp,
            author_id=author_id,
            seq=seq,
        )

    return ItemDeleted(
        id=event_id,
        item_id=item_id,
        timestamp=timestamp,
        author_id=author_id,
        seq=seq,
    )


class EventFactory:
    """Builds locally authored events stamped with this replica's id and clock."""

    def __init__(self, context: "ReplicaContext", identity: "IdentityProvider"):
        self._context = context
        self._identity = identity

    def _base(self, timestamp: int | None) -> dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "timestamp": self._context.clock.now() if timestamp is None else timestamp,
            "author_id": self._identity.get_or_create_id(),
        }

    def created(
        self,
        item_id: str,
        initial: dict[str, Any] | None = None,
        timestamp: int | None = None,
    ) -> ItemCreated:
        return ItemCreated(item_id=item_id, value=dict(initial or {}), **self._base(timestamp))

    def field_changed(
        self,
        item_id: str,
        field_name: str,
        value: Any,
        timestamp: int | None = None,
    ) -> FieldChanged:
        if field_name not in MERGEABLE_FIELDS:
            raise ValueError(f"Unknown item field: {field_name}")
        return FieldChanged(
            item_id=item_id, field=field_name, value=value, **self._base(timestamp)
        )

    def deleted(self, item_id: str) -> ItemDeleted:
        return ItemDeleted(item_id=item_id, **self._base(None))

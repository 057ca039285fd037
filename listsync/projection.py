"""Projection of an event sequence into the current item list.

project() is a pure function. Items are keyed by item id and every mergeable
field is resolved independently with last-writer-wins on the field's own
timestamp, so replicas that have seen the same events converge regardless of
arrival order. Equal timestamps resolve to the value processed last.
"""

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Iterable

from .events import MERGEABLE_FIELDS, Event, FieldChanged, ItemCreated, ItemDeleted
from .positions import MID_CHAR, is_valid_position

_INVALID = object()


class ItemKind(Enum):
    PLAIN = "plain"
    SECTION = "section"


@dataclass
class Item:
    """Derived list item. Never stored as a source of truth."""

    id: str
    text: str = ""
    created_at: int = 0
    completed: bool = False
    completed_at: int | None = None
    important: bool = False
    archived: bool = False
    archived_at: int | None = None
    position: str = MID_CHAR
    kind: ItemKind = ItemKind.PLAIN
    level: int | None = None
    indented: bool = False
    parent_id: str | None = None

    # Per-field LWW stamps; a value and its stamp always change together
    text_updated_at: int = 0
    important_updated_at: int = 0
    completed_updated_at: int = 0
    position_updated_at: int = 0
    kind_updated_at: int = 0
    level_updated_at: int = 0
    indented_updated_at: int = 0
    archived_updated_at: int = 0
    parent_id_updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    def snapshot(self) -> dict[str, Any]:
        """Full field state and stamps, as carried by a compaction snapshot."""
        data = self.to_dict()
        del data["id"]
        return data


_ITEM_FIELDS = {f.name for f in fields(Item)}


def item_from_dict(data: dict[str, Any]) -> Item:
    """Rebuild an Item from Item.to_dict() output."""
    values = {k: v for k, v in data.items() if k in _ITEM_FIELDS}
    if "kind" in values:
        values["kind"] = ItemKind(values["kind"])
    return Item(**values)


def _normalize(field_name: str, value: Any) -> Any:
    """Coerce a field value from an event, or return _INVALID."""
    if field_name == "text":
        return "" if value is None else str(value)
    if field_name in ("important", "completed", "indented", "archived"):
        return bool(value)
    if field_name == "position":
        return value if is_valid_position(value) else _INVALID
    if field_name == "kind":
        if value is None:
            return ItemKind.PLAIN
        try:
            return ItemKind(value)
        except ValueError:
            return _INVALID
    if field_name == "level":
        if value is None:
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return _INVALID
    if field_name == "parent_id":
        return value if value is None or isinstance(value, str) else _INVALID
    return _INVALID


def _payload_stamp(payload: dict[str, Any], field_name: str, default: int) -> int:
    stamp = payload.get(f"{field_name}_updated_at")
    if isinstance(stamp, (int, float)) and not isinstance(stamp, bool):
        return int(stamp)
    return default


def _set_field(
    item: Item,
    field_name: str,
    raw_value: Any,
    stamp: int,
    at: int | None = None,
) -> None:
    """Apply one field write under the LWW rule."""
    stamp_attr = f"{field_name}_updated_at"
    if stamp < getattr(item, stamp_attr):
        return

    value = _normalize(field_name, raw_value)
    if value is _INVALID:
        return

    setattr(item, field_name, value)
    setattr(item, stamp_attr, stamp)

    if field_name == "completed":
        item.completed_at = (at or stamp) if value else None
    elif field_name == "archived":
        item.archived_at = (at or stamp) if value else None


def _apply_created(items: dict[str, Item], event: ItemCreated) -> None:
    payload = event.value or {}
    existing = items.get(event.item_id)

    if existing is not None:
        # Replacing snapshot: merge only the fields it carries
        for field_name in MERGEABLE_FIELDS:
            if field_name in payload:
                _set_field(
                    existing,
                    field_name,
                    payload[field_name],
                    _payload_stamp(payload, field_name, event.timestamp),
                    payload.get(f"{field_name}_at") if field_name in ("completed", "archived") else None,
                )
        return

    item = Item(id=event.item_id, created_at=payload.get("created_at") or event.timestamp)
    for field_name in MERGEABLE_FIELDS:
        setattr(item, f"{field_name}_updated_at", _payload_stamp(payload, field_name, event.timestamp))
        if field_name in payload:
            value = _normalize(field_name, payload[field_name])
            if value is not _INVALID:
                setattr(item, field_name, value)

    if item.completed:
        item.completed_at = payload.get("completed_at") or item.completed_updated_at
    if item.archived:
        item.archived_at = payload.get("archived_at") or item.archived_updated_at

    items[event.item_id] = item


def _apply_field_changed(items: dict[str, Item], event: FieldChanged) -> None:
    item = items.get(event.item_id)
    if item is None or event.field not in MERGEABLE_FIELDS:
        return
    _set_field(item, event.field, event.value, event.timestamp)


def project(events: Iterable[Event]) -> list[Item]:
    """Replay events into the current item list.

    Args:
        events: Events in any order. For fields whose writes carry distinct
            timestamps the result does not depend on the order.

    Returns:
        Surviving items sorted by (position, id).
    """
    items: dict[str, Item] = {}

    for event in events:
        if isinstance(event, ItemCreated):
            _apply_created(items, event)
        elif isinstance(event, FieldChanged):
            _apply_field_changed(items, event)
        elif isinstance(event, ItemDeleted):
            items.pop(event.item_id, None)

    # parent_id is a lookup only; drop references to items that no longer exist
    for item in items.values():
        if item.parent_id is not None and item.parent_id not in items:
            item.parent_id = None

    return sorted(items.values(), key=lambda item: (item.position, item.id))

"""One-time import of derived item state written before the event log existed."""

import json
import logging
from typing import Any

from .context import ITEMS_KEY, LEGACY_IMPORTED_KEY, ReplicaContext
from .events import Event, EventFactory
from .materializer import Materializer
from .positions import MID_CHAR

logger = logging.getLogger(__name__)

# Keys copied from a legacy item into the synthesized ItemCreated payload
_LEGACY_FIELDS = ("text", "position", "kind", "level", "indented", "important", "archived", "parent_id")

# Older stored state used camelCase keys and "type" for the item kind
_LEGACY_ALIASES = {
    "createdAt": "created_at",
    "completedAt": "completed_at",
    "completedUpdatedAt": "completed_updated_at",
    "parentId": "parent_id",
    "type": "kind",
}


def _normalize_legacy_item(raw: dict[str, Any]) -> dict[str, Any]:
    item = {_LEGACY_ALIASES.get(k, k): v for k, v in raw.items()}
    if item.get("kind") in ("todo", None):
        item["kind"] = "plain"
    return item


def _legacy_events(
    factory: EventFactory, item: dict[str, Any], now: int
) -> list[Event]:
    payload = {k: item[k] for k in _LEGACY_FIELDS if item.get(k) is not None}
    payload["text"] = item.get("text") or ""
    payload["position"] = item.get("position") or MID_CHAR

    events: list[Event] = [
        factory.created(item["id"], payload, timestamp=item.get("created_at") or now)
    ]
    if item.get("completed"):
        events.append(
            factory.field_changed(
                item["id"],
                "completed",
                True,
                timestamp=item.get("completed_updated_at") or item.get("completed_at") or now,
            )
        )
    return events


def import_legacy_state(
    context: ReplicaContext,
    factory: EventFactory,
    materializer: Materializer,
) -> bool:
    """Synthesize events reproducing a pre-event-log item list.

    Runs at most once per replica. Only imports when the event log is empty
    and stored derived state exists.

    Returns:
        True if events were imported.
    """
    storage = context.storage
    if storage.get(LEGACY_IMPORTED_KEY):
        return False

    if len(materializer.log) > 0:
        storage.put(LEGACY_IMPORTED_KEY, "1")
        return False

    blob = storage.get(ITEMS_KEY)
    try:
        legacy_items = json.loads(blob) if blob else []
    except ValueError as e:
        logger.warning(f"Ignoring unreadable legacy item state: {e}")
        legacy_items = []

    legacy_items = [
        _normalize_legacy_item(raw)
        for raw in legacy_items
        if isinstance(raw, dict) and raw.get("id")
    ]
    if not legacy_items:
        storage.put(LEGACY_IMPORTED_KEY, "1")
        return False

    now = context.clock.now()
    events: list[Event] = []
    for item in legacy_items:
        events.extend(_legacy_events(factory, item, now))

    materializer.append(events)
    storage.put(LEGACY_IMPORTED_KEY, "1")

    logger.info(f"Imported {len(legacy_items)} legacy items as {len(events)} events")
    return True

"""Tests for importing pre-event-log item state."""

import json

import pytest

from listsync.clock import VirtualClock
from listsync.context import ITEMS_KEY, LEGACY_IMPORTED_KEY, ReplicaContext
from listsync.event_log import EventLog
from listsync.events import EventFactory
from listsync.identity import IdentityProvider
from listsync.legacy import import_legacy_state
from listsync.materializer import Materializer
from listsync.projection import ItemKind


@pytest.fixture
def context():
    ctx = ReplicaContext.in_memory(clock=VirtualClock(start=50_000))
    yield ctx
    ctx.close()


@pytest.fixture
def factory(context):
    return EventFactory(context, IdentityProvider(context))


@pytest.fixture
def materializer(context):
    return Materializer(context, EventLog(context))


LEGACY_ITEMS = [
    {"id": "a", "text": "Milk", "position": "c", "createdAt": 1000, "type": "todo"},
    {
        "id": "b",
        "text": "Bread",
        "position": "n",
        "createdAt": 2000,
        "completed": True,
        "completedAt": 2500,
        "important": True,
    },
    {"id": "c", "text": "Dairy", "type": "section", "level": 1},
]


class TestImportLegacyState:
    """Tests for import_legacy_state()."""

    def test_imports_items(self, context, factory, materializer):
        """Test stored items become events reproducing the same list."""
        context.storage.put(ITEMS_KEY, json.dumps(LEGACY_ITEMS))

        assert import_legacy_state(context, factory, materializer) is True

        items = {i.id: i for i in materializer.current_state()}
        assert set(items) == {"a", "b", "c"}
        assert items["a"].text == "Milk"
        assert items["a"].created_at == 1000
        assert items["a"].kind is ItemKind.PLAIN
        assert items["b"].completed is True
        assert items["b"].completed_at == 2500
        assert items["b"].important is True
        assert items["c"].kind is ItemKind.SECTION
        assert items["c"].position == "n"

    def test_imported_events_are_unacknowledged(self, context, factory, materializer):
        """Test imported events are queued for the next push."""
        context.storage.put(ITEMS_KEY, json.dumps(LEGACY_ITEMS))
        import_legacy_state(context, factory, materializer)

        # three creations plus one completion
        assert len(materializer.log.unacknowledged()) == 4

    def test_runs_once(self, context, factory, materializer):
        """Test the import is guarded by a persisted flag."""
        context.storage.put(ITEMS_KEY, json.dumps(LEGACY_ITEMS))
        import_legacy_state(context, factory, materializer)

        assert context.storage.get(LEGACY_IMPORTED_KEY)
        assert import_legacy_state(context, factory, materializer) is False
        assert len(materializer.log) == 4

    def test_skipped_when_log_has_events(self, context, factory, materializer):
        """Test existing logs are never overwritten by legacy state."""
        materializer.append([factory.created("z")])
        context.storage.put(ITEMS_KEY, json.dumps(LEGACY_ITEMS))

        assert import_legacy_state(context, factory, materializer) is False
        assert [i.id for i in materializer.current_state()] == ["z"]

    def test_nothing_stored(self, context, factory, materializer):
        """Test a fresh replica has nothing to import."""
        assert import_legacy_state(context, factory, materializer) is False
        assert len(materializer.log) == 0

    def test_unreadable_state_ignored(self, context, factory, materializer):
        """Test corrupt legacy state is skipped."""
        context.storage.put(ITEMS_KEY, "not json")
        assert import_legacy_state(context, factory, materializer) is False

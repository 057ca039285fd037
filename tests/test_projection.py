"""Tests for projecting events into items."""

import itertools
import random

from listsync.events import FieldChanged, ItemCreated, ItemDeleted
from listsync.projection import Item, ItemKind, item_from_dict, project


def created(item_id, ts, author="r1", event_id=None, **value):
    return ItemCreated(
        id=event_id or f"c-{item_id}-{ts}",
        item_id=item_id,
        value=value,
        timestamp=ts,
        author_id=author,
    )


def changed(item_id, field, value, ts, author="r1", event_id=None):
    return FieldChanged(
        id=event_id or f"f-{item_id}-{field}-{ts}",
        item_id=item_id,
        field=field,
        value=value,
        timestamp=ts,
        author_id=author,
    )


def deleted(item_id, ts, author="r1"):
    return ItemDeleted(id=f"d-{item_id}-{ts}", item_id=item_id, timestamp=ts, author_id=author)


class TestCreated:
    """Tests for ItemCreated handling."""

    def test_defaults(self):
        """Test an item created with an empty payload."""
        [item] = project([created("x", 1000)])

        assert item.id == "x"
        assert item.text == ""
        assert item.position == "n"
        assert item.kind is ItemKind.PLAIN
        assert item.completed is False
        assert item.completed_at is None
        assert item.level is None
        assert item.parent_id is None
        assert item.created_at == 1000
        assert item.text_updated_at == 1000

    def test_payload_fields(self):
        """Test payload values are applied."""
        [item] = project(
            [created("x", 1000, text="Groceries", kind="section", level=2, important=True)]
        )

        assert item.text == "Groceries"
        assert item.kind is ItemKind.SECTION
        assert item.level == 2
        assert item.important is True

    def test_completed_in_payload_sets_completed_at(self):
        """Test completed_at accompanies a completed flag."""
        [item] = project([created("x", 1000, completed=True)])
        assert item.completed_at == 1000

    def test_payload_stamps_are_honoured(self):
        """Test per-field stamps supplied by a snapshot payload."""
        [item] = project([created("x", 1000, text="old", text_updated_at=5000)])

        assert item.text_updated_at == 5000
        assert item.important_updated_at == 1000

    def test_invalid_payload_values_fall_back_to_defaults(self):
        """Test malformed values are ignored."""
        [item] = project([created("x", 1000, position="NOT VALID", kind="table", level="2")])

        assert item.position == "n"
        assert item.kind is ItemKind.PLAIN
        assert item.level is None

    def test_created_for_existing_item_merges_by_field(self):
        """Test a second Created merges under the per-field rule."""
        events = [
            created("x", 1000, text="first", important=True),
            changed("x", "text", "edited", 3000),
            created("x", 2000, event_id="c2", text="second", position="q"),
        ]

        [item] = project(events)

        assert item.text == "edited"  # 2000 < 3000
        assert item.position == "q"  # 2000 > 1000
        assert item.important is True  # absent from the second payload


class TestFieldChanged:
    """Tests for FieldChanged handling."""

    def test_scenario_edit_text(self):
        """Test an edit after creation."""
        events = [
            created("x", 1000, text="Hello", position="n"),
            changed("x", "text", "Hello World", 1001),
        ]

        [item] = project(events)

        assert item.text == "Hello World"
        assert item.text_updated_at == 1001

    def test_scenario_last_writer_wins_either_order(self):
        """Test the later timestamp wins regardless of arrival order."""
        base = created("x", 1000, text="start")
        newer = changed("x", "text", "newer", 2000)
        older = changed("x", "text", "older", 1500)

        assert project([base, newer, older])[0].text == "newer"
        assert project([base, older, newer])[0].text == "newer"

    def test_equal_timestamps_last_processed_wins(self):
        """Test equal stamps resolve to the value processed last."""
        base = created("x", 1000)
        a = changed("x", "text", "a", 2000, event_id="ea")
        b = changed("x", "text", "b", 2000, event_id="eb")

        assert project([base, a, b])[0].text == "b"
        assert project([base, b, a])[0].text == "a"

    def test_fields_resolve_independently(self):
        """Test concurrent edits to different fields both survive."""
        events = [
            created("x", 1000, text="milk"),
            changed("x", "text", "oat milk", 2000, author="r1"),
            changed("x", "completed", True, 1500, author="r2"),
        ]

        [item] = project(events)

        assert item.text == "oat milk"
        assert item.completed is True
        assert item.completed_at == 1500

    def test_uncomplete_clears_completed_at(self):
        """Test completed=False clears the completion time."""
        events = [
            created("x", 1000),
            changed("x", "completed", True, 1100),
            changed("x", "completed", False, 1200),
        ]

        [item] = project(events)

        assert item.completed is False
        assert item.completed_at is None

    def test_archive_sets_archived_at(self):
        """Test archiving records the archive time."""
        [item] = project([created("x", 1000), changed("x", "archived", True, 1300)])
        assert item.archived is True
        assert item.archived_at == 1300

    def test_unknown_item_ignored(self):
        """Test a change for an item that was never created."""
        assert project([changed("ghost", "text", "boo", 1000)]) == []

    def test_unknown_field_ignored(self):
        """Test a change to a field that is not mergeable."""
        [item] = project([created("x", 1000, text="t"), changed("x", "colour", "red", 2000)])
        assert item.text == "t"
        assert not hasattr(item, "colour")


class TestDeleted:
    """Tests for ItemDeleted handling."""

    def test_delete_removes_item(self):
        """Test a deleted item disappears."""
        assert project([created("x", 1000), deleted("x", 1100)]) == []

    def test_change_after_delete_is_noop(self):
        """Test edits to a deleted item do not resurrect it."""
        events = [created("x", 1000), deleted("x", 1100), changed("x", "text", "again", 1200)]
        assert project(events) == []

    def test_created_after_delete_recreates(self):
        """Test a Created after a delete establishes the item again."""
        events = [created("x", 1000, text="a"), deleted("x", 1100), created("x", 1200, event_id="c2", text="b")]
        [item] = project(events)
        assert item.text == "b"


class TestOrdering:
    """Tests for output ordering."""

    def test_sorted_by_position(self):
        """Test items are ordered by position."""
        events = [created("a", 1, position="t"), created("b", 2, position="c"), created("c", 3, position="n")]
        assert [i.id for i in project(events)] == ["b", "c", "a"]

    def test_scenario_equal_positions_sorted_by_id(self):
        """Test ties on position fall back to the item id, in any input order."""
        ids = ["item-0001", "item-0003", "item-0002"]
        for order in itertools.permutations(ids):
            events = [created(item_id, 1000, position="n") for item_id in order]
            assert [i.id for i in project(events)] == ["item-0001", "item-0002", "item-0003"]

    def test_move_changes_order(self):
        """Test a position change reorders items."""
        events = [
            created("a", 1, position="c"),
            created("b", 2, position="n"),
            changed("a", "position", "t", 3),
        ]
        assert [i.id for i in project(events)] == ["b", "a"]


class TestParentId:
    """Tests for parent_id lookups."""

    def test_parent_kept_when_present(self):
        """Test a valid parent reference."""
        events = [created("p", 1, position="c"), created("c", 2, position="n", parent_id="p")]
        items = {i.id: i for i in project(events)}
        assert items["c"].parent_id == "p"

    def test_dangling_parent_is_cleared(self):
        """Test references to missing items read as None."""
        events = [
            created("p", 1, position="c"),
            created("c", 2, position="n", parent_id="p"),
            deleted("p", 3),
        ]
        [child] = project(events)
        assert child.parent_id is None


class TestConvergence:
    """Tests for order independence."""

    def test_any_delivery_order_converges(self):
        """Test permutations of distinct-timestamp events project identically."""
        events = [
            created("a", 1000, text="bread", position="c"),
            created("b", 1001, text="eggs", position="n"),
            changed("a", "text", "rye bread", 1100, author="r2"),
            changed("a", "text", "white bread", 1050, author="r1"),
            changed("b", "completed", True, 1200, author="r2"),
            changed("b", "position", "b", 1300, author="r1"),
            changed("a", "important", True, 1250, author="r1"),
        ]
        expected = [i.to_dict() for i in project(events)]

        rng = random.Random(7)
        for _ in range(50):
            shuffled = events[:]
            rng.shuffle(shuffled)
            # Creations must precede changes to the same item
            shuffled.sort(key=lambda e: not isinstance(e, ItemCreated))
            assert [i.to_dict() for i in project(shuffled)] == expected

    def test_projection_is_deterministic(self):
        """Test projecting twice yields equal results."""
        events = [created("a", 1, text="x"), changed("a", "level", 3, 2)]
        assert project(events) == project(events)


class TestItemSerialization:
    """Tests for Item.to_dict / item_from_dict."""

    def test_round_trip(self):
        """Test an item survives serialization."""
        item = Item(id="x", text="t", kind=ItemKind.SECTION, level=1, position="q")
        data = item.to_dict()

        assert data["kind"] == "section"
        assert item_from_dict(data) == item

    def test_snapshot_excludes_id(self):
        """Test snapshots carry state without the id."""
        snapshot = Item(id="x", text="t").snapshot()
        assert "id" not in snapshot
        assert snapshot["text"] == "t"
        assert "text_updated_at" in snapshot

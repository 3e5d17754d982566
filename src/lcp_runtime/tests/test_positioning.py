"""
Tests for dense 1-based positioning and list versions.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from lcp_runtime.core.errors import BuildError
from lcp_runtime.runtime.positioning import MoveStatus, compute_list_version


@pytest.fixture
def Item(build):
    return build(
        {
            "name": "item",
            "fields": [
                {"name": "label", "type": "string"},
                {"name": "list_id", "type": "integer"},
            ],
            "positioning": {"scope": "list_id"},
        }
    )


def _labels(Item, list_id=1) -> list[str]:
    return [i.label for i in Item.where(list_id=list_id).order_by("position")]


def _positions(Item, list_id=1) -> list[int]:
    return [i.position for i in Item.where(list_id=list_id).order_by("position")]


def _fill(Item, *labels, list_id=1):
    return [Item.create(label=label, list_id=list_id) for label in labels]


class TestCreateAndDestroy:
    """Positions stay 1..N across inserts and deletes."""

    def test_appends(self, Item):
        a, b, c = _fill(Item, "a", "b", "c")
        assert (a.position, b.position, c.position) == (1, 2, 3)

    def test_insert_at_position(self, Item):
        _fill(Item, "a", "b", "c")
        Item.create(label="x", list_id=1, position=2)
        assert _labels(Item) == ["a", "x", "b", "c"]
        assert _positions(Item) == [1, 2, 3, 4]

    def test_insert_beyond_end_appends(self, Item):
        _fill(Item, "a")
        assert Item.create(label="b", list_id=1, position=99).position == 2

    def test_destroy_closes_gap(self, Item):
        a, b, c = _fill(Item, "a", "b", "c")
        b.destroy()
        assert _positions(Item) == [1, 2]
        assert c.reload().position == 2

    def test_scopes_are_independent(self, Item):
        _fill(Item, "a", "b")
        (x,) = _fill(Item, "x", list_id=2)
        assert x.position == 1


class TestMove:
    """Tests for move_to."""

    def test_move_to_index(self, Item):
        a, _, _, _ = _fill(Item, "a", "b", "c", "d")
        result = a.move_to(3)
        assert result.status == MoveStatus.MOVED
        assert result.position == 3
        assert _labels(Item) == ["b", "c", "a", "d"]
        assert _positions(Item) == [1, 2, 3, 4]

    def test_move_first_and_last(self, Item):
        a, _, c = _fill(Item, "a", "b", "c")
        c.move_to("first")
        assert _labels(Item) == ["c", "a", "b"]
        a.reload().move_to("last")
        assert _labels(Item) == ["c", "b", "a"]

    def test_move_after(self, Item):
        a, _, c, _ = _fill(Item, "a", "b", "c", "d")
        a.move_to({"after": c.id})
        assert _labels(Item) == ["b", "c", "a", "d"]

    def test_move_after_from_below(self, Item):
        a, _, _, d = _fill(Item, "a", "b", "c", "d")
        d.move_to({"after": a.id})
        assert _labels(Item) == ["a", "d", "b", "c"]

    def test_move_before(self, Item):
        a, _, c, _ = _fill(Item, "a", "b", "c", "d")
        a.move_to({"before": c.id})
        assert _labels(Item) == ["b", "a", "c", "d"]

    def test_move_before_from_below(self, Item):
        _, b, _, d = _fill(Item, "a", "b", "c", "d")
        d.move_to({"before": b.id})
        assert _labels(Item) == ["a", "d", "b", "c"]

    def test_target_is_clamped(self, Item):
        a, _ = _fill(Item, "a", "b")
        assert a.move_to(50).position == 2
        assert a.move_to(-3).position == 1

    def test_reference_in_other_scope(self, Item):
        (a,) = _fill(Item, "a")
        (x,) = _fill(Item, "x", list_id=2)
        with pytest.raises(ValueError, match="same list"):
            a.move_to({"after": x.id})

    def test_invalid_target(self, Item):
        (a,) = _fill(Item, "a")
        with pytest.raises(ValueError):
            a.move_to("middle")

    def test_unsaved_record(self, Item):
        with pytest.raises(ValueError, match="unsaved"):
            Item(label="new", list_id=1).move_to(1)

    def test_update_position_attribute(self, Item):
        a, _, _ = _fill(Item, "a", "b", "c")
        a.update(position=3)
        assert _labels(Item) == ["b", "c", "a"]


class TestListVersion:
    """Optimistic concurrency for reorders."""

    def test_version_matches_ids(self, Item):
        a, b = _fill(Item, "a", "b")
        assert a.list_version() == compute_list_version([a.id, b.id])

    def test_versions_are_per_scope(self, Item):
        (a,) = _fill(Item, "a")
        (x,) = _fill(Item, "x", list_id=2)
        assert a.list_version() != x.list_version()

    def test_current_version_moves(self, Item):
        a, b = _fill(Item, "a", "b")
        version = a.list_version()
        result = a.move_to("last", list_version=version)
        assert result.moved
        assert result.list_version == compute_list_version([b.id, a.id])

    def test_stale_version_conflicts(self, Item):
        a, b, c = _fill(Item, "a", "b", "c")
        seen = a.list_version()
        c.move_to("first")
        result = a.move_to("last", list_version=seen)
        assert result.status == MoveStatus.CONFLICT
        assert result.list_version == a.list_version()
        assert _labels(Item) == ["c", "a", "b"]


class TestScopeChange:
    def test_record_joins_end_of_new_scope(self, Item):
        a, b, c = _fill(Item, "a", "b", "c")
        _fill(Item, "x", list_id=2)
        a.update(list_id=2)
        assert a.position == 2
        assert _labels(Item, 2) == ["x", "a"]
        assert _positions(Item, 1) == [1, 2]


class TestStaleInstances:
    """A record loaded before another move still keeps the list dense."""

    def test_destroy_uses_stored_position(self, Item):
        a, b, _ = _fill(Item, "a", "b", "c")
        a.move_to(3)
        assert b.position == 2  # stored value is now 1
        b.destroy()
        assert _labels(Item) == ["c", "a"]
        assert _positions(Item) == [1, 2]

    def test_position_update_uses_stored_position(self, Item):
        a, b, _ = _fill(Item, "a", "b", "c")
        a.move_to(3)
        b.position = 3
        assert b.save()
        assert _labels(Item) == ["c", "a", "b"]
        assert _positions(Item) == [1, 2, 3]

    def test_unrelated_update_keeps_stored_position(self, Item):
        a, b, _ = _fill(Item, "a", "b", "c")
        a.move_to(3)
        b.label = "bb"
        assert b.save()
        assert b.position == 1
        assert _labels(Item) == ["bb", "c", "a"]
        assert _positions(Item) == [1, 2, 3]

    def test_scope_change_closes_stored_gap(self, Item):
        a, b, _ = _fill(Item, "a", "b", "c")
        a.move_to(3)
        b.list_id = 2
        assert b.save()
        assert _labels(Item) == ["c", "a"]
        assert _positions(Item) == [1, 2]
        assert b.position == 1


class TestFailedSave:
    def test_failed_create_leaves_no_position(self, build):
        Entry = build(
            {
                "name": "entry",
                "fields": [
                    {"name": "label", "type": "string"},
                    {"name": "code", "type": "string", "column_options": {"null": False}},
                ],
                "positioning": True,
            }
        )
        Entry.create(label="a", code="a")
        late = Entry(label="late")
        with pytest.raises(IntegrityError):
            late.save()
        assert late.id is None
        assert late.position is None

        Entry.create(label="b", code="b")
        Entry.create(label="c", code="c")
        late.code = "late"
        assert late.save()

        entries = Entry.order_by("position").all()
        assert [e.label for e in entries] == ["a", "b", "c", "late"]
        assert [e.position for e in entries] == [1, 2, 3, 4]


class TestBuildErrors:
    def test_virtual_position_field(self, build):
        with pytest.raises(BuildError, match="stored field"):
            build(
                {
                    "name": "card",
                    "fields": [
                        {"name": "label", "type": "string"},
                        {"name": "position", "type": "integer", "computed": "{label}"},
                    ],
                    "positioning": True,
                }
            )

    def test_non_integer_position_field(self, build):
        with pytest.raises(BuildError, match="integer"):
            build(
                {
                    "name": "card",
                    "fields": [{"name": "position", "type": "string"}],
                    "positioning": True,
                }
            )

    def test_unscoped(self, build):
        Card = build({"name": "card", "positioning": True})
        cards = [Card.create() for _ in range(3)]
        assert [c.position for c in cards] == [1, 2, 3]

"""
Tests for lifecycle events, field-change events and attachments.
"""

import pytest

from lcp_runtime.core.errors import BuildError
from lcp_runtime.runtime.attachments import AttachedFile, content_type_allowed
from lcp_runtime.runtime.event_bus import EventDispatcher, EventPayload

# =============================================================================
# Events
# =============================================================================


@pytest.fixture
def Deal(build):
    return build(
        {
            "name": "deal",
            "fields": [
                {"name": "title", "type": "string"},
                {"name": "stage", "type": "enum", "enum_values": ["open", "won", "lost"], "default": "open"},
                {"name": "amount", "type": "integer"},
            ],
            "events": [
                {"name": "after_create"},
                {"name": "after_destroy"},
                {"name": "on_stage_change", "field": "stage"},
                {
                    "name": "on_big_win",
                    "field": "stage",
                    "condition": {"all": [{"field": "stage", "operator": "eq", "value": "won"}, {"field": "amount", "operator": "gte", "value": 1000}]},
                },
            ],
        }
    )


def _names(dispatcher: EventDispatcher) -> list[str]:
    return [p.event_name for p in dispatcher.history]


class TestLifecycleEvents:
    def test_create_and_destroy(self, Deal, dispatcher):
        deal = Deal.create(title="a")
        deal.destroy()
        assert _names(dispatcher) == ["after_create", "after_destroy"]
        created = dispatcher.history[0]
        assert created.model == "deal"
        assert created.record_id == deal.id
        assert created.changes["title"] == (None, "a")

    def test_invalid_save_dispatches_nothing(self, build, dispatcher):
        Note = build(
            {
                "name": "note",
                "fields": [{"name": "body", "type": "text", "validations": [{"type": "presence"}]}],
                "events": [{"name": "after_create"}],
            }
        )
        Note.create()
        assert dispatcher.history == []

    def test_subscriber_receives_payload(self, Deal, dispatcher):
        received: list[EventPayload] = []
        dispatcher.subscribe("after_create", received.append, model="deal")
        Deal.create(title="a")
        assert len(received) == 1

    def test_subscriber_failure_is_logged(self, Deal, dispatcher, caplog):
        def broken(payload):
            raise RuntimeError("boom")

        dispatcher.subscribe("after_create", broken)
        deal = Deal.create(title="a")
        assert deal.persisted
        assert "failed" in caplog.text


class TestFieldChangeEvents:
    """Field-change events fire only on updates that change the field."""

    def test_not_fired_on_create(self, Deal, dispatcher):
        Deal.create(title="a", stage="won")
        assert "on_stage_change" not in _names(dispatcher)

    def test_fired_once_on_change(self, Deal, dispatcher):
        deal = Deal.create(title="a")
        dispatcher.clear_history()
        deal.update(stage="lost")
        [payload] = dispatcher.history
        assert payload.event_name == "on_stage_change"
        assert (payload.old_value, payload.new_value) == ("open", "lost")
        assert payload.field == "stage"

    def test_not_fired_without_change(self, Deal, dispatcher):
        deal = Deal.create(title="a")
        dispatcher.clear_history()
        deal.update(title="b", stage="open")
        assert dispatcher.history == []

    def test_condition_gates_event(self, Deal, dispatcher):
        small = Deal.create(title="small", amount=10)
        big = Deal.create(title="big", amount=5000)
        dispatcher.clear_history()
        small.update(stage="won")
        big.update(stage="won")
        big_wins = [p for p in dispatcher.history if p.event_name == "on_big_win"]
        assert [p.record_id for p in big_wins] == [big.id]

    def test_unstored_field_is_rejected(self, build):
        with pytest.raises(BuildError, match="not stored"):
            build(
                {
                    "name": "person",
                    "fields": [
                        {"name": "first", "type": "string"},
                        {"name": "display", "type": "string", "computed": "{first}"},
                    ],
                    "events": [{"name": "on_display_change", "field": "display"}],
                }
            )

    def test_disabled_dispatcher(self, Deal, dispatcher):
        dispatcher.disable()
        Deal.create(title="a")
        dispatcher.enable()
        assert dispatcher.history == []


# =============================================================================
# Attachments
# =============================================================================


@pytest.fixture
def Document(build):
    return build(
        {
            "name": "document",
            "fields": [
                {"name": "title", "type": "string"},
                {
                    "name": "cover",
                    "type": "attachment",
                    "options": {"max_size": "1 KB", "content_types": ["image/*"]},
                },
                {
                    "name": "pages",
                    "type": "attachment",
                    "options": {"multiple": True, "max_files": 2, "max_size": "1 KB"},
                },
            ],
        }
    )


def _file(size: int, content_type: str = "image/png", name: str = "f.png") -> AttachedFile:
    return AttachedFile(filename=name, content_type=content_type, size=size, data=b"x" * size)


class TestAttachments:
    def test_single_limits(self, Document):
        doc = Document(cover=_file(4096, "application/pdf", "a.pdf"))
        assert not doc.valid()
        assert doc.errors["cover"] == [
            "is too large (maximum is 1 KB)",
            "has an invalid content type (application/pdf)",
        ]

    def test_multiple_limits(self, Document):
        doc = Document(pages=[_file(10), _file(10), _file(2048)])
        assert not doc.valid()
        assert doc.errors["pages"] == [
            "has too many files (maximum is 2)",
            "contains a file that is too large (maximum is 1 KB)",
        ]

    def test_files_stored_on_save(self, Document, attachment_store):
        doc = Document(title="t", cover=_file(100), pages=[_file(10), _file(20)])
        assert doc.cover.size == 100
        assert len(attachment_store) == 0
        assert doc.save()
        loaded = Document.find(doc.id)
        assert loaded.cover.filename == "f.png"
        assert [p.size for p in loaded.pages] == [10, 20]

    def test_unsaved_files_are_not_stored(self, Document, attachment_store):
        doc = Document(cover=_file(5000))
        assert not doc.save()
        assert len(attachment_store) == 0

    def test_purged_on_destroy(self, Document, attachment_store):
        doc = Document.create(cover=_file(10))
        assert len(attachment_store) == 1
        doc.destroy()
        assert len(attachment_store) == 0

    def test_single_field_rejects_lists(self, Document):
        with pytest.raises(ValueError, match="single file"):
            Document(cover=[_file(1), _file(2)])

    def test_coerce_mapping(self):
        attached = AttachedFile.coerce({"filename": "a.txt", "data": b"abc"})
        assert attached.size == 3
        assert attached.content_type == "application/octet-stream"

    @pytest.mark.parametrize(
        "content_type,allowed,expected",
        [
            ("image/png", ["image/*"], True),
            ("text/plain", ["image/*"], False),
            ("text/plain", None, True),
            ("application/pdf", ["application/pdf"], True),
        ],
    )
    def test_content_type_allowed(self, content_type, allowed, expected):
        assert content_type_allowed(content_type, allowed) is expected

"""
Tests for model descriptions: conversion, definition errors and custom types.
"""

import pytest
from pydantic import ValidationError

from lcp_runtime.converters.model_converter import load_model_spec, load_model_specs
from lcp_runtime.core.errors import DefinitionError
from lcp_runtime.specs.field import FieldKind, ServiceRef, parse_size
from lcp_runtime.specs.model import AssociationKind, EventKind
from lcp_runtime.specs.types import TypeRegistry

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def deal_description() -> dict:
    return {
        "name": "deal",
        "fields": [
            {"name": "title", "type": "string", "validations": [{"type": "presence"}]},
            {"name": "stage", "type": "enum", "enum_values": ["open", "won", "lost"], "default": "open"},
            {"name": "amount", "type": "decimal", "column_options": {"precision": 12, "scale": 2}},
            {"name": "contact_email", "type": "email"},
            {"name": "summary", "type": "string", "computed": "{title} ({stage})"},
        ],
        "associations": [
            {"type": "belongs_to", "name": "company", "target_model": "company"},
        ],
        "scopes": [{"name": "open_deals", "where": {"stage": "open"}}],
        "events": [
            {"name": "after_create"},
            {"name": "on_stage_change", "field": "stage"},
        ],
    }


# =============================================================================
# Conversion
# =============================================================================


class TestLoadModelSpec:
    """Tests for load_model_spec."""

    def test_defaults(self, deal_description):
        spec = load_model_spec(deal_description)
        assert spec.table_name == "deals"
        assert spec.label == "Deal"
        assert spec.options.timestamps is True

    def test_field_types(self, deal_description):
        spec = load_model_spec(deal_description)
        assert spec.get_field("stage").base_type == FieldKind.ENUM
        assert spec.get_field("stage").enum_value_names == ["open", "won", "lost"]
        assert spec.get_field("contact_email").base_type == FieldKind.STRING
        assert spec.get_field("contact_email").type_definition.name == "email"

    def test_virtual_fields(self, deal_description):
        spec = load_model_spec(deal_description)
        assert spec.get_field("summary").is_virtual
        assert not spec.get_field("summary").has_column
        assert spec.get_field("title").has_column

    def test_belongs_to_defaults(self, deal_description):
        spec = load_model_spec(deal_description)
        company = spec.get_association("company")
        assert company.type == AssociationKind.BELONGS_TO
        assert company.foreign_key == "company_id"
        assert company.required is True
        assert "company_id" in spec.attribute_names
        assert spec.resolve_column("company") == "company_id"

    def test_event_types_inferred(self, deal_description):
        spec = load_model_spec(deal_description)
        kinds = {e.name: e.type for e in spec.events}
        assert kinds == {"after_create": EventKind.LIFECYCLE, "on_stage_change": EventKind.FIELD_CHANGE}

    def test_service_ref(self):
        spec = load_model_spec(
            {
                "name": "contact",
                "fields": [
                    {"name": "score", "type": "integer", "computed": {"service": "score", "options": {"w": 2}}}
                ],
            }
        )
        computed = spec.get_field("score").computed
        assert isinstance(computed, ServiceRef)
        assert computed.options == {"w": 2}

    def test_positioning_shorthand(self):
        spec = load_model_spec({"name": "item", "positioning": True})
        assert spec.positioning.field == "position"
        assert spec.positioning.scope == []
        assert "position" in spec.attribute_names

    def test_positioning_in_options(self):
        spec = load_model_spec(
            {"name": "item", "options": {"positioning": {"scope": "list_id"}}, "fields": [{"name": "list_id", "type": "integer"}]}
        )
        assert spec.positioning.scope == ["list_id"]

    def test_immutable(self, deal_description):
        spec = load_model_spec(deal_description)
        with pytest.raises(ValidationError):
            spec.name = "other"

    def test_load_many_rejects_duplicates(self):
        with pytest.raises(DefinitionError, match="Duplicate model"):
            load_model_specs([{"name": "a"}, {"name": "a"}])


class TestDefinitionErrors:
    """Inconsistent descriptions are rejected at parse time."""

    def test_missing_name(self):
        with pytest.raises(DefinitionError):
            load_model_spec({"fields": []})

    def test_unknown_type(self):
        with pytest.raises(DefinitionError, match="invalid"):
            load_model_spec({"name": "a", "fields": [{"name": "x", "type": "nope"}]})

    def test_duplicate_fields(self):
        with pytest.raises(DefinitionError, match="Duplicate field names: x"):
            load_model_spec(
                {"name": "a", "fields": [{"name": "x", "type": "string"}, {"name": "x", "type": "text"}]}
            )

    def test_enum_default_outside_values(self):
        with pytest.raises(DefinitionError):
            load_model_spec(
                {
                    "name": "a",
                    "fields": [{"name": "s", "type": "enum", "enum_values": ["a"], "default": "b"}],
                }
            )

    def test_comparison_unknown_field_ref(self):
        with pytest.raises(DefinitionError, match="unknown field 'start'"):
            load_model_spec(
                {
                    "name": "a",
                    "fields": [
                        {
                            "name": "finish",
                            "type": "date",
                            "validations": [{"type": "comparison", "operator": "gte", "field_ref": "start"}],
                        }
                    ],
                }
            )

    def test_condition_unknown_field(self):
        with pytest.raises(DefinitionError, match="unknown field"):
            load_model_spec(
                {
                    "name": "a",
                    "fields": [
                        {
                            "name": "x",
                            "type": "string",
                            "validations": [
                                {"type": "presence", "when": {"field": "ghost", "operator": "present"}}
                            ],
                        }
                    ],
                }
            )

    def test_invalid_format_pattern(self):
        with pytest.raises(DefinitionError):
            load_model_spec(
                {
                    "name": "a",
                    "fields": [{"name": "x", "type": "string", "validations": [{"type": "format", "options": {"with": "("}}]}],
                }
            )

    def test_source_and_computed(self):
        with pytest.raises(DefinitionError):
            load_model_spec(
                {
                    "name": "a",
                    "fields": [{"name": "x", "type": "string", "source": "external", "computed": "{y}"}],
                }
            )

    def test_error_context(self):
        with pytest.raises(DefinitionError) as exc_info:
            load_model_spec({"name": "deal", "fields": [{"name": "x", "type": "nope"}]})
        assert exc_info.value.context.model == "deal"
        assert "model 'deal'" in str(exc_info.value)


# =============================================================================
# Types
# =============================================================================


class TestTypeRegistry:
    """Tests for custom types."""

    def test_builtins(self):
        registry = TypeRegistry()
        assert {"email", "phone", "url", "color"} <= set(registry.names)

    def test_without_builtins(self):
        assert TypeRegistry(include_builtins=False).names == []

    def test_register_custom(self):
        registry = TypeRegistry()
        registry.register({"name": "sku", "base_type": "string", "transforms": ["strip"]})
        spec = load_model_spec({"name": "product", "fields": [{"name": "code", "type": "sku"}]}, registry)
        assert spec.get_field("code").effective_transforms == ["strip"]

    def test_shadowing_base_type(self):
        with pytest.raises(DefinitionError):
            TypeRegistry().register({"name": "string", "base_type": "string"})

    def test_registries_are_independent(self):
        first, second = TypeRegistry(), TypeRegistry()
        first.register({"name": "sku", "base_type": "string"})
        assert "sku" not in second


class TestParseSize:
    @pytest.mark.parametrize(
        "size,expected",
        [("10 KB", 10 * 1024), ("1MB", 1024**2), (500, 500), (None, None)],
    )
    def test_sizes(self, size, expected):
        assert parse_size(size) == expected

"""
Model generator - generates Pydantic write schemas from ModelSpec.

Create and update schemas describe what an external caller may submit for a
runtime model. Identifiers, timestamps, virtual fields (computed or sourced)
and attachments never appear in them.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, create_model

from lcp_runtime.core.strings import camelize
from lcp_runtime.specs.field import FieldKind, FieldSpec, ValidationKind
from lcp_runtime.specs.model import TIMESTAMP_COLUMNS, ModelSpec

# Fields never accepted from callers
AUTO_FIELDS = frozenset({"id", *TIMESTAMP_COLUMNS})

# =============================================================================
# Type Mapping
# =============================================================================


def _base_type_to_python(kind: FieldKind) -> Any:
    """Map base field types to Python types."""
    mapping: dict[FieldKind, Any] = {
        FieldKind.STRING: str,
        FieldKind.TEXT: str,
        FieldKind.RICH_TEXT: str,
        FieldKind.INTEGER: int,
        FieldKind.DECIMAL: Decimal,
        FieldKind.BOOLEAN: bool,
        FieldKind.DATE: date,
        FieldKind.DATETIME: datetime,
        FieldKind.JSON: Any,
    }
    return mapping.get(kind, str)


def _field_type_to_python(field: FieldSpec) -> Any:
    if field.is_enum:
        return Literal[tuple(field.enum_value_names)]  # type: ignore[misc]
    return _base_type_to_python(field.base_type)


def _is_required(field: FieldSpec) -> bool:
    """Unconditional presence rule and no default."""
    if field.default is not None:
        return False
    rules = [*(field.type_definition.validations if field.type_definition else []), *field.validations]
    return any(r.type == ValidationKind.PRESENCE and r.when is None for r in rules)


def _build_field_info(field: FieldSpec) -> tuple[Any, Any]:
    """
    Build the Pydantic field tuple for create_model.

    Returns:
        Tuple of (type, default_or_field_info)
    """
    python_type = _field_type_to_python(field)
    field_kwargs: dict[str, Any] = {}

    if field.label:
        field_kwargs["description"] = field.label

    limit = field.effective_column_options.limit
    if limit and field.base_type == FieldKind.STRING:
        field_kwargs["max_length"] = limit

    if _is_required(field):
        return (python_type, Field(**field_kwargs))

    # Literal defaults are applied by the record itself
    field_kwargs["default"] = None
    return (python_type | None, Field(**field_kwargs))


def writable_fields(model: ModelSpec) -> list[FieldSpec]:
    """Declared fields that callers may write."""
    return [
        f
        for f in model.fields
        if f.name not in AUTO_FIELDS and not f.is_virtual and not f.is_attachment
    ]


def _implicit_field_definitions(model: ModelSpec) -> dict[str, Any]:
    """Foreign keys, polymorphic type columns and the position column."""
    declared = {f.name for f in model.fields}
    definitions: dict[str, Any] = {}
    for assoc in model.belongs_to_associations:
        if assoc.foreign_key and assoc.foreign_key not in declared:
            definitions[assoc.foreign_key] = (int | None, Field(default=None))
        type_column = assoc.polymorphic_type_column
        if type_column and type_column not in declared:
            definitions[type_column] = (str | None, Field(default=None))
    if model.positioning and model.positioning.field not in declared:
        definitions[model.positioning.field] = (int | None, Field(default=None))
    return definitions


# =============================================================================
# Create/Update Schemas
# =============================================================================


def generate_create_schema(
    model: ModelSpec,
    name_suffix: str = "Create",
) -> type[BaseModel]:
    """
    Generate a Pydantic schema for creating a record.

    Args:
        model: Model specification
        name_suffix: Suffix for the schema name

    Returns:
        Pydantic model for create operations
    """
    field_definitions: dict[str, Any] = {}
    for field in writable_fields(model):
        field_definitions[field.name] = _build_field_info(field)
    field_definitions.update(_implicit_field_definitions(model))

    return create_model(
        f"{camelize(model.name)}{name_suffix}",
        __doc__=f"Create schema for {model.name}",
        **field_definitions,
    )


def generate_update_schema(
    model: ModelSpec,
    name_suffix: str = "Update",
) -> type[BaseModel]:
    """
    Generate a Pydantic schema for updating a record.

    All fields are optional to support partial updates.
    """
    field_definitions: dict[str, Any] = {}
    for field in writable_fields(model):
        field_definitions[field.name] = (_field_type_to_python(field) | None, None)
    field_definitions.update(_implicit_field_definitions(model))

    return create_model(
        f"{camelize(model.name)}{name_suffix}",
        __doc__=f"Update schema for {model.name}",
        **field_definitions,
    )

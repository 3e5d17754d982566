"""
Model converter - converts string-keyed model descriptions to ModelSpec.

The external front-end (YAML files or a builder DSL) produces nested
dictionaries with string keys. This module resolves custom types, normalizes
shorthand forms and turns every validation failure into a DefinitionError.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from lcp_runtime.core.errors import DefinitionError, make_definition_error
from lcp_runtime.core.strings import humanize
from lcp_runtime.specs.field import BASE_TYPES, FieldSpec, ServiceRef
from lcp_runtime.specs.model import ModelSpec
from lcp_runtime.specs.types import TypeRegistry

logger = logging.getLogger(__name__)

_MODEL_KEYS = {
    "name",
    "label",
    "table_name",
    "fields",
    "associations",
    "scopes",
    "events",
    "validations",
    "positioning",
    "options",
}


# =============================================================================
# Error Conversion
# =============================================================================


def _format_validation_error(exc: ValidationError) -> str:
    """Collapse a pydantic ValidationError into a single readable line."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = str(err.get("msg", "")).removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


# =============================================================================
# Field Conversion
# =============================================================================


def _convert_enum_values(values: Any) -> list[dict[str, Any]]:
    """Accept plain strings or {value, label} mappings."""
    if values is None:
        return []
    if isinstance(values, Mapping):
        return [{"value": str(k), "label": str(v)} for k, v in values.items()]
    result: list[dict[str, Any]] = []
    for item in values:
        if isinstance(item, Mapping):
            value = item.get("value")
            result.append(
                {"value": str(value), "label": item.get("label") or humanize(str(value))}
            )
        else:
            result.append({"value": str(item), "label": humanize(str(item))})
    return result


def _convert_service_ref(value: Any) -> Any:
    if isinstance(value, Mapping) and "service" in value:
        return ServiceRef(service=str(value["service"]), options=dict(value.get("options") or {}))
    return value


def _convert_field(data: Mapping[str, Any], model_name: str, types: TypeRegistry) -> FieldSpec:
    name = data.get("name")
    if not name:
        raise make_definition_error("Field name is required", model=model_name, section="fields")
    type_name = str(data.get("type") or "")

    type_definition = None
    if type_name in BASE_TYPES:
        base_type = type_name
    elif type_name in types:
        type_definition = types.get(type_name)
        base_type = type_definition.base_type
    else:
        raise make_definition_error(
            f"Field type '{type_name}' is invalid", model=model_name, field=str(name)
        )

    attrs: dict[str, Any] = {
        "name": str(name),
        "type": type_name,
        "base_type": base_type,
        "label": data.get("label") or humanize(str(name)),
        "default": data.get("default"),
        "column_options": dict(data.get("column_options") or {}),
        "validations": list(data.get("validations") or []),
        "transforms": [str(t) for t in data.get("transforms") or []],
        "enum_values": _convert_enum_values(data.get("enum_values")),
        "computed": _convert_service_ref(data.get("computed")),
        "source": _convert_service_ref(data.get("source")),
        "type_definition": type_definition,
    }
    if base_type == "attachment":
        attrs["attachment"] = dict(data.get("options") or {})

    try:
        return FieldSpec.model_validate(attrs)
    except ValidationError as exc:
        raise make_definition_error(
            _format_validation_error(exc), model=model_name, section="fields", field=str(name)
        ) from exc


# =============================================================================
# Public API
# =============================================================================


def load_model_spec(data: Mapping[str, Any], types: TypeRegistry | None = None) -> ModelSpec:
    """
    Convert a string-keyed model description to a ModelSpec.

    Args:
        data: Parsed model description (e.g. from YAML)
        types: Custom type registry (defaults to one holding the built-ins)

    Returns:
        Validated, immutable ModelSpec

    Raises:
        DefinitionError: If the description is inconsistent

    Example:
        >>> spec = load_model_spec({
        ...     "name": "contact",
        ...     "fields": [{"name": "email", "type": "email"}],
        ... })
        >>> spec.table_name
        'contacts'
    """
    if not isinstance(data, Mapping):
        raise DefinitionError(f"model description must be a mapping, got {type(data).__name__}")
    types = types or TypeRegistry()

    model_name = data.get("name")
    if not model_name:
        raise DefinitionError("Model name is required")
    model_name = str(model_name)

    unknown = sorted(set(data) - _MODEL_KEYS - {"label_plural"})
    if unknown:
        logger.warning("Model '%s' has unrecognized keys: %s", model_name, ", ".join(unknown))

    options = dict(data.get("options") or {})
    positioning = data.get("positioning")
    if positioning is None and "positioning" in options:
        positioning = options.pop("positioning")

    fields = [_convert_field(f, model_name, types) for f in data.get("fields") or []]

    attrs: dict[str, Any] = {
        "name": model_name,
        "label": data.get("label"),
        "table_name": data.get("table_name"),
        "fields": fields,
        "associations": list(data.get("associations") or []),
        "scopes": list(data.get("scopes") or []),
        "events": list(data.get("events") or []),
        "validations": list(data.get("validations") or []),
        "positioning": positioning,
        "options": options,
    }

    try:
        spec = ModelSpec.model_validate(attrs)
    except ValidationError as exc:
        raise make_definition_error(_format_validation_error(exc), model=model_name) from exc

    logger.debug(
        "Loaded model %s (%d fields, %d associations)",
        spec.name,
        len(spec.fields),
        len(spec.associations),
    )
    return spec


def load_model_specs(
    items: Iterable[Mapping[str, Any]], types: TypeRegistry | None = None
) -> list[ModelSpec]:
    """Convert several descriptions, rejecting duplicate model names."""
    types = types or TypeRegistry()
    specs: list[ModelSpec] = []
    seen: set[str] = set()
    for item in items:
        spec = load_model_spec(item, types)
        if spec.name in seen:
            raise make_definition_error("Duplicate model definition", model=spec.name)
        seen.add(spec.name)
        specs.append(spec)
    return specs

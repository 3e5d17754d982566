"""
Custom field registry and record accessors.

Definitions are held per model name and may change while the runtime classes
are live. Classes built with ``custom_fields`` enabled bind themselves to the
registry; any change to a model's definitions re-installs the attribute
accessors on every bound class of that model.
"""

from __future__ import annotations

import inspect
import json
import logging
import threading
import weakref
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from lcp_runtime.runtime.record import class_member
from lcp_runtime.specs.custom_field import CustomFieldDefinition
from lcp_runtime.specs.model import CUSTOM_DATA_COLUMN

if TYPE_CHECKING:
    from lcp_runtime.runtime.record import Record

logger = logging.getLogger(__name__)


# =============================================================================
# custom_data access
# =============================================================================


def read_custom_data(record: Record) -> dict[str, Any]:
    """The record's custom values; text columns holding JSON are parsed."""
    raw = record._values.get(CUSTOM_DATA_COLUMN)
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning(
                "Unreadable %s on %s #%s",
                CUSTOM_DATA_COLUMN,
                record.__model__.name,
                record._values.get("id"),
            )
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def write_custom_data(record: Record, name: str, value: Any) -> None:
    data = read_custom_data(record)
    data[name] = value
    # A new dict, so dirty tracking sees the change
    record._values[CUSTOM_DATA_COLUMN] = data


class CustomFieldDescriptor:
    """Record attribute backed by one key of ``custom_data``."""

    def __init__(self, name: str):
        self.name = name

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.name, self)
        return read_custom_data(record).get(self.name)

    def __set__(self, record: Record, value: Any) -> None:
        write_custom_data(record, self.name, value)


def install_accessors(
    model_cls: type[Record], definitions: Iterable[CustomFieldDefinition]
) -> list[str]:
    """
    Replace the custom field attributes of a runtime class.

    Names already taken by a column or any other attribute are skipped.

    Returns:
        Names of the installed attributes
    """
    for name in model_cls._custom_field_accessors:
        if isinstance(model_cls.__dict__.get(name), CustomFieldDescriptor):
            delattr(model_cls, name)

    installed: list[str] = []
    for definition in definitions:
        name = definition.field_name
        taken = inspect.getattr_static(model_cls, name, None) is not None
        if taken or name in model_cls._column_names:
            logger.warning(
                "Custom field %s.%s clashes with an existing attribute; skipped",
                model_cls.__model__.name,
                name,
            )
            continue
        setattr(model_cls, name, CustomFieldDescriptor(name))
        installed.append(name)
    model_cls._custom_field_accessors = tuple(installed)
    return installed


# =============================================================================
# Registry
# =============================================================================


class CustomFieldRegistry:
    """
    Custom field definitions per model name.

    Example:
        registry = CustomFieldRegistry()
        registry.define("contact", [{"field_name": "nickname"}])
    """

    def __init__(self) -> None:
        self._definitions: dict[str, dict[str, CustomFieldDefinition]] = {}
        self._classes: dict[str, weakref.WeakSet[type[Record]]] = {}
        self._lock = threading.RLock()

    def for_model(self, model: str) -> list[CustomFieldDefinition]:
        """Active definitions of a model, ordered by position then name."""
        with self._lock:
            definitions = list(self._definitions.get(model, {}).values())
        active = [d for d in definitions if d.active]
        return sorted(active, key=lambda d: (d.position, d.field_name))

    def get(self, model: str, field_name: str) -> CustomFieldDefinition | None:
        with self._lock:
            return self._definitions.get(model, {}).get(field_name)

    def define(
        self,
        model: str,
        definitions: Iterable[CustomFieldDefinition | Mapping[str, Any]],
    ) -> list[CustomFieldDefinition]:
        """Add or replace definitions of a model by field name."""
        parsed = [
            d if isinstance(d, CustomFieldDefinition) else CustomFieldDefinition(**d)
            for d in definitions
        ]
        with self._lock:
            current = self._definitions.setdefault(model, {})
            for definition in parsed:
                current[definition.field_name] = definition
        self._refresh(model)
        return parsed

    def replace(
        self,
        model: str,
        definitions: Iterable[CustomFieldDefinition | Mapping[str, Any]],
    ) -> list[CustomFieldDefinition]:
        """Drop every definition of a model, then define the given ones."""
        with self._lock:
            self._definitions[model] = {}
        return self.define(model, definitions)

    def remove(self, model: str, field_name: str) -> bool:
        with self._lock:
            removed = self._definitions.get(model, {}).pop(field_name, None)
        if removed is None:
            return False
        self._refresh(model)
        return True

    def bind(self, model_cls: type[Record]) -> None:
        """Keep a runtime class's accessors in step with its model's definitions."""
        model = model_cls.__model__.name
        with self._lock:
            self._classes.setdefault(model, weakref.WeakSet()).add(model_cls)
        install_accessors(model_cls, self.for_model(model))

    def _refresh(self, model: str) -> None:
        with self._lock:
            classes = list(self._classes.get(model, ()))
        definitions = self.for_model(model)
        for model_cls in classes:
            install_accessors(model_cls, definitions)
        logger.debug("Custom fields of %s: %s", model, [d.field_name for d in definitions])

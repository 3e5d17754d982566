"""
Named service registry.

Services are plain callables (or accessor objects) looked up by category and
name. A registry is injected into the builder rather than held as global
state, so separate metadata universes (for example tests) never interfere.

Categories and calling conventions:

- ``transforms``  ``fn(value) -> value``
- ``validators``  ``fn(record, field=..., **options)``; adds its own errors
- ``conditions``  ``fn(record) -> bool``
- ``defaults``    ``fn(record, field_name) -> value``
- ``computed``    ``fn(record, **options) -> value``
- ``accessors``   object with ``get(record, options)`` and ``set(record, value, options)``
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from lcp_runtime.core.errors import ErrorContext, ServiceNotFoundError
from lcp_runtime.specs.field import FieldSpec

logger = logging.getLogger(__name__)

SERVICE_CATEGORIES = (
    "transforms",
    "validators",
    "conditions",
    "defaults",
    "computed",
    "accessors",
)


@dataclass
class ServiceRegistry:
    """Registry of named services grouped by category."""

    _services: dict[str, dict[str, Any]] = field(
        default_factory=lambda: {category: {} for category in SERVICE_CATEGORIES}
    )

    def _category(self, category: str) -> dict[str, Any]:
        if category not in self._services:
            raise ValueError(
                f"Invalid service category '{category}'. "
                f"Valid: {', '.join(SERVICE_CATEGORIES)}"
            )
        return self._services[category]

    def register(self, category: str, name: str, service: Any) -> None:
        """Register (or replace) a service."""
        self._category(category)[name] = service
        logger.debug("Registered %s service %s", category, name)

    def lookup(self, category: str, name: str) -> Any | None:
        """Return the service or None when it is not registered."""
        return self._category(category).get(name)

    def resolve(self, category: str, name: str, context: ErrorContext | None = None) -> Any:
        """
        Return the service or raise.

        Raises:
            ServiceNotFoundError: If no service is registered under that name
        """
        service = self._category(category).get(name)
        if service is None:
            raise ServiceNotFoundError(category, name, context)
        return service

    def registered(self, category: str, name: str) -> bool:
        return name in self._category(category)

    def names(self, category: str) -> list[str]:
        return sorted(self._category(category))

    def copy(self) -> ServiceRegistry:
        """Independent registry with the same registrations."""
        return ServiceRegistry({c: dict(s) for c, s in self._services.items()})


def is_dynamic_default(spec: FieldSpec, services: ServiceRegistry) -> bool:
    """True when the field default is resolved at runtime rather than a literal."""
    if spec.default is None:
        return False
    if spec.service_default:
        return True
    return isinstance(spec.default, str) and services.registered("defaults", spec.default)


# =============================================================================
# Built-in Transforms
# =============================================================================

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+\-.]*://")


def strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def downcase(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def normalize_url(value: Any) -> Any:
    """Prefix bare hosts with https://."""
    if not isinstance(value, str) or not value:
        return value
    stripped = value.strip()
    if _SCHEME_RE.match(stripped):
        return stripped
    return f"https://{stripped}"


def normalize_phone(value: Any) -> Any:
    """Keep digits only, preserving a leading +."""
    if not isinstance(value, str) or not value:
        return value
    stripped = value.strip()
    digits = re.sub(r"\D", "", stripped)
    return f"+{digits}" if stripped.startswith("+") else digits


# =============================================================================
# Built-in Defaults
# =============================================================================


def current_date(record: Any, field_name: str) -> date:
    return date.today()


def current_datetime(record: Any, field_name: str) -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


# =============================================================================
# Built-in Accessors
# =============================================================================


class JsonFieldAccessor:
    """Virtual field stored under ``options["key"]`` of the JSON column ``options["column"]``."""

    def get(self, record: Any, options: dict[str, Any]) -> Any:
        data = getattr(record, options["column"])
        if not isinstance(data, dict):
            return None
        return data.get(options["key"])

    def set(self, record: Any, value: Any, options: dict[str, Any]) -> None:
        column = options["column"]
        data = getattr(record, column)
        merged = dict(data) if isinstance(data, dict) else {}
        merged[options["key"]] = value
        setattr(record, column, merged)


BUILTIN_SERVICES: dict[str, dict[str, Callable[..., Any] | Any]] = {
    "transforms": {
        "strip": strip,
        "downcase": downcase,
        "normalize_url": normalize_url,
        "normalize_phone": normalize_phone,
    },
    "defaults": {
        "current_date": current_date,
        "current_datetime": current_datetime,
    },
    "accessors": {
        "json_field": JsonFieldAccessor(),
    },
}


def register_builtin_services(registry: ServiceRegistry | None = None) -> ServiceRegistry:
    """Register the built-in transforms, defaults and accessors."""
    registry = registry or ServiceRegistry()
    for category, services in BUILTIN_SERVICES.items():
        for name, service in services.items():
            registry.register(category, name, service)
    return registry

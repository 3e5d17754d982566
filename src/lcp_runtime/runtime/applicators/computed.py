"""
Computed applicator: derived and service-sourced virtual fields.

Computed values are derived before every save and after every load. A
template substitutes ``{field}`` placeholders with the current values (blank
for missing ones); a ``{"service": name}`` reference calls the registered
computed service with the record and the reference's options.

Fields sourced from an accessor service read and write through the service.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.record import Record, class_member
from lcp_runtime.specs.field import FieldSpec, ServiceRef

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


def render_template(template: str, record: Any) -> str:
    """Substitute ``{name}`` placeholders; None and unknown names render as ''."""

    def substitute(match: re.Match[str]) -> str:
        value = getattr(record, match.group(1), None)
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(substitute, template)


class ComputedDescriptor:
    """Read-only attribute holding the last derived value."""

    def __init__(self, name: str):
        self.name = name

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.name, self)
        return record._values.get(self.name)


class AccessorDescriptor:
    """Attribute delegated to an accessor service."""

    def __init__(self, name: str, accessor: Any, options: dict[str, Any]):
        self.name = name
        self.accessor = accessor
        self.options = options

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.name, self)
        return self.accessor.get(record, self.options)

    def __set__(self, record: Record, value: Any) -> None:
        for transform in type(record)._transforms.get(self.name, ()):
            value = transform(value)
        self.accessor.set(record, value, self.options)


class ComputedApplicator(Applicator):
    name = "computed"

    def apply(self, ctx: BuildContext) -> None:
        derivations: list[tuple[str, Callable[[Record], Any]]] = []

        for field in ctx.spec.fields:
            if isinstance(field.source, ServiceRef):
                self._apply_accessor(ctx, field, field.source)
            elif field.is_computed:
                setattr(ctx.model_cls, field.name, ComputedDescriptor(field.name))
                derivations.append((field.name, self._derivation(ctx, field)))

        if not derivations:
            return

        def compute_fields(record: Record) -> None:
            for name, derive in derivations:
                record._values[name] = derive(record)

        ctx.add_callback("before_save", compute_fields)
        ctx.add_callback("after_load", compute_fields)

    def _derivation(self, ctx: BuildContext, field: FieldSpec) -> Callable[[Record], Any]:
        computed = field.computed
        if isinstance(computed, ServiceRef):
            service = ctx.resolve_service("computed", computed.service, field.name)
            options = dict(computed.options)
            return lambda record: service(record, **options)

        template = str(computed)
        return lambda record: render_template(template, record)

    def _apply_accessor(self, ctx: BuildContext, field: FieldSpec, source: ServiceRef) -> None:
        accessor = ctx.resolve_service("accessors", source.service, field.name)
        setattr(ctx.model_cls, field.name, AccessorDescriptor(field.name, accessor, dict(source.options)))

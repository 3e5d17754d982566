"""Default applicator: literal and dynamic field defaults."""

from __future__ import annotations

import logging
from typing import Any

from lcp_runtime.core.errors import make_build_error
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.condition_evaluator import is_blank
from lcp_runtime.runtime.record import Record, cast_value
from lcp_runtime.runtime.services import is_dynamic_default
from lcp_runtime.specs.field import FieldKind

logger = logging.getLogger(__name__)


class DefaultApplicator(Applicator):
    """
    Literal defaults are placed at construction for attributes not supplied.

    Dynamic defaults (``{"service": name}`` or the name of a registered
    defaults service) run after initialization, only on new records, only for
    fields that were not supplied and are still blank.
    """

    name = "default"

    def apply(self, ctx: BuildContext) -> None:
        dynamic: list[tuple[str, Any]] = []

        for field in ctx.spec.fields:
            if field.default is None or field.is_computed or field.is_attachment:
                continue
            if is_dynamic_default(field, ctx.services):
                service_name = field.service_default or str(field.default)
                dynamic.append((field.name, ctx.resolve_service("defaults", service_name, field.name)))
            elif isinstance(field.default, dict) and field.base_type != FieldKind.JSON:
                raise make_build_error(
                    "default mapping must name a service", ctx.spec.name, field.name
                )
            else:
                try:
                    value = cast_value(field.base_type, field.default)
                except (ValueError, TypeError) as exc:
                    raise make_build_error(
                        f"default {field.default!r} is not a valid {field.base_type.value}",
                        ctx.spec.name,
                        field.name,
                    ) from exc
                ctx.model_cls._literal_defaults[field.name] = value

        if not dynamic:
            return

        def apply_dynamic_defaults(record: Record) -> None:
            if not record.new_record:
                return
            for name, service in dynamic:
                if record.was_supplied(name) or not is_blank(getattr(record, name)):
                    continue
                value = service(record, name)
                if value is not None:
                    setattr(record, name, value)

        ctx.add_callback("after_initialize", apply_dynamic_defaults)
        logger.debug(
            "Dynamic defaults for %s: %s", ctx.spec.name, ", ".join(n for n, _ in dynamic)
        )

"""Positioning applicator: binds a PositionManager to the runtime class."""

from __future__ import annotations

import logging

from lcp_runtime.core.errors import make_build_error
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.positioning import PositionManager
from lcp_runtime.specs.field import FieldKind

logger = logging.getLogger(__name__)


class PositioningApplicator(Applicator):
    name = "positioning"

    def apply(self, ctx: BuildContext) -> None:
        config = ctx.spec.positioning
        if config is None:
            return

        field = ctx.spec.get_field(config.field)
        if field is not None:
            if field.is_virtual or field.is_attachment:
                raise make_build_error(
                    "positioning requires a stored field", ctx.spec.name, config.field
                )
            if field.base_type != FieldKind.INTEGER:
                raise make_build_error(
                    f"positioning field must be an integer, not {field.base_type.value}",
                    ctx.spec.name,
                    config.field,
                )

        table = ctx.model_cls.__table__
        scope_columns = []
        for name in config.scope:
            column = ctx.spec.resolve_column(name)
            scope_field = ctx.spec.get_field(column)
            if column not in table.c or (scope_field is not None and not scope_field.has_column):
                raise make_build_error(
                    f"positioning scope '{name}' is not a column", ctx.spec.name, config.field
                )
            scope_columns.append(column)

        manager = PositionManager(ctx.model_cls, config.field, scope_columns)
        ctx.model_cls.position_manager = manager
        ctx.add_callback("before_create", manager.before_create)
        ctx.add_callback("before_update", manager.before_update)
        ctx.add_callback("before_destroy", manager.before_destroy)
        logger.debug(
            "Positioning %s.%s scoped by %s",
            ctx.spec.name,
            config.field,
            scope_columns or "nothing",
        )

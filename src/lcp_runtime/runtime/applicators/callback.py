"""
Callback applicator: lifecycle events and field-change watchers.

Lifecycle events dispatch from the hook of the same name. A field-change
watcher dispatches from ``after_update`` only, only when the stored value of
its field differs from the persisted one, and only when its condition holds
on the new state. Creating a record never fires a field-change event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from lcp_runtime.core.errors import make_build_error
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.event_bus import EventPayload
from lcp_runtime.runtime.record import Record
from lcp_runtime.specs.model import EventSpec

logger = logging.getLogger(__name__)


class CallbackApplicator(Applicator):
    name = "callback"

    def apply(self, ctx: BuildContext) -> None:
        for event in ctx.spec.events:
            if event.is_lifecycle:
                ctx.add_callback(event.name, self._lifecycle(ctx, event))
            else:
                ctx.add_callback("after_update", self._field_change(ctx, event))
            logger.debug("Event %s.%s (%s)", ctx.spec.name, event.name, event.type.value)

    def _lifecycle(self, ctx: BuildContext, event: EventSpec) -> Callable[[Record], None]:
        dispatcher, evaluator = ctx.dispatcher, ctx.evaluator
        model_name, event_name, condition = ctx.spec.name, event.name, event.condition

        def dispatch_lifecycle(record: Record) -> None:
            if condition is not None and not evaluator.evaluate(condition, record):
                return
            changes = {} if event_name.endswith("_destroy") else record.changes
            dispatcher.dispatch(
                EventPayload(model=model_name, event_name=event_name, record=record, changes=changes)
            )

        return dispatch_lifecycle

    def _field_change(self, ctx: BuildContext, event: EventSpec) -> Callable[[Record], None]:
        field_name = str(event.field)
        field = ctx.spec.get_field(field_name)
        if field is not None and not field.has_column:
            raise make_build_error(
                f"event '{event.name}' watches '{field_name}', which is not stored",
                ctx.spec.name,
                field_name,
            )
        column = ctx.spec.resolve_column(field_name)
        dispatcher, evaluator = ctx.dispatcher, ctx.evaluator
        model_name, event_name, condition = ctx.spec.name, event.name, event.condition

        def dispatch_field_change(record: Record) -> None:
            old = (record._persisted or {}).get(column)
            new = record._values.get(column)
            if old == new:
                return
            if condition is not None and not evaluator.evaluate(condition, record):
                return
            dispatcher.dispatch(
                EventPayload(
                    model=model_name,
                    event_name=event_name,
                    record=record,
                    old_value=old,
                    new_value=new,
                    changes=record.changes,
                    field=field_name,
                )
            )

        return dispatch_field_change

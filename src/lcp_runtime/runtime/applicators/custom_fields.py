"""Custom field applicator: ``custom_data`` accessors, validation and defaults."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from lcp_runtime.core.errors import make_build_error
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.condition_evaluator import is_blank
from lcp_runtime.runtime.custom_fields import read_custom_data, write_custom_data
from lcp_runtime.runtime.record import Record
from lcp_runtime.specs.custom_field import CustomFieldDefinition, CustomFieldType
from lcp_runtime.specs.model import CUSTOM_DATA_COLUMN

logger = logging.getLogger(__name__)

CUSTOM_FIELD_METHODS = ("read_custom_field", "write_custom_field")


def _number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return None


def check_custom_value(record: Record, definition: CustomFieldDefinition, value: Any) -> None:
    """Add the errors one custom value earns under its definition."""
    name = definition.field_name
    if is_blank(value):
        if definition.required:
            record.errors.add(name, "can't be blank")
        return

    kind = definition.custom_type
    if kind.is_textual:
        size = len(str(value))
        if definition.min_length and size < definition.min_length:
            record.errors.add(
                name, f"is too short (minimum is {definition.min_length} characters)"
            )
        if definition.max_length and size > definition.max_length:
            record.errors.add(
                name, f"is too long (maximum is {definition.max_length} characters)"
            )
    elif kind.is_numeric:
        number = _number(value)
        if number is None:
            record.errors.add(name, "is not a number")
            return
        if kind == CustomFieldType.INTEGER and number != number.to_integral_value():
            record.errors.add(name, "must be an integer")
        if definition.min_value is not None and number < Decimal(str(definition.min_value)):
            record.errors.add(
                name, f"must be greater than or equal to {definition.min_value:g}"
            )
        if definition.max_value is not None and number > Decimal(str(definition.max_value)):
            record.errors.add(name, f"must be less than or equal to {definition.max_value:g}")
    elif kind == CustomFieldType.ENUM and definition.enum_values:
        if str(value) not in definition.allowed_values:
            record.errors.add(name, "is not included in the list")


class CustomFieldApplicator(Applicator):
    """
    Runtime-defined fields stored in the ``custom_data`` JSON column.

    Definitions come from the builder's CustomFieldRegistry and are read when
    a record is validated or initialized, so definition changes apply to live
    classes without a rebuild.
    """

    name = "custom_fields"

    def apply(self, ctx: BuildContext) -> None:
        if not ctx.spec.options.custom_fields:
            return
        registry = ctx.custom_fields
        if registry is None:
            raise make_build_error("custom fields need a custom field registry", ctx.spec.name)
        if CUSTOM_DATA_COLUMN not in ctx.model_cls.__table__.c:
            raise make_build_error(
                f"custom fields need a '{CUSTOM_DATA_COLUMN}' column", ctx.spec.name
            )
        taken = ctx.spec.attribute_names | {a.name for a in ctx.spec.associations}
        for method in CUSTOM_FIELD_METHODS:
            if method in taken:
                raise make_build_error(
                    f"'{method}' is reserved when custom fields are enabled",
                    ctx.spec.name,
                    method,
                )

        model_cls = ctx.model_cls
        model_name = ctx.spec.name

        def read_custom_field(record: Record, name: str) -> Any:
            return read_custom_data(record).get(name)

        def write_custom_field(record: Record, name: str, value: Any) -> None:
            write_custom_data(record, name, value)

        model_cls.read_custom_field = read_custom_field  # type: ignore[attr-defined]
        model_cls.write_custom_field = write_custom_field  # type: ignore[attr-defined]

        def validate_custom_fields(record: Record) -> None:
            data = read_custom_data(record)
            for definition in registry.for_model(model_name):
                check_custom_value(record, definition, data.get(definition.field_name))

        def apply_custom_defaults(record: Record) -> None:
            if not record.new_record:
                return
            data = read_custom_data(record)
            for definition in registry.for_model(model_name):
                if is_blank(definition.default_value):
                    continue
                if data.get(definition.field_name) is None:
                    write_custom_data(record, definition.field_name, definition.default_value)

        ctx.add_validator(validate_custom_fields)
        ctx.add_callback("after_initialize", apply_custom_defaults)
        registry.bind(model_cls)
        logger.debug("Custom fields enabled for %s", model_name)

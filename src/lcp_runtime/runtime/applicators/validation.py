"""
Validation applicator.

Every rule becomes a validator closure on the runtime class. A rule with a
``when`` condition is skipped while the condition is false. All validators
run on each ``valid()`` call; none stops the others.

Default messages:

    presence      can't be blank
    length        is too short (minimum is N characters) / is too long ... /
                  is the wrong length (should be N characters)
    numericality  is not a number / must be greater than N / ...
    format        is invalid
    inclusion     is not included in the list
    exclusion     is reserved
    uniqueness    has already been taken
    comparison    failed comparison (<operator>) with <field_ref>
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

import sqlalchemy as sa

from lcp_runtime.core.errors import make_build_error
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.condition_evaluator import compare_values, is_blank
from lcp_runtime.runtime.query import column_for
from lcp_runtime.runtime.record import Record
from lcp_runtime.specs.field import FieldSpec, ValidationKind, ValidationSpec

logger = logging.getLogger(__name__)

Check = Callable[[Record, str, Any], None]

_NUMERIC_CHECKS = {
    "greater_than": ("gt", "must be greater than {count}"),
    "greater_than_or_equal_to": ("gte", "must be greater than or equal to {count}"),
    "less_than": ("lt", "must be less than {count}"),
    "less_than_or_equal_to": ("lte", "must be less than or equal to {count}"),
    "equal_to": ("eq", "must be equal to {count}"),
    "other_than": ("not_eq", "must be other than {count}"),
}


def _allows(options: dict[str, Any], value: Any) -> bool:
    """True when ``allow_nil``/``allow_blank`` exempt the value."""
    if value is None and (options.get("allow_nil") or options.get("allow_blank")):
        return True
    return bool(options.get("allow_blank")) and is_blank(value)


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return None


def effective_rules(field: FieldSpec) -> list[ValidationSpec]:
    """Field rules plus the custom type's defaults for rule types the field does not declare."""
    rules = list(field.validations)
    if field.type_definition:
        declared = {r.type for r in field.validations}
        rules.extend(r for r in field.type_definition.validations if r.type not in declared)
    return rules


class ValidationApplicator(Applicator):
    name = "validation"

    def apply(self, ctx: BuildContext) -> None:
        count = 0
        for field in ctx.spec.fields:
            if field.is_enum:
                ctx.add_validator(self._enum_validator(field))
            for rule in effective_rules(field):
                ctx.add_validator(self._field_validator(ctx, field.name, rule))
                count += 1

        for rule in ctx.spec.validations:
            if rule.field:
                ctx.add_validator(self._field_validator(ctx, rule.field, rule))
            elif rule.is_custom:
                ctx.add_validator(self._custom_validator(ctx, None, rule))
            else:
                raise make_build_error(
                    f"model-level {rule.type.value} validation requires 'field'", ctx.spec.name
                )
            count += 1
        logger.debug("Applied %d validation rule(s) to %s", count, ctx.spec.name)

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def _guarded(
        self, ctx: BuildContext, rule: ValidationSpec, check: Callable[[Record], None]
    ) -> Callable[[Record], None]:
        if rule.when is None:
            return check
        evaluator, condition = ctx.evaluator, rule.when

        def validator(record: Record) -> None:
            if evaluator.evaluate(condition, record):
                check(record)

        return validator

    def _enum_validator(self, field: FieldSpec) -> Callable[[Record], None]:
        allowed = set(field.enum_value_names)
        name = field.name

        def validate_enum(record: Record) -> None:
            value = getattr(record, name)
            if value is not None and str(value) not in allowed:
                record.errors.add(name, "is not included in the list")

        return validate_enum

    def _custom_validator(
        self, ctx: BuildContext, field_name: str | None, rule: ValidationSpec
    ) -> Callable[[Record], None]:
        service = ctx.resolve_service("validators", str(rule.service), field_name)
        options = dict(rule.options)

        def check(record: Record) -> None:
            service(record, field=field_name, **options)

        return self._guarded(ctx, rule, check)

    def _field_validator(
        self, ctx: BuildContext, field_name: str, rule: ValidationSpec
    ) -> Callable[[Record], None]:
        if rule.is_custom:
            return self._custom_validator(ctx, field_name, rule)

        checks: dict[ValidationKind, Callable[..., Check]] = {
            ValidationKind.PRESENCE: self._presence,
            ValidationKind.LENGTH: self._length,
            ValidationKind.NUMERICALITY: self._numericality,
            ValidationKind.FORMAT: self._format,
            ValidationKind.INCLUSION: self._inclusion,
            ValidationKind.EXCLUSION: self._exclusion,
            ValidationKind.UNIQUENESS: self._uniqueness,
            ValidationKind.COMPARISON: self._comparison,
        }
        run = checks[rule.type](ctx, rule)

        def check(record: Record) -> None:
            run(record, field_name, getattr(record, field_name, None))

        return self._guarded(ctx, rule, check)

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _presence(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        message = rule.message or "can't be blank"

        def check(record: Record, name: str, value: Any) -> None:
            if is_blank(value):
                record.errors.add(name, message)

        return check

    def _length(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        options = rule.options
        minimum, maximum, exact = options.get("minimum"), options.get("maximum"), options.get("is")
        within = options.get("in") or options.get("within")
        if within:
            minimum, maximum = within[0], within[-1]

        def check(record: Record, name: str, value: Any) -> None:
            if value is None or _allows(options, value):
                return
            size = len(value) if hasattr(value, "__len__") else len(str(value))
            if exact is not None and size != exact:
                record.errors.add(
                    name, rule.message or f"is the wrong length (should be {exact} characters)"
                )
            if minimum is not None and size < minimum:
                record.errors.add(
                    name, rule.message or f"is too short (minimum is {minimum} characters)"
                )
            if maximum is not None and size > maximum:
                record.errors.add(
                    name, rule.message or f"is too long (maximum is {maximum} characters)"
                )

        return check

    def _numericality(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        options = rule.options

        def check(record: Record, name: str, value: Any) -> None:
            if value is None or _allows(options, value):
                return
            number = _to_decimal(value)
            if number is None:
                record.errors.add(name, rule.message or "is not a number")
                return
            if options.get("only_integer") and number != number.to_integral_value():
                record.errors.add(name, rule.message or "must be an integer")
                return
            for key, (operator, template) in _NUMERIC_CHECKS.items():
                bound = options.get(key)
                if bound is None:
                    continue
                if compare_values(number, operator, bound) is False:
                    record.errors.add(name, rule.message or template.format(count=bound))
            if options.get("odd") and number % 2 != 1:
                record.errors.add(name, rule.message or "must be odd")
            if options.get("even") and number % 2 != 0:
                record.errors.add(name, rule.message or "must be even")

        return check

    def _format(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        options = rule.options
        with_re = re.compile(options["with"]) if options.get("with") else None
        without_re = re.compile(options["without"]) if options.get("without") else None
        message = rule.message or "is invalid"

        def check(record: Record, name: str, value: Any) -> None:
            if _allows(options, value):
                return
            text = "" if value is None else str(value)
            if with_re is not None and not with_re.search(text):
                record.errors.add(name, message)
            elif without_re is not None and without_re.search(text):
                record.errors.add(name, message)

        return check

    def _inclusion(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        options = rule.options
        members = list(options.get("in") or options.get("within") or [])
        message = rule.message or "is not included in the list"

        def check(record: Record, name: str, value: Any) -> None:
            if _allows(options, value):
                return
            if value not in members:
                record.errors.add(name, message)

        return check

    def _exclusion(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        options = rule.options
        members = list(options.get("in") or options.get("within") or [])
        message = rule.message or "is reserved"

        def check(record: Record, name: str, value: Any) -> None:
            if _allows(options, value):
                return
            if value in members:
                record.errors.add(name, message)

        return check

    def _uniqueness(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        options = rule.options
        scope = options.get("scope") or []
        if isinstance(scope, str):
            scope = [scope]
        case_sensitive = options.get("case_sensitive", True)
        message = rule.message or "has already been taken"

        def check(record: Record, name: str, value: Any) -> None:
            if value is None or _allows(options, value):
                return
            model_cls = type(record)
            column = column_for(model_cls, name)
            if not case_sensitive and isinstance(value, str):
                query = model_cls.query().filter(sa.func.lower(column) == value.lower())
            else:
                query = model_cls.where({name: value})
            if scope:
                query = query.where({s: getattr(record, s, None) for s in scope})
            if record.id is not None:
                query = query.where_not(id=record.id)
            if query.exists():
                record.errors.add(name, message)

        return check

    def _comparison(self, ctx: BuildContext, rule: ValidationSpec) -> Check:
        field_ref = str(rule.field_ref)
        operator = rule.operator.value if rule.operator else "eq"
        message = rule.message or f"failed comparison ({operator}) with {field_ref}"

        def check(record: Record, name: str, value: Any) -> None:
            other = getattr(record, field_ref, None)
            if value is None or other is None:
                return
            result = compare_values(value, operator, other)
            if result is None:
                logger.debug(
                    "Comparison %s.%s %s %s skipped: operands are not comparable",
                    ctx.spec.name,
                    name,
                    operator,
                    field_ref,
                )
                return
            if not result:
                record.errors.add(name, message)

        return check

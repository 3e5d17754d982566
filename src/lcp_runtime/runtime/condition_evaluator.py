"""
Condition evaluator.

Evaluates Condition trees against a runtime record or a plain mapping. The
same evaluator backs validation ``when`` guards, event conditions, nested
attribute rejection and (externally) UI visibility and permission rules, so
operator semantics must not depend on the caller.

Absent or incomparable operands make ordering and pattern operators return
False instead of raising; each such case is logged at DEBUG level so that
misconfigured conditions can be traced.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any

from dateutil import parser as date_parser

from lcp_runtime.core.errors import ServiceNotFoundError
from lcp_runtime.specs.condition import (
    CompoundCondition,
    Condition,
    ConditionOperator,
    LeafCondition,
    ServiceCondition,
    parse_condition,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Value Helpers
# =============================================================================


def read_value(entity: Any, field: str) -> Any:
    """Read a field from a record or mapping; unknown fields read as None."""
    if isinstance(entity, Mapping):
        return entity.get(field)
    return getattr(entity, field, None)


def is_blank(value: Any) -> bool:
    """None, empty or whitespace-only strings and empty collections are blank."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list | tuple | set | frozenset | dict):
        return len(value) == 0
    return False


def _kind(value: Any) -> str | None:
    """Primitive kind used to decide between direct and string comparison."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int | float | Decimal):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, date):
        return "date"
    return None


def to_comparable_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, date | time):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _loose_equal(left: Any, right: Any) -> bool:
    left_kind = _kind(left)
    if left_kind is not None and left_kind == _kind(right):
        return bool(left == right)
    return to_comparable_string(left) == to_comparable_string(right)


def _to_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float | Decimal):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _to_temporal(value: Any, like: Any) -> Any:
    """Coerce ``value`` to the temporal type of ``like`` (date or datetime)."""
    if isinstance(value, str):
        try:
            value = date_parser.isoparse(value.strip())
        except ValueError:
            return None
    if isinstance(like, datetime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime.combine(value, time.min)
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def coerce_pair(left: Any, right: Any) -> tuple[Any, Any] | None:
    """
    Bring two operands to a mutually orderable form.

    Returns:
        The coerced pair, or None when the operands cannot be ordered
    """
    if isinstance(left, date) or isinstance(right, date):
        anchor = left if isinstance(left, date) else right
        if isinstance(left, datetime) or isinstance(right, datetime):
            anchor = left if isinstance(left, datetime) else right
        lval, rval = _to_temporal(left, anchor), _to_temporal(right, anchor)
        if lval is None or rval is None:
            return None
        return lval, rval
    lnum, rnum = _to_number(left), _to_number(right)
    if lnum is not None and rnum is not None:
        return lnum, rnum
    if isinstance(left, str) and isinstance(right, str):
        return left, right
    return None


def compare_values(left: Any, operator: str, right: Any) -> bool | None:
    """
    Ordered comparison with coercion.

    Returns:
        The comparison result, or None when either side is absent or the
        operands are incomparable
    """
    if left is None or right is None:
        return None
    pair = coerce_pair(left, right)
    if pair is None:
        return None
    lval, rval = pair
    try:
        if operator == "gt":
            return bool(lval > rval)
        if operator == "gte":
            return bool(lval >= rval)
        if operator == "lt":
            return bool(lval < rval)
        if operator == "lte":
            return bool(lval <= rval)
        if operator == "eq":
            return bool(lval == rval)
        if operator == "not_eq":
            return bool(lval != rval)
    except TypeError:
        # Naive vs aware datetimes
        return None
    raise ValueError(f"unknown comparison operator '{operator}'")


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


# =============================================================================
# Evaluator
# =============================================================================


class ConditionEvaluator:
    """
    Evaluates conditions with access to condition services.

    Args:
        services: Service registry used for ``{"service": name}`` conditions
    """

    def __init__(self, services: Any = None) -> None:
        self.services = services

    def evaluate(
        self,
        condition: Condition | dict[str, Any] | None,
        entity: Any,
        previous_values: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Evaluate a condition against an entity.

        Args:
            condition: Condition tree (or its mapping form); None is always true
            entity: Runtime record or plain mapping of field values
            previous_values: Persisted values before the pending change

        Returns:
            True if the condition holds
        """
        if condition is None:
            return True
        if isinstance(condition, dict):
            condition = parse_condition(condition)
        if previous_values is None and not isinstance(entity, Mapping):
            previous_values = getattr(entity, "previous_values", None)

        if isinstance(condition, LeafCondition):
            return self._evaluate_leaf(condition, entity, previous_values)
        if isinstance(condition, ServiceCondition):
            return self._evaluate_service(condition, entity)
        if isinstance(condition, CompoundCondition):
            return self._evaluate_compound(condition, entity, previous_values)
        raise TypeError(f"not a condition: {condition!r}")

    def _evaluate_compound(
        self,
        condition: CompoundCondition,
        entity: Any,
        previous_values: Mapping[str, Any] | None,
    ) -> bool:
        children = condition.conditions
        if condition.kind == "all":
            return all(self.evaluate(c, entity, previous_values) for c in children)
        if condition.kind == "any":
            return any(self.evaluate(c, entity, previous_values) for c in children)
        return not self.evaluate(children[0], entity, previous_values)

    def _evaluate_service(self, condition: ServiceCondition, entity: Any) -> bool:
        service = self.services.lookup("conditions", condition.service) if self.services else None
        if service is None:
            raise ServiceNotFoundError("conditions", condition.service)
        return bool(service(entity))

    def _evaluate_leaf(
        self,
        condition: LeafCondition,
        entity: Any,
        previous_values: Mapping[str, Any] | None,
    ) -> bool:
        op = condition.operator
        current = read_value(entity, condition.field)

        if op == ConditionOperator.CHANGED:
            if previous_values is None or condition.field not in previous_values:
                return False
            return not _loose_equal(previous_values[condition.field], current)

        if condition.previous:
            if previous_values is None:
                actual = None
            else:
                actual = previous_values.get(condition.field)
        else:
            actual = current
        expected = condition.value

        if op == ConditionOperator.EQ:
            return _loose_equal(actual, expected)
        if op == ConditionOperator.NOT_EQ:
            return not _loose_equal(actual, expected)
        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            members = {to_comparable_string(v) for v in expected or []}
            found = to_comparable_string(actual) in members
            return found if op == ConditionOperator.IN else not found
        if op == ConditionOperator.BLANK:
            return is_blank(actual)
        if op == ConditionOperator.PRESENT:
            return not is_blank(actual)
        if op in (ConditionOperator.MATCHES, ConditionOperator.NOT_MATCHES):
            if not isinstance(expected, str):
                logger.debug(
                    "Condition on %s: pattern operand is not a string", condition.field
                )
                return False
            found = _compile(expected).search(to_comparable_string(actual)) is not None
            return found if op == ConditionOperator.MATCHES else not found

        result = compare_values(actual, op.value, expected)
        if result is None:
            logger.debug(
                "Condition on %s evaluated false: %r %s %r is not comparable",
                condition.field,
                actual,
                op.value,
                expected,
            )
            return False
        return result


def evaluate_condition(
    condition: Condition | dict[str, Any] | None,
    entity: Any,
    previous_values: Mapping[str, Any] | None = None,
    services: Any = None,
) -> bool:
    """
    Evaluate a condition without holding an evaluator instance.

    Args:
        condition: Condition tree or mapping form
        entity: Runtime record or plain mapping
        previous_values: Persisted values before the pending change
        services: Optional service registry for service conditions

    Returns:
        True if the condition holds
    """
    return ConditionEvaluator(services).evaluate(condition, entity, previous_values)


__all__ = [
    "ConditionEvaluator",
    "compare_values",
    "evaluate_condition",
    "is_blank",
    "read_value",
    "to_comparable_string",
]

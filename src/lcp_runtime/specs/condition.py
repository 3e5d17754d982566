"""
Condition specification types.

Conditions are stateless boolean predicates over a record's values. They gate
validations, events, defaults and nested-attribute rejection, and are reused
verbatim by external UI visibility and permission layers.

Three shapes are supported:

- Leaf:     {"field": "status", "operator": "eq", "value": "open"}
- Service:  {"service": "credit_check_passed"}
- Compound: {"all": [...]}, {"any": [...]}, {"not": {...}}
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# =============================================================================
# Operators
# =============================================================================


class ConditionOperator(StrEnum):
    """Leaf condition operators."""

    EQ = "eq"
    NOT_EQ = "not_eq"
    IN = "in"
    NOT_IN = "not_in"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BLANK = "blank"
    PRESENT = "present"
    MATCHES = "matches"
    NOT_MATCHES = "not_matches"
    CHANGED = "changed"


# Operators that do not read the "value" key
UNARY_OPERATORS = frozenset(
    {
        ConditionOperator.BLANK,
        ConditionOperator.PRESENT,
        ConditionOperator.CHANGED,
    }
)

LIST_OPERATORS = frozenset({ConditionOperator.IN, ConditionOperator.NOT_IN})
REGEX_OPERATORS = frozenset({ConditionOperator.MATCHES, ConditionOperator.NOT_MATCHES})

# Alternate spelling still found in older model files
_OPERATOR_ALIASES = {"neq": "not_eq"}


# =============================================================================
# Condition Variants
# =============================================================================


class LeafCondition(BaseModel):
    """
    Field/operator/value predicate.

    Attributes:
        field: Field name resolved on the record
        operator: Comparison operator
        value: Comparison operand (list for in/not_in, pattern for matches)
        previous: Read the field from the previous persisted values instead
    """

    kind: Literal["leaf"] = "leaf"
    field: str = Field(description="Field name")
    operator: ConditionOperator = Field(description="Operator")
    value: Any = Field(default=None, description="Comparison operand")
    previous: bool = Field(default=False, description="Compare the previous value")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def normalize_operator(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("operator"), str):
            op = data["operator"]
            if op in _OPERATOR_ALIASES:
                data = {**data, "operator": _OPERATOR_ALIASES[op]}
        return data

    @model_validator(mode="after")
    def check_operand(self) -> LeafCondition:
        if self.operator in LIST_OPERATORS and not isinstance(self.value, list | tuple):
            raise ValueError(f"operator '{self.operator}' requires a list value")
        if self.operator in REGEX_OPERATORS:
            if not isinstance(self.value, str):
                raise ValueError(f"operator '{self.operator}' requires a pattern string")
            try:
                re.compile(self.value)
            except re.error as exc:
                raise ValueError(f"invalid regular expression '{self.value}': {exc}") from exc
        return self


class ServiceCondition(BaseModel):
    """Delegates to a predicate registered under the ``conditions`` category."""

    kind: Literal["service"] = "service"
    service: str = Field(description="Registered condition service name")

    model_config = ConfigDict(frozen=True)


class CompoundCondition(BaseModel):
    """Logical grouping of other conditions."""

    kind: Literal["all", "any", "not"] = Field(description="Logical operator")
    conditions: list[Condition] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_arity(self) -> CompoundCondition:
        if self.kind == "not" and len(self.conditions) != 1:
            raise ValueError("'not' condition wraps exactly one condition")
        if not self.conditions:
            raise ValueError(f"'{self.kind}' condition requires at least one condition")
        return self


Condition = LeafCondition | ServiceCondition | CompoundCondition

CompoundCondition.model_rebuild()


# =============================================================================
# Parsing
# =============================================================================


def parse_condition(data: Any) -> Condition:
    """
    Build a Condition from its string-keyed description.

    Args:
        data: Mapping in leaf, service, or compound shape (or an existing Condition)

    Returns:
        The typed condition

    Raises:
        ValueError: When the mapping matches no known shape
    """
    if isinstance(data, LeafCondition | ServiceCondition | CompoundCondition):
        return data
    if not isinstance(data, dict):
        raise ValueError(f"condition must be a mapping, got {type(data).__name__}")

    data = {str(k): v for k, v in data.items()}
    if "field" in data:
        return LeafCondition.model_validate(data)
    if "service" in data:
        return ServiceCondition(service=str(data["service"]))
    for key in ("all", "any"):
        if key in data:
            items = data[key]
            if not isinstance(items, list):
                raise ValueError(f"'{key}' condition requires a list")
            return CompoundCondition(kind=key, conditions=[parse_condition(c) for c in items])
    if "not" in data:
        return CompoundCondition(kind="not", conditions=[parse_condition(data["not"])])
    raise ValueError("condition must contain a 'field', 'service', 'all', 'any' or 'not' key")


def condition_fields(condition: Condition) -> set[str]:
    """Collect every field name referenced by a condition tree."""
    if isinstance(condition, LeafCondition):
        return {condition.field}
    if isinstance(condition, CompoundCondition):
        names: set[str] = set()
        for child in condition.conditions:
            names |= condition_fields(child)
        return names
    return set()


def condition_services(condition: Condition) -> set[str]:
    """Collect every condition service name referenced by a condition tree."""
    if isinstance(condition, ServiceCondition):
        return {condition.service}
    if isinstance(condition, CompoundCondition):
        names: set[str] = set()
        for child in condition.conditions:
            names |= condition_services(child)
        return names
    return set()

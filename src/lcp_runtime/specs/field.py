"""
Field specification types.

Defines field types, column options, validation rules, attachment options and
custom type definitions.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lcp_runtime.specs.condition import Condition, parse_condition

# =============================================================================
# Field Type System
# =============================================================================


class FieldKind(StrEnum):
    """Base field types."""

    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    ENUM = "enum"
    JSON = "json"
    ATTACHMENT = "attachment"
    RICH_TEXT = "rich_text"


BASE_TYPES = frozenset(k.value for k in FieldKind)


class ColumnOptions(BaseModel):
    """Physical column options."""

    limit: int | None = Field(default=None, description="Max length for string columns")
    precision: int | None = Field(default=None, description="Precision for decimal columns")
    scale: int | None = Field(default=None, description="Scale for decimal columns")
    null: bool | None = Field(default=None, description="Column nullability")

    model_config = ConfigDict(frozen=True, extra="ignore")

    def merged(self, override: ColumnOptions) -> ColumnOptions:
        """Overlay another set of options; values set on ``override`` win."""
        data = self.model_dump()
        data.update(override.model_dump(exclude_none=True))
        return ColumnOptions(**data)


class ServiceRef(BaseModel):
    """Reference to a named service with optional static options."""

    service: str = Field(description="Registered service name")
    options: dict[str, Any] = Field(default_factory=dict, description="Service options")

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Validators
# =============================================================================


class ValidationKind(StrEnum):
    """Types of validation rules."""

    PRESENCE = "presence"
    LENGTH = "length"
    NUMERICALITY = "numericality"
    FORMAT = "format"
    INCLUSION = "inclusion"
    EXCLUSION = "exclusion"
    UNIQUENESS = "uniqueness"
    COMPARISON = "comparison"
    CUSTOM = "custom"


class ComparisonOperator(StrEnum):
    """Operators for comparison rules."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NOT_EQ = "not_eq"


class ValidationSpec(BaseModel):
    """
    Validation rule for a field or model.

    Examples:
        - ValidationSpec(type="presence")
        - ValidationSpec(type="length", options={"maximum": 100})
        - ValidationSpec(type="comparison", operator="gte", field_ref="start_date")
        - ValidationSpec(type="custom", service="deal_credit_limit")
        - ValidationSpec(type="presence", when={"field": "stage", "operator": "eq", "value": "won"})
    """

    type: ValidationKind = Field(description="Validation type")
    options: dict[str, Any] = Field(default_factory=dict, description="Type-specific options")
    message: str | None = Field(default=None, description="Custom error message")
    when: Condition | None = Field(default=None, description="Rule applies only when true")
    field_ref: str | None = Field(default=None, description="Sibling field for comparison")
    operator: ComparisonOperator | None = Field(default=None, description="Comparison operator")
    service: str | None = Field(default=None, description="Validator service for custom rules")
    field: str | None = Field(default=None, description="Target field of a model-level rule")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {str(k): v for k, v in data.items()}
        options = dict(data.get("options") or {})
        # Message and comparison keys may be given inside options
        for key in ("message", "field_ref", "operator", "service"):
            if key in options and data.get(key) is None:
                data[key] = options.pop(key)
        if data.get("validator") and not data.get("service"):
            data["service"] = data.pop("validator")
        data["options"] = options
        if data.get("when") is not None:
            data["when"] = parse_condition(data["when"])
        return data

    @model_validator(mode="after")
    def check_type_requirements(self) -> ValidationSpec:
        if self.type == ValidationKind.COMPARISON:
            if not self.field_ref:
                raise ValueError("comparison validation requires 'field_ref'")
            if self.operator is None:
                raise ValueError("comparison validation requires 'operator'")
        if self.type == ValidationKind.CUSTOM and not self.service:
            raise ValueError("custom validation requires 'service'")
        if self.type == ValidationKind.FORMAT:
            for key in ("with", "without"):
                pattern = self.options.get(key)
                if pattern is None:
                    continue
                try:
                    re.compile(pattern)
                except (re.error, TypeError) as exc:
                    raise ValueError(f"invalid format pattern '{pattern}': {exc}") from exc
        return self

    @property
    def is_custom(self) -> bool:
        return self.type == ValidationKind.CUSTOM

    @property
    def is_comparison(self) -> bool:
        return self.type == ValidationKind.COMPARISON


# =============================================================================
# Attachments
# =============================================================================

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(B|KB|MB|GB)\s*$", re.IGNORECASE)
_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size(size: str | int | None) -> int | None:
    """
    Parse a human size string into bytes.

    Examples:
        >>> parse_size("5MB")
        5242880
        >>> parse_size("1.5 KB")
        1536
    """
    if size is None:
        return None
    if isinstance(size, int):
        return size
    match = _SIZE_RE.match(size)
    if not match:
        return None
    return int(float(match.group(1)) * _SIZE_UNITS[match.group(2).upper()])


class AttachmentOptions(BaseModel):
    """Configuration for attachment fields."""

    multiple: bool = Field(default=False, description="Allow multiple files")
    max_size: str | int | None = Field(default=None, description="Maximum file size")
    min_size: str | int | None = Field(default=None, description="Minimum file size")
    content_types: list[str] | None = Field(
        default=None, description="Allowed MIME types (image/* wildcards allowed)"
    )
    max_files: int | None = Field(default=None, description="Maximum files for multiple")

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("max_size", "min_size")
    @classmethod
    def validate_size(cls, v: str | int | None) -> str | int | None:
        if v is not None and parse_size(v) is None:
            raise ValueError(f"invalid size '{v}' (expected e.g. '5MB')")
        return v

    @property
    def max_bytes(self) -> int | None:
        return parse_size(self.max_size)

    @property
    def min_bytes(self) -> int | None:
        return parse_size(self.min_size)


# =============================================================================
# Custom Types
# =============================================================================


class TypeDefinition(BaseModel):
    """
    A named custom type built on a base type.

    Fields declared with a custom type inherit its transforms, default
    validations and column options.
    """

    name: str = Field(description="Type name")
    base_type: FieldKind = Field(description="Underlying base type")
    transforms: list[str] = Field(default_factory=list, description="Inherited transforms")
    validations: list[ValidationSpec] = Field(
        default_factory=list, description="Default validations"
    )
    column_options: ColumnOptions = Field(default_factory=ColumnOptions)

    model_config = ConfigDict(frozen=True)

    @field_validator("base_type")
    @classmethod
    def validate_base_type(cls, v: FieldKind) -> FieldKind:
        if v == FieldKind.ATTACHMENT:
            raise ValueError("custom types cannot be built on attachment")
        return v


# =============================================================================
# Fields
# =============================================================================


class EnumValue(BaseModel):
    """A single enum value with optional label."""

    value: str
    label: str | None = None

    model_config = ConfigDict(frozen=True)


class FieldSpec(BaseModel):
    """
    Field specification for a model.

    Attributes:
        name: Field identifier
        type: Declared type name (base or custom)
        base_type: Resolved base type
        default: Literal, named dynamic default, or {"service": name}
        computed: Template string or service reference
        source: "external" or service accessor reference
    """

    name: str = Field(description="Field name")
    type: str = Field(description="Declared type name")
    base_type: FieldKind = Field(description="Resolved base type")
    label: str | None = Field(default=None, description="Human-readable label")
    default: Any = Field(default=None, description="Default value")
    column_options: ColumnOptions = Field(default_factory=ColumnOptions)
    validations: list[ValidationSpec] = Field(default_factory=list)
    transforms: list[str] = Field(default_factory=list, description="Normalization steps")
    enum_values: list[EnumValue] = Field(default_factory=list)
    computed: str | ServiceRef | None = Field(default=None, description="Derivation")
    source: Literal["external"] | ServiceRef | None = Field(
        default=None, description="Virtual value source"
    )
    attachment: AttachmentOptions | None = Field(default=None)
    type_definition: TypeDefinition | None = Field(default=None)

    model_config = ConfigDict(frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.isidentifier():
            raise ValueError(f"Field name '{v}' must be a valid identifier")
        return v

    @model_validator(mode="after")
    def check_consistency(self) -> FieldSpec:
        if self.source is not None and self.computed is not None:
            raise ValueError(
                f"field '{self.name}' cannot have both 'source' and 'computed'"
            )
        if self.base_type == FieldKind.ENUM:
            if not self.enum_values:
                raise ValueError(f"enum field '{self.name}' must declare at least one value")
            if (
                self.default is not None
                and not isinstance(self.default, dict)
                and str(self.default) not in self.enum_value_names
            ):
                raise ValueError(
                    f"default '{self.default}' of enum field '{self.name}' "
                    f"is not one of {self.enum_value_names}"
                )
        return self

    @property
    def is_computed(self) -> bool:
        return self.computed is not None

    @property
    def is_virtual(self) -> bool:
        """Virtual fields own no physical column."""
        return self.source is not None or self.computed is not None

    @property
    def is_external(self) -> bool:
        return self.source == "external"

    @property
    def is_attachment(self) -> bool:
        return self.base_type == FieldKind.ATTACHMENT

    @property
    def is_enum(self) -> bool:
        return self.base_type == FieldKind.ENUM

    @property
    def has_column(self) -> bool:
        return not self.is_virtual and not self.is_attachment

    @property
    def enum_value_names(self) -> list[str]:
        return [v.value for v in self.enum_values]

    @property
    def effective_column_options(self) -> ColumnOptions:
        """Type-level column options overlaid with field-level ones."""
        if self.type_definition:
            return self.type_definition.column_options.merged(self.column_options)
        return self.column_options

    @property
    def effective_transforms(self) -> list[str]:
        """Inherited type transforms followed by the field's own, without repeats."""
        inherited = self.type_definition.transforms if self.type_definition else []
        result: list[str] = []
        for name in [*inherited, *self.transforms]:
            if name not in result:
                result.append(name)
        return result

    @property
    def service_default(self) -> str | None:
        """Service name when the default is {"service": name}."""
        if isinstance(self.default, dict):
            service = self.default.get("service")
            return str(service) if service else None
        return None

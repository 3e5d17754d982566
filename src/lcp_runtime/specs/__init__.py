"""
Model specification type definitions.

This module exports the immutable metadata IR consumed by the schema
synchronizer and the model builder.
"""

from lcp_runtime.specs.condition import (
    CompoundCondition,
    Condition,
    ConditionOperator,
    LeafCondition,
    ServiceCondition,
    condition_fields,
    condition_services,
    parse_condition,
)
from lcp_runtime.specs.custom_field import CustomFieldDefinition, CustomFieldType
from lcp_runtime.specs.field import (
    AttachmentOptions,
    ColumnOptions,
    ComparisonOperator,
    EnumValue,
    FieldKind,
    FieldSpec,
    ServiceRef,
    TypeDefinition,
    ValidationKind,
    ValidationSpec,
    parse_size,
)
from lcp_runtime.specs.model import (
    AssociationKind,
    AssociationSpec,
    DependentAction,
    EventKind,
    EventSpec,
    ModelOptions,
    ModelSpec,
    NestedAttributesSpec,
    PositioningSpec,
    ScopeSpec,
)
from lcp_runtime.specs.types import BUILTIN_TYPES, TypeRegistry

__all__ = [
    # Conditions
    "CompoundCondition",
    "Condition",
    "ConditionOperator",
    "LeafCondition",
    "ServiceCondition",
    "condition_fields",
    "condition_services",
    "parse_condition",
    # Custom fields
    "CustomFieldDefinition",
    "CustomFieldType",
    # Fields
    "AttachmentOptions",
    "ColumnOptions",
    "ComparisonOperator",
    "EnumValue",
    "FieldKind",
    "FieldSpec",
    "ServiceRef",
    "TypeDefinition",
    "ValidationKind",
    "ValidationSpec",
    "parse_size",
    # Models
    "AssociationKind",
    "AssociationSpec",
    "DependentAction",
    "EventKind",
    "EventSpec",
    "ModelOptions",
    "ModelSpec",
    "NestedAttributesSpec",
    "PositioningSpec",
    "ScopeSpec",
    # Types
    "BUILTIN_TYPES",
    "TypeRegistry",
]

"""
Build pipeline stages.

``PIPELINE`` is the fixed application order used by ModelBuilder.
"""

from lcp_runtime.runtime.applicators.association import AssociationApplicator
from lcp_runtime.runtime.applicators.attachment import AttachmentApplicator
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.applicators.callback import CallbackApplicator
from lcp_runtime.runtime.applicators.computed import ComputedApplicator, render_template
from lcp_runtime.runtime.applicators.custom_fields import CustomFieldApplicator
from lcp_runtime.runtime.applicators.default import DefaultApplicator
from lcp_runtime.runtime.applicators.positioning import PositioningApplicator
from lcp_runtime.runtime.applicators.scope import ScopeApplicator
from lcp_runtime.runtime.applicators.transform import TransformApplicator
from lcp_runtime.runtime.applicators.validation import ValidationApplicator

PIPELINE: tuple[type[Applicator], ...] = (
    TransformApplicator,
    DefaultApplicator,
    ComputedApplicator,
    ValidationApplicator,
    AssociationApplicator,
    ScopeApplicator,
    PositioningApplicator,
    AttachmentApplicator,
    CustomFieldApplicator,
    CallbackApplicator,
)

__all__ = [
    "PIPELINE",
    "Applicator",
    "AssociationApplicator",
    "AttachmentApplicator",
    "BuildContext",
    "CallbackApplicator",
    "ComputedApplicator",
    "CustomFieldApplicator",
    "DefaultApplicator",
    "PositioningApplicator",
    "ScopeApplicator",
    "TransformApplicator",
    "ValidationApplicator",
    "render_template",
]

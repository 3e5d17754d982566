"""
Runtime for compiled models.

Schema synchronization, the record base class, the build pipeline and the
registry that publishes built classes.
"""

from lcp_runtime.runtime.attachments import AttachedFile, AttachmentStore, InMemoryAttachmentStore
from lcp_runtime.runtime.builder import BuildResult, BuildState, ModelBuilder
from lcp_runtime.runtime.condition_evaluator import ConditionEvaluator, evaluate_condition
from lcp_runtime.runtime.custom_fields import CustomFieldRegistry
from lcp_runtime.runtime.database import DatabaseManager
from lcp_runtime.runtime.event_bus import EventDispatcher, EventPayload
from lcp_runtime.runtime.logging import setup_logging, setup_logging_from_config
from lcp_runtime.runtime.migrations import MigrationPlan, SchemaSynchronizer, plan_migrations
from lcp_runtime.runtime.model_generator import generate_create_schema, generate_update_schema
from lcp_runtime.runtime.positioning import MoveResult, MoveStatus, compute_list_version
from lcp_runtime.runtime.query import Query
from lcp_runtime.runtime.record import Errors, Record
from lcp_runtime.runtime.registry import ModelRegistry
from lcp_runtime.runtime.services import ServiceRegistry, register_builtin_services

__all__ = [
    # Storage
    "DatabaseManager",
    "MigrationPlan",
    "SchemaSynchronizer",
    "plan_migrations",
    # Building
    "BuildResult",
    "BuildState",
    "ModelBuilder",
    "ModelRegistry",
    "CustomFieldRegistry",
    # Records
    "Errors",
    "Query",
    "Record",
    "MoveResult",
    "MoveStatus",
    "compute_list_version",
    # Services and events
    "ConditionEvaluator",
    "EventDispatcher",
    "EventPayload",
    "ServiceRegistry",
    "evaluate_condition",
    "register_builtin_services",
    # Attachments
    "AttachedFile",
    "AttachmentStore",
    "InMemoryAttachmentStore",
    # Schemas and logging
    "generate_create_schema",
    "generate_update_schema",
    "setup_logging",
    "setup_logging_from_config",
]

"""
Model builder.

Compiles one ModelSpec into a fresh runtime class:

    UNBUILT -> SCHEMA_SYNCED -> PIPELINE_APPLIED -> USABLE
                      (any error) -> FAILED

The table is reconciled first, then a new ``Record`` subclass is created and
every applicator in ``PIPELINE`` runs over it in order. Nothing is shared
between builds, so building the same spec twice yields two independent
classes that behave identically.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import sqlalchemy as sa

from lcp_runtime.config import RuntimeConfig
from lcp_runtime.core.errors import ErrorContext, LcpError, make_build_error
from lcp_runtime.core.strings import camelize
from lcp_runtime.runtime.applicators import PIPELINE, BuildContext
from lcp_runtime.runtime.attachments import AttachmentStore, InMemoryAttachmentStore
from lcp_runtime.runtime.condition_evaluator import ConditionEvaluator
from lcp_runtime.runtime.custom_fields import CustomFieldRegistry
from lcp_runtime.runtime.database import DatabaseManager
from lcp_runtime.runtime.event_bus import EventDispatcher
from lcp_runtime.runtime.logging import log_build_event
from lcp_runtime.runtime.migrations import MigrationPlan, SchemaSynchronizer
from lcp_runtime.runtime.record import FieldDescriptor, Record
from lcp_runtime.runtime.sa_schema import JSONText
from lcp_runtime.runtime.services import ServiceRegistry, register_builtin_services
from lcp_runtime.specs.condition import condition_services
from lcp_runtime.specs.field import FieldKind
from lcp_runtime.specs.model import ModelSpec

logger = logging.getLogger(__name__)

# Class query API; fields and associations may reuse these names, scopes may not
RECORD_CLASS_METHODS = frozenset(
    n for n, member in vars(Record).items() if isinstance(member, classmethod)
)

# Per-record API that declared names must not shadow
RESERVED_NAMES = (
    frozenset(n for n in dir(Record) if not n.startswith("_")) - RECORD_CLASS_METHODS
) | {"errors"}


class BuildState(StrEnum):
    UNBUILT = "unbuilt"
    SCHEMA_SYNCED = "schema_synced"
    PIPELINE_APPLIED = "pipeline_applied"
    USABLE = "usable"
    FAILED = "failed"


@dataclass
class BuildResult:
    """Outcome of one build."""

    model: str
    state: BuildState = BuildState.UNBUILT
    model_cls: type[Record] | None = None
    plan: MigrationPlan | None = None
    error: Exception | None = None


def _column_kind(spec: ModelSpec, column: sa.Column) -> FieldKind:
    field = spec.get_field(column.name)
    if field is not None:
        return field.base_type
    if isinstance(column.type, sa.JSON | JSONText):
        return FieldKind.JSON
    if isinstance(column.type, sa.Integer):
        return FieldKind.INTEGER
    if isinstance(column.type, sa.DateTime):
        return FieldKind.DATETIME
    return FieldKind.STRING


class ModelBuilder:
    """
    Builds runtime classes from model specifications.

    Args:
        db: Database manager shared by every built class
        services: Service registry (built-ins registered when omitted)
        dispatcher: Receives lifecycle and field-change events
        attachment_store: Storage for attachment fields
        resolver: Maps association target names to runtime classes; defaults
            to the classes built by this builder plus ``external``
        config: Runtime configuration
        custom_fields: Definitions for models with custom fields enabled
    """

    def __init__(
        self,
        db: DatabaseManager,
        services: ServiceRegistry | None = None,
        dispatcher: EventDispatcher | None = None,
        attachment_store: AttachmentStore | None = None,
        resolver: Callable[[str], Any] | None = None,
        config: RuntimeConfig | None = None,
        custom_fields: CustomFieldRegistry | None = None,
    ):
        self.db = db
        self.services = services if services is not None else register_builtin_services()
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self.attachment_store = (
            attachment_store if attachment_store is not None else InMemoryAttachmentStore()
        )
        self.config = config or RuntimeConfig()
        self.custom_fields = custom_fields if custom_fields is not None else CustomFieldRegistry()
        self.evaluator = ConditionEvaluator(self.services)
        self.synchronizer = SchemaSynchronizer(
            db,
            services=self.services,
            json_fallback=self.config.json_column_fallback,
            record_history=self.config.record_history,
        )
        self.models: dict[str, type[Record]] = {}
        self.external: dict[str, Any] = {}
        self.results: dict[str, BuildResult] = {}
        self._resolver = resolver

    def resolve(self, name: str) -> Any:
        if self._resolver is not None:
            return self._resolver(name)
        return self.models.get(name) or self.external.get(name)

    def state_of(self, model_name: str) -> BuildState:
        result = self.results.get(model_name)
        return result.state if result else BuildState.UNBUILT

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build(self, spec: ModelSpec) -> type[Record]:
        """
        Synchronize the schema and compile a runtime class.

        Returns:
            The new runtime class

        Raises:
            BuildError: If the schema cannot be synchronized or the pipeline
                rejects the definition (unknown services, invalid positioning,
                unknown scope columns, reserved names)
        """
        result = BuildResult(model=spec.name)
        self.results[spec.name] = result
        try:
            self._check_reserved_names(spec)
            self._check_condition_services(spec)

            result.plan = self.synchronizer.ensure_table(spec)
            result.state = BuildState.SCHEMA_SYNCED

            model_cls = self._create_class(spec)
            ctx = BuildContext(
                spec=spec,
                model_cls=model_cls,
                services=self.services,
                evaluator=self.evaluator,
                dispatcher=self.dispatcher,
                attachment_store=self.attachment_store,
                resolver=self.resolve,
                custom_fields=self.custom_fields,
            )
            for applicator_cls in PIPELINE:
                applicator_cls().apply(ctx)
            result.state = BuildState.PIPELINE_APPLIED

            self._bind_label_method(spec, model_cls)
        except LcpError as exc:
            self._fail(result, exc)
            raise
        except (ValueError, TypeError, KeyError) as exc:
            error = make_build_error(str(exc), spec.name)
            self._fail(result, error)
            raise error from exc

        result.model_cls = model_cls
        result.state = BuildState.USABLE
        self.models[spec.name] = model_cls
        log_build_event(
            logger,
            spec.name,
            "Model built",
            level=logging.DEBUG,
            table=model_cls.__table__.name,
            columns=len(model_cls._column_names),
            validators=len(model_cls._validators),
        )
        return model_cls

    def _fail(self, result: BuildResult, error: Exception) -> None:
        result.state = BuildState.FAILED
        result.error = error
        logger.error("Build of model %s failed: %s", result.model, error)

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _check_reserved_names(self, spec: ModelSpec) -> None:
        names = [f.name for f in spec.fields]
        names += [a.name for a in spec.associations]
        names += [f"{a.name}_attributes" for a in spec.associations if a.nested_attributes]
        for name in names:
            if name in RESERVED_NAMES:
                raise make_build_error(f"'{name}' is reserved by the record API", spec.name, name)
        for scope in spec.scopes:
            if scope.name in RESERVED_NAMES or scope.name in RECORD_CLASS_METHODS:
                raise make_build_error(
                    f"'{scope.name}' is reserved by the record API", spec.name, scope.name
                )

        declared = {f.name for f in spec.fields}
        for assoc in spec.associations:
            if assoc.name in declared:
                raise make_build_error(
                    f"association '{assoc.name}' collides with a field", spec.name, assoc.name
                )

    def _check_condition_services(self, spec: ModelSpec) -> None:
        """Every condition service referenced by the model must be registered."""
        conditions = [(e.name, e.condition) for e in spec.events]
        for f in spec.fields:
            conditions += [(f.name, r.when) for r in f.validations]
        conditions += [(r.field, r.when) for r in spec.validations]
        for owner, condition in conditions:
            if condition is None:
                continue
            for name in sorted(condition_services(condition)):
                self.services.resolve("conditions", name, ErrorContext(model=spec.name, field=owner))

    # -------------------------------------------------------------------------
    # Class creation
    # -------------------------------------------------------------------------

    def _create_class(self, spec: ModelSpec) -> type[Record]:
        table = self.synchronizer.table_for(spec)
        external = tuple(f.name for f in spec.fields if f.is_external)

        namespace: dict[str, Any] = {
            "__module__": __name__,
            "__doc__": f"Runtime model for {spec.label or spec.name}.",
            "__model__": spec,
            "__table__": table,
            "__db__": self.db,
            "__services__": self.services,
            "__evaluator__": self.evaluator,
            "_callbacks": {},
            "_validators": [],
            "_transforms": {},
            "_literal_defaults": {},
            "_scopes": {},
            "_column_names": tuple(c.name for c in table.columns),
            "_memory_names": external,
            "position_manager": None,
        }
        for column in table.columns:
            namespace[column.name] = FieldDescriptor(column.name, _column_kind(spec, column))
        for name in external:
            field = spec.get_field(name)
            namespace[name] = FieldDescriptor(name, field.base_type if field else None)

        return type(camelize(spec.name), (Record,), namespace)

    def _bind_label_method(self, spec: ModelSpec, model_cls: type[Record]) -> None:
        label_method = spec.options.label_method
        if not label_method or label_method == "to_s":
            return
        if label_method not in spec.attribute_names and not hasattr(model_cls, label_method):
            raise make_build_error(f"label_method '{label_method}' is not an attribute", spec.name)

        def to_label(record: Record) -> str:
            value = getattr(record, label_method)
            if callable(value):
                value = value()
            return "" if value is None else str(value)

        model_cls.to_label = to_label  # type: ignore[method-assign]

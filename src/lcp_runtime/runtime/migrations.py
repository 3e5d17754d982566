"""
Schema synchronization for runtime models.

Detects differences between a ModelSpec and the existing database table and
applies them additively.

Supported operations:
- Create missing tables
- Add missing columns (with literal defaults)
- Add missing indexes

Never performed (reported as warnings instead):
- Remove columns
- Change column types
- Rename columns
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateColumn, CreateIndex, CreateTable

from lcp_runtime.core.errors import ErrorContext, SchemaSyncError
from lcp_runtime.runtime.database import DatabaseManager
from lcp_runtime.runtime.logging import log_build_event
from lcp_runtime.runtime.sa_schema import build_table
from lcp_runtime.runtime.services import ServiceRegistry
from lcp_runtime.specs.model import ModelSpec

logger = logging.getLogger(__name__)

# =============================================================================
# Migration Types
# =============================================================================


class MigrationAction(StrEnum):
    """Types of migration actions."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    ADD_INDEX = "add_index"


@dataclass
class MigrationStep:
    """A single migration step."""

    action: MigrationAction
    table: str
    column: str | None = None
    sql: str | None = None
    details: dict[str, Any] | None = None


@dataclass
class MigrationPlan:
    """A migration plan for one model."""

    table: str
    steps: list[MigrationStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.steps) == 0

    @property
    def created_table(self) -> bool:
        return any(s.action == MigrationAction.CREATE_TABLE for s in self.steps)

    @property
    def added_columns(self) -> list[str]:
        return [s.column for s in self.steps if s.action == MigrationAction.ADD_COLUMN and s.column]


# =============================================================================
# Migration History
# =============================================================================


class MigrationHistory:
    """
    Tracks applied schema steps in the database.

    Creates a ``_lcp_schema_migrations`` table on first use.
    """

    TABLE_NAME = "_lcp_schema_migrations"

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.table = sa.Table(
            self.TABLE_NAME,
            sa.MetaData(),
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("applied_at", sa.String(40), nullable=False),
            sa.Column("action", sa.String(40), nullable=False),
            sa.Column("table_name", sa.String(255), nullable=False),
            sa.Column("column_name", sa.String(255)),
            sa.Column("sql_executed", sa.Text()),
            sa.Column("details", sa.Text()),
        )

    def record(self, conn: sa.Connection, steps: list[MigrationStep]) -> None:
        """Record executed steps on the given connection."""
        self.table.create(conn, checkfirst=True)
        now = datetime.now(UTC).isoformat()
        conn.execute(
            self.table.insert(),
            [
                {
                    "applied_at": now,
                    "action": step.action.value,
                    "table_name": step.table,
                    "column_name": step.column,
                    "sql_executed": step.sql,
                    "details": json.dumps(step.details) if step.details else None,
                }
                for step in steps
            ],
        )

    def get_history(self, table_name: str | None = None) -> list[dict[str, Any]]:
        """Get applied steps, most recent first."""
        if not self.db.table_exists(self.TABLE_NAME):
            return []
        query = sa.select(self.table).order_by(self.table.c.id.desc())
        if table_name:
            query = query.where(self.table.c.table_name == table_name)
        with self.db.connection() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]


# =============================================================================
# Schema Synchronizer
# =============================================================================


class SchemaSynchronizer:
    """
    Idempotent, additive reconciliation of model tables.

    Args:
        db: Database manager
        services: Service registry used to tell dynamic from literal defaults
        json_fallback: Store json fields as TEXT
        record_history: Record applied steps in the history table
    """

    def __init__(
        self,
        db: DatabaseManager,
        services: ServiceRegistry | None = None,
        json_fallback: bool = False,
        record_history: bool = True,
    ):
        self.db = db
        self.services = services
        self.json_fallback = json_fallback
        self.history = MigrationHistory(db) if record_history else None

    def table_for(self, model: ModelSpec) -> sa.Table:
        """Declared table of a model."""
        return build_table(model, services=self.services, json_fallback=self.json_fallback)

    def plan(self, model: ModelSpec) -> MigrationPlan:
        """
        Compare a model with the database without changing anything.

        Args:
            model: Model specification

        Returns:
            Migration plan with steps and warnings
        """
        table = self.table_for(model)
        dialect = self.db.engine.dialect
        plan = MigrationPlan(table=table.name)

        try:
            with self.db.connection() as conn:
                inspector = sa.inspect(conn)
                if not inspector.has_table(table.name):
                    plan.steps.append(
                        MigrationStep(
                            action=MigrationAction.CREATE_TABLE,
                            table=table.name,
                            sql=str(CreateTable(table).compile(dialect=dialect)).strip(),
                            details={"columns": [c.name for c in table.columns]},
                        )
                    )
                    for index in sorted(table.indexes, key=lambda i: str(i.name)):
                        plan.steps.append(self._index_step(table, index))
                    return plan

                existing = {c["name"] for c in inspector.get_columns(table.name)}
                existing_indexes = {i["name"] for i in inspector.get_indexes(table.name)}
        except SQLAlchemyError as exc:
            raise SchemaSyncError(
                f"could not inspect table '{table.name}': {exc}", ErrorContext(model=model.name)
            ) from exc

        preparer = dialect.identifier_preparer
        for column in table.columns:
            if column.name in existing:
                continue
            column_sql = str(CreateColumn(column).compile(dialect=dialect)).strip()
            plan.steps.append(
                MigrationStep(
                    action=MigrationAction.ADD_COLUMN,
                    table=table.name,
                    column=column.name,
                    sql=f"ALTER TABLE {preparer.format_table(table)} ADD COLUMN {column_sql}",
                    details={"type": str(column.type)},
                )
            )

        for index in sorted(table.indexes, key=lambda i: str(i.name)):
            if index.name not in existing_indexes:
                plan.steps.append(self._index_step(table, index))

        declared = {c.name for c in table.columns}
        for name in sorted(existing - declared):
            plan.warnings.append(
                f"Column '{name}' in table '{table.name}' is not declared by model "
                f"'{model.name}'; it is left untouched."
            )
        return plan

    def _index_step(self, table: sa.Table, index: sa.Index) -> MigrationStep:
        return MigrationStep(
            action=MigrationAction.ADD_INDEX,
            table=table.name,
            column=",".join(c.name for c in index.columns),
            sql=str(CreateIndex(index).compile(dialect=self.db.engine.dialect)).strip(),
        )

    def ensure_table(self, model: ModelSpec) -> MigrationPlan:
        """
        Create or extend the model's table.

        Args:
            model: Model specification

        Returns:
            The executed plan

        Raises:
            SchemaSyncError: If any DDL statement fails
        """
        plan = self.plan(model)
        for warning in plan.warnings:
            logger.warning(warning)
        if plan.is_empty:
            logger.debug("Table %s is up to date", plan.table)
            return plan

        current: MigrationStep | None = None
        try:
            with self.db.transaction() as conn:
                for step in plan.steps:
                    current = step
                    conn.exec_driver_sql(step.sql or "")
                if self.history is not None:
                    current = None
                    self.history.record(conn, plan.steps)
        except SQLAlchemyError as exc:
            where = f"{current.action.value} on {current.table}" if current else "history"
            raise SchemaSyncError(
                f"schema synchronization failed ({where}): {exc}",
                ErrorContext(model=model.name, field=current.column if current else None),
            ) from exc

        log_build_event(
            logger,
            model.name,
            "Schema synchronized",
            table=plan.table,
            steps=[s.action.value for s in plan.steps],
            added_columns=plan.added_columns,
        )
        return plan


def plan_migrations(db: DatabaseManager, models: list[ModelSpec]) -> list[MigrationPlan]:
    """
    Plan migrations for several models without executing them.

    Useful for previewing what a reload would do.
    """
    synchronizer = SchemaSynchronizer(db, record_history=False)
    return [synchronizer.plan(model) for model in models]

"""
SQLAlchemy Table bridge for ModelSpec.

Converts a ModelSpec into a SQLAlchemy ``Table``. The same table object
drives schema synchronization (create table / add column) and record
persistence.

The module uses **SQLAlchemy Core only**: no ORM, no Session.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy.types import TypeDecorator

from lcp_runtime.runtime.services import ServiceRegistry, is_dynamic_default
from lcp_runtime.specs.field import FieldKind, FieldSpec
from lcp_runtime.specs.model import CUSTOM_DATA_COLUMN, TIMESTAMP_COLUMNS, ModelSpec

logger = logging.getLogger(__name__)

POLYMORPHIC_TYPE_LIMIT = 255


class JSONText(TypeDecorator):
    """JSON stored as TEXT for databases without a usable native JSON type."""

    impl = sa.Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(value, default=str)

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return json.loads(value)


# ---------------------------------------------------------------------------
# Type mapping
# ---------------------------------------------------------------------------


def field_type_to_sa(spec: FieldSpec, json_fallback: bool = False) -> Any:
    """Map a field's base type and column options to a SQLAlchemy type instance."""
    options = spec.effective_column_options
    kind = spec.base_type

    if kind in (FieldKind.STRING, FieldKind.ENUM):
        # Enum values are enforced by validation, not by the database
        return sa.String(options.limit) if options.limit else sa.String(255)
    if kind in (FieldKind.TEXT, FieldKind.RICH_TEXT):
        return sa.Text()
    if kind == FieldKind.INTEGER:
        return sa.Integer()
    if kind == FieldKind.DECIMAL:
        return sa.Numeric(options.precision, options.scale)
    if kind == FieldKind.BOOLEAN:
        return sa.Boolean()
    if kind == FieldKind.DATE:
        return sa.Date()
    if kind == FieldKind.DATETIME:
        return sa.DateTime()
    if kind == FieldKind.JSON:
        return JSONText() if json_fallback else sa.JSON()
    raise ValueError(f"field '{spec.name}' of type '{kind}' has no column")


def literal_server_default(value: Any) -> Any:
    """Render a scalar literal default for DDL; None for non-scalar values."""
    if isinstance(value, bool):
        return sa.true() if value else sa.false()
    if isinstance(value, int | float | Decimal):
        return sa.text(str(value))
    if isinstance(value, str):
        return value
    if isinstance(value, datetime | date):
        return value.isoformat()
    return None


# ---------------------------------------------------------------------------
# Column builders
# ---------------------------------------------------------------------------


def field_to_column(
    spec: FieldSpec,
    services: ServiceRegistry | None = None,
    json_fallback: bool = False,
) -> sa.Column:
    """Convert a stored FieldSpec into a ``Column``."""
    options = spec.effective_column_options
    kwargs: dict[str, Any] = {"nullable": True if options.null is None else options.null}

    dynamic = spec.service_default is not None or (
        services is not None and is_dynamic_default(spec, services)
    )
    if spec.default is not None and not dynamic:
        server_default = literal_server_default(spec.default)
        if server_default is not None:
            kwargs["server_default"] = server_default

    return sa.Column(spec.name, field_type_to_sa(spec, json_fallback), **kwargs)


def implicit_columns(model: ModelSpec, json_fallback: bool = False) -> list[sa.Column]:
    """Columns the model owns without declaring them as fields."""
    declared = {f.name for f in model.fields}
    columns: list[sa.Column] = []

    for assoc in model.belongs_to_associations:
        fk = assoc.foreign_key
        if fk and fk not in declared:
            columns.append(sa.Column(fk, sa.Integer(), nullable=True))
            declared.add(fk)
        type_col = assoc.polymorphic_type_column
        if type_col and type_col not in declared:
            columns.append(sa.Column(type_col, sa.String(POLYMORPHIC_TYPE_LIMIT), nullable=True))
            declared.add(type_col)

    if model.positioning and model.positioning.field not in declared:
        columns.append(sa.Column(model.positioning.field, sa.Integer(), nullable=True))
        declared.add(model.positioning.field)

    if model.options.timestamps:
        for name in TIMESTAMP_COLUMNS:
            if name not in declared:
                columns.append(sa.Column(name, sa.DateTime(), nullable=True))

    if model.options.custom_fields and CUSTOM_DATA_COLUMN not in declared:
        json_type = JSONText() if json_fallback else sa.JSON()
        columns.append(sa.Column(CUSTOM_DATA_COLUMN, json_type, nullable=True))
    return columns


def index_definitions(model: ModelSpec) -> list[tuple[str, list[str]]]:
    """(index name, columns) for belongs_to foreign keys and positioning scopes."""
    table = model.resolved_table_name
    indexes: list[tuple[str, list[str]]] = []
    for assoc in model.belongs_to_associations:
        if not assoc.foreign_key:
            continue
        if assoc.polymorphic_type_column:
            cols = [assoc.foreign_key, assoc.polymorphic_type_column]
        else:
            cols = [assoc.foreign_key]
        indexes.append((f"ix_{table}_{'_'.join(cols)}", cols))
    if model.positioning:
        cols = [model.resolve_column(s) for s in model.positioning.scope]
        cols.append(model.positioning.field)
        indexes.append((f"ix_{table}_{'_'.join(cols)}", cols))
    return indexes


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_table(
    model: ModelSpec,
    metadata: sa.MetaData | None = None,
    services: ServiceRegistry | None = None,
    json_fallback: bool = False,
) -> sa.Table:
    """Convert a ModelSpec into a ``Table`` with an integer ``id`` primary key.

    Virtual and attachment fields own no column.

    Args:
        model: Model specification
        metadata: MetaData to attach the table to (a fresh one by default)
        services: Service registry, used to tell dynamic defaults from literals
        json_fallback: Store json fields as TEXT

    Returns:
        A ``sqlalchemy.Table``
    """
    metadata = metadata if metadata is not None else sa.MetaData()
    columns: list[sa.Column] = [sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True)]
    for spec in model.fields:
        if spec.has_column and spec.name != "id":
            columns.append(field_to_column(spec, services, json_fallback))
    columns.extend(implicit_columns(model, json_fallback))

    table = sa.Table(model.resolved_table_name, metadata, *columns)
    for name, cols in index_definitions(model):
        sa.Index(name, *[table.c[c] for c in cols if c in table.c])
    return table

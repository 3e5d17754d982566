"""
Lazy query builder for runtime models.

A Query accumulates filters, ordering and a limit and only touches the
database when iterated, counted or asked for ``first()``. Every refinement
returns a new Query, so association ordering and scopes re-evaluate on each
use.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

if TYPE_CHECKING:
    from lcp_runtime.runtime.record import Record

logger = logging.getLogger(__name__)


def column_for(model_cls: type[Record], name: str) -> sa.Column:
    """Resolve an attribute (or belongs_to association) name to a table column."""
    column_name = model_cls.__model__.resolve_column(name)
    table = model_cls.__table__
    if column_name not in table.c:
        raise ValueError(f"Unknown column '{name}' for model '{model_cls.__model__.name}'")
    return table.c[column_name]


def equality_clause(column: sa.Column, value: Any) -> Any:
    """``col = v``, ``col IN (...)`` for lists, ``col IS NULL`` for None."""
    if value is None:
        return column.is_(None)
    if isinstance(value, list | tuple | set | frozenset):
        values = list(value)
        if None in values:
            non_null = [v for v in values if v is not None]
            return sa.or_(column.is_(None), column.in_(non_null))
        return column.in_(values)
    return column == value


class Query:
    """
    Chainable, lazily executed query over one runtime model.

    Example:
        >>> Deal.where(stage="open").order_by({"value": "desc"}).limit(5).all()
    """

    def __init__(
        self,
        model_cls: type[Record],
        clauses: tuple[Any, ...] = (),
        ordering: tuple[Any, ...] = (),
        limit_value: int | None = None,
    ):
        self.model_cls = model_cls
        self._clauses = clauses
        self._ordering = ordering
        self._limit = limit_value

    @property
    def clauses(self) -> tuple[Any, ...]:
        """Accumulated WHERE clauses."""
        return self._clauses

    def _copy(self, **changes: Any) -> Query:
        return Query(
            self.model_cls,
            changes.get("clauses", self._clauses),
            changes.get("ordering", self._ordering),
            changes.get("limit_value", self._limit),
        )

    # -------------------------------------------------------------------------
    # Refinement
    # -------------------------------------------------------------------------

    def where(self, criteria: Mapping[str, Any] | None = None, **kwargs: Any) -> Query:
        """Filter by equality (lists become IN, None becomes IS NULL)."""
        items = {**(criteria or {}), **kwargs}
        clauses = tuple(
            equality_clause(column_for(self.model_cls, name), value) for name, value in items.items()
        )
        return self._copy(clauses=self._clauses + clauses)

    def where_not(self, criteria: Mapping[str, Any] | None = None, **kwargs: Any) -> Query:
        """Exclude rows matching the equality criteria."""
        items = {**(criteria or {}), **kwargs}
        clauses = tuple(
            sa.not_(equality_clause(column_for(self.model_cls, name), value))
            for name, value in items.items()
        )
        return self._copy(clauses=self._clauses + clauses)

    def filter(self, *clauses: Any) -> Query:
        """Add raw SQLAlchemy clauses."""
        return self._copy(clauses=self._clauses + clauses)

    def order_by(self, *order: str | Mapping[str, str]) -> Query:
        """
        Add ordering.

        Accepts column names (``"-name"`` for descending) or mappings of
        column name to ``"asc"``/``"desc"``.
        """
        terms: list[Any] = []
        for item in order:
            if isinstance(item, Mapping):
                for name, direction in item.items():
                    column = column_for(self.model_cls, name)
                    terms.append(column.desc() if str(direction).lower() == "desc" else column.asc())
            elif item.startswith("-"):
                terms.append(column_for(self.model_cls, item[1:]).desc())
            else:
                terms.append(column_for(self.model_cls, item).asc())
        return self._copy(ordering=self._ordering + tuple(terms))

    def reorder(self, *order: str | Mapping[str, str]) -> Query:
        """Replace any existing ordering."""
        return self._copy(ordering=()).order_by(*order)

    def limit(self, count: int | None) -> Query:
        return self._copy(limit_value=count)

    def scope(self, name: str, *args: Any) -> Query:
        """Apply a named model scope."""
        scopes = self.model_cls._scopes
        if name not in scopes:
            raise AttributeError(f"Model '{self.model_cls.__model__.name}' has no scope '{name}'")
        return scopes[name](self, *args)

    def __getattr__(self, name: str) -> Any:
        # Chained scope calls: Deal.where(...).open_deals()
        model_cls = self.__dict__.get("model_cls")
        scopes = getattr(model_cls, "_scopes", None) or {}
        if name in scopes:
            return lambda *args: self.scope(name, *args)
        raise AttributeError(name)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def statement(self) -> sa.Select:
        table = self.model_cls.__table__
        stmt = sa.select(table)
        if self._clauses:
            stmt = stmt.where(*self._clauses)
        if self._ordering:
            stmt = stmt.order_by(*self._ordering)
        else:
            stmt = stmt.order_by(table.c.id.asc())
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        return stmt

    def all(self) -> list[Record]:
        with self.model_cls.__db__.connection() as conn:
            rows = conn.execute(self.statement()).mappings().all()
        return [self.model_cls._from_row(row) for row in rows]

    def __iter__(self) -> Iterator[Record]:
        return iter(self.all())

    def first(self) -> Record | None:
        rows = self.limit(1).all()
        return rows[0] if rows else None

    def count(self) -> int:
        table = self.model_cls.__table__
        inner = sa.select(table.c.id)
        if self._clauses:
            inner = inner.where(*self._clauses)
        if self._limit is not None:
            inner = inner.limit(self._limit)
        stmt = sa.select(sa.func.count()).select_from(inner.subquery())
        with self.model_cls.__db__.connection() as conn:
            return int(conn.execute(stmt).scalar_one())

    def __len__(self) -> int:
        return self.count()

    def exists(self) -> bool:
        return self.limit(1).count() > 0

    def ids(self) -> list[Any]:
        table = self.model_cls.__table__
        stmt = self.statement().with_only_columns(table.c.id)
        with self.model_cls.__db__.connection() as conn:
            return list(conn.execute(stmt).scalars())

    def pluck(self, name: str) -> list[Any]:
        stmt = self.statement().with_only_columns(column_for(self.model_cls, name))
        with self.model_cls.__db__.connection() as conn:
            return list(conn.execute(stmt).scalars())

    def __repr__(self) -> str:
        return f"<Query {self.model_cls.__model__.name}>"

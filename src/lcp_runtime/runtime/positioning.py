"""
Dense 1-based record ordering.

A PositionManager keeps one integer column gap-free within each scope (the
rows sharing the values of the scope columns). Shifts, gap closing and the
mover's own write happen in one transaction; scope rows are locked with
``SELECT ... FOR UPDATE`` where the dialect has row locks.

Each scope has a list version, the SHA-256 hex digest of its ids in order.
Callers pass the version they last rendered to ``move``; a stale version
yields a CONFLICT result instead of a reorder.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from lcp_runtime.runtime.query import equality_clause

if TYPE_CHECKING:
    from lcp_runtime.runtime.record import Record

logger = logging.getLogger(__name__)


class MoveStatus(StrEnum):
    MOVED = "moved"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class MoveResult:
    """Outcome of a move; ``list_version`` is always the scope's current version."""

    status: MoveStatus
    list_version: str
    position: int | None = None

    @property
    def moved(self) -> bool:
        return self.status == MoveStatus.MOVED

    @property
    def conflict(self) -> bool:
        return self.status == MoveStatus.CONFLICT


def compute_list_version(ids: list[Any]) -> str:
    """SHA-256 hex digest of comma-joined ids."""
    return hashlib.sha256(",".join(str(i) for i in ids).encode()).hexdigest()


class PositionManager:
    """
    Maintains the position column of one runtime model.

    Args:
        model_cls: Runtime record class
        field: Position column name
        scope_columns: Columns partitioning the position space
    """

    def __init__(self, model_cls: type[Record], field: str, scope_columns: list[str]):
        self.model_cls = model_cls
        self.field = field
        self.scope_columns = list(scope_columns)

    @property
    def table(self) -> sa.Table:
        return self.model_cls.__table__

    @property
    def column(self) -> sa.Column:
        return self.table.c[self.field]

    # -------------------------------------------------------------------------
    # Scope helpers
    # -------------------------------------------------------------------------

    def scope_values(self, record: Record, persisted: bool = False) -> dict[str, Any]:
        """Scope column values of a record (as last saved when ``persisted``)."""
        source = (record._persisted or {}) if persisted else record._values
        return {name: source.get(name) for name in self.scope_columns}

    def _scope_clauses(self, scope: Mapping[str, Any]) -> list[Any]:
        return [equality_clause(self.table.c[name], value) for name, value in scope.items()]

    def _lock(self, conn: sa.Connection, scope: Mapping[str, Any]) -> None:
        if not self.model_cls.__db__.supports_for_update:
            return
        stmt = sa.select(self.table.c.id).where(*self._scope_clauses(scope)).with_for_update()
        conn.execute(stmt).all()

    def _max_position(
        self, conn: sa.Connection, scope: Mapping[str, Any], exclude_id: Any = None
    ) -> int:
        stmt = sa.select(sa.func.max(self.column)).where(*self._scope_clauses(scope))
        if exclude_id is not None:
            stmt = stmt.where(self.table.c.id != exclude_id)
        return int(conn.execute(stmt).scalar() or 0)

    def _shift(
        self,
        conn: sa.Connection,
        scope: Mapping[str, Any],
        delta: int,
        lower: int,
        upper: int | None = None,
        exclude_id: Any = None,
    ) -> None:
        """Add ``delta`` to every position in ``[lower, upper]`` within the scope."""
        stmt = (
            self.table.update()
            .where(*self._scope_clauses(scope))
            .where(self.column >= lower)
            .values({self.field: self.column + delta})
        )
        if upper is not None:
            stmt = stmt.where(self.column <= upper)
        if exclude_id is not None:
            stmt = stmt.where(self.table.c.id != exclude_id)
        conn.execute(stmt)

    def _shift_for_move(
        self, conn: sa.Connection, scope: Mapping[str, Any], record_id: Any, old: int, new: int
    ) -> None:
        if new < old:
            self._shift(conn, scope, +1, new, old - 1, exclude_id=record_id)
        elif new > old:
            self._shift(conn, scope, -1, old + 1, new, exclude_id=record_id)

    def list_version(self, scope: Mapping[str, Any], conn: sa.Connection | None = None) -> str:
        """Current list version of a scope."""
        stmt = (
            sa.select(self.table.c.id)
            .where(*self._scope_clauses(scope))
            .order_by(self.column.asc(), self.table.c.id.asc())
        )
        if conn is not None:
            return compute_list_version(list(conn.execute(stmt).scalars()))
        with self.model_cls.__db__.connection() as read_conn:
            return compute_list_version(list(read_conn.execute(stmt).scalars()))

    # -------------------------------------------------------------------------
    # Lifecycle hooks
    # -------------------------------------------------------------------------

    def before_create(self, record: Record) -> None:
        with self.model_cls.__db__.transaction() as conn:
            scope = self.scope_values(record)
            self._lock(conn, scope)
            top = self._max_position(conn, scope)
            requested = record._values.get(self.field)
            if requested is None or requested > top:
                position = top + 1
            else:
                position = max(int(requested), 1)
                self._shift(conn, scope, +1, position)
        record._values[self.field] = position

    def _stored(self, conn: sa.Connection, record_id: Any) -> dict[str, Any] | None:
        """Position and scope values of the row as currently stored."""
        columns = [self.column, *(self.table.c[name] for name in self.scope_columns)]
        stmt = sa.select(*columns).where(self.table.c.id == record_id)
        if self.model_cls.__db__.supports_for_update:
            stmt = stmt.with_for_update()
        row = conn.execute(stmt).mappings().first()
        return dict(row) if row is not None else None

    def before_update(self, record: Record) -> None:
        persisted = record._persisted or {}
        requested = record._values.get(self.field)
        position_assigned = requested != persisted.get(self.field)
        new_scope = self.scope_values(record)

        with self.model_cls.__db__.transaction() as conn:
            stored = self._stored(conn, record.id) or persisted
            old_scope = {name: stored.get(name) for name in self.scope_columns}
            old_position = stored.get(self.field)
            scope_assigned = any(
                record._values.get(name) != persisted.get(name) for name in self.scope_columns
            )
            if not scope_assigned:
                # Scope columns left alone follow the stored row
                new_scope = old_scope
                for name, value in old_scope.items():
                    record._values[name] = value

            if old_scope != new_scope:
                self._lock(conn, old_scope)
                self._lock(conn, new_scope)
                if old_position is not None:
                    self._shift(conn, old_scope, -1, old_position + 1, exclude_id=record.id)
                record._values[self.field] = self._max_position(conn, new_scope, record.id) + 1
                logger.debug(
                    "%s #%s moved to scope %s", self.model_cls.__model__.name, record.id, new_scope
                )
                return
            if not position_assigned or requested == old_position:
                record._values[self.field] = old_position
                return

            self._lock(conn, new_scope)
            top = self._max_position(conn, new_scope, record.id)
            if old_position is None:
                # Unpositioned row joining its scope behaves like an insert
                if requested is None or requested > top:
                    record._values[self.field] = top + 1
                else:
                    position = max(int(requested), 1)
                    self._shift(conn, new_scope, +1, position, exclude_id=record.id)
                    record._values[self.field] = position
                return
            if requested is None:
                requested = top + 1
            position = min(max(int(requested), 1), top + 1)
            self._shift_for_move(conn, new_scope, record.id, old_position, position)
            record._values[self.field] = position

    def before_destroy(self, record: Record) -> None:
        """Close the gap the record leaves; rolled back with the delete."""
        with self.model_cls.__db__.transaction() as conn:
            stored = self._stored(conn, record.id)
            if stored is None or stored.get(self.field) is None:
                return
            scope = {name: stored.get(name) for name in self.scope_columns}
            self._lock(conn, scope)
            self._shift(conn, scope, -1, stored[self.field] + 1, exclude_id=record.id)

    # -------------------------------------------------------------------------
    # Moves
    # -------------------------------------------------------------------------

    def _reference_position(
        self, conn: sa.Connection, scope: Mapping[str, Any], reference_id: Any
    ) -> int:
        stmt = (
            sa.select(self.column)
            .where(self.table.c.id == reference_id)
            .where(*self._scope_clauses(scope))
        )
        position = conn.execute(stmt).scalar()
        if position is None:
            raise ValueError(
                f"{self.model_cls.__model__.name} #{reference_id} is not in the same list"
            )
        return int(position)

    def _resolve_target(
        self,
        conn: sa.Connection,
        scope: Mapping[str, Any],
        record_id: Any,
        target: Any,
        current: int,
        top: int,
    ) -> int:
        if isinstance(target, bool):
            raise ValueError(f"invalid move target {target!r}")
        if isinstance(target, int):
            return target
        if target == "first":
            return 1
        if target == "last":
            return top
        if isinstance(target, Mapping) and len(target) == 1:
            [(direction, reference_id)] = target.items()
            if direction not in ("after", "before"):
                raise ValueError(f"invalid move target {target!r}")
            if reference_id == record_id:
                return current
            reference = self._reference_position(conn, scope, reference_id)
            if direction == "after":
                return reference if current < reference else reference + 1
            return reference - 1 if current < reference else reference
        raise ValueError(f"invalid move target {target!r}")

    def move(self, record: Record, target: Any, list_version: str | None = None) -> MoveResult:
        """
        Move a persisted record within its scope.

        Args:
            record: Record to move
            target: 1-based position, ``"first"``, ``"last"``,
                ``{"after": id}`` or ``{"before": id}``
            list_version: Version the caller observed; None skips the check

        Returns:
            MoveResult with the scope's version after the move, or CONFLICT
            and the current version when ``list_version`` is stale

        Raises:
            ValueError: If the record is unsaved or the target is invalid
        """
        if record.new_record:
            raise ValueError("cannot move an unsaved record")
        scope = self.scope_values(record, persisted=True)
        model_name = self.model_cls.__model__.name

        with self.model_cls.__db__.transaction() as conn:
            stored = self._stored(conn, record.id)
            if stored is not None:
                scope = {name: stored.get(name) for name in self.scope_columns}
            self._lock(conn, scope)
            current_version = self.list_version(scope, conn)
            if list_version is not None and list_version != current_version:
                logger.info(
                    "Move of %s #%s rejected: list version is stale", model_name, record.id
                )
                return MoveResult(
                    MoveStatus.CONFLICT, current_version, record._values.get(self.field)
                )

            current = conn.execute(
                sa.select(self.column).where(self.table.c.id == record.id)
            ).scalar()
            top = self._max_position(conn, scope)
            if current is None:
                current = top + 1
                top += 1
            position = self._resolve_target(conn, scope, record.id, target, int(current), top)
            position = min(max(position, 1), top)

            self._shift_for_move(conn, scope, record.id, int(current), position)
            conn.execute(
                self.table.update()
                .where(self.table.c.id == record.id)
                .values({self.field: position})
            )
            new_version = self.list_version(scope, conn)

        record._values[self.field] = position
        if record._persisted is not None:
            record._persisted[self.field] = position
        logger.debug("Moved %s #%s to position %d", model_name, record.id, position)
        return MoveResult(MoveStatus.MOVED, new_version, position)

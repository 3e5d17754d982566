"""
Association applicator.

Installs one descriptor per association:

- ``belongs_to``  reads the target by foreign key; assigning a record (or None)
  writes the key, plus the ``<name>_type`` column when polymorphic
- ``has_many``    returns a fresh, lazily executed Query on every access, so
  the declared ordering is evaluated per query
- ``has_one``     returns the first match of the same query

and the behavior hanging off them: required-parent presence, dependent
handling on destroy, counter caches, touching the parent, and nested
attribute acceptance through ``<name>_attributes``.

Targets are resolved by name when first used, so models built in the same
reload may reference each other in any order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import sqlalchemy as sa

from lcp_runtime.core.errors import make_build_error
from lcp_runtime.core.strings import humanize, pluralize, singularize
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.condition_evaluator import is_blank
from lcp_runtime.runtime.query import Query
from lcp_runtime.runtime.record import HaltChain, Record, class_member, utcnow
from lcp_runtime.specs.model import (
    AssociationKind,
    AssociationSpec,
    DependentAction,
    ModelSpec,
    NestedAttributesSpec,
)

logger = logging.getLogger(__name__)

# Marks a child built from nested attributes whose owner key is not known yet
NESTED_OWNER_KEY = "nested_owner_fk"

_TRUE_STRINGS = frozenset({"1", "true", "t", "yes", "on"})


# =============================================================================
# Key Resolution
# =============================================================================


def target_name(assoc: AssociationSpec) -> str | None:
    return assoc.target_model or assoc.class_name


def model_name_of(record: Any) -> str:
    """Value stored in polymorphic type columns."""
    spec = getattr(type(record), "__model__", None)
    return spec.name if spec is not None else type(record).__name__


def child_foreign_key(owner: ModelSpec, assoc: AssociationSpec, target_cls: Any) -> str:
    """Foreign key on the target of a has_many/has_one association."""
    if assoc.foreign_key:
        return assoc.foreign_key
    if assoc.inverse_of:
        target_spec = getattr(target_cls, "__model__", None)
        inverse = target_spec.get_association(assoc.inverse_of) if target_spec else None
        if inverse is not None and inverse.foreign_key:
            return inverse.foreign_key
    if assoc.as_:
        return f"{assoc.as_}_id"
    return f"{owner.name}_id"


class _Binding:
    """Resolved view of one association for one runtime class."""

    def __init__(self, ctx: BuildContext, assoc: AssociationSpec):
        self.ctx = ctx
        self.assoc = assoc
        self.owner = ctx.spec

    @property
    def target_cls(self) -> Any:
        return self.ctx.target_class(str(target_name(self.assoc)))

    @property
    def foreign_key(self) -> str:
        return child_foreign_key(self.owner, self.assoc, self.target_cls)

    def owner_criteria(self, record: Record) -> dict[str, Any]:
        criteria: dict[str, Any] = {self.foreign_key: record.id}
        if self.assoc.as_:
            criteria[f"{self.assoc.as_}_type"] = self.owner.name
        return criteria

    def query(self, record: Record) -> Query:
        if self.assoc.through:
            return self._through_query(record)
        query = self.target_cls.where(self.owner_criteria(record))
        if self.assoc.order:
            query = query.order_by(self.assoc.order)
        return query

    def _through_query(self, record: Record) -> Query:
        through = self.owner.get_association(str(self.assoc.through))
        if through is None:
            raise make_build_error(
                f"through association '{self.assoc.through}' is not declared",
                self.owner.name,
                self.assoc.name,
            )
        join_cls = self.ctx.target_class(str(target_name(through)))
        join_query = _Binding(self.ctx, through).query(record)

        source_name = self.assoc.source or singularize(self.assoc.name)
        join_spec = join_cls.__model__
        source = join_spec.get_association(source_name) or join_spec.get_association(
            self.assoc.name
        )
        if source is None:
            raise ValueError(
                f"'{join_spec.name}' has no association '{source_name}' for "
                f"{self.owner.name}.{self.assoc.name}"
            )
        target_cls = self.ctx.target_class(str(target_name(source)))
        if source.is_belongs_to:
            ids = [i for i in join_query.pluck(str(source.foreign_key)) if i is not None]
            query = target_cls.where(id=ids)
        else:
            key = child_foreign_key(join_spec, source, target_cls)
            query = target_cls.where({key: join_query.ids()})
        if self.assoc.order:
            query = query.order_by(self.assoc.order)
        return query


# =============================================================================
# Descriptors
# =============================================================================


class BelongsToDescriptor:
    def __init__(self, binding: _Binding):
        self.binding = binding
        self.assoc = binding.assoc

    def _target_cls(self, record: Record) -> Any:
        if self.assoc.polymorphic:
            type_name = record._values.get(self.assoc.polymorphic_type_column)
            return self.binding.ctx.target_class(str(type_name)) if type_name else None
        return self.binding.target_cls

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.assoc.name, self)
        key = record._values.get(self.assoc.foreign_key)
        if key is None:
            return None
        target_cls = self._target_cls(record)
        if target_cls is None:
            return None
        return target_cls.find_by(id=key)

    def __set__(self, record: Record, value: Any) -> None:
        type_column = self.assoc.polymorphic_type_column
        if value is None:
            setattr(record, str(self.assoc.foreign_key), None)
            if type_column:
                setattr(record, type_column, None)
            return
        if getattr(value, "id", None) is None:
            raise ValueError(
                f"cannot assign an unsaved record to {self.binding.owner.name}.{self.assoc.name}"
            )
        setattr(record, str(self.assoc.foreign_key), value.id)
        if type_column:
            setattr(record, type_column, model_name_of(value))


class HasManyDescriptor:
    def __init__(self, binding: _Binding):
        self.binding = binding

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.binding.assoc.name, self)
        return self.binding.query(record)


class HasOneDescriptor:
    def __init__(self, binding: _Binding):
        self.binding = binding

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, self.binding.assoc.name, self)
        if record.id is None:
            return None
        return self.binding.query(record).first()


class NestedAttributesDescriptor:
    """Write-only ``<name>_attributes`` entry point; values are applied on save."""

    def __init__(self, assoc: AssociationSpec):
        self.assoc = assoc
        self.pending_key = f"nested:{assoc.name}"

    def __get__(self, record: Record | None, owner: type | None = None) -> Any:
        if record is None:
            return class_member(owner, f"{self.assoc.name}_attributes", self)
        return record._pending.get(self.pending_key)

    def __set__(self, record: Record, value: Any) -> None:
        if value is None:
            record._pending.pop(self.pending_key, None)
            return
        if isinstance(value, Mapping):
            if self.assoc.type == AssociationKind.HAS_ONE:
                items = [dict(value)]
            else:
                # {"0": {...}, "1": {...}} form posted by forms
                items = [dict(v) for v in value.values()]
        else:
            items = [dict(v) for v in value]
        record._pending[self.pending_key] = items
        record._pending.pop(f"nested_plan:{self.assoc.name}", None)


# =============================================================================
# Applicator
# =============================================================================


class AssociationApplicator(Applicator):
    name = "association"

    def apply(self, ctx: BuildContext) -> None:
        for assoc in ctx.spec.associations:
            binding = _Binding(ctx, assoc)
            if assoc.is_belongs_to:
                setattr(ctx.model_cls, assoc.name, BelongsToDescriptor(binding))
                self._apply_belongs_to(ctx, binding)
            else:
                descriptor = (
                    HasManyDescriptor(binding) if assoc.is_collection else HasOneDescriptor(binding)
                )
                setattr(ctx.model_cls, assoc.name, descriptor)
                if assoc.dependent and not assoc.through:
                    ctx.add_callback("before_destroy", self._dependent_callback(binding))
                if assoc.nested_attributes:
                    self._apply_nested_attributes(ctx, binding, assoc.nested_attributes)
            logger.debug("Association %s.%s (%s)", ctx.spec.name, assoc.name, assoc.type.value)

    # -------------------------------------------------------------------------
    # belongs_to
    # -------------------------------------------------------------------------

    def _apply_belongs_to(self, ctx: BuildContext, binding: _Binding) -> None:
        assoc = binding.assoc
        fk = str(assoc.foreign_key)

        if assoc.required:
            descriptor = getattr(ctx.model_cls, assoc.name)

            def validate_parent(record: Record) -> None:
                if record._pending.get(NESTED_OWNER_KEY) == fk:
                    return
                if record._values.get(fk) is None or descriptor.__get__(record) is None:
                    record.errors.add(assoc.name, "must exist")

            ctx.add_validator(validate_parent)

        if assoc.counter_cache:
            self._apply_counter_cache(ctx, binding)
        if assoc.touch:
            self._apply_touch(ctx, binding)
        if assoc.dependent in (DependentAction.DESTROY, DependentAction.DELETE):
            dependent = assoc.dependent

            def destroy_parent(record: Record) -> None:
                parent = getattr(record, assoc.name)
                if parent is None:
                    return
                if dependent == DependentAction.DESTROY:
                    parent.destroy()
                else:
                    _delete_rows(type(parent), {"id": parent.id})

            ctx.add_callback("after_destroy", destroy_parent)

    def _parent_table(self, binding: _Binding, record: Record, persisted: bool = False) -> Any:
        source = (record._persisted or {}) if persisted else record._values
        if binding.assoc.polymorphic:
            type_name = source.get(binding.assoc.polymorphic_type_column)
            if not type_name:
                return None
            return binding.ctx.target_class(str(type_name))
        return binding.target_cls

    def _apply_counter_cache(self, ctx: BuildContext, binding: _Binding) -> None:
        assoc = binding.assoc
        fk = str(assoc.foreign_key)
        column = (
            assoc.counter_cache
            if isinstance(assoc.counter_cache, str)
            else f"{pluralize(ctx.spec.name)}_count"
        )

        def adjust(parent_cls: Any, parent_id: Any, delta: int) -> None:
            if parent_cls is None or parent_id is None:
                return
            table = parent_cls.__table__
            if column not in table.c:
                raise ValueError(f"counter cache column '{table.name}.{column}' does not exist")
            with parent_cls.__db__.transaction() as conn:
                conn.execute(
                    table.update()
                    .where(table.c.id == parent_id)
                    .values({column: sa.func.coalesce(table.c[column], 0) + delta})
                )

        def after_create(record: Record) -> None:
            adjust(self._parent_table(binding, record), record._values.get(fk), +1)

        def after_update(record: Record) -> None:
            old, new = (record._persisted or {}).get(fk), record._values.get(fk)
            type_column = assoc.polymorphic_type_column
            moved = old != new or (
                type_column is not None
                and (record._persisted or {}).get(type_column) != record._values.get(type_column)
            )
            if moved:
                adjust(self._parent_table(binding, record, persisted=True), old, -1)
                adjust(self._parent_table(binding, record), new, +1)

        def after_destroy(record: Record) -> None:
            adjust(self._parent_table(binding, record, persisted=True), (record._persisted or {}).get(fk), -1)

        ctx.add_callback("after_create", after_create)
        ctx.add_callback("after_update", after_update)
        ctx.add_callback("after_destroy", after_destroy)

    def _apply_touch(self, ctx: BuildContext, binding: _Binding) -> None:
        fk = str(binding.assoc.foreign_key)

        def touch(parent_cls: Any, parent_id: Any) -> None:
            if parent_cls is None or parent_id is None:
                return
            table = parent_cls.__table__
            if "updated_at" not in table.c:
                return
            with parent_cls.__db__.transaction() as conn:
                conn.execute(
                    table.update().where(table.c.id == parent_id).values(updated_at=utcnow())
                )

        def after_save(record: Record) -> None:
            touch(self._parent_table(binding, record), record._values.get(fk))

        def after_destroy(record: Record) -> None:
            touch(self._parent_table(binding, record, persisted=True), (record._persisted or {}).get(fk))

        ctx.add_callback("after_save", after_save)
        ctx.add_callback("after_destroy", after_destroy)

    # -------------------------------------------------------------------------
    # dependent
    # -------------------------------------------------------------------------

    def _dependent_callback(self, binding: _Binding) -> Callable[[Record], None]:
        assoc = binding.assoc
        action = assoc.dependent

        def handle_dependents(record: Record) -> None:
            query = binding.query(record)
            if action == DependentAction.RESTRICT_WITH_ERROR:
                if query.exists():
                    if assoc.is_collection:
                        message = f"dependent {humanize(assoc.name).lower()} exist"
                    else:
                        message = f"a dependent {humanize(assoc.name).lower()} exists"
                    record.errors.add("base", f"Cannot delete record because {message}")
                return
            if action == DependentAction.DESTROY:
                for child in query.all():
                    if not child.destroy():
                        for attribute, message in child.errors:
                            record.errors.add(f"{assoc.name}.{attribute}", message)
                        raise HaltChain()
            elif action == DependentAction.DELETE:
                _delete_rows(binding.target_cls, binding.owner_criteria(record))
            elif action == DependentAction.NULLIFY:
                cleared = dict.fromkeys(binding.owner_criteria(record))
                _update_rows(binding.target_cls, binding.owner_criteria(record), cleared)

        return handle_dependents

    # -------------------------------------------------------------------------
    # Nested attributes
    # -------------------------------------------------------------------------

    def _apply_nested_attributes(
        self, ctx: BuildContext, binding: _Binding, policy: NestedAttributesSpec
    ) -> None:
        assoc = binding.assoc
        setattr(ctx.model_cls, f"{assoc.name}_attributes", NestedAttributesDescriptor(assoc))

        reject: Callable[[dict[str, Any]], bool] | None = None
        if policy.reject_if == "all_blank":
            reject = _all_blank
        elif policy.reject_if:
            reject = ctx.resolve_service("conditions", policy.reject_if, assoc.name)

        pending_key = f"nested:{assoc.name}"
        plan_key = f"nested_plan:{assoc.name}"

        def build_plan(record: Record) -> list[tuple[Record, bool]]:
            items = record._pending.get(pending_key)
            if not items:
                return []
            if policy.limit is not None and len(items) > policy.limit:
                record.errors.add(assoc.name, f"too many records (maximum is {policy.limit})")
                return []

            target_cls = binding.target_cls
            fk = binding.foreign_key
            existing: dict[Any, Record] = {}
            if record.id is not None:
                existing = {child.id: child for child in binding.query(record).all()}

            plan: list[tuple[Record, bool]] = []
            for attrs in items:
                if reject is not None and reject(attrs):
                    continue
                attrs = dict(attrs)
                child_id = attrs.pop("id", None)
                destroy = str(attrs.pop("_destroy", "")).strip().lower() in _TRUE_STRINGS

                child: Record | None = None
                if child_id not in (None, ""):
                    child = existing.get(child_id) or existing.get(_as_int(child_id))
                    if child is None:
                        record.errors.add(assoc.name, f"record with id={child_id} not found")
                        continue
                elif policy.update_only and not assoc.is_collection and existing:
                    child = next(iter(existing.values()))

                if child is not None:
                    if destroy and policy.allow_destroy:
                        plan.append((child, True))
                        continue
                    child.assign_attributes(attrs)
                else:
                    if destroy:
                        continue
                    child = target_cls(**attrs)
                    child._pending[NESTED_OWNER_KEY] = fk
                plan.append((child, False))
            return plan

        def validate_nested(record: Record) -> None:
            plan = build_plan(record)
            record._pending[plan_key] = plan
            for child, destroy in plan:
                if destroy or child.valid():
                    continue
                for attribute, message in child.errors:
                    record.errors.add(f"{assoc.name}.{attribute}", message)

        def save_nested(record: Record) -> None:
            if pending_key not in record._pending:
                return
            plan = record._pending.pop(plan_key, None)
            if plan is None:
                plan = build_plan(record)
            criteria = binding.owner_criteria(record)
            for child, destroy in plan:
                if destroy:
                    if not child.destroy():
                        for attribute, message in child.errors:
                            record.errors.add(f"{assoc.name}.{attribute}", message)
                        raise HaltChain()
                    continue
                for name, value in criteria.items():
                    setattr(child, name, value)
                child._pending.pop(NESTED_OWNER_KEY, None)
                if not child.save():
                    for attribute, message in child.errors:
                        record.errors.add(f"{assoc.name}.{attribute}", message)
                    raise HaltChain()
            record._pending.pop(pending_key, None)

        ctx.add_callback("before_validation", validate_nested)
        ctx.add_callback("after_save", save_nested)


# =============================================================================
# Bulk helpers
# =============================================================================


def _all_blank(attrs: dict[str, Any]) -> bool:
    return all(is_blank(v) for k, v in attrs.items() if k != "_destroy")


def _as_int(value: Any) -> Any:
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


def _delete_rows(model_cls: Any, criteria: dict[str, Any]) -> None:
    query = model_cls.where(criteria)
    table = model_cls.__table__
    with model_cls.__db__.transaction() as conn:
        conn.execute(table.delete().where(*query.clauses))


def _update_rows(model_cls: Any, criteria: dict[str, Any], values: dict[str, Any]) -> None:
    query = model_cls.where(criteria)
    table = model_cls.__table__
    with model_cls.__db__.transaction() as conn:
        conn.execute(table.update().where(*query.clauses).values(**values))

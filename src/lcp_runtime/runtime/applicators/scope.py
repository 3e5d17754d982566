"""Scope applicator: named, chainable query filters."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from lcp_runtime.core.errors import make_build_error
from lcp_runtime.runtime.applicators.base import Applicator, BuildContext
from lcp_runtime.runtime.query import Query
from lcp_runtime.specs.model import ScopeSpec

logger = logging.getLogger(__name__)


class ScopeMethod:
    """Class-level accessor: ``Deal.open_deals()`` returns a Query."""

    def __init__(self, name: str):
        self.name = name

    def __get__(self, record: Any, owner: type | None = None) -> Callable[..., Query]:
        model_cls = owner if owner is not None else type(record)
        return lambda *args: model_cls.query().scope(self.name, *args)


def _scope_function(scope: ScopeSpec) -> Callable[..., Query]:
    def apply_scope(query: Query) -> Query:
        if scope.where:
            query = query.where(scope.where)
        if scope.where_not:
            query = query.where_not(scope.where_not)
        if scope.order:
            query = query.order_by(scope.order)
        if scope.limit is not None:
            query = query.limit(scope.limit)
        return query

    return apply_scope


class ScopeApplicator(Applicator):
    name = "scope"

    def apply(self, ctx: BuildContext) -> None:
        virtual = {f.name for f in ctx.spec.fields if not f.has_column}
        known = (ctx.spec.attribute_names - virtual) | {
            a.name for a in ctx.spec.belongs_to_associations
        }
        for scope in ctx.spec.scopes:
            columns = [*(scope.where or {}), *(scope.where_not or {}), *(scope.order or {})]
            unknown = sorted(c for c in columns if c not in known)
            if unknown:
                raise make_build_error(
                    f"scope '{scope.name}' references unknown column(s): {', '.join(unknown)}",
                    ctx.spec.name,
                )
            if hasattr(ctx.model_cls, scope.name):
                raise make_build_error(
                    f"scope '{scope.name}' collides with an existing attribute", ctx.spec.name
                )
            ctx.model_cls._scopes[scope.name] = _scope_function(scope)
            setattr(ctx.model_cls, scope.name, ScopeMethod(scope.name))
        if ctx.spec.scopes:
            logger.debug(
                "Scopes for %s: %s", ctx.spec.name, ", ".join(s.name for s in ctx.spec.scopes)
            )

"""Transform applicator: normalization chains run on every assignment."""

from __future__ import annotations

import logging

from lcp_runtime.runtime.applicators.base import Applicator, BuildContext

logger = logging.getLogger(__name__)


class TransformApplicator(Applicator):
    """
    Resolve each field's transform names (type-inherited first) into callables.

    The chain is stored on the class and applied by the field descriptor, so a
    value is normalized before it is cast, validated or persisted.
    """

    name = "transform"

    def apply(self, ctx: BuildContext) -> None:
        for field in ctx.spec.fields:
            names = field.effective_transforms
            if not names:
                continue
            if field.is_computed or field.is_attachment:
                logger.warning(
                    "Transforms on %s.%s are ignored: the field is not assignable",
                    ctx.spec.name,
                    field.name,
                )
                continue
            ctx.model_cls._transforms[field.name] = [
                ctx.resolve_service("transforms", name, field.name) for name in names
            ]

"""
Applicator protocol and the per-build context applicators share.

Each applicator owns one concern and attaches its behavior to the runtime
class as data: callbacks per hook, validator closures, descriptors. The
builder runs them in a fixed order over a fresh class.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from lcp_runtime.core.errors import ErrorContext, make_build_error
from lcp_runtime.runtime.record import CALLBACK_HOOKS, Callback, Validator

if TYPE_CHECKING:
    from lcp_runtime.runtime.attachments import AttachmentStore
    from lcp_runtime.runtime.condition_evaluator import ConditionEvaluator
    from lcp_runtime.runtime.custom_fields import CustomFieldRegistry
    from lcp_runtime.runtime.event_bus import EventDispatcher
    from lcp_runtime.runtime.record import Record
    from lcp_runtime.runtime.services import ServiceRegistry
    from lcp_runtime.specs.model import ModelSpec

logger = logging.getLogger(__name__)

ModelResolver = Callable[[str], Any]


@dataclass
class BuildContext:
    """Everything an applicator may read or attach to during one build."""

    spec: ModelSpec
    model_cls: type[Record]
    services: ServiceRegistry
    evaluator: ConditionEvaluator
    dispatcher: EventDispatcher
    attachment_store: AttachmentStore
    resolver: ModelResolver
    custom_fields: CustomFieldRegistry | None = None

    def add_callback(self, hook: str, callback: Callback) -> None:
        if hook not in CALLBACK_HOOKS:
            raise ValueError(f"Invalid callback hook '{hook}'")
        self.model_cls._callbacks.setdefault(hook, []).append(callback)

    def add_validator(self, validator: Validator) -> None:
        self.model_cls._validators.append(validator)

    def resolve_service(self, category: str, name: str, field: str | None = None) -> Any:
        """
        Look up a named service at build time.

        Raises:
            ServiceNotFoundError: If it is not registered
        """
        return self.services.resolve(
            category, name, ErrorContext(model=self.spec.name, field=field)
        )

    def target_class(self, name: str) -> Any:
        """Runtime class of an association target (model name or external class name)."""
        target = self.resolver(name)
        if target is None:
            raise make_build_error(f"association target '{name}' is not available", self.spec.name)
        return target


class Applicator(ABC):
    """One stage of the build pipeline."""

    name: str = ""

    @abstractmethod
    def apply(self, ctx: BuildContext) -> None:
        """Attach this applicator's behavior to ``ctx.model_cls``."""
        ...

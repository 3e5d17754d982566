"""
Model registry.

Holds the published set of runtime classes and replaces it atomically on
reload. A reload builds every model into a staging area first; any failure
leaves the published set untouched. Listeners are told which model names
changed once a reload has been published.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from lcp_runtime.config import RuntimeConfig
from lcp_runtime.converters.model_converter import load_model_specs
from lcp_runtime.core.errors import make_build_error
from lcp_runtime.runtime.attachments import AttachmentStore, InMemoryAttachmentStore
from lcp_runtime.runtime.builder import BuildResult, ModelBuilder
from lcp_runtime.runtime.custom_fields import CustomFieldRegistry
from lcp_runtime.runtime.database import DatabaseManager
from lcp_runtime.runtime.event_bus import EventDispatcher
from lcp_runtime.runtime.record import Record
from lcp_runtime.runtime.services import ServiceRegistry, register_builtin_services
from lcp_runtime.specs.model import ModelSpec
from lcp_runtime.specs.types import TypeRegistry

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class ModelRegistry:
    """
    Registry of built models.

    Example:
        registry = ModelRegistry(DatabaseManager("sqlite://"))
        registry.reload([{"name": "task", "fields": [{"name": "title", "type": "string"}]}])
        Task = registry.get("task")
    """

    def __init__(
        self,
        db: DatabaseManager,
        services: ServiceRegistry | None = None,
        dispatcher: EventDispatcher | None = None,
        attachment_store: AttachmentStore | None = None,
        config: RuntimeConfig | None = None,
        types: TypeRegistry | None = None,
        custom_fields: CustomFieldRegistry | None = None,
    ):
        self.db = db
        self.services = services if services is not None else register_builtin_services()
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self.attachment_store = (
            attachment_store if attachment_store is not None else InMemoryAttachmentStore()
        )
        self.config = config or RuntimeConfig()
        self.types = types
        self.custom_fields = custom_fields if custom_fields is not None else CustomFieldRegistry()
        self._models: dict[str, type[Record]] = {}
        self._specs: dict[str, ModelSpec] = {}
        self._external: dict[str, Any] = {}
        self._listeners: list[ChangeListener] = []
        self._lock = threading.Lock()
        self.last_results: dict[str, BuildResult] = {}

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, name: str) -> type[Record]:
        """
        Runtime class of a model.

        Raises:
            KeyError: If no such model is published
        """
        try:
            return self._models[name]
        except KeyError:
            raise KeyError(f"Model '{name}' is not registered") from None

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __len__(self) -> int:
        return len(self._models)

    @property
    def names(self) -> list[str]:
        return sorted(self._models)

    @property
    def specs(self) -> dict[str, ModelSpec]:
        return dict(self._specs)

    def register_external(self, name: str, target: Any) -> None:
        """Make a host-provided class available as an association target."""
        self._external[name] = target

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, names: Iterable[str]) -> None:
        for name in names:
            for listener in self._listeners:
                try:
                    listener(name)
                except Exception:
                    logger.exception("Model change listener failed for %s", name)

    # -------------------------------------------------------------------------
    # Reload
    # -------------------------------------------------------------------------

    def reload(self, definitions: Iterable[ModelSpec | Mapping[str, Any]]) -> list[str]:
        """
        Rebuild every model and publish the new set atomically.

        Args:
            definitions: ModelSpecs or raw mappings

        Returns:
            Sorted names of the models that were added, changed or removed

        Raises:
            DefinitionError: If a raw definition is malformed
            BuildError: If any model fails to build; nothing is published
        """
        items = list(definitions)
        raw = [d for d in items if not isinstance(d, ModelSpec)]
        specs = [d for d in items if isinstance(d, ModelSpec)]
        if raw:
            specs += load_model_specs(raw, self.types)

        with self._lock:
            staged: dict[str, type[Record]] = {}
            external = self._external

            def resolve(name: str) -> Any:
                return staged.get(name) or external.get(name)

            builder = ModelBuilder(
                self.db,
                services=self.services,
                dispatcher=self.dispatcher,
                attachment_store=self.attachment_store,
                resolver=resolve,
                config=self.config,
                custom_fields=self.custom_fields,
            )
            try:
                for spec in specs:
                    if spec.name in staged:
                        raise make_build_error("model is defined twice", spec.name)
                    staged[spec.name] = builder.build(spec)
                self._check_targets(specs, resolve)
            finally:
                self.last_results = dict(builder.results)

            new_specs = {spec.name: spec for spec in specs}
            changed = sorted(
                name
                for name in set(new_specs) | set(self._specs)
                if self._specs.get(name) != new_specs.get(name)
            )
            self._models = staged
            self._specs = new_specs

        logger.info("Published %d models (%d changed)", len(staged), len(changed))
        self._notify(changed)
        return changed

    def _check_targets(self, specs: list[ModelSpec], resolve: Callable[[str], Any]) -> None:
        for spec in specs:
            for assoc in spec.associations:
                if assoc.polymorphic:
                    continue
                target = assoc.target_model or assoc.class_name
                if target and resolve(target) is None:
                    raise make_build_error(
                        f"association '{assoc.name}' targets unknown model '{target}'",
                        spec.name,
                        assoc.name,
                    )

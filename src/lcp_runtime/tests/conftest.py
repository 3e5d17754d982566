"""
Shared fixtures for lcp_runtime tests.

Every test gets its own SQLite database file under ``tmp_path``.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from lcp_runtime.converters.model_converter import load_model_spec
from lcp_runtime.runtime.attachments import InMemoryAttachmentStore
from lcp_runtime.runtime.builder import ModelBuilder
from lcp_runtime.runtime.database import DatabaseManager
from lcp_runtime.runtime.event_bus import EventDispatcher
from lcp_runtime.runtime.record import Record
from lcp_runtime.runtime.services import ServiceRegistry, register_builtin_services
from lcp_runtime.specs.types import TypeRegistry


@pytest.fixture
def db(tmp_path: Path) -> DatabaseManager:
    """Database manager on a temporary SQLite file."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'test.db'}")
    yield manager
    manager.dispose()


@pytest.fixture
def services() -> ServiceRegistry:
    """Service registry holding the built-in services."""
    return register_builtin_services()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    """Dispatcher that keeps a history of dispatched payloads."""
    return EventDispatcher(keep_history=True)


@pytest.fixture
def attachment_store() -> InMemoryAttachmentStore:
    return InMemoryAttachmentStore()


@pytest.fixture
def types() -> TypeRegistry:
    return TypeRegistry()


@pytest.fixture
def builder(
    db: DatabaseManager,
    services: ServiceRegistry,
    dispatcher: EventDispatcher,
    attachment_store: InMemoryAttachmentStore,
) -> ModelBuilder:
    return ModelBuilder(
        db,
        services=services,
        dispatcher=dispatcher,
        attachment_store=attachment_store,
    )


@pytest.fixture
def build(builder: ModelBuilder, types: TypeRegistry) -> Callable[[dict[str, Any]], type[Record]]:
    """Convert a model description and build it."""

    def _build(description: dict[str, Any]) -> type[Record]:
        return builder.build(load_model_spec(description, types))

    return _build

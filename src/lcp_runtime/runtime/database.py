"""
Database access for runtime models.

Wraps a SQLAlchemy engine. Writes go through ``transaction()``, which joins
an already active transaction on the current thread so that a record save,
its positioning shifts and its dependent-association cleanup commit or roll
back together.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def create_engine_for_url(url: str) -> Engine:
    """Create an engine, keeping in-memory SQLite databases on one connection."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return sa.create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite:///"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    return sa.create_engine(url)


class DatabaseManager:
    """
    Manages the storage engine and transaction scope.

    Args:
        url_or_engine: SQLAlchemy URL or an existing engine
    """

    def __init__(self, url_or_engine: str | Engine = "sqlite://"):
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
        else:
            self.engine = create_engine_for_url(url_or_engine)
        self._local = threading.local()

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def supports_for_update(self) -> bool:
        """SQLite serializes writers itself and has no row locks."""
        return self.dialect_name != "sqlite"

    @property
    def active_connection(self) -> Connection | None:
        return getattr(self._local, "connection", None)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Run the block inside one transaction.

        Nested calls on the same thread join the outer transaction; the
        outermost block commits, and any exception rolls everything back.

        Yields:
            SQLAlchemy connection
        """
        active = self.active_connection
        if active is not None:
            yield active
            return

        with self.engine.begin() as conn:
            self._local.connection = conn
            try:
                yield conn
            finally:
                self._local.connection = None

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Get a connection for reads.

        Reuses the active transaction when there is one so reads observe
        its uncommitted writes.
        """
        active = self.active_connection
        if active is not None:
            yield active
            return
        with self.engine.connect() as conn:
            yield conn

    def table_exists(self, table_name: str) -> bool:
        with self.connection() as conn:
            return sa.inspect(conn).has_table(table_name)

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()

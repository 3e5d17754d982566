"""
Runtime configuration.

Groups the options shared by the schema synchronizer, the model builder and
the registry into a single object.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DATABASE_URL = "sqlite:///.lcp/lcp.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class RuntimeConfig:
    """
    Configuration for the metadata-to-runtime compiler.

    Attributes:
        database_url: SQLAlchemy URL of the storage database
        log_dir: Directory for the JSONL log file
        log_level: Minimum log level
        json_column_fallback: Store json fields as TEXT instead of the native type
        record_history: Record applied schema steps in the history table
    """

    database_url: str = DEFAULT_DATABASE_URL
    log_dir: Path = field(default_factory=lambda: Path(".lcp/logs"))
    log_level: int = logging.INFO
    json_column_fallback: bool = False
    record_history: bool = True

    @classmethod
    def from_env(cls) -> RuntimeConfig:
        """Build a configuration from LCP_* environment variables."""
        config = cls()
        url = os.environ.get("LCP_DATABASE_URL") or os.environ.get("DATABASE_URL")
        if url:
            config.database_url = url

        level_name = os.environ.get("LCP_LOG_LEVEL")
        if level_name:
            level = logging.getLevelName(level_name.upper())
            if isinstance(level, int):
                config.log_level = level

        log_dir = os.environ.get("LCP_LOG_DIR")
        if log_dir:
            config.log_dir = Path(log_dir)

        fallback = os.environ.get("LCP_JSON_COLUMN_FALLBACK")
        if fallback is not None:
            config.json_column_fallback = fallback.strip().lower() in _TRUE_VALUES

        return config

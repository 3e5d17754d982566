"""
Logging for the lcp_runtime logger tree.

Two handlers hang off the ``lcp_runtime`` logger once ``setup_logging`` runs:

- a rotating JSONL file, ``<log_dir>/lcp.log``, one JSON object per line,
  for tooling that tails build and schema activity
- an optional console stream for people, colored unless NO_COLOR is set
  or stdout is not a terminal

Modules log through ``logging.getLogger(__name__)``; structured data travels
in the ``context`` extra and lands under ``"context"`` in the JSONL entry.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from lcp_runtime.config import RuntimeConfig

ROOT_LOGGER_NAME = "lcp_runtime"
LOG_FILE_NAME = "lcp.log"

_log_dir: Path | None = None


def _use_color() -> bool:
    return not os.environ.get("NO_COLOR") and sys.stdout.isatty()


_ANSI = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "component": "\033[34m",
    logging.DEBUG: "\033[36m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}


def _component_of(record: logging.LogRecord) -> str:
    """``lcp_runtime.runtime.builder`` -> ``builder``, unless a component extra is set."""
    explicit = getattr(record, "component", None)
    if explicit:
        return str(explicit)
    return record.name.rsplit(".", 1)[-1]


# =============================================================================
# Formatters
# =============================================================================


class JSONLFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: ``timestamp`` (UTC, ISO 8601 with ``Z``), ``level``, ``component``,
    ``message``, then ``context`` when the record carries one, ``source``
    for WARNING and above, and ``exception`` when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, UTC)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "component": _component_of(record),
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.levelno >= logging.WARNING:
            entry["source"] = {"file": record.pathname, "line": record.lineno}
            if record.funcName and record.funcName != "<module>":
                entry["source"]["function"] = record.funcName
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [component] LEVEL: message``; the level is omitted for INFO."""

    def __init__(self, color: bool | None = None):
        super().__init__()
        self.color = _use_color() if color is None else color

    def _paint(self, key: Any, text: str) -> str:
        if not self.color or key not in _ANSI:
            return text
        return f"{_ANSI[key]}{text}{_ANSI['reset']}"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [
            self._paint("dim", timestamp),
            self._paint("component", f"[{_component_of(record)}]"),
        ]
        if record.levelno != logging.INFO:
            parts.append(self._paint(record.levelno, f"{record.levelname}:"))
        parts.append(record.getMessage())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# =============================================================================
# Setup
# =============================================================================


def setup_logging(
    log_dir: Path | str = ".lcp/logs",
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """
    Install the JSONL file handler (and optionally the console handler).

    Calling it again replaces the handlers installed by the previous call.

    Args:
        log_dir: Directory for ``lcp.log``; created when missing
        level: Minimum level for the logger tree and both handlers
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep
        console: Also log to stdout

    Returns:
        The log directory
    """
    global _log_dir

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / LOG_FILE_NAME

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(JSONLFormatter())
    file_handler.setLevel(level)
    package_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ConsoleFormatter())
        console_handler.setLevel(level)
        package_logger.addHandler(console_handler)

    _log_dir = directory
    package_logger.info(
        "Logging initialized",
        extra={"context": {"log_format": "jsonl", "log_file": str(log_file)}},
    )
    return directory


def setup_logging_from_config(config: RuntimeConfig, console: bool = True) -> Path:
    """``setup_logging`` with the directory and level of a RuntimeConfig."""
    return setup_logging(log_dir=config.log_dir, level=config.log_level, console=console)


def get_log_file() -> Path | None:
    """Path of the JSONL file, or None before ``setup_logging`` ran."""
    return _log_dir / LOG_FILE_NAME if _log_dir else None


# =============================================================================
# Structured helpers
# =============================================================================


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> None:
    """Log ``message`` with ``context`` and keyword items merged into the context extra."""
    merged = {**(context or {}), **kwargs}
    logger.log(level, message, extra={"context": merged} if merged else None)


def log_build_event(
    logger: logging.Logger,
    model: str,
    event: str,
    level: int = logging.INFO,
    **details: Any,
) -> None:
    """Log a build or schema event as ``"<event>: <model>"`` with the model in context."""
    log_with_context(logger, level, f"{event}: {model}", model=model, event=event, **details)

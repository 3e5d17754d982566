"""
Attachment storage collaborator.

Attachment fields own no column; files are kept by an AttachmentStore keyed
by (model, record id, field). Storage backends are external; the in-memory
store is the default and is what tests use.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


# =============================================================================
# File Metadata
# =============================================================================


@dataclass(frozen=True)
class AttachedFile:
    """An attached file and its metadata."""

    filename: str
    content_type: str
    size: int
    data: bytes | None = None

    @classmethod
    def coerce(cls, value: Any) -> AttachedFile:
        """Build from an AttachedFile, a mapping, or raw bytes."""
        if isinstance(value, AttachedFile):
            return value
        if isinstance(value, Mapping):
            data = value.get("data")
            size = value.get("size")
            if size is None:
                size = len(data) if data is not None else 0
            return cls(
                filename=str(value.get("filename") or "upload"),
                content_type=str(value.get("content_type") or "application/octet-stream"),
                size=int(size),
                data=data,
            )
        if isinstance(value, bytes | bytearray):
            return cls(
                filename="upload",
                content_type="application/octet-stream",
                size=len(value),
                data=bytes(value),
            )
        raise TypeError(f"cannot attach {type(value).__name__}")


def content_type_allowed(content_type: str, allowed: list[str] | None) -> bool:
    """Match a MIME type against an allow list; ``image/*`` style wildcards are accepted."""
    if not allowed:
        return True
    for pattern in allowed:
        if "*" in pattern:
            if fnmatch.fnmatchcase(content_type, pattern):
                return True
        elif content_type == pattern:
            return True
    return False


# =============================================================================
# Storage Protocol
# =============================================================================


class AttachmentStore(Protocol):
    """Storage collaborator for attachment fields."""

    def save(self, model: str, record_id: Any, field: str, files: list[AttachedFile]) -> None:
        """Replace the files attached to a record field."""
        ...

    def load(self, model: str, record_id: Any, field: str) -> list[AttachedFile]:
        """Return the files attached to a record field."""
        ...

    def purge(self, model: str, record_id: Any) -> None:
        """Remove every file attached to a record."""
        ...


class InMemoryAttachmentStore:
    """Dictionary-backed AttachmentStore."""

    def __init__(self) -> None:
        self._files: dict[tuple[str, Any, str], list[AttachedFile]] = {}

    def save(self, model: str, record_id: Any, field: str, files: list[AttachedFile]) -> None:
        key = (model, record_id, field)
        if files:
            self._files[key] = list(files)
        else:
            self._files.pop(key, None)
        logger.debug("Stored %d file(s) for %s #%s.%s", len(files), model, record_id, field)

    def load(self, model: str, record_id: Any, field: str) -> list[AttachedFile]:
        return list(self._files.get((model, record_id, field), []))

    def purge(self, model: str, record_id: Any) -> None:
        for key in [k for k in self._files if k[0] == model and k[1] == record_id]:
            del self._files[key]

    def __len__(self) -> int:
        return len(self._files)

"""Core error types shared by specs and runtime."""

from lcp_runtime.core.errors import (
    BuildError,
    DefinitionError,
    ErrorContext,
    LcpError,
    RecordInvalid,
    RecordNotFound,
    SchemaSyncError,
    ServiceNotFoundError,
)

__all__ = [
    "BuildError",
    "DefinitionError",
    "ErrorContext",
    "LcpError",
    "RecordInvalid",
    "RecordNotFound",
    "SchemaSyncError",
    "ServiceNotFoundError",
]

"""
Error types for metadata parsing, model building, and record persistence.
"""

from dataclasses import dataclass
from typing import Optional


class LcpError(Exception):
    """Base exception for all lcp-runtime errors."""

    def __init__(self, message: str, context: Optional["ErrorContext"] = None):
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context if available."""
        if self.context:
            return f"{self.context.format()}: {self.message}"
        return self.message


class DefinitionError(LcpError):
    """
    Raised when a model description is internally inconsistent.

    Examples:
    - Duplicate field names
    - Unknown field type
    - Enum default outside its value set
    - Comparison rule referencing a missing sibling field
    - Invalid regular expression in a ``matches`` condition
    - Field with both ``source`` and ``computed``
    """

    pass


class BuildError(LcpError):
    """
    Raised when a runtime type cannot be built from a valid definition.

    Examples:
    - DDL failure during schema synchronization
    - Unresolvable named service reference
    - Positioning configured on a virtual or non-integer field
    """

    pass


class SchemaSyncError(BuildError):
    """Raised when a schema synchronization step fails."""

    pass


class ServiceNotFoundError(BuildError):
    """Raised when a named service is not registered in its category."""

    def __init__(self, category: str, name: str, context: Optional["ErrorContext"] = None):
        self.category = category
        self.name = name
        super().__init__(f"{category} service '{name}' is not registered", context)


class RecordNotFound(LcpError):
    """Raised when a record lookup by primary key finds nothing."""

    pass


class RecordInvalid(LcpError):
    """Raised by ``save_or_raise`` when validation fails."""

    def __init__(self, record: object, errors: dict[str, list[str]]):
        self.record = record
        self.errors = errors
        details = "; ".join(f"{field}: {', '.join(msgs)}" for field, msgs in errors.items())
        super().__init__(f"Validation failed: {details}")


@dataclass
class ErrorContext:
    """
    Location of an error inside a model description.

    Attributes:
        model: Model name
        field: Optional field, association, or rule name
        section: Optional section of the description (fields, events, ...)
    """

    model: str
    field: str | None = None
    section: str | None = None

    def format(self) -> str:
        """
        Format error context as a human-readable string.

        Returns:
            Formatted string like: "model 'deal', fields.amount"
        """
        location = f"model '{self.model}'"
        if self.section and self.field:
            location += f", {self.section}.{self.field}"
        elif self.field:
            location += f", field '{self.field}'"
        elif self.section:
            location += f", {self.section}"
        return location


def make_definition_error(
    message: str,
    model: str | None = None,
    field: str | None = None,
    section: str | None = None,
) -> DefinitionError:
    """
    Helper to create a DefinitionError with optional context.

    Args:
        message: Error description
        model: Optional model name
        field: Optional field or rule name
        section: Optional description section

    Returns:
        DefinitionError with context if a model is given
    """
    if model:
        return DefinitionError(message, ErrorContext(model=model, field=field, section=section))
    return DefinitionError(message)


def make_build_error(message: str, model: str, field: str | None = None) -> BuildError:
    """Helper to create a BuildError located on a model (and optionally a field)."""
    return BuildError(message, ErrorContext(model=model, field=field))

"""
Error types for blueprint parsing, integrity checking, and synchronization.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .validator import Violation


class BlueprintsError(Exception):
    """Base exception for all blueprint engine errors."""

    def __init__(self, message: str, context: Optional["ErrorContext"] = None):
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context if available."""
        if self.context:
            return f"{self.context.format()}\n{self.message}"
        return self.message


class RejectReason(StrEnum):
    """Why the record grammar rejected a line."""

    NON_ASCII = "non-ascii character"
    TAB = "tab character"
    SPACING = "leading, trailing or repeated space"
    FORBIDDEN_SEPARATOR = "separator inside free text"
    MALFORMED_ID = "malformed id"
    MISSING_FIELD = "missing mandatory field"
    UNKNOWN_FIELD = "unknown field"
    FIELD_ORDER = "wrong field order"
    BAD_VALUE = "invalid field value"
    UNRECOGNIZED = "unrecognized line"


class GrammarError(BlueprintsError):
    """
    Raised when a line does not match its artifact's record grammar.

    Always fatal to the whole file edit: a file with one rejected line is
    not accepted at all.
    """

    def __init__(
        self,
        reason: RejectReason,
        detail: str,
        line: str,
        context: Optional["ErrorContext"] = None,
    ):
        self.reason = reason
        self.detail = detail
        self.line = line
        super().__init__(f"{reason.value}: {detail}\n  > {line}", context)

    def at(self, file: Path | None, line_number: int) -> "GrammarError":
        """Return a copy of this error located at file:line."""
        context = ErrorContext(file=file, line=line_number, column=1, snippet=self.line)
        return GrammarError(self.reason, self.detail, self.line, context)


class IntegrityError(BlueprintsError):
    """
    Raised when cross-artifact invariants are broken.

    Examples:
    - Unknown id references
    - Coverage gap or overlap
    - Test vector subset/merge rule breach
    """

    def __init__(self, message: str, violations: list["Violation"] | None = None):
        self.violations = list(violations or [])
        super().__init__(message)


class PlanError(BlueprintsError):
    """Raised when a plan operation cannot be applied."""

    pass


class PolicyError(BlueprintsError):
    """Raised when an id allocation policy is misused."""

    pass


class PreconditionError(BlueprintsError):
    """
    Raised when a required input artifact set is absent or empty.

    Always maps to the error token; nothing is written.
    """

    pass


class ProtocolError(BlueprintsError):
    """Raised when an external pass or controller breaks the token protocol."""

    pass


class ManifestError(BlueprintsError):
    """Raised when blueprints.toml or environment overrides are invalid."""

    pass


@dataclass
class ErrorContext:
    """
    Source location for an error.

    Attributes:
        file: Path to the blueprint file (None for in-memory text)
        line: Line number (1-indexed)
        column: Column number (1-indexed)
        snippet: Optional offending line
    """

    file: Path | None
    line: int
    column: int = 1
    snippet: str | None = None

    def format(self) -> str:
        """
        Format error context as a human-readable string.

        Returns:
            Formatted string like: "02-spec.md:10:1"
        """
        name = str(self.file) if self.file else "<text>"
        return f"{name}:{self.line}:{self.column}"

"""Custom exceptions for core logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.extraction.fragments import Fragment


class TemplateParseError(Exception):
    """Raised when Haml text cannot be parsed into a node tree."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"line {self.line}: {self.message}"


class AnalyzerInvocationError(Exception):
    """Raised when the external analyzer exits with an unexpected status."""

    def __init__(
        self,
        message: str,
        *,
        exit_status: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr


class FragmentTransferSkipped(Exception):
    """Raised by a fragment when its correction cannot be spliced back.

    Only the fragment's own correction is dropped; the assembler keeps going.
    """

    def __init__(self, message: str, *, fragment: Fragment | None = None) -> None:
        super().__init__(message)
        self.fragment = fragment


class ConfigurationError(Exception):
    """Raised when the linter configuration cannot be loaded or validated."""

"""
Error taxonomy for phpswitch.

Every failure surfaced to the user is one of these categories:
- Filesystem: missing or unwritable file/directory
- Validation: unsafe path or extracted value, never acted upon
- External command: Homebrew call failed or timed out
- Corruption: managed block markers present but malformed
- Resolution: project version could not be turned into an identifier
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .brew import CommandResult


class PhpSwitchError(Exception):
    """
    Base exception for phpswitch errors.

    Attributes:
        message: Human-readable error message
        remediation: Suggested fix for the error
    """
    category = "error"

    def __init__(self, message: str, remediation: str | None = None):
        self.message = message
        self.remediation = remediation
        super().__init__(message)


class FilesystemError(PhpSwitchError):
    """A file or directory could not be read, created or written."""
    category = "filesystem"


class ValidationError(PhpSwitchError):
    """A path or extracted value failed a safety check."""
    category = "validation"


class CorruptionError(PhpSwitchError):
    """A startup file contains a malformed managed block."""
    category = "corruption"


class ExternalCommandError(PhpSwitchError):
    """A package manager command failed."""
    category = "external_command"

    def __init__(
        self,
        message: str,
        result: CommandResult | None = None,
        remediation: str | None = None,
    ):
        self.result = result
        super().__init__(message, remediation)


class ResolutionError(PhpSwitchError):
    """
    A project version could not be resolved.

    Attributes:
        kind: 'invalid_path', 'unsafe_content' or 'unknown_format'
        source_path: File the raw value was read from (if any)
    """
    category = "resolution"

    INVALID_PATH = "invalid_path"
    UNSAFE_CONTENT = "unsafe_content"
    UNKNOWN_FORMAT = "unknown_format"

    def __init__(
        self,
        message: str,
        kind: str,
        source_path: str | None = None,
        remediation: str | None = None,
    ):
        self.kind = kind
        self.source_path = source_path
        super().__init__(message, remediation)

"""
PHP version identifiers and normalization.

Every external representation of a version (bare "8.2", major-only "8",
Homebrew formula names, the unversioned "php" formula) is normalized to a
canonical VersionIdentifier before it is compared or used:

    php@8.2       versioned install
    php@default   the unversioned/primary "php" formula
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from packaging.version import Version

from .errors import ResolutionError

INTERPRETER = "php"
DEFAULT_TAG = "default"

CANONICAL_RE = re.compile(r"^(?P<name>[a-z][a-z0-9_-]*)@(?:(?P<major>\d+)\.(?P<minor>\d+)|(?P<default>default))$")
MAJOR_MINOR_RE = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)$")
MAJOR_ONLY_RE = re.compile(r"^(?P<major>\d+)$")


@dataclass(frozen=True)
class VersionIdentifier:
    """
    Canonical identifier of one installable PHP version.

    Attributes:
        name: Interpreter name (always "php" in practice)
        major: Major version, None for the default install
        minor: Minor version, None for the default install
    """
    name: str = INTERPRETER
    major: int | None = None
    minor: int | None = None

    def __post_init__(self):
        if (self.major is None) != (self.minor is None):
            raise ValueError("major and minor must both be set or both be None")

    @property
    def is_default(self) -> bool:
        return self.major is None

    @property
    def number(self) -> str:
        """Version number ("8.2"), or "default" for the primary install."""
        if self.is_default:
            return DEFAULT_TAG
        return f"{self.major}.{self.minor}"

    @property
    def formula(self) -> str:
        """Homebrew formula name ("php@8.2", or "php" for the default)."""
        if self.is_default:
            return self.name
        return f"{self.name}@{self.number}"

    def sort_key(self) -> tuple[int, Version]:
        # Default sorts after every numbered version
        if self.is_default:
            return (1, Version("0"))
        return (0, Version(self.number))

    def __str__(self) -> str:
        return f"{self.name}@{self.number}"

    @classmethod
    def default(cls, name: str = INTERPRETER) -> VersionIdentifier:
        return cls(name=name)

    @classmethod
    def parse(cls, text: str) -> VersionIdentifier:
        """
        Parse a canonical identifier ("php@8.2" or "php@default").

        Raises:
            ValueError: If text is not in canonical form
        """
        match = CANONICAL_RE.match(text.strip())
        if not match:
            raise ValueError(f"Not a canonical version identifier: {text!r}")
        if match.group("default"):
            return cls(name=match.group("name"))
        return cls(
            name=match.group("name"),
            major=int(match.group("major")),
            minor=int(match.group("minor")),
        )

    @classmethod
    def from_formula(cls, formula: str) -> VersionIdentifier | None:
        """
        Convert a Homebrew formula name to an identifier.

        Returns:
            Identifier, or None if the formula is not a PHP release line
        """
        formula = formula.strip()
        if formula == INTERPRETER:
            return cls.default()
        try:
            return cls.parse(formula)
        except ValueError:
            return None


def sort_versions(versions: Iterable[VersionIdentifier]) -> list[VersionIdentifier]:
    """Sort identifiers numerically, dropping duplicates."""
    return sorted(set(versions), key=VersionIdentifier.sort_key)


def highest_minor(
    major: int,
    installed: Iterable[VersionIdentifier],
) -> VersionIdentifier | None:
    """
    Find the highest installed minor release for a major version.

    Args:
        major: Major version number
        installed: Installed versions

    Returns:
        Highest matching identifier (numeric comparison), or None
    """
    candidates = [v for v in installed if not v.is_default and v.major == major]
    if not candidates:
        return None
    return max(candidates, key=VersionIdentifier.sort_key)


def normalize(
    raw: str,
    installed: Iterable[VersionIdentifier] = (),
    name: str = INTERPRETER,
) -> VersionIdentifier:
    """
    Normalize a raw version string into a canonical identifier.

    Accepted shapes:
        "php@8.2" / "php@default"  accepted as-is
        "8.2"                      prefixed with the interpreter name
        "8"                        highest installed 8.x, else 8.0

    Args:
        raw: Raw version text (already stripped and validated)
        installed: Installed versions, consulted for major-only input
        name: Interpreter name

    Returns:
        Canonical VersionIdentifier

    Raises:
        ResolutionError: If the text has any other shape
    """
    text = raw.strip()

    try:
        return VersionIdentifier.parse(text)
    except ValueError:
        pass

    match = MAJOR_MINOR_RE.match(text)
    if match:
        return VersionIdentifier(name=name, major=int(match.group("major")), minor=int(match.group("minor")))

    match = MAJOR_ONLY_RE.match(text)
    if match:
        major = int(match.group("major"))
        best = highest_minor(major, installed)
        if best is not None:
            return best
        return VersionIdentifier(name=name, major=major, minor=0)

    raise ResolutionError(
        f"Unrecognized version format: {text!r}",
        kind=ResolutionError.UNKNOWN_FORMAT,
        remediation="Use a version like '8.2', '8' or 'php@8.2'",
    )

"""
Project version resolution.

A project declares the PHP version it wants through one of these sources,
highest priority first:

1. A dedicated marker file (.php-version, .phpversion, .php). The first one
   found anywhere between the start directory and / wins, even over closer
   directories that only have lower-priority sources.
2. composer.json: config.platform.php, then the require.php constraint.
3. .tool-versions: the "php <version>" line.

Sources 2 and 3 are checked together per directory level, walking upward;
the first level with a match stops the walk.
"""

from __future__ import annotations

import enum
import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from .common import atomic_write_text, has_control_characters, validate_path, vlog
from .errors import ResolutionError, ValidationError
from .versions import VersionIdentifier, normalize

MARKER_FILES = (".php-version", ".phpversion", ".php")
COMPOSER_FILE = "composer.json"
TOOL_VERSIONS_FILE = ".tool-versions"
PROJECT_VERSION_FILE = MARKER_FILES[0]

MAX_RAW_LENGTH = 64
# Never read more than this from a project file
READ_LIMIT = 4096

CONSTRAINT_TOKEN_RE = re.compile(r"(\d+)(?:\.(\d+))?")
FIELD_SEPARATOR_RE = re.compile(r"[ \t]+")
PATCH_VERSION_RE = re.compile(r"^(\d+\.\d+)\.\d+$")


class ProjectVersionSource(enum.Enum):
    MARKER_FILE = 0
    COMPOSER = 1
    TOOL_VERSIONS = 2

    @property
    def priority(self) -> int:
        return self.value


@dataclass(frozen=True)
class ProjectVersion:
    """
    A resolved project version.

    Attributes:
        version: Canonical identifier
        source: Which kind of file declared it
        path: File the value was read from
        raw: Value as extracted from the file
    """
    version: VersionIdentifier
    source: ProjectVersionSource
    path: Path
    raw: str

    def to_dict(self) -> dict:
        return {
            "version": str(self.version),
            "source": self.source.name.lower(),
            "path": str(self.path),
            "raw": self.raw,
        }


def check_raw_value(raw: str, source_path: Path | None = None) -> str:
    """
    Reject oversized values or values with control characters.

    Args:
        raw: Extracted text (trailing line endings and edge spaces are ignored)
        source_path: File it came from, for the error message

    Returns:
        The stripped value

    Raises:
        ResolutionError: kind unsafe_content
    """
    # Only line endings and spaces are trimmed; any other separator is rejected below
    value = raw.rstrip("\r\n").strip(" ")
    where = f" in {source_path}" if source_path else ""
    if len(value) > MAX_RAW_LENGTH:
        raise ResolutionError(
            f"Version value{where} is longer than {MAX_RAW_LENGTH} characters",
            kind=ResolutionError.UNSAFE_CONTENT,
            source_path=str(source_path) if source_path else None,
        )
    if has_control_characters(value):
        raise ResolutionError(
            f"Version value{where} contains control characters",
            kind=ResolutionError.UNSAFE_CONTENT,
            source_path=str(source_path) if source_path else None,
        )
    return value


def reduce_constraint(constraint: str) -> str | None:
    """
    Reduce a Composer version constraint to "X.Y" (or "X").

    Alternatives separated by "|" or "||" are each reduced to their first
    numeric token and the highest one wins: "^7.4 || ^8.1" -> "8.1".

    Returns:
        Reduced version text, or None if the constraint has no number
    """
    best: tuple[int, int] | None = None
    best_text = None
    for alternative in constraint.split("|"):
        match = CONSTRAINT_TOKEN_RE.search(alternative)
        if not match:
            continue
        major = int(match.group(1))
        minor = int(match.group(2)) if match.group(2) is not None else -1
        if best is None or (major, minor) > best:
            best = (major, minor)
            best_text = match.group(0)
    return best_text


def _read_limited(path: Path) -> str | None:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read(READ_LIMIT)
    except OSError as e:
        vlog(f"Could not read {path}: {e}")
        return None


def composer_constraint(path: Path) -> str | None:
    """PHP version declared by a composer.json, if any."""
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        vlog(f"Ignoring unreadable {path}: {e}")
        return None
    if not isinstance(data, dict):
        return None

    config = data.get("config")
    platform = config.get("platform") if isinstance(config, dict) else None
    if isinstance(platform, dict) and isinstance(platform.get("php"), str):
        return platform["php"]

    require = data.get("require")
    if isinstance(require, dict) and isinstance(require.get("php"), str):
        return require["php"]
    return None


def tool_versions_entry(path: Path) -> str | None:
    """Version from the "php" line of a .tool-versions file, if any."""
    if not path.is_file():
        return None
    text = _read_limited(path)
    if text is None:
        return None
    for line in text.split("\n"):
        fields = FIELD_SEPARATOR_RE.split(line.split("#", 1)[0].strip(" \t\r"))
        if len(fields) >= 2 and fields[0] == "php":
            return fields[1]
    return None


class ProjectVersionResolver:
    """
    Resolve the PHP version a directory asks for.

    Args:
        installed: Returns installed versions; consulted only for major-only
            values such as "8"
    """

    def __init__(self, installed: Callable[[], Iterable[VersionIdentifier]] = lambda: ()):
        self.installed = installed

    def _build(self, raw: str, source: ProjectVersionSource, path: Path, reduced: str | None = None) -> ProjectVersion:
        value = check_raw_value(raw, path)
        try:
            version = normalize(reduced if reduced is not None else value, installed=self.installed())
        except ResolutionError as e:
            raise ResolutionError(
                f"{e.message} in {path}",
                kind=e.kind,
                source_path=str(path),
                remediation=e.remediation,
            ) from e
        vlog(f"Project version {version} from {path}")
        return ProjectVersion(version=version, source=source, path=path, raw=value)

    @staticmethod
    def _start(start_dir: str | os.PathLike[str] | None) -> Path:
        text = os.fspath(start_dir) if start_dir is not None else os.getcwd()
        if not validate_path(text, require_home=False):
            raise ResolutionError(
                f"Invalid start directory: {text!r}",
                kind=ResolutionError.INVALID_PATH,
            )
        path = Path(os.path.realpath(text))
        if not path.is_dir():
            raise ResolutionError(
                f"Not a directory: {path}",
                kind=ResolutionError.INVALID_PATH,
            )
        return path

    def resolve(self, start_dir: str | os.PathLike[str] | None = None) -> ProjectVersion | None:
        """
        Find the project version for start_dir (defaults to the cwd).

        Returns:
            ProjectVersion, or None if no source declares a version

        Raises:
            ResolutionError: invalid_path, unsafe_content or unknown_format
        """
        start = self._start(start_dir)
        levels = [start, *start.parents]

        for directory in levels:
            for name in MARKER_FILES:
                marker = directory / name
                if not marker.is_file():
                    continue
                raw = _read_limited(marker)
                if raw is None or not raw.rstrip("\r\n").strip(" "):
                    continue
                return self._build(raw, ProjectVersionSource.MARKER_FILE, marker)

        for directory in levels:
            composer = directory / COMPOSER_FILE
            constraint = composer_constraint(composer)
            if constraint is not None:
                value = check_raw_value(constraint, composer)
                reduced = reduce_constraint(value)
                if reduced is None:
                    raise ResolutionError(
                        f"No version number in PHP constraint {value!r} in {composer}",
                        kind=ResolutionError.UNKNOWN_FORMAT,
                        source_path=str(composer),
                    )
                return self._build(value, ProjectVersionSource.COMPOSER, composer, reduced)

            tool_versions = directory / TOOL_VERSIONS_FILE
            entry = tool_versions_entry(tool_versions)
            if entry is not None:
                value = check_raw_value(entry, tool_versions)
                match = PATCH_VERSION_RE.match(value)
                reduced = match.group(1) if match else value
                return self._build(value, ProjectVersionSource.TOOL_VERSIONS, tool_versions, reduced)

        vlog(f"No project version found from {start}")
        return None


def write_project_version(version: VersionIdentifier, directory: str | os.PathLike[str] | None = None) -> Path:
    """
    Write a .php-version marker file.

    Args:
        version: Version to record
        directory: Project directory (defaults to the cwd)

    Returns:
        Path of the marker file

    Raises:
        ValidationError: If the directory path is unsafe
    """
    text = os.fspath(directory) if directory is not None else os.getcwd()
    if not validate_path(text, require_home=False) or not os.path.isdir(text):
        raise ValidationError(f"Invalid project directory: {text!r}")

    target = Path(text) / PROJECT_VERSION_FILE
    content = str(version) if version.is_default else version.number
    atomic_write_text(target, content + "\n")
    return target

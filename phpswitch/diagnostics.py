"""
Read-only checks of the machine phpswitch runs on.

Dependency checks, PATH diagnosis and the broader PHP environment report
never change anything; they only explain why `php` may not be the version
Homebrew has linked.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from .brew import QUERY_TIMEOUT, CommandResult, run_command
from .common import vlog
from .versions import INTERPRETER, VersionIdentifier

# Command -> (required, how to get it)
DEPENDENCIES: dict[str, tuple[bool, str]] = {
    "brew": (True, "Install Homebrew from https://brew.sh"),
    INTERPRETER: (False, "Install a version with: phpswitch --install 8.3"),
    "sudo": (False, "Only needed to take ownership of directories and to manage system services"),
}

# Startup lines that touch PATH and mention php
PATH_LINE_NEEDLES = ("PATH", INTERPRETER)


@dataclass(frozen=True)
class DependencyStatus:
    """
    Availability of one external command.

    Attributes:
        name: Command name
        required: Whether phpswitch cannot work without it
        path: Resolved executable, None when missing
        hint: How to install it
    """
    name: str
    required: bool
    path: str | None
    hint: str

    @property
    def found(self) -> bool:
        return self.path is not None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "required": self.required,
            "found": self.found,
            "path": self.path,
            "hint": self.hint,
        }


def check_dependencies(
    search_path: str | None = None,
    which: Callable[..., str | None] = shutil.which,
) -> list[DependencyStatus]:
    """Look up every command in DEPENDENCIES on search_path (PATH by default)."""
    statuses = []
    for name, (required, hint) in DEPENDENCIES.items():
        path = which(name, path=search_path)
        vlog(f"Dependency {name}: {path or 'missing'}")
        statuses.append(DependencyStatus(name=name, required=required, path=path, hint=hint))
    return statuses


def missing_required(statuses: Iterable[DependencyStatus]) -> list[DependencyStatus]:
    return [s for s in statuses if s.required and not s.found]


@dataclass(frozen=True)
class PhpBinary:
    """A php executable found in one PATH directory."""
    path: str
    version_line: str
    symlink_target: str | None = None

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "version": self.version_line,
            "symlink_target": self.symlink_target,
        }


def version_line(php: str, runner: Callable[..., CommandResult] = run_command) -> str:
    """First line of `php -v`, or "" when the binary does not answer."""
    result = runner([php, "-v"], timeout=QUERY_TIMEOUT)
    if not result.success or not result.stdout.strip():
        return ""
    return result.stdout.strip().splitlines()[0]


def find_php_binaries(
    search_path: str,
    runner: Callable[..., CommandResult] = run_command,
) -> list[PhpBinary]:
    """Every executable php on search_path, in lookup order."""
    binaries = []
    seen = set()
    for directory in search_path.split(os.pathsep):
        if not directory or directory in seen:
            continue
        seen.add(directory)
        candidate = os.path.join(directory, INTERPRETER)
        if not (os.path.isfile(candidate) and os.access(candidate, os.X_OK)):
            continue
        target = os.readlink(candidate) if os.path.islink(candidate) else None
        binaries.append(PhpBinary(path=candidate, version_line=version_line(candidate, runner), symlink_target=target))
    return binaries


@dataclass(frozen=True)
class PathDiagnosis:
    """
    Which php the search path resolves to, and which one it should.

    Attributes:
        entries: Search path directories in order
        binaries: Every php found on the search path
        active: The php that wins the lookup, None if there is none
        linked: Version Homebrew has linked
        expected: php binary of the linked version
        warnings: Problems worth telling the user about
    """
    entries: tuple[str, ...]
    binaries: tuple[PhpBinary, ...]
    active: str | None
    linked: VersionIdentifier | None
    expected: str | None
    warnings: tuple[str, ...] = ()

    @property
    def healthy(self) -> bool:
        return not self.warnings

    def to_dict(self) -> dict:
        return {
            "entries": list(self.entries),
            "binaries": [b.to_dict() for b in self.binaries],
            "active": self.active,
            "linked": str(self.linked) if self.linked else None,
            "expected": self.expected,
            "warnings": list(self.warnings),
        }


def diagnose_path(
    search_path: str,
    linked: VersionIdentifier | None,
    expected: Path | None,
    runner: Callable[..., CommandResult] = run_command,
) -> PathDiagnosis:
    """
    Compare the php that search_path resolves to with the linked version.

    Args:
        search_path: PATH value to inspect
        linked: Version Homebrew has linked (None when nothing is linked)
        expected: php binary of the linked version
        runner: Runs `php -v` (injectable for tests)
    """
    binaries = find_php_binaries(search_path, runner)
    active = binaries[0].path if binaries else None
    warnings = []

    if not binaries:
        warnings.append("No php binary found on PATH")
    elif len(binaries) > 1:
        warnings.append(f"{len(binaries)} php binaries on PATH; the first one ({active}) is used")

    if linked is None:
        warnings.append("Homebrew has no PHP version linked")
    elif active and expected and os.path.realpath(active) != os.path.realpath(expected):
        warnings.append(f"php resolves to {active}, not to the linked {linked} ({expected})")
        if not linked.is_default and linked.number not in binaries[0].version_line:
            warnings.append(f"The active php reports '{binaries[0].version_line}', which is not {linked}")

    return PathDiagnosis(
        entries=tuple(e for e in search_path.split(os.pathsep) if e),
        binaries=tuple(binaries),
        active=active,
        linked=linked,
        expected=str(expected) if expected else None,
        warnings=tuple(warnings),
    )


@dataclass(frozen=True)
class StartupMention:
    """A startup file line that edits PATH with a php directory."""
    path: str
    line_number: int
    text: str

    def to_dict(self) -> dict:
        return {"path": self.path, "line": self.line_number, "text": self.text}


def startup_mentions(files: Iterable[Path]) -> list[StartupMention]:
    """PATH lines mentioning php in the given startup files."""
    mentions = []
    for path in files:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                lines = f.read().split("\n")
        except FileNotFoundError:
            continue
        except OSError as e:
            vlog(f"Could not read {path}: {e}")
            continue
        for number, line in enumerate(lines, start=1):
            if all(needle in line for needle in PATH_LINE_NEEDLES):
                mentions.append(StartupMention(path=str(path), line_number=number, text=line.strip()))
    return mentions


@dataclass(frozen=True)
class EnvironmentReport:
    """Everything --diagnose-environment prints."""
    path: PathDiagnosis
    installed: tuple[VersionIdentifier, ...]
    opt_links: dict[str, str]
    startup_mentions: tuple[StartupMention, ...]
    modules: tuple[str, ...]
    services: dict[str, str] = field(default_factory=dict)

    @property
    def warnings(self) -> tuple[str, ...]:
        warnings = list(self.path.warnings)
        if not self.installed:
            warnings.append("No PHP versions are installed through Homebrew")
        return tuple(warnings)

    def to_dict(self) -> dict:
        return {
            "path": self.path.to_dict(),
            "installed": [str(v) for v in self.installed],
            "opt_links": dict(self.opt_links),
            "startup_mentions": [m.to_dict() for m in self.startup_mentions],
            "modules": list(self.modules),
            "services": dict(self.services),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ExtensionReport:
    """
    Extensions of one PHP version.

    Attributes:
        version: Inspected version
        modules: Names `php -m` reports
        ini_dir: Configuration directory, None when it could not be determined
        ini_files: .ini files in ini_dir/conf.d
    """
    version: VersionIdentifier
    modules: tuple[str, ...]
    ini_dir: Path | None
    ini_files: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "version": str(self.version),
            "modules": list(self.modules),
            "ini_dir": str(self.ini_dir) if self.ini_dir else None,
            "ini_files": list(self.ini_files),
        }


def list_ini_files(ini_dir: Path | None) -> list[str]:
    """Names of the .ini files in ini_dir/conf.d, sorted."""
    if ini_dir is None:
        return []
    conf_d = ini_dir / "conf.d"
    try:
        return sorted(entry.name for entry in conf_d.iterdir() if entry.name.lower().endswith(".ini"))
    except OSError as e:
        vlog(f"No extension configuration in {conf_d}: {e}")
        return []

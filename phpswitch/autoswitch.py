"""
Automatic switching when the shell enters a project directory.

The shell hook installed in the managed block runs `phpswitch --auto-mode`
on directory changes and evaluates what it prints. Results of project
resolution are remembered per directory in a small cache file of
`directory:version` lines.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import MutableMapping

from .brew import Homebrew
from .common import atomic_write_text, vlog
from .config import Config
from .errors import ResolutionError
from .logging_config import get_logger
from .path import PathReconstructor
from .resolver import ProjectVersionResolver
from .shell import ShellDialect
from .versions import VersionIdentifier

DIRECTORY_CACHE_FILENAME = "directory_cache.txt"
MAX_ENTRIES = 500


class DirectoryCache:
    """
    Directory to version mapping persisted as `directory:version` lines.

    Directories may contain colons; the version never does, so each line is
    split on its last colon.
    """

    def __init__(self, cache_dir: Path):
        self.path = cache_dir / DIRECTORY_CACHE_FILENAME

    def _load(self) -> dict[str, VersionIdentifier]:
        entries: dict[str, VersionIdentifier] = {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except (OSError, ValueError) as e:
            vlog(f"Ignoring unreadable directory cache {self.path}: {e}")
            return entries

        for line in lines:
            directory, sep, version_text = line.rpartition(":")
            if not sep or not directory:
                continue
            try:
                entries[directory] = VersionIdentifier.parse(version_text)
            except ValueError:
                vlog(f"Ignoring bad directory cache line: {line!r}")
        return entries

    def _save(self, entries: dict[str, VersionIdentifier]) -> None:
        # Oldest entries are dropped first; dicts keep insertion order
        items = list(entries.items())[-MAX_ENTRIES:]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self.path, "".join(f"{d}:{v}\n" for d, v in items))
        except OSError as e:
            get_logger().warning(f"Could not write directory cache {self.path}: {e}")

    def lookup(self, directory: str) -> VersionIdentifier | None:
        return self._load().get(directory)

    def record(self, directory: str, version: VersionIdentifier) -> None:
        entries = self._load()
        entries.pop(directory, None)
        entries[directory] = version
        self._save(entries)

    def clear(self) -> bool:
        """Delete the cache file. Returns True if it existed."""
        try:
            self.path.unlink()
            return True
        except FileNotFoundError:
            return False


def auto_switch(
    cwd: str,
    brew: Homebrew,
    config: Config,
    dialect: ShellDialect,
    environ: MutableMapping[str, str] | None = None,
    cache: DirectoryCache | None = None,
) -> str | None:
    """
    Relink the project's PHP version for cwd if it differs from the current one.

    Quiet by design: nothing is printed here, problems are logged at debug
    level and the shell keeps its current version.

    Returns:
        Shell command that updates PATH in the calling shell, or None when
        nothing changed
    """
    logger = get_logger()
    cache = cache or DirectoryCache(config.cache_path)

    version = cache.lookup(cwd)
    if version is None:
        resolver = ProjectVersionResolver(installed=brew.list_installed)
        try:
            project = resolver.resolve(cwd)
        except ResolutionError as e:
            logger.debug(f"Auto-switch skipped for {cwd}: {e.message}")
            return None
        if project is None:
            return None
        version = project.version
        cache.record(cwd, version)

    if not brew.is_installed(version):
        logger.debug(f"Auto-switch skipped: {version} is not installed")
        return None

    current = brew.current_linked_version()
    if current == version:
        return None

    if current is not None:
        brew.unlink(current)
    result = brew.link(version, force=True)
    if not result.success:
        logger.warning(f"Auto-switch could not link {version}: {result.error_message}")
        return None

    bin_dir, sbin_dir = brew.opt_paths(version)
    reconstructor = PathReconstructor(dialect, os.environ if environ is None else environ)
    vlog(f"Auto-switched to {version} for {cwd}")
    return reconstructor.export_command(reconstructor.rebuild(bin_dir, sbin_dir))

"""
Search path reconstruction.

Removes every previous PHP entry from PATH and puts the selected version's
bin and sbin directories first. The result is applied to the running process
where the dialect allows it, and is always available as a reload script the
user can source from the parent shell.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import MutableMapping, Sequence

from .common import vlog
from .logging_config import get_logger
from .shell import ShellDialect, get_strategy
from .versions import INTERPRETER, VersionIdentifier

RELOAD_SCRIPT_PREFIX = "phpswitch_reload_"
RELOAD_SCRIPT_MODE = 0o755


def rebuild_search_path(
    search_path: str,
    new_version_paths: Sequence[str],
    separator: str = ":",
    needle: str = INTERPRETER,
) -> str:
    """
    Rebuild a search path with new version directories first.

    Any entry containing needle (case-insensitive) is dropped, which catches
    both versioned and unversioned previous installs. Empty entries are
    dropped too. The remaining entries keep their relative order.

    Args:
        search_path: Current search path
        new_version_paths: Directories to prepend, in order
        separator: Path list separator
        needle: Interpreter name to filter on

    Returns:
        Rebuilt search path
    """
    needle = needle.lower()
    kept = [
        entry for entry in search_path.split(separator)
        if entry and needle not in entry.lower()
    ]
    return separator.join(list(new_version_paths) + kept)


@dataclass(frozen=True)
class ReloadOutcome:
    """
    Result of updating the search path after a switch.

    Attributes:
        search_path: Rebuilt PATH value
        live_updated: Whether this process's PATH was changed
        reload_script: Script the user can source (None if it could not be written)
        verified: Whether php resolves into the expected install directory
        resolved_binary: Where php resolved to through the new PATH
    """
    search_path: str
    live_updated: bool
    reload_script: Path | None
    verified: bool
    resolved_binary: str | None

    def to_dict(self) -> dict:
        return {
            "search_path": self.search_path,
            "live_updated": self.live_updated,
            "reload_script": str(self.reload_script) if self.reload_script else None,
            "verified": self.verified,
            "resolved_binary": self.resolved_binary,
        }


class PathReconstructor:
    """
    Apply a rebuilt PATH for one shell dialect.

    Args:
        dialect: Shell dialect of the user's session
        environ: Environment to mutate (defaults to os.environ)
        script_dir: Directory for reload scripts (defaults to the temp dir)
    """

    def __init__(
        self,
        dialect: ShellDialect,
        environ: MutableMapping[str, str] | None = None,
        script_dir: Path | None = None,
    ):
        self.dialect = dialect
        self.strategy = get_strategy(dialect)
        self.environ = os.environ if environ is None else environ
        self.script_dir = script_dir

    def rebuild(self, bin_dir: Path, sbin_dir: Path) -> str:
        return rebuild_search_path(
            self.environ.get("PATH", ""),
            [str(bin_dir), str(sbin_dir)],
            separator=self.strategy.path_separator,
        )

    def apply(self, version: VersionIdentifier, bin_dir: Path, sbin_dir: Path) -> ReloadOutcome:
        """
        Update PATH for the selected version.

        Dialects that cannot be changed from outside their own session
        (fish) are left alone; the reload script covers them.
        """
        logger = get_logger()
        new_path = self.rebuild(bin_dir, sbin_dir)

        live = self.strategy.supports_live_update
        if live:
            self.environ["PATH"] = new_path
            vlog(f"PATH updated for this process: {new_path}")

        try:
            script = self.create_reload_script(version, bin_dir, sbin_dir)
        except OSError as e:
            logger.warning(f"Could not write reload script: {e}")
            script = None

        verified, resolved = self.verify(bin_dir.parent, new_path)
        return ReloadOutcome(
            search_path=new_path,
            live_updated=live,
            reload_script=script,
            verified=verified,
            resolved_binary=resolved,
        )

    def create_reload_script(
        self,
        version: VersionIdentifier,
        bin_dir: Path,
        sbin_dir: Path,
        directory: Path | None = None,
    ) -> Path:
        """
        Write a standalone script that performs the same PATH rebuild.

        Returns:
            Path of the executable script

        Raises:
            OSError: If the script cannot be written
        """
        directory = directory or self.script_dir
        fd, name = tempfile.mkstemp(
            prefix=RELOAD_SCRIPT_PREFIX,
            suffix=self.strategy.script_suffix,
            dir=str(directory) if directory else None,
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(self.strategy.render_reload_script(version, str(bin_dir), str(sbin_dir)))
        os.chmod(name, RELOAD_SCRIPT_MODE)
        vlog(f"Reload script written: {name}")
        return Path(name)

    def verify(self, expected_dir: Path, search_path: str | None = None) -> tuple[bool, str | None]:
        """
        Check that php resolves into expected_dir through the search path.

        A mismatch is logged as a warning; the startup file is still correct
        for new sessions.

        Returns:
            (verified, resolved binary path or None)
        """
        search_path = self.environ.get("PATH", "") if search_path is None else search_path
        binary = shutil.which(INTERPRETER, path=search_path)
        if binary is None:
            get_logger().warning("php was not found on the rebuilt PATH")
            return False, None

        resolved = os.path.realpath(binary)
        expected = os.path.realpath(expected_dir)
        try:
            ok = os.path.commonpath([expected, resolved]) == expected
        except ValueError:
            ok = False

        if not ok:
            get_logger().warning(f"php resolves to {resolved}, expected a binary under {expected}")
        return ok, resolved

    def instructions(
        self,
        startup_file: Path,
        bin_dir: Path,
        sbin_dir: Path,
        reload_script: Path | None = None,
    ) -> list[str]:
        """Human-readable next steps for activating the version in the current terminal."""
        lines = []
        if reload_script is not None:
            lines.append(f"To use it in this terminal, run: {self.strategy.source_command(reload_script)}")
        lines.append(f"Or reload your startup file: {self.strategy.source_command(startup_file)}")
        lines.append(f"Or update PATH manually: {self.strategy.manual_path_command(str(bin_dir), str(sbin_dir))}")
        lines.append("New terminal sessions use the new version automatically.")
        return lines

    def export_command(self, search_path: str) -> str:
        """Shell command that sets PATH to search_path, suitable for eval."""
        return self.strategy.export_command(search_path.split(self.strategy.path_separator))

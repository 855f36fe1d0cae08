"""
Managed block patching of shell startup files.

The block phpswitch owns is delimited by fixed marker lines and located by
marker offsets (str.find), never by line-pattern matching. Everything outside
the markers belongs to the user and is written back byte for byte.
"""

from __future__ import annotations

import datetime
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from .common import atomic_write_text, vlog
from .errors import CorruptionError, FilesystemError
from .versions import VersionIdentifier

BEGIN_MARKER = "# BEGIN PHPSWITCH MANAGED BLOCK - DO NOT EDIT MANUALLY"
END_MARKER = "# END PHPSWITCH MANAGED BLOCK"
VERSION_HEADER = "# phpswitch: "
TIMESTAMP_HEADER = "# Last updated: "


@dataclass(frozen=True)
class PatchResult:
    """
    Outcome of a managed block patch.

    Attributes:
        path: File that was written
        version: Version the block targets
        created: True when the file had no managed block before
        changed: False when only the timestamp line differs
    """
    path: Path
    version: VersionIdentifier
    created: bool
    changed: bool

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "version": str(self.version),
            "created": self.created,
            "changed": self.changed,
        }


def find_managed_block(content: str) -> tuple[int, int] | None:
    """
    Locate the managed block.

    Args:
        content: Startup file content

    Returns:
        (start, end) offsets where start is the first character of the begin
        marker and end is one past the end marker, or None if there is no block

    Raises:
        CorruptionError: If the markers are unpaired or repeated
    """
    start = content.find(BEGIN_MARKER)
    if start == -1:
        if content.find(END_MARKER) != -1:
            raise CorruptionError(
                "Found the end of a phpswitch block without its beginning",
                remediation=f"Remove the stray '{END_MARKER}' line by hand",
            )
        return None

    end_marker = content.find(END_MARKER, start + len(BEGIN_MARKER))
    if end_marker == -1:
        raise CorruptionError(
            "Found the beginning of a phpswitch block without its end",
            remediation=f"Restore '{END_MARKER}' or remove the block by hand (a backup may exist)",
        )

    duplicate = content.find(BEGIN_MARKER, start + len(BEGIN_MARKER))
    if duplicate != -1:
        raise CorruptionError(
            "Found more than one phpswitch block",
            remediation="Keep a single managed block and remove the others by hand",
        )

    end = end_marker + len(END_MARKER)
    if content.find(END_MARKER, end) != -1 or content.find(END_MARKER, 0, start) != -1:
        raise CorruptionError(
            "Found a stray end of a phpswitch block outside the managed block",
            remediation=f"Remove the extra '{END_MARKER}' line by hand",
        )

    return start, end


def render_block(
    version: VersionIdentifier,
    body: str,
    now: datetime.datetime | None = None,
) -> str:
    """Render a complete managed block (without a trailing newline)."""
    now = now or datetime.datetime.now()
    return "\n".join([
        BEGIN_MARKER,
        f"{VERSION_HEADER}{version}",
        f"{TIMESTAMP_HEADER}{now.strftime('%Y-%m-%d %H:%M:%S')}",
        body.rstrip("\n"),
        END_MARKER,
    ])


def strip_timestamp(content: str) -> str:
    """Drop timestamp lines so two renderings can be compared."""
    return "\n".join(line for line in content.split("\n") if not line.startswith(TIMESTAMP_HEADER))


def block_version(content: str) -> VersionIdentifier | None:
    """Version recorded in the managed block header, if any."""
    span = find_managed_block(content)
    if span is None:
        return None
    for line in content[span[0]:span[1]].split("\n"):
        if line.startswith(VERSION_HEADER):
            try:
                return VersionIdentifier.parse(line[len(VERSION_HEADER):])
            except ValueError:
                return None
    return None


def read_startup_file(path: Path) -> str:
    """
    Read a startup file as text, "" when it does not exist.

    Bytes that are not UTF-8 (a Latin-1 comment, say) are carried as
    surrogate escapes so writing the text back reproduces them exactly.
    """
    try:
        with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
            return f.read()
    except FileNotFoundError:
        return ""
    except OSError as e:
        raise FilesystemError(f"Could not read {path}: {e}")


class ManagedBlockPatcher:
    """
    Insert, replace or remove the managed block of a startup file.

    Args:
        clock: Returns the current datetime for the header (injectable for tests)
    """

    def __init__(self, clock=datetime.datetime.now):
        self.clock = clock

    @staticmethod
    def _write(path: Path, content: str) -> None:
        """Atomically replace path, keeping its permission bits."""
        try:
            mode = stat.S_IMODE(os.stat(path).st_mode)
        except FileNotFoundError:
            mode = None

        try:
            atomic_write_text(path, content, mode=mode, errors="surrogateescape")
        except OSError as e:
            raise FilesystemError(
                f"Could not write {path}: {e}",
                remediation=f"Check that {path.parent} is writable",
            )

    def apply(self, path: Path, block_body: str, version: VersionIdentifier) -> PatchResult:
        """
        Insert or replace the managed block.

        Text before and after an existing block is preserved exactly. A file
        without a block gets the new block first, then a blank line, then its
        old content.

        Args:
            path: Startup file
            block_body: Dialect-specific body (see shell.ShellStrategy)
            version: Version the block targets

        Returns:
            PatchResult

        Raises:
            CorruptionError: If the existing markers are malformed
            FilesystemError: If the file cannot be read or written
        """
        # Write through symlinks instead of replacing them
        target = Path(os.path.realpath(path))
        content = read_startup_file(target)
        span = find_managed_block(content)
        block = render_block(version, block_body, self.clock())

        if span is not None:
            start, end = span
            new_content = content[:start] + block + content[end:]
        else:
            new_content = block + "\n" + ("\n" + content if content else "")

        changed = strip_timestamp(new_content) != strip_timestamp(content)
        self._write(target, new_content)

        vlog(f"Managed block {'updated' if span else 'inserted'} in {target}")
        return PatchResult(path=target, version=version, created=span is None, changed=changed)

    def remove(self, path: Path) -> bool:
        """
        Remove the managed block, undoing the separator apply() inserted.

        Returns:
            True if a block was removed

        Raises:
            CorruptionError: If the existing markers are malformed
            FilesystemError: If the file cannot be read or written
        """
        target = Path(os.path.realpath(path))
        content = read_startup_file(target)
        span = find_managed_block(content)
        if span is None:
            return False

        start, end = span
        tail = content[end:]
        if tail.startswith("\n"):
            tail = tail[1:]
        if start == 0 and tail.startswith("\n"):
            tail = tail[1:]

        self._write(target, content[:start] + tail)
        vlog(f"Managed block removed from {target}")
        return True

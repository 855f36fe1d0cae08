"""
Common utilities shared across phpswitch modules.
"""

from __future__ import annotations

import os
import tempfile
import unicodedata
from pathlib import Path


def is_debug_enabled() -> bool:
    """Check whether debug output was requested through the environment."""
    return os.environ.get("PHPSWITCH_DEBUG", "0") == "1"


def vlog(msg: str, verbose: bool = False) -> None:
    """Log a debug message when verbose output or PHPSWITCH_DEBUG is on."""
    if verbose or is_debug_enabled():
        from .logging_config import get_logger
        get_logger().debug(msg)


def has_control_characters(text: str) -> bool:
    """Return True if text contains any Unicode control character."""
    return any(unicodedata.category(ch) == "Cc" for ch in text)


def validate_path(
    path: str | os.PathLike[str],
    home: str | os.PathLike[str] | None = None,
    require_home: bool = True,
) -> bool:
    """
    Check that a path is safe to read or write.

    Rejects traversal segments, control characters and, when require_home
    is set, anything that resolves outside the user's home directory.

    Args:
        path: Path to validate
        home: Home directory to confine the path to (defaults to ~)
        require_home: Whether the resolved path must live under home

    Returns:
        True if the path passed every check
    """
    text = os.fspath(path)
    if not text or has_control_characters(text):
        return False

    if ".." in Path(text).parts:
        return False

    if not require_home:
        return True

    home_dir = os.path.realpath(os.path.expanduser(os.fspath(home) if home else "~"))
    resolved = os.path.realpath(os.path.expanduser(text))
    try:
        return os.path.commonpath([home_dir, resolved]) == home_dir
    except ValueError:
        # Different drives on Windows
        return False


def atomic_write_text(
    path: Path,
    content: str,
    mode: int | None = None,
    errors: str = "strict",
) -> None:
    """
    Write text to a file through a temporary file in the same directory.

    The target is either fully old or fully new; a crash mid-write never
    leaves a truncated file behind.

    Args:
        path: Destination file
        content: Text to write
        mode: Permission bits to apply before the rename (optional)
        errors: Encoding error handler; "surrogateescape" writes back bytes
            that were read with the same handler

    Raises:
        OSError: If the temporary file cannot be written or renamed
    """
    directory = path.parent
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors=errors, newline="") as f:
            f.write(content)
        if mode is not None:
            os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise

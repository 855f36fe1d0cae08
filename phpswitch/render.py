"""
Output rendering and formatting.

Status lines, the cosmetic spinner and yes/no confirmation prompts.
"""

from __future__ import annotations

import itertools
import os
import sys
import threading
from typing import Any, Sequence, TextIO

from .versions import VersionIdentifier


USE_EMOJI = os.environ.get("PHPSWITCH_EMOJI", "1") == "1"
USE_COLOR = os.environ.get("PHPSWITCH_COLOR", "1") == "1"

# ANSI color codes
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"
CYAN = "\033[36m"
RESET = "\033[0m"

STATUS_STYLE = {
    "success": (GREEN, "✅", "SUCCESS"),
    "warning": (YELLOW, "⚠️ ", "WARNING"),
    "error": (RED, "❌", "ERROR"),
    "info": (CYAN, "ℹ️ ", "INFO"),
}


def colorize(text: str, color: str, stream: TextIO | None = None) -> str:
    """Apply color to text if colors are enabled and the stream is a TTY."""
    stream = stream or sys.stdout
    if not USE_COLOR or not text or not stream.isatty():
        return text
    return f"{color}{text}{RESET}"


def format_status(status: str, message: str, stream: TextIO | None = None) -> str:
    """
    Format a status line.

    Args:
        status: One of success, warning, error, info
        message: Message text

    Returns:
        Formatted line (colored when the stream supports it)
    """
    color, icon, label = STATUS_STYLE.get(status, STATUS_STYLE["info"])
    stream = stream or sys.stdout
    if USE_COLOR and USE_EMOJI and stream.isatty():
        return colorize(f"{icon} {label}: {message}", color, stream)
    return f"{label}: {message}"


def show_status(status: str, message: str, stream: TextIO | None = None) -> None:
    """Print a status line categorized as success, warning, error or info."""
    stream = stream or sys.stdout
    print(format_status(status, message, stream), file=stream)


def confirm(prompt: str, default: bool = False, assume_yes: bool = False) -> bool:
    """
    Ask a yes/no question.

    Non-interactive sessions answer False unless assume_yes is set, so
    nothing destructive happens unattended.

    Args:
        prompt: Question to display
        default: Answer used for an empty response
        assume_yes: Answer yes without asking

    Returns:
        True if the user confirmed
    """
    if assume_yes:
        return True
    if not sys.stdin.isatty():
        return False

    suffix = "[Y/n]" if default else "[y/N]"
    while True:
        print(f"{prompt} {suffix}: ", end="", flush=True)
        response = input().strip().lower()
        if not response:
            return default
        if response in ("y", "yes"):
            return True
        if response in ("n", "no"):
            return False
        print("Please enter 'y' or 'n'.")


class Spinner:
    """
    Cosmetic progress spinner shown while a long command runs.

    Carries no correctness obligation; disabled when stderr is not a TTY.
    """

    FRAMES = "-\\|/"

    def __init__(self, message: str, stream: TextIO | None = None, interval: float = 0.1):
        self.message = message
        self.stream = stream or sys.stderr
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _run(self) -> None:
        for frame in itertools.cycle(self.FRAMES):
            if self._stop.wait(self.interval):
                break
            self.stream.write(f"\r{self.message} {frame}")
            self.stream.flush()

    def __enter__(self) -> Spinner:
        if self.stream.isatty():
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self.stream.write(f"\r{self.message} Done!   \n")
            self.stream.flush()


def render_version_list(
    available: Sequence[VersionIdentifier],
    installed: Sequence[VersionIdentifier],
    current: VersionIdentifier | None,
) -> list[str]:
    """
    Render available versions with installed/active markers.

    Returns:
        One line per version
    """
    installed_set = set(installed)
    lines = []
    for version in sorted(set(available) | installed_set, key=VersionIdentifier.sort_key):
        if version == current:
            marker = "*"
            note = "(active)"
        elif version in installed_set:
            marker = "+"
            note = "(installed)"
        else:
            marker = " "
            note = ""
        lines.append(f"{marker} {str(version):<14} {note}".rstrip())
    return lines


def version_list_data(
    available: Sequence[VersionIdentifier],
    installed: Sequence[VersionIdentifier],
    current: VersionIdentifier | None,
) -> dict[str, Any]:
    """Build the JSON payload for --json."""
    installed_set = set(installed)
    return {
        "current": str(current) if current else None,
        "versions": [
            {
                "version": str(v),
                "formula": v.formula,
                "installed": v in installed_set,
                "active": v == current,
            }
            for v in sorted(set(available) | installed_set, key=VersionIdentifier.sort_key)
        ],
    }

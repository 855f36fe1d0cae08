"""
Shell detection and startup file resolution.

Each supported dialect has one ShellStrategy that knows its startup file
preference order and how to render PATH manipulation code:
- bash/zsh/posix: a single exported colon-joined PATH variable
- fish: a rebuilt PATH list set with fish builtins
"""

from __future__ import annotations

import enum
import os
import platform
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .common import vlog
from .errors import FilesystemError
from .versions import INTERPRETER, VersionIdentifier


class ShellDialect(enum.Enum):
    BASH = "bash"
    ZSH = "zsh"
    FISH = "fish"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class StartupFile:
    """
    Startup file resolved for a shell dialect.

    Attributes:
        path: Absolute path of the file
        dialect: Dialect the file belongs to
        existed: Whether the file existed before resolution
        writable: Whether the current user can write it
    """
    path: Path
    dialect: ShellDialect
    existed: bool
    writable: bool


def _case_insensitive_glob(needle: str) -> str:
    """Build a shell glob matching needle in any letter case ("[Pp][Hh][Pp]")."""
    return "".join(f"[{c.upper()}{c.lower()}]" if c.isalpha() else c for c in needle)


class ShellStrategy:
    """
    Dialect-specific behavior for profile resolution and PATH rendering.

    Subclasses override the class attributes and the rendering hooks.
    """
    dialect = ShellDialect.UNKNOWN
    candidates_rel: tuple[str, ...] = (".profile",)
    supports_live_update = True
    path_separator = ":"
    script_suffix = ".sh"
    shebang = "#!/bin/sh"

    def candidates(self, home: Path) -> list[Path]:
        """Startup files in preference order."""
        return [home / rel for rel in self.candidates_rel]

    def _split_path_loop(self) -> str:
        return 'for _phpswitch_dir in $PATH; do'

    def render_path_rebuild(self, bin_dir: str, sbin_dir: str, needle: str = INTERPRETER) -> str:
        """
        Render code that drops interpreter entries from PATH and prepends
        the selected version's directories.
        """
        pattern = _case_insensitive_glob(needle)
        return "\n".join([
            f'_phpswitch_path="{bin_dir}:{sbin_dir}"',
            '_phpswitch_old_ifs="$IFS"',
            "IFS=:",
            self._split_path_loop(),
            '    case "$_phpswitch_dir" in',
            f"        ''|*{pattern}*) ;;",
            '        *) _phpswitch_path="$_phpswitch_path:$_phpswitch_dir" ;;',
            "    esac",
            "done",
            'IFS="$_phpswitch_old_ifs"',
            'export PATH="$_phpswitch_path"',
            "unset _phpswitch_path _phpswitch_dir _phpswitch_old_ifs",
        ])

    def render_block_body(
        self,
        version: VersionIdentifier,
        bin_dir: str,
        sbin_dir: str,
        auto_switch: bool = False,
    ) -> str:
        """Render the managed block body for this dialect."""
        parts = [
            "# Put the selected PHP first on PATH",
            self.render_path_rebuild(bin_dir, sbin_dir),
            "",
            "# Forget previously hashed command locations",
            "hash -r 2>/dev/null || rehash 2>/dev/null || true",
            "",
            "phpswitch_refresh() {",
            "    hash -r 2>/dev/null || rehash 2>/dev/null || true",
            '    echo "PHP now: $(php -v | head -n 1)"',
            "}",
        ]
        hook = self.render_auto_switch_hook() if auto_switch else ""
        if hook:
            parts.extend(["", hook])
        return "\n".join(parts)

    def render_auto_switch_hook(self) -> str:
        """Directory-change hook; empty when the dialect has no hook support."""
        return ""

    def render_reload_script(self, version: VersionIdentifier, bin_dir: str, sbin_dir: str) -> str:
        """Render a standalone script that can be sourced to reload PATH."""
        return "\n".join([
            self.shebang,
            f"# phpswitch reload script for {self.dialect.value}",
            f"# Source this file to activate {version} in the current shell",
            "",
            self.render_path_rebuild(bin_dir, sbin_dir),
            "hash -r 2>/dev/null || rehash 2>/dev/null || true",
            'echo "Active PHP version is now: $(php -v | head -n 1)"',
            "",
        ])

    def manual_path_command(self, bin_dir: str, sbin_dir: str) -> str:
        return f'export PATH="{bin_dir}:{sbin_dir}:$PATH"; hash -r'

    def export_command(self, entries: list[str]) -> str:
        """Command that sets PATH to exactly these entries (for eval)."""
        joined = self.path_separator.join(entries)
        return f"export PATH={shlex.quote(joined)}; hash -r 2>/dev/null || true"

    def source_command(self, path: Path) -> str:
        return f'source "{path}"'


class BashStrategy(ShellStrategy):
    dialect = ShellDialect.BASH
    candidates_rel = (".bashrc", ".bash_profile", ".profile")
    shebang = "#!/bin/bash"

    def render_auto_switch_hook(self) -> str:
        return "\n".join([
            "# Auto-switch PHP when entering a project directory",
            "phpswitch_auto_detect_project() {",
            '    [ "$PWD" = "${_PHPSWITCH_LAST_DIR:-}" ] && return 0',
            '    _PHPSWITCH_LAST_DIR="$PWD"',
            '    command -v phpswitch >/dev/null 2>&1 || return 0',
            '    eval "$(phpswitch --auto-mode 2>/dev/null)"',
            "}",
            'if [[ "$PROMPT_COMMAND" != *phpswitch_auto_detect_project* ]]; then',
            '    PROMPT_COMMAND="phpswitch_auto_detect_project;${PROMPT_COMMAND:-}"',
            "fi",
        ])


class ZshStrategy(ShellStrategy):
    dialect = ShellDialect.ZSH
    candidates_rel = (".zshrc", ".zprofile")
    shebang = "#!/bin/zsh"

    def _split_path_loop(self) -> str:
        # zsh does not word-split unquoted parameters
        return "for _phpswitch_dir in ${(s.:.)PATH}; do"

    def render_auto_switch_hook(self) -> str:
        return "\n".join([
            "# Auto-switch PHP when entering a project directory",
            "phpswitch_auto_detect_project() {",
            '    command -v phpswitch >/dev/null 2>&1 || return 0',
            '    eval "$(phpswitch --auto-mode 2>/dev/null)"',
            "}",
            "autoload -U add-zsh-hook",
            "add-zsh-hook chpwd phpswitch_auto_detect_project",
            "phpswitch_auto_detect_project",
        ])


class FishStrategy(ShellStrategy):
    dialect = ShellDialect.FISH
    candidates_rel = (os.path.join(".config", "fish", "config.fish"),)
    supports_live_update = False
    script_suffix = ".fish"
    shebang = "#!/usr/bin/env fish"

    def render_path_rebuild(self, bin_dir: str, sbin_dir: str, needle: str = INTERPRETER) -> str:
        return "\n".join([
            f"set -l phpswitch_path {bin_dir} {sbin_dir}",
            "for dir in $PATH",
            f"    if not string match -qi '*{needle}*' -- $dir",
            "        set -a phpswitch_path $dir",
            "    end",
            "end",
            "set --erase PATH",
            "set -gx PATH $phpswitch_path",
        ])

    def render_block_body(
        self,
        version: VersionIdentifier,
        bin_dir: str,
        sbin_dir: str,
        auto_switch: bool = False,
    ) -> str:
        parts = [
            "# Rebuild PATH with the selected PHP first",
            self.render_path_rebuild(bin_dir, sbin_dir),
            "",
            "function phpswitch_refresh",
            "    if type -q rehash",
            "        rehash",
            "    end",
            '    echo "PHP now: "(php -v | head -n 1)',
            "end",
        ]
        if auto_switch:
            parts.extend(["", self.render_auto_switch_hook()])
        return "\n".join(parts)

    def render_auto_switch_hook(self) -> str:
        return "\n".join([
            "# Auto-switch PHP when entering a project directory",
            "function phpswitch_auto_detect_project --on-variable PWD",
            "    type -q phpswitch; or return 0",
            "    phpswitch --auto-mode 2>/dev/null | source",
            "end",
            "phpswitch_auto_detect_project",
        ])

    def render_reload_script(self, version: VersionIdentifier, bin_dir: str, sbin_dir: str) -> str:
        return "\n".join([
            self.shebang,
            "# phpswitch reload script for fish",
            f"# Source this file to activate {version} in the current shell",
            "",
            self.render_path_rebuild(bin_dir, sbin_dir),
            'echo "Active PHP version is now: "(php -v | head -n 1)',
            "",
        ])

    def manual_path_command(self, bin_dir: str, sbin_dir: str) -> str:
        return f"set -gx PATH {bin_dir} {sbin_dir} $PATH"

    def export_command(self, entries: list[str]) -> str:
        return "set -gx PATH " + " ".join(shlex.quote(e) for e in entries)


class PosixStrategy(ShellStrategy):
    """Fallback for shells without a dedicated strategy (sh, dash, ksh)."""
    dialect = ShellDialect.UNKNOWN


_STRATEGIES: dict[ShellDialect, ShellStrategy] = {
    ShellDialect.BASH: BashStrategy(),
    ShellDialect.ZSH: ZshStrategy(),
    ShellDialect.FISH: FishStrategy(),
    ShellDialect.UNKNOWN: PosixStrategy(),
}


def get_strategy(dialect: ShellDialect) -> ShellStrategy:
    return _STRATEGIES[dialect]


def _dialect_from_shell_path(shell_path: str) -> ShellDialect | None:
    name = os.path.basename(shell_path.strip())
    if not name:
        return None
    for dialect in (ShellDialect.ZSH, ShellDialect.BASH, ShellDialect.FISH):
        if name == dialect.value or name.startswith(dialect.value + "-"):
            return dialect
    return ShellDialect.UNKNOWN


def _login_shell() -> str:
    """The user's configured login shell from the password database."""
    try:
        import pwd
        return pwd.getpwuid(os.getuid()).pw_shell or ""
    except (ImportError, KeyError, AttributeError):
        return ""


def detect_dialect(
    environ: Mapping[str, str] | None = None,
    system: str | None = None,
    login_shell: str | None = None,
) -> ShellDialect:
    """
    Detect the current shell dialect.

    Detection priority:
    1. Shell-specific variables (ZSH_VERSION, BASH_VERSION, FISH_VERSION)
    2. $SHELL, then the login shell from the password database
    3. OS default (zsh on macOS, bash elsewhere)

    Args:
        environ: Environment to inspect (defaults to os.environ)
        system: Operating system name (defaults to platform.system())
        login_shell: Login shell override (defaults to the password database)

    Returns:
        Detected ShellDialect
    """
    env = os.environ if environ is None else environ

    if env.get("ZSH_VERSION"):
        return ShellDialect.ZSH
    if env.get("BASH_VERSION"):
        return ShellDialect.BASH
    if env.get("FISH_VERSION"):
        return ShellDialect.FISH

    for shell_path in (env.get("SHELL", ""), login_shell if login_shell is not None else _login_shell()):
        dialect = _dialect_from_shell_path(shell_path)
        if dialect is not None:
            vlog(f"Shell detected from {shell_path}: {dialect.value}")
            return dialect

    system = system or platform.system()
    if system == "Darwin":
        return ShellDialect.ZSH
    return ShellDialect.BASH


def resolve_profile(dialect: ShellDialect, home: Path | None = None) -> StartupFile:
    """
    Resolve the startup file for a dialect.

    The first existing candidate wins. If none exists, the last candidate in
    the preference order is created empty (with its directory, for fish).

    Args:
        dialect: Shell dialect
        home: Home directory (defaults to ~)

    Returns:
        StartupFile for the dialect

    Raises:
        FilesystemError: If the file cannot be created
    """
    home = home or Path.home()
    candidates = get_strategy(dialect).candidates(home)

    for candidate in candidates:
        if candidate.is_file():
            vlog(f"Using startup file: {candidate}")
            return StartupFile(
                path=candidate,
                dialect=dialect,
                existed=True,
                writable=os.access(candidate, os.W_OK),
            )

    target = candidates[-1]
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.touch()
    except OSError as e:
        raise FilesystemError(
            f"Could not create startup file {target}: {e}",
            remediation=f"Check permissions on {target.parent}",
        )

    vlog(f"Created startup file: {target}")
    return StartupFile(path=target, dialect=dialect, existed=False, writable=os.access(target, os.W_OK))

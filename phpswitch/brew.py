"""
Homebrew collaborator.

Every package manager call goes through run_command and returns a
CommandResult; callers only look at the exit status and grep the output.
"""

from __future__ import annotations

import os
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from .common import vlog
from .versions import INTERPRETER, MAJOR_MINOR_RE, VersionIdentifier

DEFAULT_TIMEOUT = 900
QUERY_TIMEOUT = 60
POLL_INTERVAL = 0.05

SEARCH_PATTERN = r"/^php(@[0-9]+\.[0-9]+)?$/"
LINKED_FORMULA_RE = re.compile(r"/(?:Cellar|opt)/(php(?:@\d+\.\d+)?)(?:/|$)")
PHP_NUMBER_SNIPPET = "echo PHP_MAJOR_VERSION, '.', PHP_MINOR_VERSION;"


@dataclass(frozen=True)
class CommandResult:
    """
    Result of one external command.

    Attributes:
        command: Command that was executed
        exit_code: Process exit code (-1 when it never ran or was killed)
        stdout: Standard output
        stderr: Standard error
        duration_seconds: Wall time spent
        error_message: Human-readable failure description
    """
    command: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def contains(self, text: str) -> bool:
        """Case-insensitive substring search over the combined output."""
        return text.lower() in self.output.lower()

    def to_dict(self) -> dict:
        return {
            "command": list(self.command),
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
        }


def run_command(
    command: Sequence[str],
    timeout: float | None = DEFAULT_TIMEOUT,
    verbose: bool = False,
) -> CommandResult:
    """
    Run a command to completion and capture its output.

    Args:
        command: Command and arguments
        timeout: Seconds before the command is abandoned
        verbose: Enable verbose logging

    Returns:
        CommandResult (never raises for command failures)
    """
    command = tuple(command)
    start_time = time.time()
    vlog(f"Executing: {' '.join(command)}", verbose)

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        return CommandResult(
            command=command,
            exit_code=-1,
            stdout=_decode(e.stdout),
            stderr=_decode(e.stderr),
            duration_seconds=time.time() - start_time,
            error_message=f"Command timed out after {timeout}s",
        )
    except FileNotFoundError:
        return CommandResult(
            command=command,
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Command not found: {command[0]}",
        )

    error_msg = None
    if result.returncode != 0:
        error_msg = f"Command failed with exit code {result.returncode}"
        if result.stderr:
            error_msg += f": {result.stderr.strip()[:200]}"

    return CommandResult(
        command=command,
        exit_code=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        duration_seconds=time.time() - start_time,
        error_message=error_msg,
    )


def run_cancellable(
    command: Sequence[str],
    cancel_event: threading.Event,
    verbose: bool = False,
) -> CommandResult:
    """
    Run a command until it exits or cancel_event is set.

    The process is killed on cancellation so an abandoned query does not
    outlive the caller.
    """
    command = tuple(command)
    start_time = time.time()
    vlog(f"Executing (cancellable): {' '.join(command)}", verbose)

    try:
        proc = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError:
        return CommandResult(command=command, exit_code=-1, error_message=f"Command not found: {command[0]}")

    while proc.poll() is None:
        if cancel_event.wait(POLL_INTERVAL):
            proc.kill()
            proc.communicate()
            vlog(f"Cancelled: {' '.join(command)}", verbose)
            return CommandResult(
                command=command,
                exit_code=-1,
                duration_seconds=time.time() - start_time,
                error_message="Command cancelled",
            )

    stdout, stderr = proc.communicate()
    return CommandResult(
        command=command,
        exit_code=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        duration_seconds=time.time() - start_time,
        error_message=None if proc.returncode == 0 else f"Command failed with exit code {proc.returncode}",
    )


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


def parse_module_list(output: str) -> list[str]:
    """Module names from `php -m` output, without its [section] headers."""
    modules = {line.strip() for line in output.splitlines() if line.strip() and not line.startswith("[")}
    return sorted(modules, key=str.lower)


def parse_formula_list(output: str) -> list[VersionIdentifier]:
    """Extract PHP identifiers from whitespace-separated formula names."""
    versions = []
    for token in output.split():
        version = VersionIdentifier.from_formula(token)
        if version is not None:
            versions.append(version)
    return versions


class Homebrew:
    """
    Thin wrapper around the brew executable.

    Args:
        executable: brew binary name or path
        runner: Function used to run commands (injectable for tests)
        verbose: Enable verbose logging
    """

    def __init__(
        self,
        executable: str = "brew",
        runner: Callable[..., CommandResult] = run_command,
        verbose: bool = False,
    ):
        self.executable = executable
        self.runner = runner
        self.verbose = verbose
        self._prefix: Path | None = None

    def _run(self, *args: str, sudo: bool = False, timeout: float | None = DEFAULT_TIMEOUT) -> CommandResult:
        command = [self.executable, *args]
        if sudo:
            command = ["sudo"] + command
        return self.runner(command, timeout=timeout, verbose=self.verbose)

    def prefix(self) -> Path:
        """Homebrew installation prefix (cached per instance)."""
        if self._prefix is None:
            result = self._run("--prefix", timeout=QUERY_TIMEOUT)
            if result.success and result.stdout.strip():
                self._prefix = Path(result.stdout.strip())
            elif os.path.isdir("/opt/homebrew"):
                self._prefix = Path("/opt/homebrew")
            else:
                self._prefix = Path("/usr/local")
        return self._prefix

    def list_installed(self) -> list[VersionIdentifier]:
        """Installed PHP formulae, numerically sorted."""
        result = self._run("list", "--formula", "-1", timeout=QUERY_TIMEOUT)
        if not result.success:
            vlog(f"brew list failed: {result.error_message}", self.verbose)
            return []
        return sorted(set(parse_formula_list(result.stdout)), key=VersionIdentifier.sort_key)

    def search_available(self, cancel_event: threading.Event) -> list[str]:
        """
        Query installable PHP formulae.

        This is the slow, network-backed enumeration. It stops (and kills the
        brew process) when cancel_event is set.

        Returns:
            Canonical identifier strings ("php@8.2", "php@default")

        Raises:
            RuntimeError: If the search failed or was cancelled
        """
        result = run_cancellable([self.executable, "search", SEARCH_PATTERN], cancel_event, self.verbose)
        if not result.success:
            raise RuntimeError(result.error_message or "brew search failed")
        return [str(v) for v in parse_formula_list(result.stdout)]

    def is_installed(self, version: VersionIdentifier) -> bool:
        result = self._run("list", "--versions", version.formula, timeout=QUERY_TIMEOUT)
        return result.success and bool(result.stdout.strip())

    def install(self, version: VersionIdentifier) -> CommandResult:
        return self._run("install", version.formula)

    def reinstall(self, version: VersionIdentifier) -> CommandResult:
        return self._run("reinstall", version.formula)

    def uninstall(self, formula: str, force: bool = False, ignore_dependencies: bool = False) -> CommandResult:
        args = ["uninstall", formula]
        if force:
            args.append("--force")
        if ignore_dependencies:
            args.append("--ignore-dependencies")
        return self._run(*args)

    def tap(self, name: str) -> CommandResult:
        return self._run("tap", name)

    def link(self, version: VersionIdentifier, force: bool = False, overwrite: bool = False) -> CommandResult:
        args = ["link"]
        if force:
            args.append("--force")
        if overwrite:
            args.append("--overwrite")
        args.append(version.formula)
        return self._run(*args, timeout=QUERY_TIMEOUT)

    def unlink(self, version: VersionIdentifier) -> CommandResult:
        return self._run("unlink", version.formula, timeout=QUERY_TIMEOUT)

    def fix_permissions(self, path: Path | None = None) -> CommandResult:
        """Give the current user ownership of path (the Homebrew prefix by default)."""
        user = os.environ.get("USER") or str(os.getuid())
        return self.runner(
            ["sudo", "chown", "-R", user, str(path or self.prefix())],
            timeout=QUERY_TIMEOUT,
            verbose=self.verbose,
        )

    def services_list(self) -> dict[str, str]:
        """
        Map PHP service names to their status ("started", "stopped", ...).
        """
        result = self._run("services", "list", timeout=QUERY_TIMEOUT)
        services: dict[str, str] = {}
        if not result.success:
            return services

        for line in result.stdout.splitlines()[1:]:
            fields = line.split()
            if len(fields) >= 2 and VersionIdentifier.from_formula(fields[0]) is not None:
                services[fields[0]] = fields[1]
        return services

    def service_action(self, action: str, service: str, sudo: bool = False) -> CommandResult:
        return self._run("services", action, service, sudo=sudo, timeout=QUERY_TIMEOUT)

    def opt_dir(self, version: VersionIdentifier) -> Path:
        return self.prefix() / "opt" / version.formula

    def opt_paths(self, version: VersionIdentifier) -> tuple[Path, Path]:
        """bin and sbin directories of an installed version."""
        opt = self.opt_dir(version)
        return opt / "bin", opt / "sbin"

    def current_linked_version(self) -> VersionIdentifier | None:
        """
        Detect which PHP formula the Homebrew php symlink points at.

        Returns:
            Linked version, or None when no Homebrew php is linked
        """
        link = self.prefix() / "bin" / INTERPRETER
        if not os.path.lexists(link):
            return None

        target = os.path.realpath(link)
        match = LINKED_FORMULA_RE.search(target)
        if match:
            return VersionIdentifier.from_formula(match.group(1))

        vlog(f"Could not infer formula from {target}", self.verbose)
        return None

    def php_binary(self, version: VersionIdentifier) -> Path:
        return self.opt_paths(version)[0] / INTERPRETER

    def php_number(self, version: VersionIdentifier) -> str | None:
        """
        MAJOR.MINOR of a version.

        The default formula carries no number, so its binary is asked.
        """
        if not version.is_default:
            return version.number
        result = self.runner(
            [str(self.php_binary(version)), "-r", PHP_NUMBER_SNIPPET],
            timeout=QUERY_TIMEOUT,
            verbose=self.verbose,
        )
        number = result.stdout.strip()
        return number if result.success and MAJOR_MINOR_RE.match(number) else None

    def ini_dir(self, version: VersionIdentifier) -> Path | None:
        """Configuration directory (<prefix>/etc/php/X.Y) of a version."""
        number = self.php_number(version)
        return self.prefix() / "etc" / INTERPRETER / number if number else None

    def loaded_modules(self, php: str | os.PathLike[str]) -> list[str]:
        """Modules a php binary reports through `php -m`, sorted by name."""
        result = self.runner([os.fspath(php), "-m"], timeout=QUERY_TIMEOUT, verbose=self.verbose)
        if not result.success:
            vlog(f"php -m failed: {result.error_message}", self.verbose)
            return []
        return parse_module_list(result.stdout)

    def opt_links(self) -> dict[str, str]:
        """PHP entries of <prefix>/opt mapped to where they point."""
        opt = self.prefix() / "opt"
        try:
            names = sorted(entry.name for entry in opt.iterdir() if entry.name.startswith(INTERPRETER))
        except OSError:
            return {}
        return {name: os.path.realpath(opt / name) for name in names}

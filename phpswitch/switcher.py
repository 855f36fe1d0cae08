"""
Version switch orchestration.

Glues the Homebrew collaborator to the shell environment engine:
link the version, patch the startup file, restart PHP-FPM and update PATH.
"""

from __future__ import annotations

import os
import re
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import MutableMapping

from .backup import BackupRotator, BackupSnapshot
from .brew import CommandResult, Homebrew
from .cache import VersionCache
from .common import vlog
from .config import Config, save_config
from .diagnostics import (
    DependencyStatus,
    EnvironmentReport,
    ExtensionReport,
    PathDiagnosis,
    check_dependencies,
    diagnose_path,
    list_ini_files,
    startup_mentions,
)
from .errors import FilesystemError, ValidationError
from .fpm import restart_service
from .logging_config import get_logger
from .patcher import ManagedBlockPatcher, PatchResult, block_version, read_startup_file
from .path import PathReconstructor, ReloadOutcome
from .render import Spinner, confirm, show_status
from .resolver import ProjectVersion, ProjectVersionResolver
from .retry import RetryPolicy, RetryStrategy, execute_with_policy
from .shell import ShellDialect, StartupFile, detect_dialect, get_strategy, resolve_profile
from .versions import VersionIdentifier

PHP_TAP = "shivammathur/php"
CONFLICT_RE = re.compile(r"conflicts with (\S+)", re.IGNORECASE)
ALT_CACHE_DIR = ".phpswitch_cache"


@dataclass(frozen=True)
class SwitchResult:
    """
    Result of a completed switch.

    Attributes:
        version: Version that is now active
        startup_file: Startup file that was patched
        backup: Snapshot taken before patching (None if skipped)
        patch: Managed block patch outcome
        reload: PATH update outcome
        fpm_restarted: Whether a PHP-FPM service was restarted
        instructions: Next steps for the current terminal
    """
    version: VersionIdentifier
    startup_file: Path
    backup: BackupSnapshot | None
    patch: PatchResult
    reload: ReloadOutcome
    fpm_restarted: bool
    instructions: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "version": str(self.version),
            "startup_file": str(self.startup_file),
            "backup": self.backup.to_dict() if self.backup else None,
            "patch": self.patch.to_dict(),
            "reload": self.reload.to_dict(),
            "fpm_restarted": self.fpm_restarted,
            "instructions": list(self.instructions),
        }


@dataclass(frozen=True)
class CacheRepair:
    """
    Outcome of a cache directory permission repair.

    Attributes:
        directory: Cache directory that is now writable
        action: none, created, chmod, chown or relocated
        config_path: Config file updated to point at a relocated directory
    """
    directory: Path
    action: str
    config_path: Path | None = None

    def to_dict(self) -> dict:
        return {
            "directory": str(self.directory),
            "action": self.action,
            "config_path": str(self.config_path) if self.config_path else None,
        }


def directory_writable(path: Path) -> bool:
    return path.is_dir() and os.access(path, os.W_OK | os.X_OK)


def install_policy(brew: Homebrew, version: VersionIdentifier, output: CommandResult | None = None) -> RetryPolicy:
    """Fallbacks for a failed `brew install`, keyed on its error output."""

    def fix_permissions_then_install() -> CommandResult:
        fixed = brew.fix_permissions()
        return brew.install(version) if fixed.success else fixed

    def tap_then_install() -> CommandResult:
        tapped = brew.tap(PHP_TAP)
        return brew.install(version) if tapped.success else tapped

    def uninstall_conflict_then_install() -> CommandResult:
        match = CONFLICT_RE.search(output.output) if output else None
        if not match:
            return brew.install(version)
        removed = brew.uninstall(match.group(1).rstrip(".,:"))
        return brew.install(version) if removed.success else removed

    return RetryPolicy(
        description=f"install {version}",
        strategies=(
            RetryStrategy(
                name="reinstall",
                action=lambda: brew.reinstall(version),
                patterns=("already installed",),
                prompt=f"{version} appears to be installed but may be broken. Reinstall it?",
            ),
            RetryStrategy(
                name="fix-permissions",
                action=fix_permissions_then_install,
                patterns=("permission denied",),
                prompt="Permission denied. Take ownership of the Homebrew prefix with sudo and retry?",
                default=False,
            ),
            RetryStrategy(
                name="tap",
                action=tap_then_install,
                patterns=("no available formula",),
                prompt=f"{version.formula} is not in Homebrew core. Tap {PHP_TAP} and retry?",
            ),
            RetryStrategy(
                name="uninstall-conflict",
                action=uninstall_conflict_then_install,
                patterns=("conflicts with",),
                prompt="Another package conflicts with this install. Uninstall it and retry?",
                default=False,
            ),
        ),
        manual_command=f"brew install -v {version.formula}",
    )


def link_policy(brew: Homebrew, version: VersionIdentifier) -> RetryPolicy:
    return RetryPolicy(
        description=f"link {version}",
        strategies=(
            RetryStrategy(
                name="overwrite",
                action=lambda: brew.link(version, overwrite=True),
                prompt="Linking failed. Overwrite conflicting files with `brew link --overwrite`?",
            ),
        ),
        manual_command=f"brew link --overwrite {version.formula}",
    )


def uninstall_policy(brew: Homebrew, version: VersionIdentifier) -> RetryPolicy:
    return RetryPolicy(
        description=f"uninstall {version}",
        strategies=(
            RetryStrategy(
                name="ignore-dependencies",
                action=lambda: brew.uninstall(version.formula, ignore_dependencies=True),
                patterns=("required by", "refusing to uninstall"),
                prompt="Other packages depend on this version. Uninstall anyway?",
                default=False,
            ),
            RetryStrategy(
                name="force",
                action=lambda: brew.uninstall(version.formula, force=True),
                prompt="Uninstall failed. Force removal of all installed versions?",
                default=False,
            ),
        ),
        manual_command=f"brew uninstall --force {version.formula}",
    )


class Switcher:
    """
    Performs switches, installs and uninstalls.

    Args:
        config: Configuration
        brew: Homebrew wrapper
        dialect: Shell dialect (detected when None)
        environ: Process environment to update (defaults to os.environ)
        home: Home directory (defaults to ~)
        assume_yes: Confirm every prompt automatically
    """

    def __init__(
        self,
        config: Config,
        brew: Homebrew | None = None,
        dialect: ShellDialect | None = None,
        environ: MutableMapping[str, str] | None = None,
        home: Path | None = None,
        assume_yes: bool = False,
    ):
        self.config = config
        self.brew = brew or Homebrew()
        self.dialect = dialect or detect_dialect()
        self.environ = os.environ if environ is None else environ
        self.home = home or Path.home()
        self.assume_yes = assume_yes
        self.patcher = ManagedBlockPatcher()

    def version_cache(self) -> VersionCache:
        return VersionCache(self.brew.search_available, self.config)

    def resolver(self) -> ProjectVersionResolver:
        return ProjectVersionResolver(installed=self.brew.list_installed)

    def install(self, version: VersionIdentifier) -> CommandResult:
        """
        Install a version through Homebrew.

        Raises:
            ExternalCommandError: If the install and every fallback failed
        """
        if self.brew.is_installed(version):
            show_status("info", f"{version} is already installed")
            return CommandResult(command=(), exit_code=0)

        def attempt() -> CommandResult:
            with Spinner(f"Installing {version}"):
                return self.brew.install(version)

        # The conflict fallback needs the failing output, so the policy is
        # built after the first attempt
        first = attempt()
        if first.success:
            show_status("success", f"{version} installed")
            return first

        pending = [first]
        result = execute_with_policy(
            lambda: pending.pop() if pending else attempt(),
            install_policy(self.brew, version, first),
            assume_yes=self.assume_yes,
        )
        show_status("success", f"{version} installed")
        return result

    def uninstall(self, version: VersionIdentifier) -> CommandResult:
        """
        Uninstall a version, unlinking it first when it is the active one.

        Raises:
            ExternalCommandError: If the uninstall and every fallback failed
            ValidationError: If the version is not installed
        """
        if not self.brew.is_installed(version):
            raise ValidationError(f"{version} is not installed")

        if self.brew.current_linked_version() == version:
            show_status("warning", f"{version} is the active version; unlinking it first")
            self.brew.unlink(version)

        result = execute_with_policy(
            lambda: self.brew.uninstall(version.formula),
            uninstall_policy(self.brew, version),
            assume_yes=self.assume_yes,
        )
        show_status("success", f"{version} uninstalled")
        return result

    def link(self, version: VersionIdentifier) -> CommandResult:
        """Unlink the current version and link the target."""
        current = self.brew.current_linked_version()
        if current is not None and current != version:
            unlinked = self.brew.unlink(current)
            if not unlinked.success:
                get_logger().warning(f"Could not unlink {current}: {unlinked.error_message}")

        return execute_with_policy(
            lambda: self.brew.link(version, force=True),
            link_policy(self.brew, version),
            assume_yes=self.assume_yes,
        )

    def startup_file(self) -> StartupFile:
        profile = resolve_profile(self.dialect, self.home)
        if not profile.writable:
            raise FilesystemError(
                f"Startup file is not writable: {profile.path}",
                remediation=f"Fix its permissions, e.g. chmod u+w {profile.path}",
            )
        return profile

    def patch_profile(self, version: VersionIdentifier) -> tuple[StartupFile, BackupSnapshot | None, PatchResult]:
        """Back up the startup file and rewrite its managed block for version."""
        profile = self.startup_file()
        backup = BackupRotator(self.config, home=self.home).snapshot(profile.path)

        bin_dir, sbin_dir = self.brew.opt_paths(version)
        body = get_strategy(self.dialect).render_block_body(
            version, str(bin_dir), str(sbin_dir), auto_switch=self.config.auto_switch
        )
        patch = self.patcher.apply(profile.path, body, version)
        return profile, backup, patch

    def remove_profile_block(self) -> tuple[StartupFile, bool]:
        """
        Back up the startup file and strip the managed block from it.

        Returns:
            (startup file, whether a block was removed)
        """
        profile = self.startup_file()
        BackupRotator(self.config, home=self.home).snapshot(profile.path)
        return profile, self.patcher.remove(profile.path)

    def switch(self, version: VersionIdentifier, install_missing: bool = False) -> SwitchResult:
        """
        Make version the active PHP.

        Args:
            version: Target version
            install_missing: Install without asking when it is missing

        Raises:
            ValidationError: If the version is missing and was not installed
            ExternalCommandError: If installing or linking failed
            CorruptionError: If the startup file's managed block is malformed
            FilesystemError: If the startup file cannot be written
        """
        if not self.brew.is_installed(version):
            if not (install_missing or confirm(f"{version} is not installed. Install it now?", default=True,
                                               assume_yes=self.assume_yes)):
                raise ValidationError(
                    f"{version} is not installed",
                    remediation=f"Install it with: phpswitch --install {version.number}",
                )
            self.install(version)

        show_status("info", f"Switching to {version}...")
        self.link(version)

        profile, backup, patch = self.patch_profile(version)
        if patch.changed:
            show_status("success", f"Updated {profile.path}")
        else:
            vlog(f"{profile.path} already targets {version}")

        fpm_restarted = False
        if self.config.auto_restart:
            fpm_restarted = restart_service(self.brew, version, assume_yes=self.assume_yes)

        bin_dir, sbin_dir = self.brew.opt_paths(version)
        reconstructor = PathReconstructor(self.dialect, self.environ)
        reload = reconstructor.apply(version, bin_dir, sbin_dir)
        instructions = reconstructor.instructions(profile.path, bin_dir, sbin_dir, reload.reload_script)

        if reload.verified:
            show_status("success", f"Switched to {version}")
        else:
            show_status("warning", f"Switched to {version}, but php does not resolve to it yet in this process")

        return SwitchResult(
            version=version,
            startup_file=profile.path,
            backup=backup,
            patch=patch,
            reload=reload,
            fpm_restarted=fpm_restarted,
            instructions=tuple(instructions),
        )

    def project_version(self, start_dir: str | None = None) -> ProjectVersion | None:
        return self.resolver().resolve(start_dir)

    def switch_project(self, start_dir: str | None = None, install_missing: bool = False) -> SwitchResult:
        """
        Switch to the version the project in start_dir declares.

        Falls back to the configured default version.

        Raises:
            ValidationError: If neither the project nor the config names a version
            ResolutionError: If the project's declaration is invalid
        """
        project = self.project_version(start_dir)
        if project is not None:
            show_status("info", f"Project requires {project.version} ({project.path})")
            return self.switch(project.version, install_missing=install_missing)

        if self.config.default_version is not None:
            show_status("info", f"No project version found, using default {self.config.default_version}")
            return self.switch(self.config.default_version, install_missing=install_missing)

        raise ValidationError(
            "No PHP version declared for this project",
            remediation="Create one with: phpswitch --set-project 8.2",
        )

    def set_auto_switch(self, enabled: bool) -> tuple[Config, PatchResult | None]:
        """
        Turn the directory-change hook on or off.

        The config is saved and, when a managed block exists, it is rewritten
        so the hook is added or removed in place.

        Returns:
            (new config, patch result or None when no block existed)
        """
        self.config = self.config.replace(auto_switch=enabled)
        save_config(self.config)

        profile = self.startup_file()
        version = block_version(read_startup_file(profile.path))
        if version is None:
            return self.config, None

        _, _, patch = self.patch_profile(version)
        return self.config, patch

    def check_dependencies(self) -> list[DependencyStatus]:
        return check_dependencies(self.environ.get("PATH"))

    def diagnose_path(self) -> PathDiagnosis:
        """Explain which php this process's PATH picks and whether it is the linked one."""
        linked = self.brew.current_linked_version()
        expected = self.brew.php_binary(linked) if linked else None
        return diagnose_path(self.environ.get("PATH", ""), linked, expected, runner=self.brew.runner)

    def diagnose_environment(self) -> EnvironmentReport:
        """PATH diagnosis plus installs, opt links, startup files, modules and services."""
        path = self.diagnose_path()
        startup_files = get_strategy(self.dialect).candidates(self.home)
        return EnvironmentReport(
            path=path,
            installed=tuple(self.brew.list_installed()),
            opt_links=self.brew.opt_links(),
            startup_mentions=tuple(startup_mentions(startup_files)),
            modules=tuple(self.brew.loaded_modules(path.active)) if path.active else (),
            services=self.brew.services_list(),
        )

    def extensions(self, version: VersionIdentifier | None = None) -> ExtensionReport:
        """
        Loaded modules and conf.d ini files of a version (the linked one by default).

        Raises:
            ValidationError: If no version is given or linked, or it is not installed
        """
        version = version or self.brew.current_linked_version()
        if version is None:
            raise ValidationError(
                "No Homebrew PHP version is linked",
                remediation="Name one: phpswitch --extensions 8.2",
            )
        if not self.brew.is_installed(version):
            raise ValidationError(
                f"{version} is not installed",
                remediation=f"Install it with: phpswitch --install {version.number}",
            )

        ini_dir = self.brew.ini_dir(version)
        return ExtensionReport(
            version=version,
            modules=tuple(self.brew.loaded_modules(self.brew.php_binary(version))),
            ini_dir=ini_dir,
            ini_files=tuple(list_ini_files(ini_dir)),
        )

    def fix_cache_permissions(self) -> CacheRepair:
        """
        Make the cache directory writable, or move the cache somewhere that is.

        The configured directory is created, then given u+rwx, then (after
        confirmation) chowned with sudo. When it stays read-only the cache
        moves to ~/.phpswitch_cache, then to a per-user temp directory, and
        the config is saved with the new cache_dir.

        Raises:
            FilesystemError: If no candidate directory is writable
        """
        directory = self.config.cache_path
        if directory_writable(directory):
            return CacheRepair(directory=directory, action="none")

        if not directory.exists():
            try:
                directory.mkdir(parents=True)
            except OSError as e:
                vlog(f"Could not create {directory}: {e}")
            if directory_writable(directory):
                return CacheRepair(directory=directory, action="created")
        else:
            try:
                os.chmod(directory, stat.S_IMODE(directory.stat().st_mode) | stat.S_IRWXU)
            except OSError as e:
                vlog(f"chmod failed on {directory}: {e}")
            if directory_writable(directory):
                return CacheRepair(directory=directory, action="chmod")

            if confirm(f"{directory} is still not writable. Take ownership of it with sudo?",
                       default=False, assume_yes=self.assume_yes):
                owned = self.brew.fix_permissions(directory)
                if owned.success and directory_writable(directory):
                    return CacheRepair(directory=directory, action="chown")
                get_logger().warning(f"Could not take ownership of {directory}: {owned.error_message}")

        alternatives = (
            self.home / ALT_CACHE_DIR,
            Path(tempfile.gettempdir()) / f"phpswitch_cache_{os.getuid()}",
        )
        for alternative in alternatives:
            try:
                alternative.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                vlog(f"Could not create {alternative}: {e}")
                continue
            if directory_writable(alternative):
                self.config = self.config.replace(cache_dir=str(alternative))
                config_path = save_config(self.config)
                show_status("warning", f"Cache moved to {alternative}")
                return CacheRepair(directory=alternative, action="relocated", config_path=config_path)

        raise FilesystemError(
            f"Cache directory {directory} is not writable and no alternative could be created",
            remediation="Point cache_dir at a writable directory: phpswitch --config cache_dir=PATH",
        )

"""
phpswitch - Switch between Homebrew-installed PHP versions.

Core Modules:
- Shell environment: startup file detection, managed block patching,
  backups, PATH reconstruction
- Version resolution: project version lookup, normalization, cached
  enumeration of installable versions
- Collaborators: Homebrew, PHP-FPM services, retry policies, auto-switch,
  read-only diagnostics
"""

__version__ = "1.0.0"
__author__ = "phpswitch Contributors"

# Version info for backward compatibility
VERSION = __version__

# Foundation
from .errors import (
    PhpSwitchError,
    FilesystemError,
    ValidationError,
    CorruptionError,
    ExternalCommandError,
    ResolutionError,
)
from .versions import VersionIdentifier, normalize, sort_versions, highest_minor
from .config import Config, load_config, load_config_file, save_config, validate_config

# Shell environment
from .shell import ShellDialect, StartupFile, detect_dialect, resolve_profile, get_strategy
from .backup import BackupRotator, BackupSnapshot
from .patcher import ManagedBlockPatcher, PatchResult, find_managed_block, BEGIN_MARKER, END_MARKER
from .path import PathReconstructor, ReloadOutcome, rebuild_search_path

# Version resolution
from .cache import VersionCache, DEFAULT_FALLBACK_VERSIONS
from .resolver import ProjectVersionResolver, ProjectVersion, ProjectVersionSource, write_project_version

# Collaborators
from .brew import Homebrew, CommandResult, run_command
from .retry import RetryPolicy, RetryStrategy, execute_with_policy
from .autoswitch import DirectoryCache, auto_switch
from .diagnostics import check_dependencies, diagnose_path, PathDiagnosis, EnvironmentReport, ExtensionReport
from .switcher import Switcher, SwitchResult, CacheRepair

# Logging
from .logging_config import setup_logging, get_logger

__all__ = [
    # Version
    "__version__",
    "VERSION",
    # Foundation
    "PhpSwitchError",
    "FilesystemError",
    "ValidationError",
    "CorruptionError",
    "ExternalCommandError",
    "ResolutionError",
    "VersionIdentifier",
    "normalize",
    "sort_versions",
    "highest_minor",
    "Config",
    "load_config",
    "load_config_file",
    "save_config",
    "validate_config",
    # Shell environment
    "ShellDialect",
    "StartupFile",
    "detect_dialect",
    "resolve_profile",
    "get_strategy",
    "BackupRotator",
    "BackupSnapshot",
    "ManagedBlockPatcher",
    "PatchResult",
    "find_managed_block",
    "BEGIN_MARKER",
    "END_MARKER",
    "PathReconstructor",
    "ReloadOutcome",
    "rebuild_search_path",
    # Version resolution
    "VersionCache",
    "DEFAULT_FALLBACK_VERSIONS",
    "ProjectVersionResolver",
    "ProjectVersion",
    "ProjectVersionSource",
    "write_project_version",
    # Collaborators
    "Homebrew",
    "CommandResult",
    "run_command",
    "RetryPolicy",
    "RetryStrategy",
    "execute_with_policy",
    "DirectoryCache",
    "auto_switch",
    "check_dependencies",
    "diagnose_path",
    "PathDiagnosis",
    "EnvironmentReport",
    "ExtensionReport",
    "Switcher",
    "SwitchResult",
    "CacheRepair",
    # Logging
    "setup_logging",
    "get_logger",
]

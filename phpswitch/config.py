"""
Configuration file parsing and management.

Supports YAML configuration files (JSON for *.json paths) plus the legacy
KEY=value ~/.phpswitch.conf format. The first file found wins; defaults are
used when none exists.
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .common import atomic_write_text, vlog
from .errors import ResolutionError
from .versions import VersionIdentifier, normalize


def config_locations() -> list[str]:
    """Configuration file locations in priority order."""
    return [
        os.path.expanduser("~/.config/phpswitch/config.yml"),
        os.path.expanduser("~/.config/phpswitch/config.yaml"),
        os.path.expanduser("~/.phpswitch.yml"),
    ]


def legacy_config_path() -> str:
    return os.path.expanduser("~/.phpswitch.conf")


DEFAULT_CACHE_SUBDIR = os.path.join(".cache", "phpswitch")

# Legacy shell-variable names mapped to Config fields
LEGACY_KEYS = {
    "AUTO_RESTART_PHP_FPM": "auto_restart",
    "BACKUP_CONFIG_FILES": "backup_enabled",
    "DEFAULT_PHP_VERSION": "default_version",
    "MAX_BACKUPS": "max_backups",
    "AUTO_SWITCH_PHP_VERSION": "auto_switch",
    "CACHE_DIRECTORY": "cache_dir",
}

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


def _to_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Invalid boolean for {key}: {value!r}")


def _to_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {key}: {value!r}")


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for phpswitch.

    Attributes:
        auto_restart: Restart PHP-FPM after a switch
        backup_enabled: Back up startup files before patching them
        default_version: Version used when nothing else is requested
        max_backups: Number of startup file backups to keep
        cache_dir: Override for the cache directory
        auto_switch: Install the directory-change hook in the managed block
        cache_ttl_seconds: Freshness window of the available-versions cache
        enumeration_timeout_seconds: Bounded wait for the live version search
        source: Path to the configuration file that was loaded
    """
    auto_restart: bool = True
    backup_enabled: bool = True
    default_version: VersionIdentifier | None = None
    max_backups: int = 5
    cache_dir: str | None = None
    auto_switch: bool = False
    cache_ttl_seconds: int = 3600
    enumeration_timeout_seconds: int = 10
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.max_backups < 1 or self.max_backups > 100:
            raise ValueError(
                f"Invalid max_backups: {self.max_backups}. "
                "Must be between 1 and 100"
            )

        if not 60 <= self.cache_ttl_seconds <= 86400:
            raise ValueError(
                f"cache_ttl_seconds={self.cache_ttl_seconds} is out of range; "
                "the available-versions cache lives 60 to 86400 seconds"
            )

        if self.enumeration_timeout_seconds < 1 or self.enumeration_timeout_seconds > 120:
            raise ValueError(
                f"Invalid enumeration_timeout_seconds: {self.enumeration_timeout_seconds}. "
                "Must be between 1 and 120"
            )

    @property
    def cache_path(self) -> Path:
        """Directory holding the cache files."""
        if self.cache_dir:
            return Path(os.path.expanduser(self.cache_dir))
        return Path.home() / DEFAULT_CACHE_SUBDIR

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """
        Create Config from dictionary.

        Raises:
            ValueError: If a value has the wrong type or is out of range
        """
        default_version = data.get("default_version")
        if default_version in (None, ""):
            parsed_default = None
        else:
            parsed_default = normalize(str(default_version))

        cache_dir = data.get("cache_dir")

        return Config(
            auto_restart=_to_bool(data.get("auto_restart", True), "auto_restart"),
            backup_enabled=_to_bool(data.get("backup_enabled", True), "backup_enabled"),
            default_version=parsed_default,
            max_backups=_to_int(data.get("max_backups", 5), "max_backups"),
            cache_dir=str(cache_dir) if cache_dir else None,
            auto_switch=_to_bool(data.get("auto_switch", False), "auto_switch"),
            cache_ttl_seconds=_to_int(data.get("cache_ttl_seconds", 3600), "cache_ttl_seconds"),
            enumeration_timeout_seconds=_to_int(
                data.get("enumeration_timeout_seconds", 10), "enumeration_timeout_seconds"
            ),
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for YAML/JSON serialization."""
        return {
            "auto_restart": self.auto_restart,
            "backup_enabled": self.backup_enabled,
            "default_version": str(self.default_version) if self.default_version else None,
            "max_backups": self.max_backups,
            "cache_dir": self.cache_dir,
            "auto_switch": self.auto_switch,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "enumeration_timeout_seconds": self.enumeration_timeout_seconds,
        }

    def replace(self, **changes: Any) -> Config:
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)


def _parse_legacy(text: str) -> dict[str, Any]:
    """Map KEY=value lines of ~/.phpswitch.conf onto Config field names."""
    data: dict[str, Any] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        field_name = LEGACY_KEYS.get(key.strip())
        if field_name:
            data[field_name] = value.strip().strip('"').strip("'")
    return data


def read_config_data(file_path: str) -> dict[str, Any] | None:
    """
    Read the raw mapping stored in a config file.

    The suffix picks the format: .json, .conf (legacy KEY=value) or YAML
    for anything else. An empty or non-mapping document reads as {}.
    None means the file is unreadable or malformed.
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError:
        return None

    if file_path.endswith(".conf"):
        return _parse_legacy(text)
    try:
        data = json.loads(text) if file_path.endswith(".json") else yaml.safe_load(text)
    except (ValueError, yaml.YAMLError):
        return None
    return data if isinstance(data, dict) else {}


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Build a Config from one file.

    Returns None when the file is missing, unreadable, or holds values
    that fail validation; callers then fall through to the next location.
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Reading config: {file_path}", verbose)
    data = read_config_data(file_path)
    if data is None:
        vlog(f"Unreadable config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
    except (ValueError, TypeError, ResolutionError) as e:
        vlog(f"Rejected config {file_path}: {e}", verbose)
        return None
    return config


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Return the first usable configuration, or defaults.

    An explicit custom_path wins and must load, otherwise ValueError is
    raised. Without one the XDG file, then ~/.phpswitch.yml, then the
    legacy ~/.phpswitch.conf are tried in turn; an unusable file is
    skipped rather than fatal.
    """
    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Unusable config file: {custom_path}")
        return config

    for location in config_locations() + [legacy_config_path()]:
        config = load_config_file(location, verbose)
        if config is not None:
            vlog(f"Config source: {location}", verbose)
            return config

    vlog("No config file found; using built-in defaults", verbose)
    return Config()


def save_config(config: Config, path: str | None = None) -> Path:
    """
    Write configuration as YAML.

    Args:
        config: Configuration to write
        path: Destination (defaults to config.source, then the user location)

    Returns:
        Path that was written
    """
    target = path or config.source or config_locations()[0]
    if target.endswith(".conf"):
        # Never rewrite the legacy file; migrate to the YAML location instead
        target = config_locations()[0]

    target_path = Path(target)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    if target.endswith(".json"):
        content = json.dumps(config.to_dict(), indent=2, sort_keys=True) + "\n"
    else:
        content = "# phpswitch configuration\n" + yaml.safe_dump(config.to_dict(), sort_keys=True)

    atomic_write_text(target_path, content)
    vlog(f"Saved config to: {target_path}")
    return target_path


def update_config_value(config: Config, key: str, value: str) -> Config:
    """
    Return a new Config with one key changed from its string form.

    Raises:
        ValueError: If the key is unknown or the value invalid
    """
    data = config.to_dict()
    if key not in data:
        raise ValueError(f"Unknown configuration key: {key}. Valid keys: {', '.join(sorted(data))}")
    data[key] = value
    return Config.from_dict(data, source=config.source)


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    if config.cache_dir:
        cache_dir = os.path.expanduser(config.cache_dir)
        if os.path.exists(cache_dir) and not os.path.isdir(cache_dir):
            warnings.append(f"cache_dir is not a directory: {cache_dir}")

    if config.auto_switch and not config.backup_enabled:
        warnings.append("auto_switch edits startup files while backups are disabled")

    if config.enumeration_timeout_seconds * 2 > config.cache_ttl_seconds:
        warnings.append("enumeration timeout is large compared to the cache TTL")

    return warnings

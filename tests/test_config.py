"""
Tests for configuration parsing (phpswitch/config.py).
"""

import json
from pathlib import Path

import pytest
import yaml

from phpswitch.config import (
    Config,
    config_locations,
    legacy_config_path,
    load_config,
    load_config_file,
    read_config_data,
    save_config,
    update_config_value,
    validate_config,
)
from phpswitch.versions import VersionIdentifier


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


class TestConfig:
    """Tests for the Config dataclass."""

    def test_defaults(self):
        """Test default values."""
        config = Config()
        assert config.auto_restart is True
        assert config.backup_enabled is True
        assert config.default_version is None
        assert config.max_backups == 5
        assert config.cache_dir is None
        assert config.auto_switch is False
        assert config.cache_ttl_seconds == 3600
        assert config.enumeration_timeout_seconds == 10

    @pytest.mark.parametrize("field, value", [
        ("max_backups", 0),
        ("max_backups", 101),
        ("cache_ttl_seconds", 10),
        ("enumeration_timeout_seconds", 0),
    ])
    def test_out_of_range(self, field, value):
        """Test range validation in __post_init__."""
        with pytest.raises(ValueError):
            Config(**{field: value})

    def test_from_dict(self):
        """Test creating Config from dictionary."""
        config = Config.from_dict({
            "auto_restart": "false",
            "max_backups": "3",
            "default_version": "8.2",
            "cache_dir": "~/cache",
        })
        assert config.auto_restart is False
        assert config.max_backups == 3
        assert config.default_version == VersionIdentifier(major=8, minor=2)
        assert config.cache_dir == "~/cache"

    def test_from_dict_bad_bool(self):
        """Test invalid booleans are rejected."""
        with pytest.raises(ValueError):
            Config.from_dict({"auto_switch": "maybe"})

    def test_to_dict_round_trip(self):
        """Test to_dict output loads back to an equal config."""
        config = Config(default_version=VersionIdentifier(major=8, minor=1), max_backups=7)
        assert Config.from_dict(config.to_dict()) == config

    def test_cache_path(self, home):
        """Test default and overridden cache directories."""
        assert Config().cache_path == home / ".cache" / "phpswitch"
        assert Config(cache_dir="~/other").cache_path == home / "other"

    def test_replace(self):
        """Test replace returns a modified copy."""
        config = Config()
        changed = config.replace(auto_switch=True)
        assert changed.auto_switch is True
        assert config.auto_switch is False


class TestLoaders:
    """Tests for reading config files in each supported format."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("max_backups: 9\nauto_switch: true\n")
        assert read_config_data(str(path)) == {"max_backups": 9, "auto_switch": True}

    @pytest.mark.parametrize("name, content", [
        ("config.yml", "max_backups: [unclosed\n"),
        ("config.json", "{not json"),
    ])
    def test_malformed(self, tmp_path, name, content):
        path = tmp_path / name
        path.write_text(content)
        assert read_config_data(str(path)) is None

    def test_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"max_backups": 2}))
        assert read_config_data(str(path)) == {"max_backups": 2}

    def test_empty_yaml_is_empty_mapping(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("")
        assert read_config_data(str(path)) == {}

    def test_missing_file(self, tmp_path):
        assert read_config_data(str(tmp_path / "absent.yml")) is None

    def test_legacy(self, tmp_path):
        """Test KEY=value files map to Config fields."""
        path = tmp_path / ".phpswitch.conf"
        path.write_text(
            "# phpswitch configuration\n"
            'AUTO_RESTART_PHP_FPM=false\n'
            'DEFAULT_PHP_VERSION="php@8.1"\n'
            "MAX_BACKUPS=4\n"
            "UNKNOWN_KEY=1\n"
        )
        data = read_config_data(str(path))
        assert data == {"auto_restart": "false", "default_version": "php@8.1", "max_backups": "4"}

    def test_load_config_file_invalid_values(self, tmp_path):
        """Test out-of-range values make the file unusable."""
        path = tmp_path / "config.yml"
        path.write_text("max_backups: 1000\n")
        assert load_config_file(str(path)) is None

    def test_load_config_file_bad_version(self, tmp_path):
        """Test an unparseable default version makes the file unusable."""
        path = tmp_path / "config.yml"
        path.write_text("default_version: latest\n")
        assert load_config_file(str(path)) is None


class TestLoadConfig:
    """Tests for load_config precedence."""

    def test_defaults_when_nothing_exists(self, home):
        assert load_config() == Config()

    def test_user_yaml(self, home):
        path = Path(config_locations()[0])
        path.parent.mkdir(parents=True)
        path.write_text("max_backups: 8\n")
        config = load_config()
        assert config.max_backups == 8
        assert config.source == str(path)

    def test_yaml_beats_legacy(self, home):
        Path(legacy_config_path()).write_text("MAX_BACKUPS=2\n")
        Path(config_locations()[2]).write_text("max_backups: 6\n")
        assert load_config().max_backups == 6

    def test_legacy_fallback(self, home):
        Path(legacy_config_path()).write_text("MAX_BACKUPS=2\n")
        assert load_config().max_backups == 2

    def test_custom_path(self, tmp_path):
        path = tmp_path / "custom.yml"
        path.write_text("auto_switch: yes\n")
        assert load_config(str(path)).auto_switch is True

    def test_custom_path_missing(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(str(tmp_path / "missing.yml"))


class TestSaveConfig:
    """Tests for save_config and update_config_value."""

    def test_save_yaml(self, home):
        path = save_config(Config(max_backups=3))
        assert path == Path(config_locations()[0])
        data = yaml.safe_load(path.read_text())
        assert data["max_backups"] == 3
        assert load_config().max_backups == 3

    def test_save_migrates_legacy(self, home):
        """Test a config loaded from the legacy file is saved as YAML."""
        legacy = Path(legacy_config_path())
        legacy.write_text("MAX_BACKUPS=2\n")
        config = load_config()
        path = save_config(config.replace(max_backups=4))
        assert path.suffix == ".yml"
        assert legacy.read_text() == "MAX_BACKUPS=2\n"

    def test_save_json(self, tmp_path):
        path = save_config(Config(), str(tmp_path / "config.json"))
        assert json.loads(path.read_text())["max_backups"] == 5

    def test_update_config_value(self):
        config = update_config_value(Config(), "default_version", "8.3")
        assert str(config.default_version) == "php@8.3"

    def test_update_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown configuration key"):
            update_config_value(Config(), "colour", "blue")


class TestValidateConfig:
    """Tests for validate_config warnings."""

    def test_valid(self):
        assert validate_config(Config()) == []

    def test_cache_dir_is_file(self, tmp_path):
        path = tmp_path / "file"
        path.write_text("")
        warnings = validate_config(Config(cache_dir=str(path)))
        assert any("not a directory" in w for w in warnings)

    def test_auto_switch_without_backups(self):
        warnings = validate_config(Config(auto_switch=True, backup_enabled=False))
        assert len(warnings) == 1

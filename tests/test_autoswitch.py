"""
Tests for directory-change switching (phpswitch/autoswitch.py).
"""

from unittest.mock import MagicMock

import pytest

from phpswitch.autoswitch import DIRECTORY_CACHE_FILENAME, MAX_ENTRIES, DirectoryCache, auto_switch
from phpswitch.brew import CommandResult, Homebrew
from phpswitch.config import Config
from phpswitch.shell import ShellDialect
from phpswitch.versions import VersionIdentifier

V81 = VersionIdentifier(major=8, minor=1)
V82 = VersionIdentifier(major=8, minor=2)


def ok():
    return CommandResult(command=("brew",), exit_code=0)


@pytest.fixture
def cache(tmp_path):
    return DirectoryCache(tmp_path / "cache")


@pytest.fixture
def brew(tmp_path):
    mock = MagicMock(spec=Homebrew)
    mock.is_installed.return_value = True
    mock.current_linked_version.return_value = V81
    mock.link.return_value = ok()
    mock.unlink.return_value = ok()
    mock.list_installed.return_value = [V81, V82]
    mock.opt_paths.side_effect = lambda v: (tmp_path / "opt" / v.formula / "bin", tmp_path / "opt" / v.formula / "sbin")
    return mock


@pytest.fixture
def project(tmp_path):
    directory = tmp_path / "project"
    directory.mkdir()
    (directory / ".php-version").write_text("8.2\n")
    return directory


class TestDirectoryCache:
    """Tests for DirectoryCache."""

    def test_record_and_lookup(self, cache):
        cache.record("/work/app", V82)
        assert cache.lookup("/work/app") == V82
        assert cache.lookup("/work/other") is None

    def test_directory_with_colon(self, cache):
        cache.record("/work/a:b", V81)
        assert cache.lookup("/work/a:b") == V81

    def test_record_replaces(self, cache):
        cache.record("/work/app", V81)
        cache.record("/work/app", V82)
        assert cache.lookup("/work/app") == V82
        assert cache.path.read_text().count("/work/app") == 1

    def test_bad_lines_ignored(self, cache):
        cache.path.parent.mkdir(parents=True)
        cache.path.write_text("garbage\n/work/app:php@8.2\n/work/x:not-a-version\n")
        assert cache.lookup("/work/app") == V82
        assert cache.lookup("/work/x") is None

    def test_undecodable_file_is_empty(self, cache):
        cache.path.parent.mkdir(parents=True)
        cache.path.write_bytes(b"/work/caf\xe9:php@8.2\n")
        assert cache.lookup("/work/caf\xe9") is None
        cache.record("/work/app", V82)
        assert cache.lookup("/work/app") == V82

    def test_bounded(self, cache):
        for i in range(MAX_ENTRIES + 5):
            cache.record(f"/work/{i}", V82)
        assert len(cache.path.read_text().splitlines()) == MAX_ENTRIES
        assert cache.lookup("/work/0") is None

    def test_clear(self, cache):
        cache.record("/work/app", V82)
        assert cache.clear() is True
        assert cache.clear() is False
        assert cache.path.name == DIRECTORY_CACHE_FILENAME


class TestAutoSwitch:
    """Tests for auto_switch()."""

    def test_switches_to_project_version(self, project, brew, cache, tmp_path):
        environ = {"PATH": "/usr/bin:/opt/php@8.1/bin"}
        command = auto_switch(str(project), brew, Config(), ShellDialect.BASH, environ, cache)

        brew.unlink.assert_called_once_with(V81)
        brew.link.assert_called_once_with(V82, force=True)
        assert command.startswith("export PATH=")
        assert str(tmp_path / "opt" / "php@8.2" / "bin") in command
        assert "php@8.1" not in command
        assert cache.lookup(str(project)) == V82

    def test_fish_command(self, project, brew, cache):
        command = auto_switch(str(project), brew, Config(), ShellDialect.FISH, {"PATH": "/usr/bin"}, cache)
        assert command.startswith("set -gx PATH ")

    def test_already_active(self, project, brew, cache):
        brew.current_linked_version.return_value = V82
        assert auto_switch(str(project), brew, Config(), ShellDialect.BASH, {"PATH": ""}, cache) is None
        brew.link.assert_not_called()

    def test_not_installed(self, project, brew, cache):
        brew.is_installed.return_value = False
        assert auto_switch(str(project), brew, Config(), ShellDialect.BASH, {"PATH": ""}, cache) is None
        brew.link.assert_not_called()

    def test_no_project(self, tmp_path, brew, cache):
        empty = tmp_path / "empty"
        empty.mkdir()
        assert auto_switch(str(empty), brew, Config(), ShellDialect.BASH, {"PATH": ""}, cache) is None

    def test_unsafe_marker_ignored(self, project, brew, cache):
        (project / ".php-version").write_text("8.2; rm -rf ~\n")
        assert auto_switch(str(project), brew, Config(), ShellDialect.BASH, {"PATH": ""}, cache) is None
        brew.link.assert_not_called()

    def test_cache_hit_skips_resolution(self, tmp_path, brew, cache):
        directory = tmp_path / "cached"
        directory.mkdir()
        cache.record(str(directory), V82)
        assert auto_switch(str(directory), brew, Config(), ShellDialect.BASH, {"PATH": ""}, cache)
        brew.list_installed.assert_not_called()

    def test_link_failure(self, project, brew, cache):
        brew.link.return_value = CommandResult(command=("brew",), exit_code=1, error_message="boom")
        assert auto_switch(str(project), brew, Config(), ShellDialect.BASH, {"PATH": ""}, cache) is None

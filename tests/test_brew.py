"""
Tests for the Homebrew collaborator (phpswitch/brew.py).
"""

import os
import subprocess
import sys
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from phpswitch.brew import (
    CommandResult,
    Homebrew,
    parse_formula_list,
    parse_module_list,
    run_cancellable,
    run_command,
)
from phpswitch.versions import VersionIdentifier


def ok(stdout="", command=("brew",)):
    return CommandResult(command=tuple(command), exit_code=0, stdout=stdout)


def fail(stderr="", command=("brew",)):
    return CommandResult(command=tuple(command), exit_code=1, stderr=stderr, error_message="failed")


class FakeRunner:
    """Records commands and returns queued results keyed by subcommand."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.commands = []

    def __call__(self, command, timeout=None, verbose=False):
        self.commands.append(list(command))
        key = " ".join(command[1:3]) if command[0] == "brew" else " ".join(command[:2])
        response = self.responses.get(key, ok())
        return response


class TestCommandResult:
    """Tests for CommandResult."""

    def test_success(self):
        assert ok().success is True
        assert fail().success is False

    def test_contains_is_case_insensitive(self):
        result = fail(stderr="Error: Permission denied @ rb_sysopen")
        assert result.contains("permission denied")
        assert not result.contains("already installed")

    def test_to_dict(self):
        data = ok("out", command=["brew", "list"]).to_dict()
        assert data["command"] == ["brew", "list"]
        assert data["exit_code"] == 0


class TestRunCommand:
    """Tests for run_command() and run_cancellable()."""

    def test_success(self):
        result = run_command([sys.executable, "-c", "print('hello')"])
        assert result.success
        assert result.stdout.strip() == "hello"

    def test_failure(self):
        result = run_command([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"])
        assert result.exit_code == 3
        assert "boom" in result.error_message

    def test_not_found(self):
        result = run_command(["definitely-not-a-real-command-xyz"])
        assert result.exit_code == -1
        assert "not found" in result.error_message

    def test_timeout(self):
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["brew"], 1, output=b"partial")):
            result = run_command(["brew", "search"], timeout=1)
        assert result.exit_code == -1
        assert result.stdout == "partial"
        assert "timed out" in result.error_message

    def test_cancellable_killed(self):
        """Test a cancelled command is killed promptly."""
        cancel = threading.Event()
        threading.Timer(0.2, cancel.set).start()
        start = time.monotonic()
        result = run_cancellable([sys.executable, "-c", "import time; time.sleep(30)"], cancel)
        assert time.monotonic() - start < 5
        assert result.exit_code == -1
        assert result.error_message == "Command cancelled"

    def test_cancellable_completes(self):
        result = run_cancellable([sys.executable, "-c", "print('php@8.2')"], threading.Event())
        assert result.success
        assert result.stdout.strip() == "php@8.2"


class TestHomebrew:
    """Tests for the Homebrew wrapper."""

    def test_parse_formula_list(self):
        parsed = parse_formula_list("composer\nphp\nphp@8.1\nphp@8.3\nphpunit\n")
        assert [str(v) for v in parsed] == ["php@default", "php@8.1", "php@8.3"]

    def test_list_installed(self):
        runner = FakeRunner({"list --formula": ok("php@8.3\nphp@8.1\ngit\n")})
        installed = Homebrew(runner=runner).list_installed()
        assert [str(v) for v in installed] == ["php@8.1", "php@8.3"]

    def test_list_installed_failure(self):
        runner = FakeRunner({"list --formula": fail("brew broke")})
        assert Homebrew(runner=runner).list_installed() == []

    def test_is_installed(self):
        runner = FakeRunner({"list --versions": ok("php@8.2 8.2.20\n")})
        assert Homebrew(runner=runner).is_installed(VersionIdentifier(major=8, minor=2))
        runner = FakeRunner({"list --versions": fail()})
        assert not Homebrew(runner=runner).is_installed(VersionIdentifier(major=8, minor=2))

    def test_link_flags(self):
        runner = FakeRunner()
        Homebrew(runner=runner).link(VersionIdentifier(major=8, minor=2), force=True)
        assert runner.commands[-1] == ["brew", "link", "--force", "php@8.2"]

    def test_default_uses_plain_formula(self):
        runner = FakeRunner()
        Homebrew(runner=runner).install(VersionIdentifier.default())
        assert runner.commands[-1] == ["brew", "install", "php"]

    def test_service_action_sudo(self):
        runner = FakeRunner()
        Homebrew(runner=runner).service_action("restart", "php@8.2", sudo=True)
        assert runner.commands[-1] == ["sudo", "brew", "services", "restart", "php@8.2"]

    def test_services_list(self):
        output = (
            "Name    Status  User File\n"
            "php     none\n"
            "php@8.2 started me   ~/Library/LaunchAgents/homebrew.mxcl.php@8.2.plist\n"
            "nginx   started me\n"
        )
        runner = FakeRunner({"services list": ok(output)})
        assert Homebrew(runner=runner).services_list() == {"php": "none", "php@8.2": "started"}

    def test_prefix(self):
        runner = FakeRunner({"--prefix": ok("/opt/homebrew\n")})
        brew = Homebrew(runner=runner)
        assert brew.prefix() == Path("/opt/homebrew")
        brew.prefix()
        assert len(runner.commands) == 1

    def test_opt_paths(self):
        brew = Homebrew(runner=FakeRunner({"--prefix": ok("/opt/homebrew")}))
        bin_dir, sbin_dir = brew.opt_paths(VersionIdentifier(major=8, minor=1))
        assert bin_dir == Path("/opt/homebrew/opt/php@8.1/bin")
        assert sbin_dir == Path("/opt/homebrew/opt/php@8.1/sbin")

    @pytest.mark.parametrize("formula, expected", [
        ("php@8.2", "php@8.2"),
        ("php", "php@default"),
    ])
    def test_current_linked_version(self, tmp_path, formula, expected):
        """Test the linked version is read from the php symlink target."""
        binary = tmp_path / "Cellar" / formula / "8.2.20" / "bin" / "php"
        binary.parent.mkdir(parents=True)
        binary.write_text("")
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "php").symlink_to(binary)

        brew = Homebrew(runner=FakeRunner({"--prefix": ok(str(tmp_path))}))
        assert str(brew.current_linked_version()) == expected

    def test_current_linked_version_none(self, tmp_path):
        brew = Homebrew(runner=FakeRunner({"--prefix": ok(str(tmp_path))}))
        assert brew.current_linked_version() is None

    def test_search_available(self):
        completed = CommandResult(command=("brew",), exit_code=0, stdout="php\nphp@8.1\nphp@8.4\n")
        with patch("phpswitch.brew.run_cancellable", return_value=completed) as mock_run:
            found = Homebrew().search_available(threading.Event())
        assert found == ["php@default", "php@8.1", "php@8.4"]
        assert mock_run.call_args[0][0][:2] == ["brew", "search"]

    def test_search_available_failure(self):
        failed = CommandResult(command=("brew",), exit_code=-1, error_message="Command cancelled")
        with patch("phpswitch.brew.run_cancellable", return_value=failed):
            with pytest.raises(RuntimeError, match="cancelled"):
                Homebrew().search_available(threading.Event())


class TestPhpIntrospection:
    """Tests for the php binary, ini directory and module queries."""

    def test_parse_module_list(self):
        output = "[PHP Modules]\nCore\nctype\nxdebug\n\n[Zend Modules]\nxdebug\nZend OPcache\n"
        assert parse_module_list(output) == ["Core", "ctype", "xdebug", "Zend OPcache"]

    def test_loaded_modules(self):
        runner = FakeRunner({"/opt/homebrew/opt/php@8.2/bin/php -m": ok("[PHP Modules]\nmbstring\njson\n")})
        brew = Homebrew(runner=runner)
        assert brew.loaded_modules("/opt/homebrew/opt/php@8.2/bin/php") == ["json", "mbstring"]

    def test_loaded_modules_failure(self):
        runner = FakeRunner({"/usr/bin/php -m": fail("segfault")})
        assert Homebrew(runner=runner).loaded_modules("/usr/bin/php") == []

    def test_ini_dir_numbered(self):
        brew = Homebrew(runner=FakeRunner({"--prefix": ok("/opt/homebrew")}))
        assert brew.ini_dir(VersionIdentifier(major=8, minor=1)) == Path("/opt/homebrew/etc/php/8.1")

    def test_ini_dir_default_asks_binary(self):
        """Test the default formula's number comes from its own binary."""
        runner = FakeRunner({
            "--prefix": ok("/opt/homebrew"),
            "/opt/homebrew/opt/php/bin/php -r": ok("8.4"),
        })
        brew = Homebrew(runner=runner)
        assert brew.ini_dir(VersionIdentifier.default()) == Path("/opt/homebrew/etc/php/8.4")

    def test_ini_dir_default_unknown(self):
        runner = FakeRunner({
            "--prefix": ok("/opt/homebrew"),
            "/opt/homebrew/opt/php/bin/php -r": fail("not found"),
        })
        assert Homebrew(runner=runner).ini_dir(VersionIdentifier.default()) is None

    def test_opt_links(self, tmp_path):
        cellar = tmp_path / "Cellar" / "php@8.2" / "8.2.20"
        cellar.mkdir(parents=True)
        opt = tmp_path / "opt"
        opt.mkdir()
        (opt / "php@8.2").symlink_to(cellar)
        (opt / "node").mkdir()

        brew = Homebrew(runner=FakeRunner({"--prefix": ok(str(tmp_path))}))
        assert brew.opt_links() == {"php@8.2": os.path.realpath(cellar)}

    def test_opt_links_without_opt(self, tmp_path):
        brew = Homebrew(runner=FakeRunner({"--prefix": ok(str(tmp_path))}))
        assert brew.opt_links() == {}

    def test_fix_permissions_on_path(self, monkeypatch):
        monkeypatch.setenv("USER", "dev")
        runner = FakeRunner()
        Homebrew(runner=runner).fix_permissions(Path("/Users/dev/.cache/phpswitch"))
        assert runner.commands[-1] == ["sudo", "chown", "-R", "dev", "/Users/dev/.cache/phpswitch"]

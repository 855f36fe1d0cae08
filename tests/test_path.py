"""
Tests for search path reconstruction (phpswitch/path.py).
"""

import os
import stat

import pytest

from phpswitch.path import PathReconstructor, rebuild_search_path
from phpswitch.shell import ShellDialect
from phpswitch.versions import VersionIdentifier

V82 = VersionIdentifier(major=8, minor=2)


def make_php(directory):
    """Create an executable fake php in directory."""
    directory.mkdir(parents=True, exist_ok=True)
    php = directory / "php"
    php.write_text("#!/bin/sh\necho 'PHP 8.2.0 (cli)'\n")
    php.chmod(0o755)
    return php


class TestRebuildSearchPath:
    """Tests for rebuild_search_path()."""

    def test_filters_and_prepends(self):
        """Test the matching entry is removed and order is preserved."""
        result = rebuild_search_path("/usr/bin:/usr/local/opt/php@7.4/bin:/bin", ["/a/bin", "/a/sbin"])
        assert result == "/a/bin:/a/sbin:/usr/bin:/bin"

    def test_case_insensitive(self):
        result = rebuild_search_path("/Users/me/PHP/bin:/usr/bin", ["/a/bin", "/a/sbin"])
        assert result == "/a/bin:/a/sbin:/usr/bin"

    def test_drops_empty_entries(self):
        assert rebuild_search_path("/usr/bin::/bin:", ["/a"]) == "/a:/usr/bin:/bin"

    def test_empty_path(self):
        assert rebuild_search_path("", ["/a/bin", "/a/sbin"]) == "/a/bin:/a/sbin"

    def test_repeated_rebuild_is_stable(self):
        once = rebuild_search_path("/usr/bin:/opt/php@8.1/bin", ["/opt/php@8.2/bin", "/opt/php@8.2/sbin"])
        twice = rebuild_search_path(once, ["/opt/php@8.2/bin", "/opt/php@8.2/sbin"])
        assert once == twice


class TestPathReconstructor:
    """Tests for PathReconstructor."""

    def test_apply_mutates_environ(self, tmp_path):
        bin_dir = tmp_path / "opt" / "php@8.2" / "bin"
        make_php(bin_dir)
        environ = {"PATH": "/usr/bin:/usr/local/php5/bin"}

        outcome = PathReconstructor(ShellDialect.BASH, environ, script_dir=tmp_path).apply(
            V82, bin_dir, bin_dir.parent / "sbin"
        )

        assert environ["PATH"] == f"{bin_dir}:{bin_dir.parent / 'sbin'}:/usr/bin"
        assert outcome.live_updated is True
        assert outcome.verified is True
        assert outcome.resolved_binary == os.path.realpath(bin_dir / "php")

    def test_fish_not_mutated(self, tmp_path):
        """Test fish sessions get a reload script instead of a live change."""
        bin_dir = tmp_path / "opt" / "php@8.2" / "bin"
        make_php(bin_dir)
        environ = {"PATH": "/usr/bin"}

        outcome = PathReconstructor(ShellDialect.FISH, environ, script_dir=tmp_path).apply(
            V82, bin_dir, bin_dir.parent / "sbin"
        )

        assert environ["PATH"] == "/usr/bin"
        assert outcome.live_updated is False
        assert outcome.reload_script.suffix == ".fish"
        assert "set -gx PATH" in outcome.reload_script.read_text()

    def test_reload_script(self, tmp_path):
        reconstructor = PathReconstructor(ShellDialect.ZSH, {"PATH": ""})
        script = reconstructor.create_reload_script(V82, "/o/bin", "/o/sbin", directory=tmp_path)
        assert script.name.startswith("phpswitch_reload_")
        assert script.suffix == ".sh"
        assert stat.S_IMODE(os.stat(script).st_mode) == 0o755
        content = script.read_text()
        assert content.startswith("#!/bin/zsh")
        assert '_phpswitch_path="/o/bin:/o/sbin"' in content

    def test_verify_mismatch_is_not_fatal(self, tmp_path, caplog):
        """Test a php resolving elsewhere is reported, not raised."""
        other = make_php(tmp_path / "elsewhere")
        reconstructor = PathReconstructor(ShellDialect.BASH, {"PATH": str(other.parent)})
        verified, resolved = reconstructor.verify(tmp_path / "opt" / "php@8.2")
        assert verified is False
        assert resolved == os.path.realpath(other)

    def test_verify_no_php(self, tmp_path):
        reconstructor = PathReconstructor(ShellDialect.BASH, {"PATH": str(tmp_path)})
        assert reconstructor.verify(tmp_path) == (False, None)

    def test_verify_through_symlinked_opt(self, tmp_path):
        """Test Homebrew's opt symlink resolves into the Cellar."""
        cellar = tmp_path / "Cellar" / "php@8.2" / "8.2.20"
        make_php(cellar / "bin")
        opt = tmp_path / "opt" / "php@8.2"
        opt.parent.mkdir()
        opt.symlink_to(cellar)

        reconstructor = PathReconstructor(ShellDialect.BASH, {"PATH": str(opt / "bin")})
        verified, _ = reconstructor.verify(opt)
        assert verified is True

    def test_instructions(self, tmp_path):
        reconstructor = PathReconstructor(ShellDialect.BASH, {"PATH": ""})
        lines = reconstructor.instructions(tmp_path / ".bashrc", "/o/bin", "/o/sbin", tmp_path / "r.sh")
        assert lines[0].endswith(f'source "{tmp_path / "r.sh"}"')
        assert any('export PATH="/o/bin:/o/sbin:$PATH"' in line for line in lines)

    def test_export_command(self):
        reconstructor = PathReconstructor(ShellDialect.FISH, {"PATH": ""})
        assert reconstructor.export_command("/a:/b") == "set -gx PATH /a /b"

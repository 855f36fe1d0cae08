"""
Tests for the available-versions cache (phpswitch/cache.py).
"""

import tempfile
import threading
import time
from pathlib import Path

import pytest

from phpswitch.cache import (
    CACHE_FILENAME,
    DEFAULT_FALLBACK_VERSIONS,
    FALLBACK_FILENAME,
    VersionCache,
    parse_versions,
)
from phpswitch.config import Config

LIVE = ["php@8.4", "php@8.2", "php", "php@8.3"]


class CountingFetcher:
    """Fetcher double that records its calls."""

    def __init__(self, result=LIVE, error=None, block=False):
        self.result = result
        self.error = error
        self.block = block
        self.calls = 0
        self.cancelled = threading.Event()
        self.started = threading.Event()
        self.release = threading.Event()

    def __call__(self, cancel_event):
        self.calls += 1
        self.started.set()
        if self.block:
            # Wait until released or cancelled
            while not self.release.is_set():
                if cancel_event.wait(0.01):
                    self.cancelled.set()
                    raise RuntimeError("cancelled")
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def config(tmp_path):
    return Config(cache_dir=str(tmp_path / "cache"))


def fallback_strings():
    return [str(v) for v in parse_versions(DEFAULT_FALLBACK_VERSIONS)]


class TestGetAvailable:
    """Tests for VersionCache.get_available()."""

    def test_fetch_and_cache(self, config):
        fetcher = CountingFetcher()
        cache = VersionCache(fetcher, config)

        first = cache.get_available()
        second = cache.get_available()

        assert [str(v) for v in first] == ["php@8.2", "php@8.3", "php@8.4", "php@default"]
        assert second == first
        assert fetcher.calls == 1

    def test_cache_file_format(self, config):
        cache = VersionCache(CountingFetcher(), config)
        cache.get_available()
        lines = (config.cache_path / CACHE_FILENAME).read_text().splitlines()
        assert lines == ["php@8.2", "php@8.3", "php@8.4", "php@default"]

    def test_timeout_returns_fallback(self, config):
        """Test a hung search yields the fallback within the bound."""
        fetcher = CountingFetcher(block=True)
        cache = VersionCache(fetcher, config, timeout=0.2)

        start = time.monotonic()
        versions = cache.get_available()
        elapsed = time.monotonic() - start

        assert [str(v) for v in versions] == fallback_strings()
        assert elapsed < 2.0
        assert fetcher.cancelled.wait(2.0)

    def test_fallback_written_through(self, config):
        """Test a second call within the TTL does not search again."""
        fetcher = CountingFetcher(block=True)
        cache = VersionCache(fetcher, config, timeout=0.2)

        first = cache.get_available()
        second = cache.get_available()

        assert second == first
        assert fetcher.calls == 1

    def test_error_returns_fallback(self, config):
        cache = VersionCache(CountingFetcher(error=RuntimeError("brew exploded")), config)
        assert [str(v) for v in cache.get_available()] == fallback_strings()

    def test_empty_result_returns_fallback(self, config):
        cache = VersionCache(CountingFetcher(result=[]), config)
        assert [str(v) for v in cache.get_available()] == fallback_strings()

    def test_ttl_expiry(self, config):
        """Test an expired cache triggers a new search."""
        fetcher = CountingFetcher()
        now = [time.time()]
        cache = VersionCache(fetcher, config, clock=lambda: now[0])

        cache.get_available()
        now[0] += config.cache_ttl_seconds + 1
        cache.get_available()

        assert fetcher.calls == 2

    def test_last_success_becomes_fallback(self, config):
        """Test a failed refresh falls back to the last live result."""
        good = CountingFetcher(result=["php@9.0", "php@8.4"])
        VersionCache(good, config).get_available()

        bad = CountingFetcher(error=RuntimeError("offline"))
        versions = VersionCache(bad, config).force_refresh()

        assert [str(v) for v in versions] == ["php@8.4", "php@9.0"]
        assert (config.cache_path / FALLBACK_FILENAME).exists()

    def test_undecodable_cache_file_is_a_miss(self, config):
        """Test a cache file with invalid UTF-8 triggers a new search."""
        config.cache_path.mkdir(parents=True)
        (config.cache_path / CACHE_FILENAME).write_bytes(b"php@8.2\n\xff\xfe\n")
        fetcher = CountingFetcher()

        versions = VersionCache(fetcher, config).get_available()

        assert [str(v) for v in versions] == ["php@8.2", "php@8.3", "php@8.4", "php@default"]
        assert fetcher.calls == 1

    def test_undecodable_fallback_file_uses_builtin_list(self, config):
        config.cache_path.mkdir(parents=True)
        (config.cache_path / FALLBACK_FILENAME).write_bytes(b"\xff\xfephp@9.9\n")
        cache = VersionCache(CountingFetcher(error=RuntimeError("offline")), config)
        assert [str(v) for v in cache.get_available()] == fallback_strings()

    def test_fallback_not_updated_by_failure(self, config):
        VersionCache(CountingFetcher(error=RuntimeError("offline")), config).get_available()
        assert not (config.cache_path / FALLBACK_FILENAME).exists()

    def test_concurrent_callers_share_one_search(self, config):
        """Test callers arriving during a refresh wait on the same search."""
        fetcher = CountingFetcher(block=True)
        cache = VersionCache(fetcher, config, timeout=5)
        results = []

        first = threading.Thread(target=lambda: results.append(cache.get_available()))
        first.start()
        assert fetcher.started.wait(2.0)
        second = threading.Thread(target=lambda: results.append(cache.get_available()))
        second.start()
        time.sleep(0.1)
        fetcher.release.set()
        first.join(5)
        second.join(5)

        assert fetcher.calls == 1
        assert len(results) == 2
        assert results[0] == results[1]


class TestInvalidate:
    """Tests for invalidate() and force_refresh()."""

    def test_invalidate(self, config):
        cache = VersionCache(CountingFetcher(), config)
        cache.get_available()
        assert cache.invalidate() is True
        assert not (config.cache_path / CACHE_FILENAME).exists()
        assert cache.invalidate() is False

    def test_force_refresh_searches_again(self, config):
        fetcher = CountingFetcher()
        cache = VersionCache(fetcher, config)
        cache.get_available()
        cache.force_refresh()
        assert fetcher.calls == 2


class TestStorage:
    """Tests for cache directory fallbacks."""

    def test_unwritable_dir_uses_temp(self, tmp_path, monkeypatch):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path / "tmp"))
        (tmp_path / "tmp").mkdir()

        cache = VersionCache(CountingFetcher(), Config(cache_dir=str(blocker / "cache")))
        versions = cache.get_available()

        assert versions
        assert cache.storage_dir().parent == tmp_path / "tmp"
        assert cache.cache_file.exists()

    def test_no_writable_dir(self, tmp_path, monkeypatch):
        """Test the caller still gets versions when nothing can be persisted."""
        def refuse(self, *args, **kwargs):
            raise PermissionError("read-only")

        monkeypatch.setattr(Path, "mkdir", refuse)
        fetcher = CountingFetcher()
        cache = VersionCache(fetcher, Config(cache_dir=str(tmp_path / "cache")))

        assert len(cache.get_available()) == 4
        assert cache.cache_file is None
        assert cache.invalidate() is False

"""
Cache of installable PHP versions.

Enumerating installable versions means a slow, network-backed Homebrew
search. Results are cached in a single file, fresh for a TTL measured
against the file's mtime. A refresh waits a bounded time for the search; on
timeout, error or an empty answer the fallback list is used and written
through so the next call inside the TTL is cheap.

Every successful search also updates a persisted fallback list, so the
built-in list below is only used until the first search ever succeeds.
"""

from __future__ import annotations

import os
import tempfile
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .common import atomic_write_text, vlog
from .config import Config
from .logging_config import get_logger
from .versions import VersionIdentifier, sort_versions

CACHE_FILENAME = "available_versions.cache"
FALLBACK_FILENAME = "fallback_versions.cache"

# Known release lines at the time of writing; superseded by FALLBACK_FILENAME
DEFAULT_FALLBACK_VERSIONS = (
    "php@7.4",
    "php@8.0",
    "php@8.1",
    "php@8.2",
    "php@8.3",
    "php@8.4",
    "php@default",
)

Fetcher = Callable[[threading.Event], Sequence[str]]


def parse_versions(lines: Iterable[str]) -> tuple[VersionIdentifier, ...]:
    """Parse identifiers (canonical or formula names), skipping anything else."""
    versions = []
    for line in lines:
        text = line.strip()
        if not text:
            continue
        version = VersionIdentifier.from_formula(text)
        if version is not None:
            versions.append(version)
    return tuple(sort_versions(versions))


class VersionCache:
    """
    TTL cache in front of the available-versions search.

    Args:
        fetcher: Slow enumeration; receives an Event set on cancellation
        config: Configuration (cache_dir, cache_ttl_seconds, enumeration_timeout_seconds)
        cache_dir: Override for the cache directory
        clock: Current time in seconds (injectable for tests)
        timeout: Override for the bounded wait in seconds
    """

    def __init__(
        self,
        fetcher: Fetcher,
        config: Config,
        cache_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
        timeout: float | None = None,
    ):
        self.fetcher = fetcher
        self.config = config
        self.ttl = config.cache_ttl_seconds
        self.timeout = config.enumeration_timeout_seconds if timeout is None else timeout
        self.clock = clock
        self._requested_dir = cache_dir or config.cache_path
        self._dir: Path | None = None
        self._dir_resolved = False
        self._lock = threading.Lock()
        self._inflight: Future | None = None
        self._cancel: threading.Event | None = None

    def storage_dir(self) -> Path | None:
        """
        Writable cache directory, or None when nothing is writable.

        Falls back to a per-user directory under the system temp dir.
        """
        if self._dir_resolved:
            return self._dir

        candidates = [
            self._requested_dir,
            Path(tempfile.gettempdir()) / f"phpswitch-{os.getuid()}",
        ]
        for candidate in candidates:
            try:
                candidate.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                vlog(f"Cache directory {candidate} unavailable: {e}")
                continue
            if os.access(candidate, os.W_OK):
                self._dir = candidate
                break
            vlog(f"Cache directory {candidate} is not writable")
        else:
            get_logger().warning("No writable cache directory; versions will not be cached")

        self._dir_resolved = True
        return self._dir

    @property
    def cache_file(self) -> Path | None:
        directory = self.storage_dir()
        return directory / CACHE_FILENAME if directory else None

    @property
    def fallback_file(self) -> Path | None:
        directory = self.storage_dir()
        return directory / FALLBACK_FILENAME if directory else None

    def _read(self, path: Path | None) -> tuple[VersionIdentifier, ...]:
        if path is None:
            return ()
        try:
            with open(path, "r", encoding="utf-8") as f:
                return parse_versions(f)
        except (OSError, ValueError) as e:
            vlog(f"Ignoring unreadable version cache {path}: {e}")
            return ()

    def _write(self, path: Path | None, versions: Sequence[VersionIdentifier]) -> None:
        if path is None:
            return
        try:
            atomic_write_text(path, "".join(f"{v}\n" for v in versions))
        except OSError as e:
            get_logger().warning(f"Could not write version cache {path}: {e}")

    def read_fresh(self) -> tuple[VersionIdentifier, ...] | None:
        """Cached versions if the cache file is younger than the TTL."""
        path = self.cache_file
        if path is None:
            return None
        try:
            age = self.clock() - path.stat().st_mtime
        except OSError:
            return None
        if age >= self.ttl:
            vlog(f"Version cache expired ({age:.0f}s old)")
            return None

        versions = self._read(path)
        return versions or None

    def fallback(self) -> tuple[VersionIdentifier, ...]:
        """Last successful search result, or the built-in list."""
        persisted = self._read(self.fallback_file)
        if persisted:
            return persisted
        return parse_versions(DEFAULT_FALLBACK_VERSIONS)

    def get_available(self) -> tuple[VersionIdentifier, ...]:
        """
        Installable versions, from cache when fresh.

        Never waits longer than the configured timeout and never raises
        because of the search or of persistence problems.
        """
        cached = self.read_fresh()
        if cached is not None:
            vlog("Using cached available versions")
            return cached
        return self._refresh()

    def _start_fetch(self) -> tuple[Future, bool]:
        """Return the in-flight fetch, starting one if none is running."""
        with self._lock:
            if self._inflight is not None:
                return self._inflight, False

            cancel = threading.Event()
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="phpswitch-search")
            future = executor.submit(self.fetcher, cancel)
            # Do not wait for the worker; a cancelled search finishes on its own
            executor.shutdown(wait=False)
            self._inflight = future
            self._cancel = cancel
            return future, True

    def _refresh(self) -> tuple[VersionIdentifier, ...]:
        logger = get_logger()
        future, owner = self._start_fetch()

        live = False
        try:
            try:
                versions = parse_versions(future.result(timeout=self.timeout))
                live = bool(versions)
                if not live:
                    logger.warning("Version search returned nothing, using fallback list")
            except FutureTimeoutError:
                logger.warning(f"Version search did not finish within {self.timeout}s, using fallback list")
                with self._lock:
                    if self._inflight is future and self._cancel is not None:
                        self._cancel.set()
            except Exception as e:
                logger.warning(f"Version search failed ({e}), using fallback list")

            if not live:
                versions = self.fallback()

            # Written before the in-flight slot is released so late callers find it
            if owner:
                self._write(self.cache_file, versions)
                if live:
                    self._write(self.fallback_file, versions)
        finally:
            with self._lock:
                if owner and self._inflight is future:
                    self._inflight = None
                    self._cancel = None
        return versions

    def invalidate(self) -> bool:
        """
        Delete the cache file.

        Returns:
            True if a cache file was removed
        """
        path = self.cache_file
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            get_logger().warning(f"Could not delete version cache {path}: {e}")
            return False
        vlog(f"Version cache cleared: {path}")
        return True

    def force_refresh(self) -> tuple[VersionIdentifier, ...]:
        """Drop the cache and search again (or fall back)."""
        self.invalidate()
        return self._refresh()

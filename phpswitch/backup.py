"""
Startup file backups.

A snapshot is taken before every mutating patch and old snapshots are pruned
to the configured retention count, oldest first.
"""

from __future__ import annotations

import datetime
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .common import validate_path, vlog
from .config import Config
from .logging_config import get_logger

BACKUP_INFIX = ".bak."
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S%f"
BACKUP_MODE = 0o600


@dataclass(frozen=True)
class BackupSnapshot:
    """A copy of a startup file taken before mutation."""
    source: Path
    path: Path
    created_at: datetime.datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "source": str(self.source),
            "path": str(self.path),
            "created_at": self.created_at.isoformat(),
        }


class BackupRotator:
    """
    Snapshot startup files and prune old snapshots.

    Args:
        config: Configuration (backup_enabled, max_backups)
        home: Home directory backups must stay inside (defaults to ~)
        clock: Returns the current datetime (injectable for tests)
    """

    def __init__(self, config: Config, home: Path | None = None, clock=datetime.datetime.now):
        self.config = config
        self.home = home or Path.home()
        self.clock = clock

    def backup_path(self, source: Path, when: datetime.datetime) -> Path:
        return source.with_name(f"{source.name}{BACKUP_INFIX}{when.strftime(TIMESTAMP_FORMAT)}")

    def snapshot(self, source: Path) -> BackupSnapshot | None:
        """
        Copy source next to itself with a sortable timestamp suffix.

        Returns:
            BackupSnapshot, or None when backups are disabled, the source does
            not exist or the destination failed validation
        """
        if not self.config.backup_enabled:
            vlog("Backups disabled, skipping snapshot")
            return None

        if not source.exists():
            vlog(f"Nothing to back up: {source} does not exist")
            return None

        logger = get_logger()
        created_at = self.clock()
        destination = self.backup_path(source, created_at)
        # Two snapshots within the same microsecond would collide
        while destination.exists():
            created_at += datetime.timedelta(microseconds=1)
            destination = self.backup_path(source, created_at)

        if not validate_path(destination, home=self.home):
            logger.error(f"Refusing to write backup outside the home directory: {destination}")
            return None

        shutil.copyfile(source, destination)
        try:
            os.chmod(destination, BACKUP_MODE)
        except OSError as e:
            logger.warning(f"Could not restrict permissions on {destination}: {e}")

        vlog(f"Backup created: {destination}")
        self.prune(source)
        return BackupSnapshot(source=source, path=destination, created_at=created_at)

    def list_backups(self, source: Path) -> list[Path]:
        """Existing snapshots of source, oldest first (mtime, then name)."""
        prefix = f"{source.name}{BACKUP_INFIX}"
        directory = source.parent
        if not directory.is_dir():
            return []

        backups = [p for p in directory.iterdir() if p.name.startswith(prefix) and p.is_file()]
        return sorted(backups, key=lambda p: (p.stat().st_mtime, p.name))

    def prune(self, source: Path, max_count: int | None = None) -> list[Path]:
        """
        Delete all but the newest max_count snapshots of source.

        Args:
            source: Startup file whose snapshots are pruned
            max_count: Snapshots to keep (defaults to config.max_backups)

        Returns:
            Deleted snapshot paths
        """
        keep = self.config.max_backups if max_count is None else max_count
        backups = self.list_backups(source)
        excess = backups[:-keep] if keep > 0 else backups

        deleted = []
        for path in excess:
            try:
                path.unlink()
                deleted.append(path)
            except OSError as e:
                get_logger().warning(f"Could not delete old backup {path}: {e}")

        if deleted:
            vlog(f"Pruned {len(deleted)} old backup(s) of {source}")
        return deleted

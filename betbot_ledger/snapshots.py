"""Snapshot (backup) rotation for the ledger store.

Copies are taken with SQLite's online backup API from a read-only connection,
which yields a consistent image even while a WAL writer is active; the live
file is never copied byte-for-byte. Only the newest ``retention`` snapshots
(by modification time) are kept.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import SnapshotError
from .utils import file_timestamp

if TYPE_CHECKING:
    from .config import SnapshotConfig


class SnapshotManager:
    """Creates and prunes point-in-time copies of the store."""

    def __init__(self, config: SnapshotConfig, db_path: str, logger: logging.Logger) -> None:
        self._config = config
        self._db_path = Path(db_path)
        self._dir = Path(config.directory)
        self._logger = logger

    @property
    def directory(self) -> Path:
        return self._dir

    def create(self) -> Path:
        """Write a new snapshot, then prune. Returns the snapshot path."""
        if not self._db_path.exists():
            raise SnapshotError(f"Database file not found: {self._db_path}")

        if not self._dir.exists():
            self._dir.mkdir(parents=True, exist_ok=True)
            self._logger.info("Created backup directory: %s", self._dir)

        target = self._dir / f"{self._config.prefix}-{file_timestamp()}.db"
        try:
            src = sqlite3.connect(f"file:{self._db_path.resolve()}?mode=ro", uri=True)
            try:
                dst = sqlite3.connect(target)
                try:
                    src.backup(dst)
                finally:
                    dst.close()
            finally:
                src.close()
        except sqlite3.Error as e:
            target.unlink(missing_ok=True)
            raise SnapshotError(f"Backup failed: {e}") from e

        self._logger.info("Database backup created: %s", target)
        self.prune()
        return target

    def list_snapshots(self) -> list[Path]:
        """Snapshot files, newest first."""
        if not self._dir.exists():
            return []
        # Exactly the names create() writes
        pattern = f"{self._config.prefix}-????-??-??T??-??-??-??????Z.db"
        files = [p for p in self._dir.glob(pattern) if p.is_file()]
        return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)

    def prune(self) -> list[Path]:
        """Delete all but the ``retention`` newest snapshots. Returns deleted paths."""
        stale = self.list_snapshots()[self._config.retention:]
        for path in stale:
            path.unlink()
            self._logger.info("Deleted old backup: %s", path)
        return stale

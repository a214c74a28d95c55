"""On-disk content tree: current/, staging/, cache/, temp/ and rotated backups."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..errors import GeneralError

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup-"


@dataclass(frozen=True)
class ContentLayout:
    root: Path

    @property
    def current(self) -> Path:
        return self.root / "current"

    @property
    def staging(self) -> Path:
        return self.root / "staging"

    @property
    def cache(self) -> Path:
        return self.root / "cache"

    @property
    def temp(self) -> Path:
        return self.root / "temp"

    def ensure(self) -> None:
        """Create every directory of the tree that is missing."""
        for path in (self.root, self.current, self.staging, self.cache, self.temp):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise GeneralError(f"Failed to create directory {path}: {e}") from e

    def restore_missing_current(self) -> Path | None:
        """Move the newest backup back to ``current/`` if a crash left it absent."""
        if self.current.exists():
            return None
        backups = self.backups()
        if not backups:
            return None
        newest = backups[-1]
        logger.warning(
            "Content directory %s missing, restoring newest backup %s", self.current, newest.name,
        )
        try:
            newest.rename(self.current)
        except OSError as e:
            raise GeneralError(f"Failed to restore backup {newest} to {self.current}: {e}") from e
        return newest

    def reset_staging(self) -> None:
        """Discard whatever is in staging and leave an empty directory."""
        if self.staging.exists():
            shutil.rmtree(self.staging)
        self.staging.mkdir(parents=True, exist_ok=True)

    def clear_temp(self) -> None:
        if self.temp.exists():
            shutil.rmtree(self.temp, ignore_errors=True)

    def backups(self) -> list[Path]:
        """Backup trees, oldest first (names sort by timestamp)."""
        if not self.root.is_dir():
            return []
        return sorted(
            (p for p in self.root.iterdir() if p.is_dir() and p.name.startswith(BACKUP_PREFIX)),
            key=lambda p: p.name,
        )

    def prune_backups(self, keep: int) -> list[Path]:
        """Delete all but the newest ``keep`` backups. Returns what was removed."""
        backups = self.backups()
        doomed = backups[:-keep] if keep > 0 else backups
        for path in doomed:
            logger.debug("Removing old backup: %s", path.name)
            shutil.rmtree(path, ignore_errors=True)
        return doomed

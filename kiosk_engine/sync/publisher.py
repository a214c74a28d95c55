"""Atomic publisher — swaps staging into place with two directory renames.

``current/`` is renamed to a timestamped backup, then ``staging/`` is
renamed to ``current/``. A rename never copies, so the window in which
``current/`` is absent is as small as the filesystem allows. If the second
rename fails the backup is moved back.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from ..errors import ContentValidationError, GeneralError
from .layout import BACKUP_PREFIX, ContentLayout
from .manifest import MANIFEST_NAME, parse_manifest

logger = logging.getLogger(__name__)

BACKUP_TIME_FORMAT = "%Y%m%d-%H%M%S"


class AtomicPublisher:
    """Publishes a verified staging tree as the new ``current/``."""

    def __init__(
        self,
        layout: ContentLayout,
        keep_backups: int = 5,
        rename: Callable[[Path, Path], None] = os.rename,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.layout = layout
        self.keep_backups = keep_backups
        self._rename = rename
        self._now = now

    def verify_staging(self) -> None:
        """Manifest present in staging and every listed file physically there."""
        logger.info("Validating staging directory...")
        manifest_file = self.layout.staging / MANIFEST_NAME
        if not manifest_file.is_file():
            raise ContentValidationError("Manifest not found in staging directory")

        manifest = parse_manifest(manifest_file.read_text(encoding="utf-8"))
        for entry in manifest.files:
            if not (self.layout.staging / entry.relative_path).is_file():
                raise ContentValidationError(
                    f"Required file missing from staging: {entry.relative_path}"
                )
        logger.info("Staging directory validation passed")

    def _backup_path(self) -> Path:
        base = f"{BACKUP_PREFIX}{self._now().strftime(BACKUP_TIME_FORMAT)}"
        candidate = self.layout.root / base
        suffix = 1
        while candidate.exists():
            candidate = self.layout.root / f"{base}-{suffix}"
            suffix += 1
        return candidate

    def publish(self) -> Path | None:
        """Swap staging into current. Returns the backup created, if any."""
        self.verify_staging()
        logger.info("Performing atomic swap from staging to current...")

        backup: Path | None = None
        if self.layout.current.exists():
            backup = self._backup_path()
            logger.debug("Creating backup: %s", backup.name)
            try:
                self._rename(self.layout.current, backup)
            except OSError as e:
                raise GeneralError(f"Failed to create backup of current directory: {e}") from e

        try:
            self._rename(self.layout.staging, self.layout.current)
        except OSError as e:
            self._restore(backup)
            raise GeneralError(f"Failed to swap staging to current: {e}") from e
        except BaseException:
            # Interrupted between the renames: put the previous tree back.
            self._restore(backup)
            raise

        removed = self.layout.prune_backups(self.keep_backups)
        if removed:
            logger.debug("Pruned %d old backups", len(removed))
        self.layout.reset_staging()
        logger.info("Atomic swap completed successfully")
        return backup

    def _restore(self, backup: Path | None) -> None:
        if backup is None:
            return
        if self.layout.current.exists():
            # The swap itself completed; the new tree is live.
            return
        logger.error("Swap failed, attempting to restore backup %s", backup.name)
        try:
            self._rename(backup, self.layout.current)
        except OSError as e:
            logger.critical(
                "Failed to restore backup %s to %s: %s. Manual intervention required.",
                backup, self.layout.current, e,
            )
        else:
            logger.error("Previous content restored from %s", backup.name)

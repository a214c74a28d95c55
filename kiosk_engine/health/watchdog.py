"""Watchdog feeder — writes a keepalive to the watchdog character device."""

from __future__ import annotations

import logging
import stat
from pathlib import Path

logger = logging.getLogger(__name__)

KEEPALIVE = b"w"


class WatchdogFeeder:
    def __init__(self, device: Path, skip: bool = False, dry_run: bool = False) -> None:
        self.device = device
        self.skip = skip
        self.dry_run = dry_run

    def available(self) -> bool:
        try:
            return stat.S_ISCHR(self.device.stat().st_mode)
        except OSError:
            return False

    def feed(self) -> bool:
        """Returns True when a keepalive was written (or would be, in dry-run)."""
        if self.skip:
            logger.debug("Watchdog feeding skipped")
            return False
        if not self.available():
            logger.info("Hardware watchdog device not available: %s", self.device)
            return False
        if self.dry_run:
            logger.info("[DRY RUN] Would feed hardware watchdog")
            return True
        try:
            with self.device.open("wb", buffering=0) as fh:
                fh.write(KEEPALIVE)
        except OSError as e:
            logger.warning("Failed to feed hardware watchdog: %s", e)
            return False
        logger.info("Hardware watchdog fed successfully")
        return True

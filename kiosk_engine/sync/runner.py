"""Content sync run — lock, fetch manifest, stage, verify, publish, report.

Any exception aborts the run before publish; staging and temp are wiped on
the way out so the next invocation never mistakes a half-built tree for
a valid one.
"""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ..config import SyncSettings
from ..errors import ConfigError, NetworkError
from ..infra.lock import PidLock
from .downloader import Downloader
from .layout import ContentLayout
from .manifest import MANIFEST_NAME, Manifest, fetch_manifest, load_manifest
from .publisher import AtomicPublisher
from .staging import StagingValidator

logger = logging.getLogger(__name__)


def human_size(num_bytes: int) -> str:
    if num_bytes > 1024**3:
        return f"{num_bytes / 1024**3:.1f} GB"
    if num_bytes > 1024**2:
        return f"{num_bytes / 1024**2:.1f} MB"
    if num_bytes > 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes} bytes"


@dataclass
class SyncReport:
    """Outcome of one content-sync run."""

    version: str = ""
    files: int = 0
    downloaded: list[str] = field(default_factory=list)
    reused: list[str] = field(default_factory=list)
    total_bytes: int = 0
    published: bool = False
    up_to_date: bool = False
    dry_run: bool = False
    backup: Path | None = None

    @property
    def total_size(self) -> str:
        return human_size(self.total_bytes)


def check_connectivity(url: str) -> None:
    """Resolve the manifest host before doing anything expensive."""
    host = urlparse(url).hostname
    if not host:
        raise ConfigError(f"Invalid manifest URL: {url}")
    try:
        socket.getaddrinfo(host, None)
    except socket.gaierror as e:
        raise NetworkError(f"DNS resolution failed for host: {host} ({e})", url=url) from e
    logger.debug("Network connectivity verified for host: %s", host)


class ContentSync:
    """One content-sync invocation bound to a frozen :class:`SyncSettings`."""

    def __init__(
        self,
        settings: SyncSettings,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.layout = ContentLayout(settings.content_root)
        self._transport = transport
        self._sleep = sleep

    def run(self) -> SyncReport:
        logger.info("Starting content synchronization")
        with PidLock(self.settings.lock_file):
            self.layout.restore_missing_current()
            self.layout.ensure()
            # Leftovers from an interrupted run are never trusted.
            self.layout.reset_staging()
            try:
                report = self._sync()
            except BaseException:
                self._discard_staging()
                raise
            finally:
                self.layout.clear_temp()
        logger.info("Content synchronization completed successfully")
        return report

    def _discard_staging(self) -> None:
        try:
            self.layout.reset_staging()
        except OSError as e:
            logger.error("Failed to discard staging directory: %s", e)

    def _sync(self) -> SyncReport:
        s = self.settings
        if s.check_connectivity and s.manifest_url:
            check_connectivity(s.manifest_url)

        # The manifest is always fetched; dry-run only affects content files.
        manifest_downloader = Downloader.from_settings(
            s, dry_run=False, transport=self._transport, sleep=self._sleep,
        )
        manifest, manifest_file = fetch_manifest(s.manifest_url, manifest_downloader, self.layout.temp)

        file_downloader = Downloader.from_settings(s, transport=self._transport, sleep=self._sleep)
        stager = StagingValidator(
            self.layout, file_downloader, force=s.force, min_video_bytes=s.video_min_bytes,
        )
        report = SyncReport(version=manifest.version, files=len(manifest.files), dry_run=s.dry_run)

        if self._is_up_to_date(manifest, stager):
            logger.info("Content already up to date (version %s), nothing to publish", manifest.version)
            report.up_to_date = True
            report.reused = [e.relative_path for e in manifest.files]
            report.total_bytes = self._tree_size(manifest)
            return report

        stats = stager.stage(manifest, manifest_file)
        report.downloaded = stats.downloaded
        report.reused = stats.reused

        if s.dry_run:
            logger.info("[DRY RUN] Would publish manifest version %s", manifest.version)
            self.layout.reset_staging()
            return report

        publisher = AtomicPublisher(self.layout, keep_backups=s.backup_retention)
        report.backup = publisher.publish()
        report.published = True
        report.total_bytes = self._tree_size(manifest)

        logger.info(
            "Manifest version %s: %d files synchronized, %s total",
            manifest.version, report.files, report.total_size,
        )
        return report

    def _is_up_to_date(self, manifest: Manifest, stager: StagingValidator) -> bool:
        if self.settings.force:
            return False
        current = load_manifest(self.layout.current / MANIFEST_NAME)
        if current is None or current.raw != manifest.raw:
            return False
        return all(stager.is_cached(entry) for entry in manifest.files)

    def _tree_size(self, manifest: Manifest) -> int:
        total = 0
        for entry in manifest.files:
            path = self.layout.current / entry.relative_path
            if path.is_file():
                total += path.stat().st_size
        return total


def run_sync(
    settings: SyncSettings,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SyncReport:
    return ContentSync(settings, transport=transport, sleep=sleep).run()

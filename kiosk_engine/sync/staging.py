"""Staging validator — assembles the next content version under ``staging/``.

Files whose declared checksum already matches ``current/`` are copied
locally instead of downloaded. Everything fetched is validated by kind.
Any failure raises before the publisher ever runs, so a bad file can
never reach ``current/``.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import ContentValidationError, GeneralError
from .downloader import Downloader
from .layout import ContentLayout
from .manifest import MANIFEST_NAME, FileEntry, FileKind, Manifest

logger = logging.getLogger(__name__)

# Leading bytes of JPEG, PNG, GIF, BMP and RIFF (WebP) files.
IMAGE_SIGNATURES: tuple[bytes, ...] = (
    b"\xff\xd8\xff",
    b"\x89PNG",
    b"GIF8",
    b"BM",
    b"RIFF",
)


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for block in iter(lambda: fh.read(1024 * 1024), b""):
            digest.update(block)
    return digest.hexdigest()


@dataclass
class StagingStats:
    """Per-run counters for the sync report."""

    downloaded: list[str] = field(default_factory=list)
    reused: list[str] = field(default_factory=list)


# ── Kind-specific validation ─────────────────────────────────────────────────


def validate_generic(path: Path, entry: FileEntry, min_video_bytes: int) -> None:
    """Generic files need nothing beyond presence and checksum."""


def validate_image(path: Path, entry: FileEntry, min_video_bytes: int) -> None:
    """Soft header sniff: an unknown header is only a warning."""
    with path.open("rb") as fh:
        header = fh.read(16)
    if not header.startswith(IMAGE_SIGNATURES):
        logger.warning("File may not be a valid image: %s", entry.relative_path)


def validate_video(path: Path, entry: FileEntry, min_video_bytes: int) -> None:
    size = path.stat().st_size
    if size < min_video_bytes:
        raise ContentValidationError(
            f"Video file appears to be too small: {entry.relative_path} ({size} bytes)"
        )


KIND_VALIDATORS: dict[FileKind, Callable[[Path, FileEntry, int], None]] = {
    FileKind.GENERIC: validate_generic,
    FileKind.IMAGE: validate_image,
    FileKind.VIDEO: validate_video,
}


def validate_file(path: Path, entry: FileEntry, min_video_bytes: int = 1024) -> None:
    """Validate a freshly fetched file. Raises ContentValidationError."""
    if not path.is_file():
        raise ContentValidationError(f"File does not exist: {entry.relative_path}")
    if path.stat().st_size == 0:
        raise ContentValidationError(f"File is empty: {entry.relative_path}")

    if entry.checksum:
        actual = sha256_file(path)
        if actual != entry.checksum:
            raise ContentValidationError(
                f"Checksum mismatch for {entry.kind.value}: {entry.relative_path} "
                f"(expected {entry.checksum}, got {actual})"
            )
        logger.debug("Checksum validated for %s: %s", entry.kind.value, entry.relative_path)

    KIND_VALIDATORS[entry.kind](path, entry, min_video_bytes)


# ── Stager ───────────────────────────────────────────────────────────────────


class StagingValidator:
    """Builds ``staging/`` from a manifest, reusing unchanged files from ``current/``."""

    def __init__(
        self,
        layout: ContentLayout,
        downloader: Downloader,
        force: bool = False,
        min_video_bytes: int = 1024,
    ) -> None:
        self.layout = layout
        self.downloader = downloader
        self.force = force
        self.min_video_bytes = min_video_bytes

    def is_cached(self, entry: FileEntry) -> bool:
        """True when ``current/`` already holds this entry with a matching checksum."""
        if self.force or not entry.checksum:
            return False
        current_file = self.layout.current / entry.relative_path
        if not current_file.is_file():
            return False
        try:
            return sha256_file(current_file) == entry.checksum
        except OSError as e:
            logger.warning("Unable to checksum %s: %s", current_file, e)
            return False

    def stage(self, manifest: Manifest, manifest_file: Path) -> StagingStats:
        """Populate staging for every entry, then add the manifest itself."""
        stats = StagingStats()
        total = len(manifest.files)
        if total == 0:
            logger.warning("No files listed in manifest")
        else:
            logger.info("Processing %d files from manifest...", total)

        for index, entry in enumerate(manifest.files, start=1):
            staged = self.layout.staging / entry.relative_path
            staged.parent.mkdir(parents=True, exist_ok=True)

            if self.is_cached(entry) and self._copy_from_current(entry, staged):
                stats.reused.append(entry.relative_path)
                continue

            logger.info("Downloading file (%d/%d): %s", index, total, entry.relative_path)
            self.downloader.download(entry.url, staged, entry.kind)
            if self.downloader.dry_run:
                stats.downloaded.append(entry.relative_path)
                continue

            try:
                validate_file(staged, entry, self.min_video_bytes)
            except ContentValidationError:
                staged.unlink(missing_ok=True)
                logger.error("Validation failed for file: %s", entry.relative_path)
                raise
            stats.downloaded.append(entry.relative_path)

        logger.info(
            "File processing summary: %d downloaded, %d reused (up to date)",
            len(stats.downloaded), len(stats.reused),
        )

        if not self.downloader.dry_run:
            try:
                shutil.copyfile(manifest_file, self.layout.staging / MANIFEST_NAME)
            except OSError as e:
                raise GeneralError(f"Failed to copy manifest to staging: {e}") from e
        return stats

    def _copy_from_current(self, entry: FileEntry, staged: Path) -> bool:
        try:
            shutil.copy2(self.layout.current / entry.relative_path, staged)
        except OSError as e:
            logger.warning("Failed to copy current file to staging, downloading instead: %s (%s)",
                           entry.relative_path, e)
            return False
        logger.debug("File up to date, copied to staging: %s", entry.relative_path)
        return True

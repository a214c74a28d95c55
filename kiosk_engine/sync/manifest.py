"""Manifest model and fetcher.

Wire format::

    {"version": "2024.06.01",
     "files": [{"url": "https://cdn/x.mp4", "filename": "media/x.mp4",
                "checksum": "<sha256 hex>", "type": "video"}]}
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from ..errors import ConfigError, ContentValidationError

if TYPE_CHECKING:
    from .downloader import Downloader

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


class FileKind(str, Enum):
    GENERIC = "generic"
    IMAGE = "image"
    VIDEO = "video"

    @property
    def is_media(self) -> bool:
        """Media kinds get bandwidth limiting and resumable downloads."""
        return self in (FileKind.IMAGE, FileKind.VIDEO)

    @classmethod
    def from_type(cls, value: str | None) -> "FileKind":
        """Map the manifest ``type`` field; unknown types validate as generic."""
        normalized = (value or "file").strip().lower()
        if normalized == "image":
            return cls.IMAGE
        if normalized in ("video", "media"):
            return cls.VIDEO
        return cls.GENERIC


class FileEntry(BaseModel):
    """A single file listed in the manifest."""

    model_config = ConfigDict(frozen=True)

    url: str
    relative_path: str
    checksum: str | None = None
    kind: FileKind = FileKind.GENERIC


class Manifest(BaseModel):
    """A fetched, validated manifest. Immutable."""

    model_config = ConfigDict(frozen=True)

    version: str
    files: tuple[FileEntry, ...] = ()
    raw: dict[str, Any] = {}


# ── Parsing ──────────────────────────────────────────────────────────────────


def _safe_relative_path(filename: str, index: int) -> str:
    path = PurePosixPath(filename)
    if not filename or path.is_absolute() or ".." in path.parts or filename.startswith("\\"):
        raise ContentValidationError(
            f"Unsafe filename in manifest at index {index}: {filename!r}"
        )
    if path.name == MANIFEST_NAME and len(path.parts) == 1:
        raise ContentValidationError(f"Filename {filename!r} collides with the manifest itself")
    return str(path)


def parse_manifest(text: str) -> Manifest:
    """Parse manifest JSON text. Raises ContentValidationError when malformed."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ContentValidationError(f"Invalid JSON in manifest: {e}") from e

    if not isinstance(data, dict):
        raise ContentValidationError("Manifest must be a JSON object")
    for required in ("version", "files"):
        if data.get(required) is None:
            raise ContentValidationError(f"Missing required field in manifest: {required}")
    if not isinstance(data["files"], list):
        raise ContentValidationError("Manifest field 'files' must be a list")

    entries: list[FileEntry] = []
    seen: set[str] = set()
    for i, item in enumerate(data["files"]):
        if not isinstance(item, dict) or not item.get("url") or not item.get("filename"):
            raise ContentValidationError(f"Invalid file entry in manifest at index {i}")
        rel = _safe_relative_path(str(item["filename"]), i)
        if rel in seen:
            raise ContentValidationError(f"Duplicate filename in manifest: {rel}")
        seen.add(rel)
        checksum = item.get("checksum") or None
        entries.append(FileEntry(
            url=str(item["url"]),
            relative_path=rel,
            checksum=str(checksum).strip().lower() if checksum else None,
            kind=FileKind.from_type(item.get("type")),
        ))

    return Manifest(version=str(data["version"]), files=tuple(entries), raw=data)


def load_manifest(path: Path) -> Manifest | None:
    """Read a manifest from disk; None when absent or unreadable."""
    try:
        return parse_manifest(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ContentValidationError) as e:
        logger.warning("Ignoring unreadable manifest %s: %s", path, e)
        return None


def fetch_manifest(manifest_url: str, downloader: Downloader, temp_dir: Path) -> tuple[Manifest, Path]:
    """Download and validate the manifest. Returns the model and its temp file."""
    if not manifest_url:
        raise ConfigError(
            "Manifest URL not configured. Use --manifest-url or set manifest_url "
            "in the configuration file"
        )

    logger.info("Downloading manifest from: %s", manifest_url)
    temp_dir.mkdir(parents=True, exist_ok=True)
    manifest_file = temp_dir / MANIFEST_NAME
    downloader.download(manifest_url, manifest_file, FileKind.GENERIC)

    try:
        text = manifest_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ContentValidationError(f"Unable to read downloaded manifest: {e}") from e

    manifest = parse_manifest(text)
    logger.info("Manifest version %s lists %d files", manifest.version, len(manifest.files))
    return manifest, manifest_file

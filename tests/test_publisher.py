"""Tests for the atomic staging-to-current swap."""

from __future__ import annotations

import json
import logging
import os
import signal
from datetime import datetime
from pathlib import Path

import pytest

from kiosk_engine.errors import ContentValidationError, GeneralError, InterruptedRun
from kiosk_engine.sync.layout import ContentLayout
from kiosk_engine.sync.manifest import MANIFEST_NAME
from kiosk_engine.sync.publisher import AtomicPublisher

NOW = datetime(2024, 6, 1, 12, 30, 0)


@pytest.fixture
def layout(tmp_path: Path) -> ContentLayout:
    layout = ContentLayout(tmp_path / "content")
    layout.ensure()
    return layout


def _fill_staging(layout: ContentLayout, version: str = "v2", files: dict[str, bytes] | None = None) -> None:
    files = files if files is not None else {"a.txt": b"alpha"}
    for name, body in files.items():
        path = layout.staging / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)
    manifest = {"version": version, "files": [{"url": f"u/{n}", "filename": n} for n in files]}
    (layout.staging / MANIFEST_NAME).write_text(json.dumps(manifest))


class TestVerifyStaging:
    def test_missing_manifest(self, layout: ContentLayout) -> None:
        with pytest.raises(ContentValidationError, match="Manifest not found"):
            AtomicPublisher(layout).verify_staging()

    def test_missing_file(self, layout: ContentLayout) -> None:
        _fill_staging(layout)
        (layout.staging / "a.txt").unlink()
        with pytest.raises(ContentValidationError, match="a.txt"):
            AtomicPublisher(layout).verify_staging()


class TestPublish:
    def test_swap_creates_backup(self, layout: ContentLayout) -> None:
        (layout.current / "old.txt").write_bytes(b"old")
        _fill_staging(layout)
        backup = AtomicPublisher(layout, now=lambda: NOW).publish()

        assert backup == layout.root / "backup-20240601-123000"
        assert (backup / "old.txt").read_bytes() == b"old"
        assert (layout.current / "a.txt").read_bytes() == b"alpha"
        assert layout.staging.is_dir()
        assert list(layout.staging.iterdir()) == []

    def test_backup_name_collision(self, layout: ContentLayout) -> None:
        (layout.root / "backup-20240601-123000").mkdir()
        _fill_staging(layout)
        backup = AtomicPublisher(layout, now=lambda: NOW).publish()
        assert backup.name == "backup-20240601-123000-1"

    def test_no_current_means_no_backup(self, layout: ContentLayout) -> None:
        layout.current.rmdir()
        _fill_staging(layout)
        assert AtomicPublisher(layout).publish() is None
        assert (layout.current / MANIFEST_NAME).is_file()

    def test_prunes_old_backups(self, layout: ContentLayout) -> None:
        for day in range(1, 8):
            (layout.root / f"backup-202401{day:02d}-000000").mkdir()
        _fill_staging(layout)
        AtomicPublisher(layout, keep_backups=5, now=lambda: NOW).publish()

        names = [p.name for p in layout.backups()]
        assert len(names) == 5
        assert names[-1] == "backup-20240601-123000"
        assert "backup-20240101-000000" not in names

    def test_failed_swap_restores_current(self, layout: ContentLayout) -> None:
        (layout.current / "old.txt").write_bytes(b"old")
        _fill_staging(layout)

        def rename(src: Path, dst: Path) -> None:
            if src == layout.staging:
                raise OSError("device busy")
            os.rename(src, dst)

        with pytest.raises(GeneralError, match="swap"):
            AtomicPublisher(layout, rename=rename, now=lambda: NOW).publish()
        assert (layout.current / "old.txt").read_bytes() == b"old"
        assert layout.backups() == []

    def test_interrupt_between_renames_restores_current(self, layout: ContentLayout) -> None:
        (layout.current / "old.txt").write_bytes(b"old")
        _fill_staging(layout)

        def rename(src: Path, dst: Path) -> None:
            if src == layout.staging:
                raise InterruptedRun(signal.SIGTERM)
            os.rename(src, dst)

        with pytest.raises(InterruptedRun):
            AtomicPublisher(layout, rename=rename, now=lambda: NOW).publish()
        assert (layout.current / "old.txt").read_bytes() == b"old"
        assert layout.backups() == []

    def test_interrupt_after_swap_keeps_new_tree(self, layout: ContentLayout) -> None:
        (layout.current / "old.txt").write_bytes(b"old")
        _fill_staging(layout)

        def rename(src: Path, dst: Path) -> None:
            os.rename(src, dst)
            if src == layout.staging:
                raise InterruptedRun(signal.SIGTERM)

        with pytest.raises(InterruptedRun):
            AtomicPublisher(layout, rename=rename, now=lambda: NOW).publish()
        assert (layout.current / "a.txt").read_bytes() == b"alpha"
        assert len(layout.backups()) == 1

    def test_failed_restore_logs_critical(
        self, layout: ContentLayout, caplog: pytest.LogCaptureFixture
    ) -> None:
        _fill_staging(layout)
        calls: list[tuple[Path, Path]] = []

        def rename(src: Path, dst: Path) -> None:
            calls.append((src, dst))
            if len(calls) == 1:
                os.rename(src, dst)
            else:
                raise OSError("read-only filesystem")

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(GeneralError):
                AtomicPublisher(layout, rename=rename, now=lambda: NOW).publish()
        assert "Manual intervention required" in caplog.text

    def test_unverified_staging_never_published(self, layout: ContentLayout) -> None:
        (layout.current / "old.txt").write_bytes(b"old")
        with pytest.raises(ContentValidationError):
            AtomicPublisher(layout).publish()
        assert (layout.current / "old.txt").exists()
        assert layout.backups() == []

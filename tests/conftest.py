"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from kiosk_engine.config import HealthSettings, SyncSettings

from .helpers import MANIFEST_URL, FakeCDN, FakeSupervisor


@pytest.fixture
def cdn() -> FakeCDN:
    return FakeCDN()


@pytest.fixture
def sync_settings(tmp_path: Path) -> SyncSettings:
    return SyncSettings(
        manifest_url=MANIFEST_URL,
        content_root=tmp_path / "content",
        lock_file=tmp_path / "run" / "content-sync.lock",
        log_dir=tmp_path / "log",
        state_dir=tmp_path / "state",
        check_connectivity=False,
    )


@pytest.fixture
def health_settings(tmp_path: Path) -> HealthSettings:
    (tmp_path / "log").mkdir()
    return HealthSettings(
        log_dir=tmp_path / "log",
        state_dir=tmp_path / "state",
        lock_file=tmp_path / "run" / "health-check.lock",
        content_root=tmp_path / "content",
        watchdog_device=tmp_path / "watchdog",
        drop_caches_path=tmp_path / "drop_caches",
        temp_dirs=[str(tmp_path / "tmp")],
        frontend_cache_dirs=[str(tmp_path / "browser-cache")],
        disk_paths=[str(tmp_path)],
    )


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor(running={"kiosk-app", "kiosk-display"})

"""Tests for settings loading, precedence and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from kiosk_engine.config import (
    HealthSettings,
    SyncSettings,
    load_health_settings,
    load_sync_settings,
    parse_rate,
)
from kiosk_engine.errors import ConfigError


class TestParseRate:
    def test_units(self) -> None:
        assert parse_rate("500K") == 500 * 1024
        assert parse_rate("1M") == 1024 * 1024
        assert parse_rate("2g") == 2 * 1024**3
        assert parse_rate("1000") == 1000

    def test_empty_means_unlimited(self) -> None:
        assert parse_rate("") is None

    def test_garbage(self) -> None:
        with pytest.raises(ValueError):
            parse_rate("fast")


class TestSyncSettings:
    def test_defaults(self) -> None:
        s = SyncSettings()
        assert s.max_retries == 3
        assert s.timeout == 300
        assert s.connect_timeout == 30
        assert s.backup_retention == 5
        assert s.bandwidth_bytes_per_second is None
        assert s.log_file == Path("/var/log/content-sync.log")

    def test_frozen(self) -> None:
        s = SyncSettings()
        with pytest.raises(ValidationError):
            s.max_retries = 9

    def test_invalid_values(self) -> None:
        with pytest.raises(ValidationError):
            SyncSettings(max_retries=-1)
        with pytest.raises(ValidationError):
            SyncSettings(timeout=0)
        with pytest.raises(ValidationError):
            SyncSettings(bandwidth_limit="lots")

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONTENT_SYNC_MAX_RETRIES", "7")
        assert SyncSettings().max_retries == 7


class TestLoadSettings:
    def test_yaml_then_cli_overrides(self, tmp_path: Path) -> None:
        cfg = tmp_path / "sync.yaml"
        cfg.write_text("manifest_url: https://a/manifest.json\nmax_retries: 5\ntimeout: 60\n")
        s = load_sync_settings(cfg, max_retries=1, timeout=None)
        assert s.manifest_url == "https://a/manifest.json"
        assert s.max_retries == 1  # CLI wins
        assert s.timeout == 60  # None override falls through to YAML

    def test_missing_explicit_config(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_sync_settings(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        cfg = tmp_path / "bad.yaml"
        cfg.write_text("max_retries: [unclosed\n")
        with pytest.raises(ConfigError):
            load_sync_settings(cfg)

    def test_non_mapping_yaml(self, tmp_path: Path) -> None:
        cfg = tmp_path / "list.yaml"
        cfg.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_sync_settings(cfg)

    def test_invalid_value_is_config_error(self) -> None:
        with pytest.raises(ConfigError):
            load_sync_settings(None, max_retries=-3)


class TestHealthSettings:
    def test_defaults(self) -> None:
        s = HealthSettings()
        assert s.memory_warning_percent == 80
        assert s.memory_critical_percent == 90
        assert s.app_response_timeout == 10
        assert s.disk_paths == ["/data", "/"]

    def test_cooldown_override(self) -> None:
        s = HealthSettings(recovery_cooldown_seconds=600, recovery_cooldowns={"restart_app": 60})
        assert s.cooldown_for("restart_app") == 60
        assert s.cooldown_for("cleanup_disk") == 600

    def test_thresholds_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError):
            HealthSettings(memory_warning_percent=95, memory_critical_percent=90)

    def test_unknown_service_manager(self) -> None:
        with pytest.raises(ConfigError):
            load_health_settings(None, service_manager="upstart")

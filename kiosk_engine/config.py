"""Engine configuration — loaded from YAML config file, environment and CLI flags.

Precedence (highest first): CLI flags, YAML config file, environment /
.env file, built-in defaults. Each invocation builds one frozen settings
value and hands it to every component.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SYNC_CONFIG = Path("/etc/kioskbook/content-sync.yaml")
DEFAULT_HEALTH_CONFIG = Path("/etc/kioskbook/health-check.yaml")

_RATE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?)B?\s*$", re.IGNORECASE)
_RATE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}


def parse_rate(value: str) -> int | None:
    """Convert a curl-style rate such as ``500K`` or ``1M`` to bytes/second."""
    if not value:
        return None
    match = _RATE_RE.match(value)
    if not match:
        raise ValueError(f"Invalid bandwidth limit: {value!r} (expected e.g. 500K, 1M)")
    amount = float(match.group(1)) * _RATE_UNITS[match.group(2).upper()]
    if amount <= 0:
        raise ValueError(f"Bandwidth limit must be positive: {value!r}")
    return int(amount)


# ── Content sync ─────────────────────────────────────────────────────────────


class SyncSettings(BaseSettings):
    """Settings for one content-sync invocation."""

    model_config = {
        "env_prefix": "CONTENT_SYNC_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    manifest_url: str = ""
    bandwidth_limit: str = ""  # e.g. "500K", "1M"; applies to media only
    max_retries: int = 3
    timeout: int = 300  # overall per-attempt max time (seconds)
    connect_timeout: float = 30.0
    user_agent: str = "KioskEngine-ContentSync/1.0"

    dry_run: bool = False
    force: bool = False
    verbose: bool = False
    quiet: bool = False
    check_connectivity: bool = True

    # Filesystem layout
    content_root: Path = Path("/data/content")
    lock_file: Path = Path("/var/run/content-sync.lock")
    log_dir: Path = Path("/var/log")
    log_file_name: str = "content-sync.log"
    state_dir: Path = Path("/var/lib/kioskbook")

    backup_retention: int = 5
    video_min_bytes: int = 1024
    spam_window_seconds: int = 300

    @field_validator("max_retries")
    @classmethod
    def _non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, v: int) -> int:
        if v < 1:
            raise ValueError("timeout must be >= 1 second")
        return v

    @field_validator("backup_retention")
    @classmethod
    def _keep_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("backup_retention must be >= 1")
        return v

    @field_validator("bandwidth_limit")
    @classmethod
    def _valid_rate(cls, v: str) -> str:
        parse_rate(v)
        return v.strip()

    @property
    def bandwidth_bytes_per_second(self) -> int | None:
        return parse_rate(self.bandwidth_limit)

    @property
    def log_file(self) -> Path:
        return self.log_dir / self.log_file_name


# ── Health engine ────────────────────────────────────────────────────────────


class HealthSettings(BaseSettings):
    """Settings for one health-engine invocation."""

    model_config = {
        "env_prefix": "HEALTH_CHECK_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    verbose: bool = False
    dry_run: bool = False
    force_restart: bool = False
    skip_watchdog: bool = False

    # Filesystem layout
    log_dir: Path = Path("/var/log")
    log_file_name: str = "health-check.log"
    state_dir: Path = Path("/var/lib/kioskbook")
    lock_file: Path = Path("/var/run/health-check.lock")
    content_root: Path = Path("/data/content")
    watchdog_device: Path = Path("/dev/watchdog")

    # Thresholds (percent used)
    memory_warning_percent: float = 80
    memory_critical_percent: float = 90
    disk_warning_percent: float = 80
    disk_critical_percent: float = 90
    disk_paths: list[str] = ["/data", "/"]

    # Supervised services and processes
    service_manager: str = "openrc"  # openrc | systemd
    app_service: str = "kiosk-app"
    display_service: str = "kiosk-display"
    app_process_pattern: str = r"node.*server\.js"
    display_process_pattern: str = r"chromium.*--kiosk"
    display: str = ":0"
    window_pattern: str = "chromium"
    display_timeout: float = 5.0
    app_health_url: str = "http://localhost:3000/health"
    app_health_expected_status: str = "healthy"
    app_response_timeout: float = 10.0
    service_command_timeout: float = 30.0
    stop_settle_seconds: float = 2.0
    start_settle_seconds: float = 5.0

    # Network probes
    dns_probe_host: str = "google.com"
    reachability_host: str = "8.8.8.8"
    reachability_port: int = 53
    network_timeout: float = 5.0

    # Recovery
    recovery_cooldown_seconds: int = 900
    recovery_cooldowns: dict[str, int] = {}  # per-action overrides
    frontend_cache_dirs: list[str] = [
        "/home/kiosk/.cache/chromium",
        "/home/kiosk/.config/chromium/Default/Service Worker",
        "/tmp/.org.chromium.Chromium*",
    ]
    temp_dirs: list[str] = ["/tmp", "/var/tmp"]
    temp_max_age_days: float = 1
    drop_caches_path: Path = Path("/proc/sys/vm/drop_caches")
    disk_backup_keep: int = 3
    log_retention_days: float = 7
    rotated_log_retention_days: float = 3

    spam_window_seconds: int = 300
    spam_state_max_age_seconds: int = 86_400

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> "HealthSettings":
        for name in ("memory", "disk"):
            warn = getattr(self, f"{name}_warning_percent")
            crit = getattr(self, f"{name}_critical_percent")
            if not 0 < warn < crit <= 100:
                raise ValueError(
                    f"{name} thresholds must satisfy 0 < warning < critical <= 100 "
                    f"(got {warn}/{crit})"
                )
        if self.service_manager not in ("openrc", "systemd"):
            raise ValueError(f"Unknown service_manager: {self.service_manager!r}")
        return self

    @property
    def log_file(self) -> Path:
        return self.log_dir / self.log_file_name

    def cooldown_for(self, action: str) -> int:
        return self.recovery_cooldowns.get(action, self.recovery_cooldown_seconds)


# ── Loading ──────────────────────────────────────────────────────────────────

S = TypeVar("S", SyncSettings, HealthSettings)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load configuration file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def load_settings(
    cls: type[S],
    config_path: Path | str | None = None,
    default_path: Path | None = None,
    **overrides: Any,
) -> S:
    """Build a frozen settings value from config file + env + CLI overrides.

    An explicitly given ``config_path`` must exist; the default path is
    optional. ``None`` overrides are ignored so unset CLI flags fall through.
    """
    values: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
        values.update(_read_yaml(path))
        logger.debug("Loaded configuration from %s", path)
    elif default_path is not None and default_path.is_file():
        values.update(_read_yaml(default_path))
        logger.debug("Loaded configuration from %s", default_path)

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return cls(**values)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_sync_settings(config_path: Path | str | None = None, **overrides: Any) -> SyncSettings:
    return load_settings(SyncSettings, config_path, DEFAULT_SYNC_CONFIG, **overrides)


def load_health_settings(config_path: Path | str | None = None, **overrides: Any) -> HealthSettings:
    return load_settings(HealthSettings, config_path, DEFAULT_HEALTH_CONFIG, **overrides)

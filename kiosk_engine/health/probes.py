"""Health probes — memory, disk, network, app server, front-end process, display.

Each probe returns a HealthCheckResult. ``run_probe`` wraps every call so
an exception inside one probe becomes a CRITICAL result for that probe
alone and never stops the rest of the battery.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import psutil

from ..config import HealthSettings
from .models import HealthCheckResult, Severity
from .supervisor import ProcessSupervisor, find_processes

logger = logging.getLogger(__name__)


@dataclass
class ProbeContext:
    """Everything a probe may consult."""

    settings: HealthSettings
    supervisor: ProcessSupervisor
    http_transport: httpx.BaseTransport | None = None


def classify(percent: float, warning: float, critical: float) -> Severity:
    if percent >= critical:
        return Severity.CRITICAL
    if percent >= warning:
        return Severity.WARNING
    return Severity.OK


# ── Resource probes ──────────────────────────────────────────────────────────


def check_memory(ctx: ProbeContext) -> HealthCheckResult:
    """Memory used = total - available, as a percentage of total."""
    vm = psutil.virtual_memory()
    used = vm.total - vm.available
    percent = round(used * 100 / vm.total, 1) if vm.total else 0.0
    s = ctx.settings
    status = classify(percent, s.memory_warning_percent, s.memory_critical_percent)
    label = {Severity.OK: "Memory usage", Severity.WARNING: "High memory usage",
             Severity.CRITICAL: "Critical memory usage"}[status]
    return HealthCheckResult(
        check_name="memory", status=status,
        detail=f"{label}: {percent}% ({used // 1024}KB/{vm.total // 1024}KB)",
        metrics={"percent": percent, "used": used, "total": vm.total},
    )


def check_disk(ctx: ProbeContext) -> HealthCheckResult:
    """Worst usage across the content and root partitions."""
    s = ctx.settings
    worst = Severity.OK
    parts: list[str] = []
    metrics: dict[str, float] = {}
    for path in s.disk_paths:
        if not os.path.exists(path):
            logger.debug("Disk path %s does not exist, skipping", path)
            continue
        percent = psutil.disk_usage(path).percent
        metrics[path] = percent
        status = classify(percent, s.disk_warning_percent, s.disk_critical_percent)
        worst = max(worst, status)
        parts.append(f"{path} {percent}%")

    if not parts:
        return HealthCheckResult(
            check_name="disk", status=Severity.WARNING,
            detail="None of the configured disk paths exist",
        )
    prefix = {Severity.OK: "Disk usage", Severity.WARNING: "High disk usage",
              Severity.CRITICAL: "Critical disk usage"}[worst]
    return HealthCheckResult(
        check_name="disk", status=worst, detail=f"{prefix}: {', '.join(parts)}", metrics=metrics,
    )


# ── Network probe ────────────────────────────────────────────────────────────


def check_network(ctx: ProbeContext) -> HealthCheckResult:
    """Non-loopback interface up, DNS resolves, external host reachable."""
    s = ctx.settings
    up = sorted(
        name for name, st in psutil.net_if_stats().items()
        if st.isup and not name.startswith("lo")
    )
    if not up:
        return HealthCheckResult(
            check_name="network", status=Severity.CRITICAL,
            detail="No active network interfaces found",
        )

    previous_timeout = socket.getdefaulttimeout()
    try:
        socket.setdefaulttimeout(s.network_timeout)
        socket.getaddrinfo(s.dns_probe_host, None)
    except OSError as e:
        return HealthCheckResult(
            check_name="network", status=Severity.CRITICAL,
            detail=f"DNS resolution of {s.dns_probe_host} failed: {e}",
            metrics={"interfaces": up},
        )
    finally:
        socket.setdefaulttimeout(previous_timeout)

    t0 = time.perf_counter()
    try:
        sock = socket.create_connection(
            (s.reachability_host, s.reachability_port), timeout=s.network_timeout,
        )
        sock.close()
    except OSError as e:
        return HealthCheckResult(
            check_name="network", status=Severity.CRITICAL,
            detail=f"Internet connectivity test to {s.reachability_host}:{s.reachability_port} failed: {e}",
            metrics={"interfaces": up},
        )
    latency = round((time.perf_counter() - t0) * 1000, 1)

    return HealthCheckResult(
        check_name="network", status=Severity.OK,
        detail=f"Network OK ({', '.join(up)}; {latency}ms to {s.reachability_host})",
        metrics={"interfaces": up, "latency_ms": latency},
    )


# ── Application server probe ─────────────────────────────────────────────────


def check_app_server(ctx: ProbeContext) -> HealthCheckResult:
    s = ctx.settings
    if not ctx.supervisor.is_running(s.app_service):
        return HealthCheckResult(
            check_name="app_server", status=Severity.CRITICAL,
            detail=f"Service {s.app_service} is not running",
        )
    if not find_processes(s.app_process_pattern):
        return HealthCheckResult(
            check_name="app_server", status=Severity.CRITICAL,
            detail="Application server process not found",
        )

    t0 = time.perf_counter()
    try:
        with httpx.Client(timeout=s.app_response_timeout, transport=ctx.http_transport) as client:
            resp = client.get(s.app_health_url)
    except httpx.HTTPError as e:
        return HealthCheckResult(
            check_name="app_server", status=Severity.CRITICAL,
            detail=f"Application server not responding: {type(e).__name__}: {e}",
        )
    latency = round((time.perf_counter() - t0) * 1000, 1)

    if resp.status_code != 200:
        return HealthCheckResult(
            check_name="app_server", status=Severity.CRITICAL,
            detail=f"Application server health check failed (HTTP {resp.status_code})",
            metrics={"status_code": resp.status_code, "latency_ms": latency},
        )

    try:
        body = resp.json()
    except ValueError:
        body = None
    if not isinstance(body, dict) or body.get("status") != s.app_health_expected_status:
        return HealthCheckResult(
            check_name="app_server", status=Severity.WARNING,
            detail="Application server health response is not healthy",
            metrics={"status_code": resp.status_code, "latency_ms": latency},
        )

    return HealthCheckResult(
        check_name="app_server", status=Severity.OK,
        detail=f"Application server healthy ({latency}ms)",
        metrics={"status_code": resp.status_code, "latency_ms": latency},
    )


# ── Front-end probes ─────────────────────────────────────────────────────────


def check_process(ctx: ProbeContext) -> HealthCheckResult:
    """Front-end process present and not a zombie."""
    procs = find_processes(ctx.settings.display_process_pattern)
    if not procs:
        return HealthCheckResult(
            check_name="process", status=Severity.CRITICAL,
            detail="Front-end kiosk process not found",
        )
    alive = [p for p in procs if not p.is_zombie]
    if not alive:
        return HealthCheckResult(
            check_name="process", status=Severity.CRITICAL,
            detail=f"All {len(procs)} front-end processes are zombie/unresponsive",
        )
    return HealthCheckResult(
        check_name="process", status=Severity.OK,
        detail=f"Front-end process check passed ({len(alive)} responsive processes)",
        metrics={"pids": [p.pid for p in alive]},
    )


def _x11(argv: list[str], ctx: ProbeContext) -> subprocess.CompletedProcess[str]:
    env = {**os.environ, "DISPLAY": ctx.settings.display}
    return subprocess.run(
        argv, env=env, capture_output=True, text=True,
        timeout=ctx.settings.display_timeout, check=False,
    )


def check_display(ctx: ProbeContext) -> HealthCheckResult:
    """Windowing surface reachable and the expected window present."""
    s = ctx.settings
    if _x11(["xset", "q"], ctx).returncode != 0:
        return HealthCheckResult(
            check_name="display", status=Severity.CRITICAL,
            detail=f"X11 display {s.display} not accessible",
        )

    tree = _x11(["xwininfo", "-root", "-children"], ctx)
    needle = s.window_pattern.lower()
    windows = sum(1 for line in tree.stdout.splitlines() if needle in line.lower())
    if windows == 0:
        return HealthCheckResult(
            check_name="display", status=Severity.WARNING,
            detail=f"No {s.window_pattern} windows found on {s.display}",
        )
    return HealthCheckResult(
        check_name="display", status=Severity.OK,
        detail=f"Display responsiveness check passed ({windows} windows)",
        metrics={"windows": windows},
    )


# ── Dispatcher ───────────────────────────────────────────────────────────────

Probe = Callable[[ProbeContext], HealthCheckResult]

PROBES: dict[str, Probe] = {
    "memory": check_memory,
    "disk": check_disk,
    "network": check_network,
    "app_server": check_app_server,
    "process": check_process,
    "display": check_display,
}


def run_probe(name: str, probe: Probe, ctx: ProbeContext) -> HealthCheckResult:
    """Run one probe in isolation."""
    try:
        result = probe(ctx)
    except Exception as e:
        logger.exception("Health probe %s raised", name)
        return HealthCheckResult(
            check_name=name, status=Severity.CRITICAL,
            detail=f"Probe error: {type(e).__name__}: {e}",
        )
    result.check_name = name
    return result


def run_probes(ctx: ProbeContext, probes: dict[str, Probe] | None = None) -> list[HealthCheckResult]:
    return [run_probe(name, probe, ctx) for name, probe in (probes or PROBES).items()]

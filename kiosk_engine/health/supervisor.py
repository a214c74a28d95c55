"""Process supervisor capability — service status/start/stop/restart by name.

The engine talks to the init system only through this interface, so the
same recovery logic drives OpenRC (``rc-service``) and systemd
(``systemctl``) devices, and tests can substitute a fake.
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)


class ProcessSupervisor(Protocol):
    def is_running(self, service: str) -> bool: ...

    def start(self, service: str) -> bool: ...

    def stop(self, service: str) -> bool: ...

    def restart(self, service: str) -> bool: ...


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    status: str

    @property
    def is_zombie(self) -> bool:
        return self.status == psutil.STATUS_ZOMBIE


def find_processes(pattern: str) -> list[ProcessInfo]:
    """Processes whose full command line matches ``pattern`` (like ``pgrep -f``)."""
    regex = re.compile(pattern)
    found: list[ProcessInfo] = []
    for proc in psutil.process_iter(["pid", "name", "cmdline", "status"]):
        try:
            cmdline = " ".join(proc.info.get("cmdline") or []) or (proc.info.get("name") or "")
            if regex.search(cmdline):
                found.append(ProcessInfo(
                    pid=proc.info["pid"],
                    name=proc.info.get("name") or "",
                    status=proc.info.get("status") or "",
                ))
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return found


class CommandSupervisor:
    """Base for init systems driven by a CLI. Subclasses build the argv."""

    def __init__(
        self,
        timeout: float = 30.0,
        stop_settle: float = 2.0,
        start_settle: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.timeout = timeout
        self.stop_settle = stop_settle
        self.start_settle = start_settle
        self._sleep = sleep

    def _command(self, action: str, service: str) -> list[str]:
        raise NotImplementedError

    def _run(self, action: str, service: str) -> bool:
        argv = self._command(action, service)
        try:
            proc = subprocess.run(
                argv, capture_output=True, text=True, timeout=self.timeout, check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error("Service command timed out after %ss: %s", self.timeout, " ".join(argv))
            return False
        except OSError as e:
            logger.error("Service command failed: %s (%s)", " ".join(argv), e)
            return False
        if proc.returncode != 0:
            logger.debug(
                "%s exited %d: %s", " ".join(argv), proc.returncode, proc.stderr.strip(),
            )
        return proc.returncode == 0

    def is_running(self, service: str) -> bool:
        return self._run("status", service)

    def start(self, service: str) -> bool:
        return self._run("start", service)

    def stop(self, service: str) -> bool:
        return self._run("stop", service)

    def restart(self, service: str) -> bool:
        """Graceful stop, settle, start, settle, verify.

        Never retries in-process: a failed restart is left for the next
        scheduled invocation.
        """
        logger.info("Restarting service: %s", service)
        if self.stop(service):
            logger.info("Service %s stopped", service)
        else:
            logger.warning("Failed to stop service %s gracefully", service)

        self._sleep(self.stop_settle)

        if not self.start(service):
            logger.error("Failed to start service: %s", service)
            return False
        logger.info("Service %s started", service)

        self._sleep(self.start_settle)

        if not self.is_running(service):
            logger.error("Service %s failed to start after restart", service)
            return False
        logger.info("Service %s restart successful", service)
        return True


class OpenRCSupervisor(CommandSupervisor):
    def _command(self, action: str, service: str) -> list[str]:
        return ["rc-service", service, action]


class SystemdSupervisor(CommandSupervisor):
    def _command(self, action: str, service: str) -> list[str]:
        if action == "status":
            return ["systemctl", "is-active", "--quiet", service]
        return ["systemctl", action, service]


SUPERVISORS: dict[str, type[CommandSupervisor]] = {
    "openrc": OpenRCSupervisor,
    "systemd": SystemdSupervisor,
}


def get_supervisor(
    kind: str,
    timeout: float = 30.0,
    stop_settle: float = 2.0,
    start_settle: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> CommandSupervisor:
    try:
        cls = SUPERVISORS[kind]
    except KeyError:
        raise ValueError(f"Unknown service manager: {kind}") from None
    return cls(timeout=timeout, stop_settle=stop_settle, start_settle=start_settle, sleep=sleep)

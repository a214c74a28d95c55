"""Health engine run — probe battery, recovery, watchdog, housekeeping, report.

Exit codes: 0 healthy, 1 warning, 2 critical, 3 script error.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import httpx

from ..config import HealthSettings
from ..infra.lock import PidLock
from ..infra.spam_guard import SpamGuard
from ..infra.state import StateStore
from .housekeeping import delete_files_older_than
from .models import HealthReport, Severity
from .probes import PROBES, Probe, ProbeContext, run_probes
from .recovery import RecoveryDispatcher
from .supervisor import ProcessSupervisor, get_supervisor
from .watchdog import WatchdogFeeder

logger = logging.getLogger(__name__)

EXIT_HEALTHY = 0
EXIT_WARNING = 1
EXIT_CRITICAL = 2
EXIT_ERROR = 3

_LOG_LEVELS = {
    Severity.OK: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.CRITICAL,
}


def exit_code_for(status: Severity) -> int:
    return {
        Severity.OK: EXIT_HEALTHY,
        Severity.WARNING: EXIT_WARNING,
        Severity.CRITICAL: EXIT_CRITICAL,
    }[status]


class HealthEngine:
    """One health-engine invocation bound to a frozen :class:`HealthSettings`."""

    def __init__(
        self,
        settings: HealthSettings,
        supervisor: ProcessSupervisor | None = None,
        state: StateStore | None = None,
        probes: dict[str, Probe] | None = None,
        spam_guard: SpamGuard | None = None,
        http_transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.supervisor = supervisor or get_supervisor(
            settings.service_manager,
            timeout=settings.service_command_timeout,
            stop_settle=settings.stop_settle_seconds,
            start_settle=settings.start_settle_seconds,
        )
        self.state = state
        self.probes = probes or PROBES
        self.spam_guard = spam_guard
        self.http_transport = http_transport
        self._clock = clock

    def run(self) -> HealthReport:
        logger.info("Starting health check")
        with PidLock(self.settings.lock_file):
            state = self.state or StateStore.in_dir(self.settings.state_dir)
            try:
                return self._run(state)
            finally:
                if self.state is None:
                    state.close()

    def _run(self, state: StateStore) -> HealthReport:
        s = self.settings
        report = HealthReport()

        ctx = ProbeContext(settings=s, supervisor=self.supervisor, http_transport=self.http_transport)
        for result in run_probes(ctx, self.probes):
            report.add(result)
            logger.log(_LOG_LEVELS[result.status], "[%s] %s", result.check_name, result.detail)

        RecoveryDispatcher(s, self.supervisor, state, clock=self._clock).dispatch(report)

        WatchdogFeeder(s.watchdog_device, skip=s.skip_watchdog, dry_run=s.dry_run).feed()

        if not s.dry_run:
            self._housekeeping()

        self._log_summary(report)
        return report

    def _housekeeping(self) -> None:
        s = self.settings
        delete_files_older_than(s.log_dir, f"{s.log_file_name}*", s.log_retention_days)
        if self.spam_guard is not None:
            self.spam_guard.prune(s.spam_state_max_age_seconds)

    def _log_summary(self, report: HealthReport) -> None:
        logger.info("=== Health Check Summary ===")
        logger.info("Status: %s", report.status.name)
        logger.info("Issues found: %d", len(report.issues))
        for issue in report.issues:
            logger.info("  - %s: %s", issue.check_name, issue.detail)
        logger.info("Actions taken: %d", len(report.actions))
        for action in report.actions:
            logger.info("  - %s (%s): %s", action.action, action.target_check, action.outcome.value)
        logger.info("=== End Health Check Summary ===")


def run_health(settings: HealthSettings, **kwargs) -> HealthReport:
    return HealthEngine(settings, **kwargs).run()

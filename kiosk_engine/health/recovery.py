"""Recovery dispatcher — maps failed probes to rate-limited remediation.

Every action has a cool-down window. Its last execution time is persisted
in the state store, so a probe that stays CRITICAL across many scheduler
ticks triggers the action at most once per window. Failed restarts are
not retried within the run.
"""

from __future__ import annotations

import glob
import logging
import os
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from ..config import HealthSettings
from ..infra.state import StateStore
from ..sync.layout import ContentLayout
from .housekeeping import clean_temp_dirs, delete_files_older_than
from .models import ActionOutcome, HealthReport, RecoveryAction, Severity
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

DROP_PAGE_CACHE = "drop_page_cache"
CLEAR_FRONTEND_CACHE = "clear_frontend_cache"
RESTART_DISPLAY = "restart_display"
RESTART_APP = "restart_app"
CLEANUP_DISK = "cleanup_disk"

_FAILED = frozenset({Severity.WARNING, Severity.CRITICAL})

# (check name, severities that trigger, action), evaluated in order.
RECOVERY_RULES: list[tuple[str, frozenset[Severity], str]] = [
    ("memory", frozenset({Severity.CRITICAL}), DROP_PAGE_CACHE),
    ("memory", frozenset({Severity.WARNING}), CLEAR_FRONTEND_CACHE),
    ("process", _FAILED, RESTART_DISPLAY),
    ("display", _FAILED, RESTART_DISPLAY),
    ("app_server", _FAILED, RESTART_APP),
    ("disk", frozenset({Severity.CRITICAL}), CLEANUP_DISK),
]

RESTART_ACTIONS = (RESTART_APP, RESTART_DISPLAY)


def plan_recovery(report: HealthReport) -> list[tuple[str, str]]:
    """(target_check, action) pairs for this report, each action at most once."""
    planned: list[tuple[str, str]] = []
    seen: set[str] = set()
    for check, severities, action in RECOVERY_RULES:
        result = report.result(check)
        if result is None or result.status not in severities or action in seen:
            continue
        planned.append((check, action))
        seen.add(action)
    return planned


class RecoveryDispatcher:
    """Executes planned remediation subject to per-action cool-downs."""

    def __init__(
        self,
        settings: HealthSettings,
        supervisor: ProcessSupervisor,
        state: StateStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.supervisor = supervisor
        self.state = state
        self._clock = clock
        self._handlers: dict[str, Callable[[], bool]] = {
            DROP_PAGE_CACHE: self.drop_page_cache,
            CLEAR_FRONTEND_CACHE: self.clear_frontend_cache,
            RESTART_DISPLAY: lambda: self.supervisor.restart(self.settings.display_service),
            RESTART_APP: lambda: self.supervisor.restart(self.settings.app_service),
            CLEANUP_DISK: self.cleanup_disk,
        }

    def dispatch(self, report: HealthReport) -> list[RecoveryAction]:
        taken: list[RecoveryAction] = []

        if self.settings.force_restart:
            logger.info("Force restart requested")
            for action in RESTART_ACTIONS:
                taken.append(self._execute("force-restart", action, report, honor_cooldown=False))

        done = {a.action for a in taken}
        for check, action in plan_recovery(report):
            if action in done:
                continue
            logger.warning("%s issues detected, running recovery: %s", check, action)
            taken.append(self._execute(check, action, report))

        report.actions.extend(taken)
        return taken

    def _execute(
        self,
        target_check: str,
        action: str,
        report: HealthReport,
        honor_cooldown: bool = True,
    ) -> RecoveryAction:
        now = self._clock()
        last = self.state.last_recovery(action)
        cooldown = self.settings.cooldown_for(action)

        if honor_cooldown and last is not None and now - last < cooldown:
            remaining = int(cooldown - (now - last))
            logger.info("Recovery %s skipped: cool-down active (%ds remaining)", action, remaining)
            return RecoveryAction(
                target_check, action, last_executed_at=last,
                outcome=ActionOutcome.SKIPPED_COOLDOWN,
                detail=f"cool-down active, {remaining}s remaining",
            )

        if self.settings.dry_run:
            logger.info("[DRY RUN] Would run recovery action: %s", action)
            return RecoveryAction(
                target_check, action, last_executed_at=last, outcome=ActionOutcome.DRY_RUN,
            )

        try:
            ok = self._handlers[action]()
        except Exception as e:
            logger.exception("Recovery action %s raised", action)
            ok = False
            detail = f"{type(e).__name__}: {e}"
        else:
            detail = ""
        # Recorded even on failure so a broken service cannot cause a restart storm.
        self.state.record_recovery(action, target_check, now)

        if not ok:
            logger.error("Recovery action %s failed; deferring to next scheduled run", action)
            if action in RESTART_ACTIONS:
                report.escalate(Severity.CRITICAL)
            return RecoveryAction(
                target_check, action, last_executed_at=now,
                outcome=ActionOutcome.FAILED, detail=detail or "action reported failure",
            )
        return RecoveryAction(target_check, action, last_executed_at=now)

    # ── Action implementations ────────────────────────────────────────────

    def drop_page_cache(self) -> bool:
        """Flush and drop the OS page cache, then clear stale temp files."""
        logger.info("Clearing system caches...")
        os.sync()
        try:
            self.settings.drop_caches_path.write_text("3\n")
        except OSError as e:
            logger.warning("Failed to drop system caches: %s", e)
            return False
        removed = clean_temp_dirs(self.settings.temp_dirs, self.settings.temp_max_age_days)
        logger.info("System caches cleared (%d stale temp files removed)", removed)
        return True

    def clear_frontend_cache(self) -> bool:
        logger.info("Clearing front-end cache...")
        ok = True
        for pattern in self.settings.frontend_cache_dirs:
            for match in glob.glob(pattern):
                path = Path(match)
                if not path.is_dir():
                    continue
                try:
                    shutil.rmtree(path)
                except OSError as e:
                    logger.warning("Failed to clear cache directory %s: %s", path, e)
                    ok = False
        logger.info("Front-end cache cleared")
        return ok

    def cleanup_disk(self) -> bool:
        logger.info("Cleaning up disk space...")
        s = self.settings
        pruned = ContentLayout(s.content_root).prune_backups(s.disk_backup_keep)
        logs = delete_files_older_than(s.log_dir, "*.log", s.log_retention_days)
        logs += delete_files_older_than(s.log_dir, "*.log.*", s.rotated_log_retention_days)
        temps = clean_temp_dirs(s.temp_dirs, s.temp_max_age_days)
        logger.info(
            "Disk space cleanup completed: %d backups, %d logs, %d temp files removed",
            len(pruned), logs, temps,
        )
        return True

"""Health data model — severities, probe results, recovery actions, run report."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any


class Severity(IntEnum):
    """Ordered so that the overall status is simply ``max()`` of the results."""

    OK = 0
    WARNING = 1
    CRITICAL = 2


@dataclass
class HealthCheckResult:
    """Result of a single probe."""

    check_name: str
    status: Severity
    detail: str = ""
    metrics: dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def failed(self) -> bool:
        return self.status > Severity.OK


class ActionOutcome(str, Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED_COOLDOWN = "skipped-cooldown"
    DRY_RUN = "dry-run"


@dataclass
class RecoveryAction:
    """One remediation decision for this run."""

    target_check: str
    action: str
    last_executed_at: float | None = None
    outcome: ActionOutcome = ActionOutcome.EXECUTED
    detail: str = ""


class HealthReport:
    """Accumulates results for one run. Status can only escalate."""

    def __init__(self) -> None:
        self.results: list[HealthCheckResult] = []
        self.actions: list[RecoveryAction] = []
        self._status = Severity.OK

    @property
    def status(self) -> Severity:
        return self._status

    def escalate(self, severity: Severity) -> None:
        if severity > self._status:
            self._status = severity

    def add(self, result: HealthCheckResult) -> None:
        self.results.append(result)
        self.escalate(result.status)

    def result(self, check_name: str) -> HealthCheckResult | None:
        for r in self.results:
            if r.check_name == check_name:
                return r
        return None

    @property
    def issues(self) -> list[HealthCheckResult]:
        return [r for r in self.results if r.failed]

"""Health subsystem — probes, recovery dispatch, watchdog, run engine."""

from .engine import HealthEngine, exit_code_for, run_health
from .models import HealthCheckResult, HealthReport, RecoveryAction, Severity
from .recovery import RecoveryDispatcher
from .supervisor import OpenRCSupervisor, ProcessSupervisor, SystemdSupervisor
from .watchdog import WatchdogFeeder

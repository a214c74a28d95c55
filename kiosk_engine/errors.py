"""Error taxonomy shared by the content-sync and health subsystems.

Each error carries the exit code the content-sync CLI reports for it.
The health CLI maps every engine error to its own "script error" code.
"""

from __future__ import annotations

EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_NETWORK_ERROR = 2
EXIT_VALIDATION_ERROR = 3
EXIT_LOCK_ERROR = 4
EXIT_CONFIG_ERROR = 5


class EngineError(Exception):
    """Base class for all fatal engine errors."""

    exit_code: int = EXIT_GENERAL_ERROR


class GeneralError(EngineError):
    """Unexpected filesystem or swap failure."""

    exit_code = EXIT_GENERAL_ERROR


class NetworkError(EngineError):
    """Download exhausted its retries or the remote host is unreachable."""

    exit_code = EXIT_NETWORK_ERROR

    def __init__(self, message: str, url: str = "") -> None:
        self.url = url
        super().__init__(message)


class ContentValidationError(EngineError):
    """Checksum mismatch, malformed manifest or incomplete staging tree."""

    exit_code = EXIT_VALIDATION_ERROR


class LockError(EngineError):
    """Another live invocation of the same subsystem holds the lock."""

    exit_code = EXIT_LOCK_ERROR

    def __init__(self, message: str, owner_pid: int | None = None) -> None:
        self.owner_pid = owner_pid
        super().__init__(message)


class ConfigError(EngineError):
    """Missing or invalid settings."""

    exit_code = EXIT_CONFIG_ERROR


class InterruptedRun(GeneralError):
    """Raised from a signal handler so cleanup runs on the way out."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")

"""PID-file lock — one live invocation per subsystem.

A lock file whose owner is still alive aborts the new run with LockError.
A lock left behind by a dead process is reclaimed. The lock is released
on every exit path; ``install_signal_handlers`` turns SIGTERM/SIGINT into
an exception so ``with`` blocks unwind normally.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from types import FrameType, TracebackType

import psutil

from ..errors import InterruptedRun, LockError

logger = logging.getLogger(__name__)

UNREADABLE_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class LockInfo:
    """Contents of a lock file."""

    owner_pid: int
    acquired_at: float

    def dumps(self) -> str:
        return json.dumps({"owner_pid": self.owner_pid, "acquired_at": self.acquired_at})

    @classmethod
    def parse(cls, text: str) -> "LockInfo | None":
        """Read either the JSON form or a bare pid (legacy shell lock files)."""
        text = text.strip()
        if not text:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        if isinstance(data, int):
            return cls(owner_pid=data, acquired_at=0.0)
        if isinstance(data, dict) and isinstance(data.get("owner_pid"), int):
            return cls(owner_pid=data["owner_pid"], acquired_at=float(data.get("acquired_at", 0.0)))
        return None


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    return psutil.pid_exists(pid)


class PidLock:
    """Context manager holding a PID lock file for the duration of a run."""

    def __init__(self, path: Path, pid: int | None = None) -> None:
        self.path = path
        self.pid = pid if pid is not None else os.getpid()
        self.info: LockInfo | None = None

    def read(self) -> LockInfo | None:
        try:
            return LockInfo.parse(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def acquire(self) -> LockInfo:
        """Create the lock file exclusively, reclaiming it once if its owner is dead."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        info = LockInfo(owner_pid=self.pid, acquired_at=time.time())
        for attempt in (1, 2):
            try:
                self._create(info)
            except FileExistsError:
                if attempt == 2:
                    raise LockError(
                        f"Lock file {self.path} was taken by another instance"
                    ) from None
                self._reclaim_if_stale()
                continue
            except OSError as e:
                raise LockError(f"Failed to create lock file {self.path}: {e}") from e
            break

        self.info = info
        logger.debug("Lock acquired: %s (pid %d)", self.path, self.pid)
        return info

    def _create(self, info: LockInfo) -> None:
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(info.dumps())
        except OSError:
            self.path.unlink(missing_ok=True)
            raise

    def _reclaim_if_stale(self) -> None:
        """Remove an existing lock whose owner is gone; raise LockError otherwise."""
        existing = self.read()
        if existing is None:
            try:
                age = time.time() - self.path.stat().st_mtime
            except FileNotFoundError:
                return
            # An unreadable file this young is still being written by its creator.
            if age < UNREADABLE_GRACE_SECONDS:
                raise LockError(f"Lock file {self.path} is being created by another instance")
        elif existing.owner_pid != self.pid and pid_alive(existing.owner_pid):
            raise LockError(
                f"Another instance is already running (PID: {existing.owner_pid})",
                owner_pid=existing.owner_pid,
            )
        logger.warning(
            "Removing stale lock file %s (owner %s)",
            self.path, existing.owner_pid if existing else "unknown",
        )
        self.path.unlink(missing_ok=True)

    def release(self) -> None:
        if self.info is None:
            return
        current = self.read()
        # Never remove a lock another process has since taken over.
        if current is None or current.owner_pid == self.pid:
            self.path.unlink(missing_ok=True)
            logger.debug("Lock released: %s", self.path)
        self.info = None

    def __enter__(self) -> "PidLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def _raise_interrupted(signum: int, frame: FrameType | None) -> None:
    raise InterruptedRun(signum)


def install_signal_handlers() -> None:
    """Convert SIGTERM/SIGINT into InterruptedRun for orderly cleanup."""
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _raise_interrupted)

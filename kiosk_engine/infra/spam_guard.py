"""Log-spam suppression — drop identical messages seen within a time window.

Under flapping conditions (a probe failing every minute) the same line
would otherwise be written on every run. The guard keeps the first
occurrence, suppresses repeats for ``window`` seconds, and counts what
it dropped.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable

DEFAULT_WINDOW_SECONDS = 300


def message_hash(message: str) -> str:
    return hashlib.sha256(message.encode("utf-8")).hexdigest()[:16]


class SpamGuard:
    """Time-indexed map from message hash to last emission timestamp."""

    def __init__(
        self,
        window: float = DEFAULT_WINDOW_SECONDS,
        entries: dict[str, float] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window = window
        self._entries: dict[str, float] = dict(entries or {})
        self._clock = clock
        self.suppressed: dict[str, int] = {}
        self.pruned_before: float | None = None

    def should_emit(self, message: str) -> bool:
        """Return True if ``message`` may be logged now, updating state."""
        key = message_hash(message)
        now = self._clock()
        last = self._entries.get(key)
        if last is not None and now - last < self.window:
            self.suppressed[key] = self.suppressed.get(key, 0) + 1
            return False
        self._entries[key] = now
        return True

    @property
    def suppressed_total(self) -> int:
        return sum(self.suppressed.values())

    def prune(self, max_age: float) -> int:
        """Forget entries older than ``max_age`` seconds. Returns count removed."""
        cutoff = self._clock() - max_age
        self.pruned_before = cutoff
        stale = [k for k, ts in self._entries.items() if ts < cutoff]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def snapshot(self) -> dict[str, float]:
        return dict(self._entries)


class SpamGuardFilter(logging.Filter):
    """Handler filter that consults a shared :class:`SpamGuard`.

    The decision is cached on the record so a message fanned out to several
    handlers (console + file) is judged once.
    """

    def __init__(self, guard: SpamGuard) -> None:
        super().__init__()
        self.guard = guard

    def filter(self, record: logging.LogRecord) -> bool:
        decision = getattr(record, "_spam_guard_emit", None)
        if decision is None:
            decision = self.guard.should_emit(record.getMessage())
            record._spam_guard_emit = decision
        return decision

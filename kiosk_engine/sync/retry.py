"""Retry policy shared by the manifest and per-file fetch paths."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """``max_retries`` extra attempts after the first, exponential backoff.

    Backoff before retry ``n`` (counted from 0) is ``base ** n`` seconds,
    capped at ``max_delay``: 1s, 2s, 4s, ... for the default base of 2.
    """

    max_retries: int = 3
    base: float = 2.0
    max_delay: float = 300.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based) before the next one."""
        return min(self.base ** (attempt - 1), self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

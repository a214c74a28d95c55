"""Shared infrastructure — PID locks, spam-limited logging, persisted state."""

from .lock import PidLock, install_signal_handlers
from .spam_guard import SpamGuard, SpamGuardFilter
from .state import StateStore

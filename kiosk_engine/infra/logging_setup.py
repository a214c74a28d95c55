"""Per-invocation logging configuration shared by both subsystems."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from .spam_guard import SpamGuard, SpamGuardFilter

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [pid %(process)d]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    console_level: int,
    log_file: Path | None = None,
    guard: SpamGuard | None = None,
    file_level: int = logging.INFO,
) -> list[logging.Handler]:
    """Install console + file handlers on the root logger.

    The file handler is skipped when the log directory is not writable;
    an unattended run must never fail because its log sink is missing.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    handlers: list[logging.Handler] = [console]

    skipped_file: Path | None = None
    if log_file is not None:
        if log_file.parent.is_dir() and os.access(log_file.parent, os.W_OK):
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(min(file_level, console_level))
            handlers.append(file_handler)
        else:
            skipped_file = log_file

    for handler in handlers:
        handler.setFormatter(formatter)
        if guard is not None:
            handler.addFilter(SpamGuardFilter(guard))

    logging.basicConfig(
        level=min(h.level for h in handlers),
        handlers=handlers,
        force=True,
    )

    if skipped_file is not None:
        logging.getLogger(__name__).debug("Log directory not writable, file logging disabled: %s", skipped_file)
    return handlers

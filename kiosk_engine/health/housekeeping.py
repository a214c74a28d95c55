"""File-age cleanup helpers used by recovery and end-of-run housekeeping."""

from __future__ import annotations

import logging
import time
from pathlib import Path

logger = logging.getLogger(__name__)

DAY = 86_400


def delete_files_older_than(
    root: Path,
    pattern: str,
    max_age_days: float,
    now: float | None = None,
) -> int:
    """Recursively delete files under ``root`` matching ``pattern`` older than N days.

    Unreadable subtrees and files that vanish mid-walk are skipped.
    """
    if not root.is_dir():
        return 0
    cutoff = (now if now is not None else time.time()) - max_age_days * DAY
    removed = 0
    try:
        candidates = list(root.rglob(pattern))
    except OSError as e:
        logger.warning("Unable to scan %s: %s", root, e)
        return 0
    for path in candidates:
        try:
            if path.is_file() and not path.is_symlink() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError as e:
            logger.debug("Could not remove %s: %s", path, e)
    if removed:
        logger.debug("Removed %d files matching %s under %s", removed, pattern, root)
    return removed


def clean_temp_dirs(temp_dirs: list[str], max_age_days: float, now: float | None = None) -> int:
    return sum(delete_files_older_than(Path(d), "*", max_age_days, now) for d in temp_dirs)

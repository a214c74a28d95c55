"""Persistent run state in SQLite — spam-guard timestamps and recovery history.

Both subsystems are short-lived batch invocations, so anything that must
survive between scheduler ticks (log de-duplication windows, recovery
cool-downs) lives here.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

STATE_DB_NAME = "engine-state.db"


class StateStore:
    """SQLite-backed key/timestamp storage under the state directory."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    @classmethod
    def in_dir(cls, state_dir: Path) -> "StateStore":
        return cls(state_dir / STATE_DB_NAME)

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), timeout=10)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS spam_guard (
                message_hash   TEXT PRIMARY KEY,
                last_logged_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS recovery_actions (
                action           TEXT PRIMARY KEY,
                target_check     TEXT NOT NULL,
                last_executed_at REAL NOT NULL
            );
        """)
        conn.commit()

    # ── Spam guard ────────────────────────────────────────────────────────

    def load_spam_entries(self) -> dict[str, float]:
        rows = self._get_conn().execute(
            "SELECT message_hash, last_logged_at FROM spam_guard"
        ).fetchall()
        return {r["message_hash"]: r["last_logged_at"] for r in rows}

    def save_spam_entries(
        self, entries: dict[str, float], prune_before: float | None = None
    ) -> None:
        """Merge ``entries`` into the stored map, keeping the newest timestamp.

        Both subsystems share this table and may overlap, so rows written by
        another process are never dropped unless older than ``prune_before``.
        """
        conn = self._get_conn()
        conn.executemany(
            "INSERT INTO spam_guard (message_hash, last_logged_at) VALUES (?, ?) "
            "ON CONFLICT(message_hash) DO UPDATE SET "
            "last_logged_at = MAX(last_logged_at, excluded.last_logged_at)",
            list(entries.items()),
        )
        if prune_before is not None:
            conn.execute("DELETE FROM spam_guard WHERE last_logged_at < ?", (prune_before,))
        conn.commit()

    # ── Recovery history ──────────────────────────────────────────────────

    def last_recovery(self, action: str) -> float | None:
        row = self._get_conn().execute(
            "SELECT last_executed_at FROM recovery_actions WHERE action = ?",
            (action,),
        ).fetchone()
        return row["last_executed_at"] if row else None

    def record_recovery(self, action: str, target_check: str, executed_at: float) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO recovery_actions (action, target_check, last_executed_at) "
            "VALUES (?, ?, ?) "
            "ON CONFLICT(action) DO UPDATE SET "
            "target_check = excluded.target_check, "
            "last_executed_at = excluded.last_executed_at",
            (action, target_check, executed_at),
        )
        conn.commit()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

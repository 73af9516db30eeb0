"""
SQLite-backed run store.
Keeps a log of batch runs and the cross-process coordination signals.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("m365_batch_engine.store")


class RunStore:
    """
    Persistent run log backed by SQLite.
    Features:
      - Run history (start, completion, status, outcome counts)
      - Shared coordination signals for workers in separate processes
      - Safe for concurrent use via connection-per-call
    """

    def __init__(self, db_path: str, busy_timeout_seconds: float = 30.0):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_seconds = busy_timeout_seconds
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=self.busy_timeout_seconds)

    def _init_db(self):
        """Initialize the store schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS run_log (
                    run_id TEXT PRIMARY KEY,
                    started_at REAL NOT NULL,
                    completed_at REAL,
                    status TEXT DEFAULT 'running',
                    metadata TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS signals (
                    run_id TEXT PRIMARY KEY,
                    reason TEXT NOT NULL DEFAULT '',
                    set_at REAL NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_run_log_started
                ON run_log(started_at)
            """)
            conn.commit()

    # --- Run log ---

    def start_run(self, run_id: str, metadata: Optional[dict] = None):
        """Record the start of a new run."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO run_log (run_id, started_at, status, metadata)
                VALUES (?, ?, 'running', ?)
                """,
                (run_id, time.time(), json.dumps(metadata or {}, default=str)),
            )
            conn.commit()
        logger.debug(f"Run {run_id} started")

    def complete_run(self, run_id: str, status: str = "completed", metadata: Optional[dict] = None):
        """Record run completion, merging `metadata` into what start_run stored."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT metadata FROM run_log WHERE run_id = ?", (run_id,)
            ).fetchone()
            merged: dict[str, Any] = json.loads(row[0]) if row and row[0] else {}
            merged.update(metadata or {})
            conn.execute(
                """
                UPDATE run_log SET completed_at = ?, status = ?, metadata = ?
                WHERE run_id = ?
                """,
                (time.time(), status, json.dumps(merged, default=str), run_id),
            )
            conn.commit()
        logger.debug(f"Run {run_id} marked {status}")

    def get_run(self, run_id: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT run_id, started_at, completed_at, status, metadata
                FROM run_log WHERE run_id = ?
                """,
                (run_id,),
            ).fetchone()
        return self._row_to_run(row) if row else None

    def get_run_history(self, limit: int = 10) -> list[dict]:
        """Retrieve recent runs, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT run_id, started_at, completed_at, status, metadata
                FROM run_log ORDER BY started_at DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._row_to_run(r) for r in rows]

    @staticmethod
    def _row_to_run(r) -> dict:
        return {
            "run_id": r[0],
            "started_at": r[1],
            "completed_at": r[2],
            "status": r[3],
            "metadata": json.loads(r[4]) if r[4] else {},
        }

    # --- Coordination signals ---

    def set_signal(self, run_id: str, reason: str = "") -> bool:
        """
        Set the signal for `run_id`. Returns True if this call created it,
        False if some process had already set it.
        """
        with self._connect() as conn:
            created = conn.execute(
                "INSERT OR IGNORE INTO signals (run_id, reason, set_at) VALUES (?, ?, ?)",
                (run_id, reason, time.time()),
            ).rowcount
            conn.commit()
        return created == 1

    def get_signal(self, run_id: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT reason, set_at FROM signals WHERE run_id = ?",
                (run_id,),
            ).fetchone()
        if row is None:
            return None
        return {"reason": row[0], "set_at": row[1]}

    def clear_signals(self, older_than_hours: float = 24.0) -> int:
        """Remove signals left behind by old runs."""
        cutoff = time.time() - older_than_hours * 3600
        with self._connect() as conn:
            deleted = conn.execute(
                "DELETE FROM signals WHERE set_at < ?",
                (cutoff,),
            ).rowcount
            conn.commit()
        if deleted:
            logger.info(f"Cleared {deleted} stale coordination signals.")
        return deleted

"""Tests for the SQLite run store."""

from __future__ import annotations

import time
from pathlib import Path

from m365_batch_engine.store import RunStore


class TestRunStore:

    def test_run_lifecycle(self, tmp_path: Path) -> None:
        store = RunStore(str(tmp_path / "nested" / "runs.db"))
        store.start_run("r1", {"processor": "echo"})
        assert store.get_run("r1")["status"] == "running"

        store.complete_run("r1", status="completed", metadata={"counts": {"total": 3}})
        run = store.get_run("r1")
        assert run["status"] == "completed"
        assert run["metadata"] == {"processor": "echo", "counts": {"total": 3}}

    def test_history_newest_first(self, tmp_path: Path) -> None:
        store = RunStore(str(tmp_path / "runs.db"))
        for run_id in ("old", "mid", "new"):
            store.start_run(run_id)
            time.sleep(0.01)

        assert [r["run_id"] for r in store.get_run_history(limit=2)] == ["new", "mid"]
        assert store.get_run("missing") is None

    def test_signal_set_once(self, tmp_path: Path) -> None:
        store = RunStore(str(tmp_path / "runs.db"))
        assert store.get_signal("r1") is None
        assert store.set_signal("r1", "first") is True
        assert store.set_signal("r1", "second") is False
        assert store.get_signal("r1")["reason"] == "first"

    def test_clear_old_signals(self, tmp_path: Path) -> None:
        store = RunStore(str(tmp_path / "runs.db"))
        store.set_signal("r1", "x")
        store.clear_signals(older_than_hours=0)
        assert store.get_signal("r1") is None

    def test_clear_keeps_recent_signals(self, tmp_path: Path) -> None:
        store = RunStore(str(tmp_path / "runs.db"))
        store.set_signal("r1", "x")
        assert store.clear_signals(older_than_hours=24) == 0
        assert store.get_signal("r1")["reason"] == "x"

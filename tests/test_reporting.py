"""Tests for the CSV and JSON sinks."""

from __future__ import annotations

import csv
import json
from pathlib import Path

from m365_batch_engine.config import ExecutorConfig
from m365_batch_engine.core import CoordinationSignal
from m365_batch_engine.reporting import export_csv, export_json
from m365_batch_engine.runner import BatchRun, RunReport


def _report() -> RunReport:
    signal = CoordinationSignal()

    def _process(i: int):
        if i == 2:
            raise ValueError("boom")
        if i == 3:
            signal.set("operator abort")
        return {"value": i * 10}

    run = BatchRun(_process, ExecutorConfig(max_concurrency=1), signal=signal, run_id="r-1")
    return run.execute([0, 1, 2, 3, 4])


class TestCsvExport:

    def test_outcomes_in_input_order(self, tmp_path: Path) -> None:
        outcomes_path, summary_path = export_csv(_report(), tmp_path)

        with open(outcomes_path, newline="", encoding="utf-8-sig") as fh:
            rows = list(csv.DictReader(fh))

        assert [r["index"] for r in rows] == ["0", "1", "2", "3", "4"]
        assert [r["status"] for r in rows] == ["success", "success", "failure", "success", "skipped"]
        assert json.loads(rows[1]["payload"]) == {"value": 10}
        assert rows[2]["error_type"] == "ValueError"
        assert rows[2]["error_message"] == "boom"
        assert "operator abort" in rows[4]["skip_reason"]

    def test_summary(self, tmp_path: Path) -> None:
        _, summary_path = export_csv(_report(), tmp_path)

        with open(summary_path, newline="", encoding="utf-8-sig") as fh:
            summary = {row[0]: row[1] for row in csv.reader(fh)}

        assert summary["status"] == "stopped"
        assert summary["total"] == "5"
        assert summary["failure"] == "1"
        assert summary["skipped"] == "1"
        assert summary["signal_reason"] == "operator abort"


class TestJsonExport:

    def test_payload(self, tmp_path: Path) -> None:
        path = export_json(_report(), tmp_path / "out")
        data = json.loads(path.read_text(encoding="utf-8"))

        assert path.name == "batch_run_r-1.json"
        assert data["metadata"]["engine"] == "M365 Batch Engine"
        assert data["run"]["counts"] == {"success": 3, "failure": 1, "skipped": 1, "total": 5}
        assert [o["status"] for o in data["outcomes"]] == ["success", "success", "failure", "success", "skipped"]
        assert data["outcomes"][2]["error"]["message"] == "boom"

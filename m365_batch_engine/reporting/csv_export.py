"""
CSV exporter — one row per outcome plus a run summary.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any

from ..core.outcomes import Failure, Skipped, Success

OUTCOME_FIELDS = [
    "index", "item", "status", "payload", "error_type", "error_message",
    "skip_reason", "duration_seconds",
]


def export_csv(report: Any, output_dir: Path) -> list[Path]:
    """
    Write the outcomes and summary CSV files for a run.
    Rows are ordered by dispatch index, so the file follows the input order
    no matter in which order workers finished.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    outcomes_path = output_dir / f"outcomes_{report.run_id}.csv"
    with open(outcomes_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=OUTCOME_FIELDS)
        writer.writeheader()
        for outcome in report.results.sorted():
            writer.writerow(_outcome_row(outcome))
    created.append(outcomes_path)

    summary_path = output_dir / f"run_summary_{report.run_id}.csv"
    counts = report.counts
    with open(summary_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow(["metric", "value"])
        writer.writerow(["run_id", report.run_id])
        writer.writerow(["status", report.status])
        writer.writerow(["processor", report.processor])
        writer.writerow(["mode", report.mode])
        writer.writerow(["batch_size", report.batch_size])
        writer.writerow(["max_concurrency", report.max_concurrency])
        writer.writerow(["duration_seconds", report.duration_seconds])
        writer.writerow(["total", counts["total"]])
        writer.writerow(["success", counts["success"]])
        writer.writerow(["failure", counts["failure"]])
        writer.writerow(["skipped", counts["skipped"]])
        writer.writerow(["signal_reason", report.signal_reason])
        for key, value in report.processor_stats.items():
            writer.writerow([f"processor.{key}", value])
    created.append(summary_path)

    return created


def _outcome_row(outcome) -> dict:
    row = {field: "" for field in OUTCOME_FIELDS}
    row["index"] = outcome.index
    row["item"] = _flatten(outcome.item)
    row["status"] = outcome.status.value
    row["duration_seconds"] = round(outcome.duration_seconds, 4)
    if isinstance(outcome, Success):
        row["payload"] = _flatten(outcome.payload)
    elif isinstance(outcome, Failure):
        row["error_type"] = outcome.error.error_type
        row["error_message"] = outcome.error.message
    elif isinstance(outcome, Skipped):
        row["skip_reason"] = outcome.reason
    return row


def _flatten(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)

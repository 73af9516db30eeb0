"""
JSON exporter — the full run report with every outcome.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .. import __version__


def export_json(report: Any, output_dir: Path) -> Path:
    """
    Write the run report to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "engine": "M365 Batch Engine",
            "version": __version__,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
        },
        "run": report.to_dict(),
        "outcomes": [o.to_dict() for o in report.results.sorted()],
    }

    filepath = output_dir / f"batch_run_{report.run_id}.json"
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath

"""
Work item enumeration from input files.

  - `.csv` files: one item per row, taken from `column` (or the first column)
  - anything else: one item per line, blank lines and `#` comments skipped
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("m365_batch_engine.inputs")


def read_work_items(path: Union[str, Path], column: Optional[str] = None) -> list[str]:
    path = Path(path)
    if path.suffix.lower() == ".csv":
        items = _read_csv(path, column)
    else:
        items = _read_lines(path)
    logger.info(f"Loaded {len(items)} work items from {path}")
    return items


def _read_csv(path: Path, column: Optional[str]) -> list[str]:
    # utf-8-sig strips the BOM written by Excel and PowerShell's Export-Csv
    with open(path, "r", newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        fieldnames = reader.fieldnames or []
        if not fieldnames:
            return []
        if column is None:
            column = fieldnames[0]
        else:
            # Export-Csv headers are case-insensitive in PowerShell, keep that behaviour
            match = next((f for f in fieldnames if f.lower() == column.lower()), None)
            if match is None:
                raise ValueError(
                    f"Column {column!r} not found in {path.name}; available: {', '.join(fieldnames)}"
                )
            column = match

        items = []
        for row in reader:
            value = (row.get(column) or "").strip()
            if value:
                items.append(value)
        return items


def _read_lines(path: Path) -> list[str]:
    items = []
    with open(path, "r", encoding="utf-8-sig") as fh:
        for line in fh:
            value = line.strip()
            if value and not value.startswith("#"):
                items.append(value)
    return items

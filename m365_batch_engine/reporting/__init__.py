"""Reporting package — sinks that persist a finished run."""

from .json_export import export_json
from .csv_export import export_csv

__all__ = [
    "export_json",
    "export_csv",
]

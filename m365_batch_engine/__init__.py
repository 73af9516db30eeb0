"""
M365 Batch Engine
=================
Bounded parallel batch execution for Microsoft 365 / SharePoint Online
administration runs: partition a list of work items (site URLs, user IDs, ...),
process them on a bounded worker pool with per-item failure isolation, and
collect one outcome per item for reporting.
"""

__version__ = "1.0.0"
__author__ = "M365 Batch Engine"

from .core import (  # noqa: E402
    Batch,
    CoordinationSignal,
    Failure,
    ResultSet,
    Skipped,
    Success,
    partition,
    run_batched,
)

__all__ = [
    "Batch",
    "CoordinationSignal",
    "Failure",
    "ResultSet",
    "Skipped",
    "Success",
    "partition",
    "run_batched",
]

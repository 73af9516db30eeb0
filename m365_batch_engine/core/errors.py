"""
Exception hierarchy for the batch engine.

Per-item errors never surface here: they are captured by the dispatcher and
recorded as Failure outcomes. Only the classes below cross the run boundary.
"""

from __future__ import annotations


class BatchEngineError(Exception):
    """Base class for all batch engine errors."""
    pass


class PoolExhaustedError(BatchEngineError):
    """Raised when the worker pool cannot accept more work (fatal to the run)."""

    def __init__(self, message: str, dispatched: int = 0):
        self.dispatched = dispatched
        super().__init__(message)


class FatalProcessingError(BatchEngineError):
    """
    Raised by a processor when a condition affects the whole run, not just
    the current item (expired credentials, tenant lockout, ...).
    The item is recorded as a Failure and the coordination signal is set.
    """
    pass

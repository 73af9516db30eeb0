"""
Outcome data model — the tagged result of processing one work item.

An outcome is exactly one of Success, Failure or Skipped. All three are
frozen dataclasses sharing `item`, `index` and `status`.
"""

from __future__ import annotations

import traceback as tb
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ErrorInfo:
    """What went wrong for a single item."""
    message: str
    error_type: str = ""
    traceback: str = field(default="", compare=False, repr=False)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        message = str(exc) or type(exc).__name__
        return cls(
            message=message,
            error_type=type(exc).__name__,
            traceback="".join(tb.format_exception(type(exc), exc, exc.__traceback__)),
        )

    def to_dict(self) -> dict:
        return {"message": self.message, "error_type": self.error_type}


@dataclass(frozen=True)
class Success:
    item: Any
    payload: Any = None
    index: int = -1
    duration_seconds: float = field(default=0.0, compare=False)

    status: ClassVar[OutcomeStatus] = OutcomeStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "item": self.item,
            "status": self.status.value,
            "payload": self.payload,
            "duration_seconds": round(self.duration_seconds, 4),
        }


@dataclass(frozen=True)
class Failure:
    item: Any
    error: ErrorInfo
    index: int = -1
    duration_seconds: float = field(default=0.0, compare=False)

    status: ClassVar[OutcomeStatus] = OutcomeStatus.FAILURE

    @property
    def message(self) -> str:
        return self.error.message

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "item": self.item,
            "status": self.status.value,
            "error": self.error.to_dict(),
            "duration_seconds": round(self.duration_seconds, 4),
        }


@dataclass(frozen=True)
class Skipped:
    """An item that was never handed to `process` because the run was signaled."""
    item: Any
    reason: str = "coordination signal set"
    index: int = -1

    status: ClassVar[OutcomeStatus] = OutcomeStatus.SKIPPED
    duration_seconds: ClassVar[float] = 0.0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "item": self.item,
            "status": self.status.value,
            "reason": self.reason,
        }


Outcome = Union[Success, Failure, Skipped]
OUTCOME_TYPES = (Success, Failure, Skipped)


def is_outcome(value: Any) -> bool:
    return isinstance(value, OUTCOME_TYPES)

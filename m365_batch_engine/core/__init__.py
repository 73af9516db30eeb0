"""Core executor — batcher, dispatcher, result set and coordination signal."""

from .batcher import Batch, partition
from .dispatcher import (
    AsyncWorkerPoolDispatcher,
    WorkerPoolDispatcher,
    default_concurrency,
    is_async_callable,
    run_batched,
)
from .errors import BatchEngineError, FatalProcessingError, PoolExhaustedError
from .outcomes import ErrorInfo, Failure, Outcome, OutcomeStatus, Skipped, Success
from .results import ResultSet
from .signal import CoordinationSignal, SharedCoordinationSignal

__all__ = [
    "Batch",
    "partition",
    "WorkerPoolDispatcher",
    "AsyncWorkerPoolDispatcher",
    "default_concurrency",
    "is_async_callable",
    "run_batched",
    "BatchEngineError",
    "FatalProcessingError",
    "PoolExhaustedError",
    "ErrorInfo",
    "Failure",
    "Outcome",
    "OutcomeStatus",
    "Skipped",
    "Success",
    "ResultSet",
    "CoordinationSignal",
    "SharedCoordinationSignal",
]

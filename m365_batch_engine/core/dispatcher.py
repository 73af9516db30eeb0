"""
Worker pool dispatcher — bounded concurrent execution of a caller-supplied
`process` function with per-item failure isolation.

Two flavours share the same contract:
  - WorkerPoolDispatcher runs plain callables on a thread pool
  - AsyncWorkerPoolDispatcher runs coroutine functions as tasks on one loop

Both:
  - admit at most `max_concurrency` units at a time (the unit source is
    consumed lazily, so a huge input is throttled for free)
  - make exactly one attempt per item, never retry
  - turn any exception from `process` into a Failure for that item only
  - consult the coordination signal before submitting each unit, recording
    Skipped outcomes instead of dropping work; a unit already submitted runs
    every one of its items
  - block in run() until every dispatched item has an outcome
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Iterable, Iterator, Optional, Union

from .batcher import Batch
from .errors import FatalProcessingError, PoolExhaustedError
from .outcomes import ErrorInfo, Failure, Outcome, Skipped, Success, is_outcome
from .results import ResultSet
from .signal import CoordinationSignal

logger = logging.getLogger("m365_batch_engine.dispatcher")

ProcessFn = Callable[[Any], Any]
AsyncProcessFn = Callable[[Any], Awaitable[Any]]

_STREAM_DONE = object()


def default_concurrency() -> int:
    """Number of available hardware execution contexts (at least 1)."""
    return os.cpu_count() or 1


def is_async_callable(fn: Any) -> bool:
    """True for coroutine functions and objects with an async __call__."""
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


@dataclass(frozen=True)
class DispatchUnit:
    """One unit handed to a worker: a single item or a whole batch."""
    items: tuple
    first_index: int
    is_batch: bool = False

    @property
    def indexed_items(self) -> list[tuple[int, Any]]:
        return [(self.first_index + offset, item) for offset, item in enumerate(self.items)]

    def label(self) -> str:
        if self.is_batch:
            last = self.first_index + len(self.items) - 1
            return f"batch[{self.first_index}..{last}]"
        return f"item[{self.first_index}]"


def iter_dispatch_units(units: Iterable[Union[Batch, Any]]) -> Iterator[DispatchUnit]:
    """Number every item with a running index across all units."""
    next_index = 0
    for unit in units:
        if isinstance(unit, Batch):
            du = DispatchUnit(items=unit.items, first_index=next_index, is_batch=True)
        else:
            du = DispatchUnit(items=(unit,), first_index=next_index)
        next_index += len(du.items)
        yield du


def _validate_concurrency(max_concurrency: Optional[int]) -> int:
    if max_concurrency is None or max_concurrency == 0:
        return default_concurrency()
    if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int):
        raise ValueError(f"max_concurrency must be an integer, got {max_concurrency!r}")
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
    return max_concurrency


class _DispatcherBase:
    """Bookkeeping shared by the thread and async dispatchers."""

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        signal: Optional[CoordinationSignal] = None,
        fail_fast: bool = False,
    ):
        self.max_concurrency = _validate_concurrency(max_concurrency)
        self._caller_signal = signal
        self.signal = signal if signal is not None else CoordinationSignal()
        self.fail_fast = fail_fast

        self._stats_lock = threading.Lock()
        self._active = 0
        self._max_active = 0
        self._dispatched_units = 0

    # --- Statistics ---

    def _enter_process(self) -> None:
        with self._stats_lock:
            self._active += 1
            if self._active > self._max_active:
                self._max_active = self._active

    def _exit_process(self) -> None:
        with self._stats_lock:
            self._active -= 1

    def _begin_run(self) -> None:
        """Reset per-run state. Without a caller-supplied signal each run gets a fresh one."""
        if self._caller_signal is None:
            self.signal = CoordinationSignal()
        self._reset_stats()

    def _reset_stats(self) -> None:
        with self._stats_lock:
            self._active = 0
            self._max_active = 0
            self._dispatched_units = 0

    def get_stats(self) -> dict:
        with self._stats_lock:
            return {
                "max_concurrency": self.max_concurrency,
                "max_active_observed": self._max_active,
                "units_dispatched": self._dispatched_units,
                "signal_set": self.signal.is_set(),
                "signal_reason": self.signal.reason,
            }

    # --- Outcome construction ---

    def _skip_unit(self, unit: DispatchUnit) -> list[Skipped]:
        reason = self._skip_reason()
        return [Skipped(item=item, reason=reason, index=idx) for idx, item in unit.indexed_items]

    def _skip_reason(self) -> str:
        if self.signal.reason:
            return f"coordination signal set: {self.signal.reason}"
        return "coordination signal set"

    def _to_outcome(self, index: int, item: Any, value: Any, duration: float) -> Outcome:
        if is_outcome(value):
            if isinstance(value, Skipped):
                return replace(value, item=item, index=index)
            return replace(value, item=item, index=index, duration_seconds=duration)
        return Success(item=item, payload=value, index=index, duration_seconds=duration)

    def _failure(self, index: int, item: Any, exc: Exception, duration: float) -> Failure:
        if isinstance(exc, FatalProcessingError):
            logger.error(f"Fatal error on item {index} ({item!r}): {exc}")
            self.signal.set(f"fatal error on item {index}: {exc}")
        else:
            logger.warning(f"Item {index} ({item!r}) failed: {type(exc).__name__}: {exc}")
        return Failure(
            item=item,
            error=ErrorInfo.from_exception(exc),
            index=index,
            duration_seconds=duration,
        )

    def _after_outcome(self, outcome: Outcome) -> None:
        if self.fail_fast and isinstance(outcome, Failure):
            self.signal.set(f"fail-fast: item {outcome.index} failed ({outcome.error.message})")


class WorkerPoolDispatcher(_DispatcherBase):
    """
    Thread-pool dispatcher for synchronous `process` callables.

    Usage:
        dispatcher = WorkerPoolDispatcher(max_concurrency=8)
        results = dispatcher.run(partition(site_urls, 20), probe_site)
        print(results.counts())

    A semaphore sized to `max_concurrency` is acquired on the dispatching
    thread before every submission and released when the unit's future
    completes, so the number of submitted-but-unfinished units never
    exceeds the bound.
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        signal: Optional[CoordinationSignal] = None,
        fail_fast: bool = False,
        thread_name_prefix: str = "batch_worker",
    ):
        super().__init__(max_concurrency, signal, fail_fast)
        self.thread_name_prefix = thread_name_prefix

    def run(self, units: Iterable[Any], process: ProcessFn) -> ResultSet:
        """Dispatch all units and block until every item has an outcome."""
        results = ResultSet()
        self._dispatch(units, process, results.append)
        return results

    def iter_outcomes(self, units: Iterable[Any], process: ProcessFn) -> Iterator[Outcome]:
        """
        Streaming variant of run(): yield outcomes as workers produce them.

        Dispatch happens on a helper thread; a dispatcher failure is re-raised
        here once the outcomes produced before it have been yielded. Closing
        the generator early sets the signal, so units not yet submitted are
        skipped instead of processed.
        """
        outbox: queue.Queue = queue.Queue()
        error: list[BaseException] = []

        def _drive():
            try:
                self._dispatch(units, process, outbox.put)
            except BaseException as exc:  # re-raised on the consumer side
                error.append(exc)
            finally:
                outbox.put(_STREAM_DONE)

        driver = threading.Thread(target=_drive, name=f"{self.thread_name_prefix}_driver", daemon=True)
        driver.start()
        finished = False
        try:
            while True:
                outcome = outbox.get()
                if outcome is _STREAM_DONE:
                    finished = True
                    break
                yield outcome
        finally:
            if not finished:
                self.signal.set("outcome stream closed by consumer")
        driver.join()
        if error:
            raise error[0]

    def _dispatch(
        self,
        units: Iterable[Any],
        process: ProcessFn,
        emit: Callable[[Outcome], None],
    ) -> None:
        self._begin_run()
        slots = threading.BoundedSemaphore(self.max_concurrency)
        futures: list[Future] = []
        started = time.monotonic()

        with ThreadPoolExecutor(
            max_workers=self.max_concurrency,
            thread_name_prefix=self.thread_name_prefix,
        ) as pool:
            try:
                for unit in iter_dispatch_units(units):
                    slots.acquire()
                    if self.signal.is_set():
                        slots.release()
                        for skipped in self._skip_unit(unit):
                            emit(skipped)
                        continue

                    try:
                        future = pool.submit(self._execute_unit, unit, process, emit)
                    except RuntimeError as e:
                        slots.release()
                        raise PoolExhaustedError(
                            f"Worker pool refused {unit.label()}: {e}",
                            dispatched=self._dispatched_units,
                        ) from e

                    future.add_done_callback(lambda _f: slots.release())
                    futures.append(future)
                    with self._stats_lock:
                        self._dispatched_units += 1
            finally:
                # Let in-flight units finish before surfacing any error.
                for future in futures:
                    future.exception()

        for future in futures:
            exc = future.exception()
            if exc is not None:
                raise PoolExhaustedError(
                    f"Worker bookkeeping failed: {type(exc).__name__}: {exc}",
                    dispatched=self._dispatched_units,
                ) from exc

        logger.info(
            f"Dispatched {self._dispatched_units} units with max_concurrency="
            f"{self.max_concurrency} in {time.monotonic() - started:.2f}s "
            f"(peak active {self._max_active})"
        )

    def _execute_unit(
        self,
        unit: DispatchUnit,
        process: ProcessFn,
        emit: Callable[[Outcome], None],
    ) -> None:
        """Run one unit on a worker thread; items of a batch go in order and all of them run."""
        for index, item in unit.indexed_items:
            self._enter_process()
            t0 = time.monotonic()
            try:
                value = process(item)
                outcome = self._to_outcome(index, item, value, time.monotonic() - t0)
            except Exception as e:
                outcome = self._failure(index, item, e, time.monotonic() - t0)
            finally:
                self._exit_process()

            emit(outcome)
            self._after_outcome(outcome)


class AsyncWorkerPoolDispatcher(_DispatcherBase):
    """
    Event-loop dispatcher for coroutine `process` functions.

    Same contract as WorkerPoolDispatcher; concurrency is bounded by an
    asyncio.Semaphore acquired before each task is created. A `process`
    that returns a plain value instead of an awaitable is also accepted.
    """

    async def run_async(self, units: Iterable[Any], process: AsyncProcessFn) -> ResultSet:
        self._begin_run()
        results = ResultSet()
        slots = asyncio.Semaphore(self.max_concurrency)
        tasks: list[asyncio.Task] = []
        started = time.monotonic()

        try:
            for unit in iter_dispatch_units(units):
                await slots.acquire()
                if self.signal.is_set():
                    slots.release()
                    results.extend(self._skip_unit(unit))
                    continue

                task = asyncio.create_task(self._execute_unit(unit, process, results))
                task.add_done_callback(lambda _t: slots.release())
                tasks.append(task)
                with self._stats_lock:
                    self._dispatched_units += 1
        finally:
            completed = await asyncio.gather(*tasks, return_exceptions=True)

        for res in completed:
            if isinstance(res, BaseException):
                raise PoolExhaustedError(
                    f"Worker bookkeeping failed: {type(res).__name__}: {res}",
                    dispatched=self._dispatched_units,
                ) from res

        logger.info(
            f"Dispatched {self._dispatched_units} async units with max_concurrency="
            f"{self.max_concurrency} in {time.monotonic() - started:.2f}s "
            f"(peak active {self._max_active})"
        )
        return results

    def run(self, units: Iterable[Any], process: AsyncProcessFn) -> ResultSet:
        """Blocking entry point; must not be called from a running event loop."""
        return asyncio.run(self.run_async(units, process))

    async def _execute_unit(
        self,
        unit: DispatchUnit,
        process: AsyncProcessFn,
        results: ResultSet,
    ) -> None:
        for index, item in unit.indexed_items:
            self._enter_process()
            t0 = time.monotonic()
            try:
                value = process(item)
                if inspect.isawaitable(value):
                    value = await value
                outcome = self._to_outcome(index, item, value, time.monotonic() - t0)
            except Exception as e:
                outcome = self._failure(index, item, e, time.monotonic() - t0)
            finally:
                self._exit_process()

            results.append(outcome)
            self._after_outcome(outcome)


def run_batched(
    units: Iterable[Any],
    process: Union[ProcessFn, AsyncProcessFn],
    max_concurrency: Optional[int] = None,
    signal: Optional[CoordinationSignal] = None,
    fail_fast: bool = False,
) -> ResultSet:
    """
    Run `process` over every unit (work items or Batches) with bounded
    concurrency and return the complete ResultSet.

    Coroutine functions are executed by the async dispatcher, everything
    else on the thread pool.
    """
    if is_async_callable(process):
        dispatcher: _DispatcherBase = AsyncWorkerPoolDispatcher(max_concurrency, signal, fail_fast)
    else:
        dispatcher = WorkerPoolDispatcher(max_concurrency, signal, fail_fast)
    return dispatcher.run(units, process)

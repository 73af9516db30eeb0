"""
Batch run orchestrator.

Ties the pieces together for one run: partition the work items according to
the configured mode, open the processor, dispatch through the bounded pool,
record the run in the store and hand the finished report to each sink once.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from .config import ExecutorConfig
from .core import (
    AsyncWorkerPoolDispatcher,
    CoordinationSignal,
    ResultSet,
    SharedCoordinationSignal,
    WorkerPoolDispatcher,
    is_async_callable,
    partition,
)
from .processors.base import AsyncBaseProcessor, BaseProcessor
from .store.run_store import RunStore

logger = logging.getLogger("m365_batch_engine.runner")


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]


@dataclass
class RunReport:
    """Everything a sink needs to know about a finished run."""
    run_id: str
    results: ResultSet
    started_at: float
    completed_at: float
    mode: str = "item"
    batch_size: int = 1
    max_concurrency: int = 1
    processor: str = ""
    signal_set: bool = False
    signal_reason: str = ""
    dispatcher_stats: dict[str, Any] = field(default_factory=dict)
    processor_stats: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return round(self.completed_at - self.started_at, 3)

    @property
    def counts(self) -> dict[str, int]:
        return self.results.counts()

    @property
    def status(self) -> str:
        if self.signal_set:
            return "stopped"
        if self.results.has_failures:
            return "completed_with_failures"
        return "completed"

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "processor": self.processor,
            "mode": self.mode,
            "batch_size": self.batch_size,
            "max_concurrency": self.max_concurrency,
            "started_at": datetime.fromtimestamp(self.started_at, timezone.utc).isoformat(),
            "completed_at": datetime.fromtimestamp(self.completed_at, timezone.utc).isoformat(),
            "duration_seconds": self.duration_seconds,
            "signal": {"set": self.signal_set, "reason": self.signal_reason},
            "counts": self.counts,
            "dispatcher_stats": self.dispatcher_stats,
            "processor_stats": self.processor_stats,
        }


Sink = Callable[[RunReport], Any]


class BatchRun:
    """
    One configured run of a processor over a list of work items.

    Usage:
        run = BatchRun(HttpProbeProcessor(), ExecutorConfig(max_concurrency=8))
        report = run.execute(site_urls, sinks=[my_csv_sink])
    """

    def __init__(
        self,
        process: Callable[[Any], Any],
        config: Optional[ExecutorConfig] = None,
        signal: Optional[CoordinationSignal] = None,
        store: Optional[RunStore] = None,
        run_id: Optional[str] = None,
    ):
        self.process = process
        self.config = config or ExecutorConfig()
        self.config.validate()
        self.store = store
        self.run_id = run_id or new_run_id()
        if signal is None:
            signal = SharedCoordinationSignal(store, self.run_id) if store else CoordinationSignal()
        self.signal = signal

    @property
    def processor_name(self) -> str:
        return getattr(self.process, "name", getattr(self.process, "__name__", type(self.process).__name__))

    def execute(self, items: Iterable[Any], sinks: Iterable[Sink] = ()) -> RunReport:
        units: Iterable[Any] = items
        if self.config.mode == "batch":
            units = partition(items, self.config.batch_size)

        if self.store:
            self.store.start_run(self.run_id, {
                "processor": self.processor_name,
                "mode": self.config.mode,
                "batch_size": self.config.batch_size,
                "max_concurrency": self.config.max_concurrency,
            })

        started = time.time()
        try:
            if is_async_callable(self.process):
                dispatcher = AsyncWorkerPoolDispatcher(
                    self.config.max_concurrency or None, self.signal, self.config.fail_fast
                )
                results = asyncio.run(self._run_async(dispatcher, units))
            else:
                dispatcher = WorkerPoolDispatcher(
                    self.config.max_concurrency or None, self.signal, self.config.fail_fast
                )
                with self._lifecycle():
                    results = dispatcher.run(units, self.process)
        except Exception:
            if self.store:
                self.store.complete_run(self.run_id, status="error")
            raise

        report = RunReport(
            run_id=self.run_id,
            results=results,
            started_at=started,
            completed_at=time.time(),
            mode=self.config.mode,
            batch_size=self.config.batch_size,
            max_concurrency=dispatcher.max_concurrency,
            processor=self.processor_name,
            signal_set=self.signal.is_set(),
            signal_reason=self.signal.reason,
            dispatcher_stats=dispatcher.get_stats(),
            processor_stats=self._processor_stats(),
        )
        logger.info(
            f"Run {self.run_id} finished in {report.duration_seconds}s — {report.counts}"
        )

        if self.store:
            self.store.complete_run(self.run_id, status=report.status, metadata={"counts": report.counts})

        for sink in sinks:
            sink(report)
        return report

    def _processor_stats(self) -> dict:
        get_stats = getattr(self.process, "get_stats", None)
        return dict(get_stats()) if callable(get_stats) else {}

    def _lifecycle(self):
        if isinstance(self.process, BaseProcessor):
            return self.process
        return nullcontext()

    async def _run_async(self, dispatcher: AsyncWorkerPoolDispatcher, units: Iterable[Any]) -> ResultSet:
        if isinstance(self.process, AsyncBaseProcessor):
            async with self.process:
                return await dispatcher.run_async(units, self.process)
        return await dispatcher.run_async(units, self.process)

"""
Base processor classes — the "process one work item" side of a batch run.

A processor is a callable taking one work item and returning a payload (or
raising). Processors own their own connections and open/close them through
the context-manager protocol; the dispatcher never touches them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger("m365_batch_engine.processors")


class BaseProcessor(ABC):
    """
    Synchronous processor, run on worker threads.

    Subclasses implement process(). Anything they keep per worker must be
    thread-local; process() is called from many threads at once.
    """

    name: str = "base"
    description: str = "Base processor"

    def __call__(self, item: Any) -> Any:
        return self.process(item)

    @abstractmethod
    def process(self, item: Any) -> Any:
        raise NotImplementedError

    def open(self):
        pass

    def close(self):
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *args):
        self.close()


class AsyncBaseProcessor(ABC):
    """Coroutine processor, run as tasks on a single event loop."""

    name: str = "base-async"
    description: str = "Base async processor"

    async def __call__(self, item: Any) -> Any:
        return await self.process(item)

    @abstractmethod
    async def process(self, item: Any) -> Any:
        raise NotImplementedError

    async def open(self):
        pass

    async def close(self):
        pass

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *args):
        await self.close()

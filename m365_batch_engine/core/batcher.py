"""
Batcher — splits a sequence of work items into fixed-size, ordered batches.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import islice
from typing import Any, Iterable, Iterator


@dataclass(frozen=True)
class Batch:
    """An immutable, ordered group of work items processed by one worker."""
    items: tuple
    start_index: int = 0

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)

    def __getitem__(self, position):
        return self.items[position]


def partition(items: Iterable[Any], batch_size: int) -> Iterator[Batch]:
    """
    Lazily partition `items` into batches of at most `batch_size`.

    Order is preserved within and across batches. Only the last batch can be
    short. An empty input yields no batches.
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int):
        raise ValueError(f"batch_size must be an integer, got {batch_size!r}")
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    return _partition(iter(items), batch_size)


def _partition(iterator: Iterator[Any], batch_size: int) -> Iterator[Batch]:
    start = 0
    while True:
        chunk = tuple(islice(iterator, batch_size))
        if not chunk:
            return
        yield Batch(items=chunk, start_index=start)
        start += len(chunk)

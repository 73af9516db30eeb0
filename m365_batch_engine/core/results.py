"""
ResultSet — the concurrency-safe, append-only collection of outcomes for one run.

Workers only append. The owner reads it back once the dispatcher returns,
either through the query helpers or by draining it into a sink.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Iterable, Iterator

from .outcomes import Failure, Outcome, OutcomeStatus, Skipped, Success, is_outcome


class ResultSet:
    """Append-only outcome collection guarded by a lock."""

    def __init__(self, outcomes: Iterable[Outcome] = ()):
        self._lock = threading.Lock()
        self._outcomes: list[Outcome] = []
        self._sealed = False
        self.extend(outcomes)

    # --- Writes (called from workers) ---

    def append(self, outcome: Outcome) -> None:
        if not is_outcome(outcome):
            raise TypeError(f"ResultSet only accepts outcomes, got {type(outcome).__name__}")
        with self._lock:
            if self._sealed:
                raise RuntimeError("ResultSet has been drained; no further appends allowed")
            self._outcomes.append(outcome)

    def extend(self, outcomes: Iterable[Outcome]) -> None:
        for outcome in outcomes:
            self.append(outcome)

    # --- Reads ---

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def __iter__(self) -> Iterator[Outcome]:
        return iter(self.snapshot())

    def snapshot(self) -> list[Outcome]:
        """Outcomes in arrival (completion) order."""
        with self._lock:
            return list(self._outcomes)

    def sorted(self) -> list[Outcome]:
        """Outcomes ordered by dispatch index, i.e. original input order."""
        return sorted(self.snapshot(), key=lambda o: o.index)

    def successes(self) -> list[Success]:
        return [o for o in self.sorted() if isinstance(o, Success)]

    def failures(self) -> list[Failure]:
        return [o for o in self.sorted() if isinstance(o, Failure)]

    def skipped(self) -> list[Skipped]:
        return [o for o in self.sorted() if isinstance(o, Skipped)]

    def counts(self) -> dict[str, int]:
        counter = Counter(o.status.value for o in self.snapshot())
        counts = {status.value: counter.get(status.value, 0) for status in OutcomeStatus}
        counts["total"] = sum(counter.values())
        return counts

    @property
    def has_failures(self) -> bool:
        return any(isinstance(o, Failure) for o in self.snapshot())

    @property
    def sealed(self) -> bool:
        return self._sealed

    def drain(self) -> list[Outcome]:
        """
        Seal the set and return its outcomes in dispatch order.
        Can be called once; later appends raise RuntimeError.
        """
        with self._lock:
            if self._sealed:
                raise RuntimeError("ResultSet has already been drained")
            self._sealed = True
            outcomes = list(self._outcomes)
        return sorted(outcomes, key=lambda o: o.index)

    def to_dict(self) -> dict:
        return {
            "counts": self.counts(),
            "outcomes": [o.to_dict() for o in self.sorted()],
        }

    def __repr__(self) -> str:
        c = self.counts()
        return (
            f"<ResultSet total={c['total']} success={c['success']} "
            f"failure={c['failure']} skipped={c['skipped']}>"
        )

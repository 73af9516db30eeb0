"""
Coordination signal — a one-way, shared "stop starting new work" flag.

Workers read the flag before starting a unit and set it on an unrecoverable
condition. Setting is idempotent; the flag is never cleared within a run.
In-flight work is not interrupted.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..store.run_store import RunStore

logger = logging.getLogger("m365_batch_engine.signal")


class CoordinationSignal:
    """In-process signal shared by all worker threads / tasks of one run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._set = False
        self._reason = ""
        self._set_at: Optional[float] = None

    def set(self, reason: str = "") -> bool:
        """
        Move the signal to Signaled.
        Returns True only for the call that performed the transition.
        """
        with self._lock:
            if self._set:
                return False
            self._set = True
            self._reason = reason
            self._set_at = time.time()
        logger.warning(f"Coordination signal set: {reason or 'no reason given'}")
        return True

    def is_set(self) -> bool:
        return self._set

    @property
    def reason(self) -> str:
        return self._reason

    @property
    def set_at(self) -> Optional[float]:
        return self._set_at

    def __repr__(self) -> str:
        state = "Signaled" if self._set else "Clear"
        return f"<CoordinationSignal {state}>"


class SharedCoordinationSignal(CoordinationSignal):
    """
    Signal visible to every process that opens the same RunStore.

    The flag lives in one row of the store's `signals` table keyed by run id.
    Once observed as set it is cached locally, since it can never clear.
    """

    def __init__(self, store: "RunStore", run_id: str):
        super().__init__()
        self.store = store
        self.run_id = run_id

    def set(self, reason: str = "") -> bool:
        created = self.store.set_signal(self.run_id, reason)
        with self._lock:
            first_local = not self._set
            self._set = True
            if first_local:
                self._set_at = time.time()
                self._reason = reason
        if created:
            logger.warning(f"Shared signal set for run {self.run_id}: {reason or 'no reason given'}")
        else:
            self._refresh()
        return created

    def is_set(self) -> bool:
        if self._set:
            return True
        return self._refresh()

    def _refresh(self) -> bool:
        row = self.store.get_signal(self.run_id)
        if row is None:
            return False
        with self._lock:
            self._set = True
            self._reason = row["reason"]
            self._set_at = row["set_at"]
        return True

"""Shared fixtures for the batch engine test suite."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from m365_batch_engine import profiles


class ActiveCounter:
    """Records how many callers are inside a block at once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.calls: list = []

    def __enter__(self) -> "ActiveCounter":
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        return self

    def __exit__(self, *args) -> None:
        with self._lock:
            self.active -= 1

    def record(self, item) -> None:
        with self._lock:
            self.calls.append(item)


@pytest.fixture
def active_counter() -> ActiveCounter:
    return ActiveCounter()


@pytest.fixture
def slow_square(active_counter: ActiveCounter):
    """A process function that squares its input and tracks concurrency."""

    def _process(item: int) -> int:
        active_counter.record(item)
        with active_counter:
            time.sleep(0.01)
            return item * item

    return _process


@pytest.fixture
def isolated_profiles(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the profile store at a temporary directory."""
    config_dir = tmp_path / "profiles_home"
    monkeypatch.setattr(profiles, "_CONFIG_DIR", config_dir)
    monkeypatch.setattr(profiles, "_PROFILES_FILE", config_dir / "profiles.json")
    return config_dir / "profiles.json"

"""
Configuration module for the M365 Batch Engine.
Defines executor tuning, HTTP probe behaviour and output settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


# ─── Executor Settings ──────────────────────────────────────────────────────

DEFAULT_BATCH_SIZE = 50           # Items handed to one worker in batch mode
DEFAULT_MAX_CONCURRENCY = 0       # 0 = one worker per CPU
EXECUTION_MODES = ("item", "batch")


@dataclass
class ExecutorConfig:
    """Controls for partitioning and the worker pool."""
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    batch_size: int = DEFAULT_BATCH_SIZE
    mode: str = "item"                 # "item" or "batch"
    fail_fast: bool = False            # Stop starting new work after any failure

    def validate(self):
        if self.mode not in EXECUTION_MODES:
            raise ValueError(f"mode must be one of {EXECUTION_MODES}, got {self.mode!r}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_concurrency < 0:
            raise ValueError(f"max_concurrency must be >= 0, got {self.max_concurrency}")


# ─── HTTP Probe Settings ────────────────────────────────────────────────────

# Rate limiting / throttling
MAX_RETRIES = 3                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor
THROTTLE_STATUS_CODES = (429, 503, 504)


@dataclass
class HttpConfig:
    """Behaviour of the HTTP probe processors."""
    method: str = "GET"
    timeout_seconds: float = 60.0
    connect_timeout_seconds: float = 30.0
    max_retries: int = MAX_RETRIES
    initial_backoff_seconds: float = INITIAL_BACKOFF_SECONDS
    max_backoff_seconds: float = MAX_BACKOFF_SECONDS
    backoff_multiplier: float = BACKOFF_MULTIPLIER
    follow_redirects: bool = True
    fatal_status_codes: list[int] = field(default_factory=lambda: [401])
    headers: dict[str, str] = field(default_factory=dict)


# ─── Output Configuration ───────────────────────────────────────────────────

OUTPUT_FORMATS = ("json", "csv")


@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: list(OUTPUT_FORMATS))

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "m365_batch_output")

    @property
    def run_dir(self) -> Path:
        return Path(self.base_dir)

    @property
    def store_path(self) -> Path:
        return self.run_dir / ".store" / "runs.db"

    def create_directories(self):
        self.run_dir.mkdir(parents=True, exist_ok=True)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for the entire engine."""
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    processor: str = "echo"
    input_column: Optional[str] = None
    store_enabled: bool = True
    signal_retention_hours: float = 24.0  # Stop signals older than this are pruned at run start
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "EngineConfig":
        """Load configuration from a JSON file. Unknown keys are ignored."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        for section in ("executor", "http", "output"):
            if section in data:
                target = getattr(config, section)
                for k, v in data[section].items():
                    if hasattr(target, k):
                        setattr(target, k, v)
        config.processor = data.get("processor", config.processor)
        config.input_column = data.get("input_column", config.input_column)
        config.store_enabled = data.get("store_enabled", True)
        config.signal_retention_hours = float(data.get("signal_retention_hours", config.signal_retention_hours))
        config.verbose = data.get("verbose", False)
        config.executor.validate()
        return config

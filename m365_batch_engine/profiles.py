"""
Run Profile Manager — named presets for recurring batch runs.

Profiles are stored in:
    ~/.m365_batch_engine/profiles.json

Each profile pins the processor, pool size, batching mode and input column
for one recurring admin task (e.g. "site-health" over the weekly site export).
Switch between them via `--profile <name>` on the CLI.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

from .config import DEFAULT_BATCH_SIZE, DEFAULT_MAX_CONCURRENCY, ExecutorConfig

logger = logging.getLogger("m365_batch_engine.profiles")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CONFIG_DIR = Path.home() / ".m365_batch_engine"
_PROFILES_FILE = _CONFIG_DIR / "profiles.json"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class RunProfile:
    """A single named run preset."""
    name: str                                      # Unique short name (e.g. "site-health")
    processor: str = "echo"                        # Key in processors.PROCESSORS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY  # 0 = one worker per CPU
    mode: str = "item"                             # "item" or "batch"
    input_column: str = ""                         # CSV column holding the work item
    fail_fast: bool = False
    notes: str = ""

    def to_executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(
            max_concurrency=self.max_concurrency,
            batch_size=self.batch_size,
            mode=self.mode,
            fail_fast=self.fail_fast,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        del data["name"]
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "RunProfile":
        known = {f.name for f in fields(cls)} - {"name"}
        profile = cls(name=name, **{k: v for k, v in data.items() if k in known})
        profile.batch_size = int(profile.batch_size)
        profile.max_concurrency = int(profile.max_concurrency)
        profile.fail_fast = bool(profile.fail_fast)
        return profile


@dataclass
class ProfileStore:
    """Run profiles on disk, keyed by name, plus the default profile."""
    profiles: dict[str, RunProfile] = field(default_factory=dict)
    default_profile: str = ""

    @classmethod
    def load(cls) -> "ProfileStore":
        """Read the profiles file. A missing or unreadable file gives an empty store."""
        if not _PROFILES_FILE.exists():
            return cls()
        try:
            raw = json.loads(_PROFILES_FILE.read_text(encoding="utf-8"))
            entries = {
                name: RunProfile.from_dict(name, pdata)
                for name, pdata in raw.get("profiles", {}).items()
            }
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable profiles file {_PROFILES_FILE}: {e}")
            return cls()
        return cls(profiles=entries, default_profile=raw.get("default_profile", ""))

    def save(self) -> None:
        _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        payload = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }
        _PROFILES_FILE.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    def add(self, profile: RunProfile, set_default: bool = False) -> None:
        """Store a profile, replacing any existing one with the same name."""
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        if self.profiles.pop(name, None) is None:
            return False
        if self.default_profile == name:
            # Fall back to the oldest remaining profile
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[RunProfile]:
        """Case-insensitive lookup."""
        matches = [p for pname, p in self.profiles.items() if pname.lower() == name.lower()]
        return matches[0] if matches else None

    def get_default(self) -> Optional[RunProfile]:
        return self.profiles.get(self.default_profile) if self.default_profile else None

    def set_default(self, name: str) -> bool:
        if name not in self.profiles:
            return False
        self.default_profile = name
        self.save()
        return True

    def list_profiles(self) -> list[RunProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)


def resolve_profile(profile_name: Optional[str] = None) -> Optional[RunProfile]:
    """The named profile, or the default one when no name is given."""
    profiles = ProfileStore.load()
    return profiles.get(profile_name) if profile_name else profiles.get_default()

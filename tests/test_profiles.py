"""Tests for run profile persistence."""

from __future__ import annotations

import json
from pathlib import Path

from m365_batch_engine.profiles import ProfileStore, RunProfile, resolve_profile


class TestProfileStore:

    def test_empty_when_missing(self, isolated_profiles: Path) -> None:
        assert ProfileStore.load().profiles == {}
        assert resolve_profile() is None

    def test_add_and_reload(self, isolated_profiles: Path) -> None:
        store = ProfileStore.load()
        store.add(RunProfile(name="site-health", processor="http-probe", max_concurrency=8, mode="batch"))

        reloaded = ProfileStore.load()
        profile = reloaded.get("SITE-HEALTH")
        assert profile is not None
        assert profile.processor == "http-probe"
        assert profile.max_concurrency == 8
        assert reloaded.default_profile == "site-health"
        assert json.loads(isolated_profiles.read_text())["profiles"]["site-health"]["mode"] == "batch"

    def test_remove_moves_default(self, isolated_profiles: Path) -> None:
        store = ProfileStore.load()
        store.add(RunProfile(name="a"))
        store.add(RunProfile(name="b"))

        assert store.remove("a")
        assert not store.remove("a")
        assert ProfileStore.load().default_profile == "b"

    def test_set_default(self, isolated_profiles: Path) -> None:
        store = ProfileStore.load()
        store.add(RunProfile(name="a"))
        store.add(RunProfile(name="b"))

        assert store.set_default("b")
        assert not store.set_default("missing")
        assert resolve_profile().name == "b"
        assert resolve_profile("a").name == "a"

    def test_corrupt_file_is_ignored(self, isolated_profiles: Path) -> None:
        isolated_profiles.parent.mkdir(parents=True)
        isolated_profiles.write_text("{not json", encoding="utf-8")
        assert ProfileStore.load().profiles == {}

    def test_to_executor_config(self) -> None:
        config = RunProfile(name="x", batch_size=10, max_concurrency=4, mode="batch", fail_fast=True).to_executor_config()
        assert (config.batch_size, config.max_concurrency, config.mode, config.fail_fast) == (10, 4, "batch", True)

    def test_unknown_keys_are_ignored(self, isolated_profiles: Path) -> None:
        isolated_profiles.parent.mkdir(parents=True)
        isolated_profiles.write_text(json.dumps({
            "default_profile": "legacy",
            "profiles": {"legacy": {"processor": "http-probe", "max_concurrency": "6", "tenant_id": "abc"}},
        }), encoding="utf-8")

        profile = resolve_profile()
        assert profile.processor == "http-probe"
        assert profile.max_concurrency == 6
        assert "tenant_id" not in profile.to_dict()

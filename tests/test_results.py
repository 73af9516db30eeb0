"""Tests for the ResultSet aggregator."""

from __future__ import annotations

import threading

import pytest

from m365_batch_engine.core import ErrorInfo, Failure, ResultSet, Skipped, Success


def _sample() -> ResultSet:
    return ResultSet([
        Success(item="b", payload=2, index=1),
        Failure(item="c", error=ErrorInfo("boom", "ValueError"), index=2),
        Success(item="a", payload=1, index=0),
        Skipped(item="d", index=3),
    ])


class TestResultSet:

    def test_counts(self) -> None:
        assert _sample().counts() == {"success": 2, "failure": 1, "skipped": 1, "total": 4}

    def test_sorted_by_dispatch_index(self) -> None:
        assert [o.item for o in _sample().sorted()] == ["a", "b", "c", "d"]

    def test_partitions(self) -> None:
        results = _sample()
        assert [o.item for o in results.successes()] == ["a", "b"]
        assert [o.item for o in results.failures()] == ["c"]
        assert [o.item for o in results.skipped()] == ["d"]
        assert results.has_failures

    def test_rejects_non_outcomes(self) -> None:
        with pytest.raises(TypeError):
            ResultSet().append({"item": 1})  # type: ignore[arg-type]

    def test_drain_seals(self) -> None:
        results = _sample()
        drained = results.drain()
        assert [o.index for o in drained] == [0, 1, 2, 3]
        assert results.sealed
        with pytest.raises(RuntimeError):
            results.append(Success(item="e", index=4))
        with pytest.raises(RuntimeError):
            results.drain()

    def test_concurrent_appends_are_not_lost(self) -> None:
        results = ResultSet()

        def _writer(offset: int) -> None:
            for i in range(500):
                results.append(Success(item=offset + i, index=offset + i))

        threads = [threading.Thread(target=_writer, args=(n * 500,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4000
        assert {o.index for o in results} == set(range(4000))

    def test_to_dict(self) -> None:
        data = _sample().to_dict()
        assert data["counts"]["total"] == 4
        assert data["outcomes"][2]["error"] == {"message": "boom", "error_type": "ValueError"}


class TestErrorInfo:

    def test_from_exception(self) -> None:
        try:
            raise KeyError("site")
        except KeyError as e:
            info = ErrorInfo.from_exception(e)
        assert info.error_type == "KeyError"
        assert info.message == "'site'"
        assert "KeyError" in info.traceback

    def test_empty_message_falls_back_to_type(self) -> None:
        assert ErrorInfo.from_exception(RuntimeError()).message == "RuntimeError"

    def test_duration_not_part_of_equality(self) -> None:
        assert Success(item=1, payload=1, index=0, duration_seconds=0.5) == Success(item=1, payload=1, index=0)

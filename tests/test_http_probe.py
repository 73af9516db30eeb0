"""Tests for the HTTP probe processors, using httpx.MockTransport."""

from __future__ import annotations

import httpx
import pytest

from m365_batch_engine.config import ExecutorConfig, HttpConfig
from m365_batch_engine.core import FatalProcessingError, run_batched
from m365_batch_engine.processors import AsyncHttpProbeProcessor, HttpProbeProcessor, ProbeError
from m365_batch_engine.runner import BatchRun
from m365_batch_engine.safety.guardian import SafetyGuardian, SafetyViolation

SITE = "https://contoso.sharepoint.com/sites/finance"


def _config(**overrides) -> HttpConfig:
    defaults = dict(max_retries=2, initial_backoff_seconds=0.5, max_backoff_seconds=4.0)
    defaults.update(overrides)
    return HttpConfig(**defaults)


class _Script:
    """Replays a list of responses (or exceptions) and records requests."""

    def __init__(self, *steps) -> None:
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        return step


class TestHttpProbeProcessor:

    def test_success_payload(self) -> None:
        script = _Script(httpx.Response(200, text="ok"))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script))

        with probe:
            payload = probe(SITE)

        assert payload["status_code"] == 200
        assert payload["url"] == SITE
        assert payload["final_url"] == SITE
        assert payload["attempts"] == 1
        assert script.requests[0].method == "GET"
        assert "read-only" in script.requests[0].headers["User-Agent"]

    def test_throttle_then_success(self) -> None:
        sleeps: list[float] = []
        script = _Script(
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(503),
            httpx.Response(200),
        )
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script), sleep=sleeps.append)

        payload = probe.process(SITE)

        assert payload["attempts"] == 3
        assert sleeps == [3.0, 1.0]
        assert probe.get_stats() == {"total_requests": 3, "throttle_events": 2}

    def test_throttled_until_retries_exhausted(self) -> None:
        script = _Script(httpx.Response(429))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script), sleep=lambda s: None)

        with pytest.raises(ProbeError) as exc_info:
            probe.process(SITE)

        assert exc_info.value.status_code == 429
        assert len(script.requests) == 3

    def test_not_found_is_item_failure(self) -> None:
        script = _Script(httpx.Response(404, json={"error": {"message": "Site not found"}}))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script))

        with pytest.raises(ProbeError) as exc_info:
            probe.process(SITE)

        assert exc_info.value.status_code == 404
        assert "Site not found" in str(exc_info.value)

    def test_sharepoint_odata_error_message(self) -> None:
        body = {"odata.error": {"message": {"lang": "en-US", "value": "Access denied."}}}
        script = _Script(httpx.Response(403, json=body))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script))

        with pytest.raises(ProbeError, match="Access denied."):
            probe.process(SITE)

    def test_unauthorized_is_fatal(self) -> None:
        script = _Script(httpx.Response(401))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script))

        with pytest.raises(FatalProcessingError):
            probe.process(SITE)

    def test_timeout_is_retried(self) -> None:
        sleeps: list[float] = []
        script = _Script(httpx.ConnectTimeout("slow"), httpx.Response(200))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script), sleep=sleeps.append)

        assert probe.process(SITE)["attempts"] == 2
        assert sleeps == [0.5]

    def test_connect_error_after_retries_propagates(self) -> None:
        script = _Script(httpx.ConnectError("refused"))
        probe = HttpProbeProcessor(_config(max_retries=1), transport=httpx.MockTransport(script), sleep=lambda s: None)

        with pytest.raises(httpx.ConnectError):
            probe.process(SITE)
        assert len(script.requests) == 2

    def test_write_method_blocked(self) -> None:
        guardian = SafetyGuardian()
        script = _Script(httpx.Response(200))
        probe = HttpProbeProcessor(_config(method="DELETE"), guardian=guardian, transport=httpx.MockTransport(script))

        with pytest.raises(SafetyViolation):
            probe.process(SITE)
        assert script.requests == []
        assert guardian.get_audit_record()["safety_guardian"]["violations_detected"] == 1

    def test_one_client_per_worker_thread(self) -> None:
        script = _Script(httpx.Response(200))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script))

        results = run_batched([f"{SITE}{i}" for i in range(12)], probe, max_concurrency=3)

        assert len(results.successes()) == 12
        assert 1 <= len(probe._clients) <= 3
        probe.close()
        assert probe._clients == []


class TestProbeInBatchRun:

    def test_unauthorized_stops_the_run(self) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/hr"):
                return httpx.Response(401)
            return httpx.Response(200)

        urls = [f"https://contoso.sharepoint.com/sites/{n}" for n in ("a", "b", "hr", "c", "d")]
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(_handler))
        report = BatchRun(probe, ExecutorConfig(max_concurrency=1)).execute(urls)

        assert report.status == "stopped"
        assert report.counts == {"success": 2, "failure": 1, "skipped": 2, "total": 5}
        assert report.results.failures()[0].error.error_type == "FatalProcessingError"


class TestAsyncHttpProbeProcessor:

    @pytest.mark.asyncio
    async def test_success_and_throttle(self) -> None:
        sleeps: list[float] = []

        async def _sleep(seconds: float) -> None:
            sleeps.append(seconds)

        script = _Script(httpx.Response(429), httpx.Response(200))
        probe = AsyncHttpProbeProcessor(_config(), transport=httpx.MockTransport(script), sleep=_sleep)

        async with probe:
            payload = await probe(SITE)

        assert payload["attempts"] == 2
        assert sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_requires_open(self) -> None:
        probe = AsyncHttpProbeProcessor(_config())
        with pytest.raises(RuntimeError):
            await probe.process(SITE)

    def test_in_batch_run(self) -> None:
        def _handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/gone"):
                return httpx.Response(410)
            return httpx.Response(200)

        urls = [f"https://contoso.sharepoint.com/sites/{n}" for n in ("a", "gone", "c")]
        probe = AsyncHttpProbeProcessor(_config(), transport=httpx.MockTransport(_handler))
        report = BatchRun(probe, ExecutorConfig(max_concurrency=2)).execute(urls)

        assert report.counts == {"success": 2, "failure": 1, "skipped": 0, "total": 3}
        assert report.results.failures()[0].item.endswith("/gone")


class TestProbeStatsInReport:

    def test_throttle_counters_reach_the_report(self) -> None:
        script = _Script(httpx.Response(429), httpx.Response(200))
        probe = HttpProbeProcessor(_config(), transport=httpx.MockTransport(script), sleep=lambda _s: None)

        report = BatchRun(probe, ExecutorConfig(max_concurrency=1)).execute([SITE, SITE])

        assert report.processor_stats == {"total_requests": 3, "throttle_events": 1}
        assert report.to_dict()["processor_stats"]["throttle_events"] == 1

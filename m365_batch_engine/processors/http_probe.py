"""
HTTP probe processors — read-only reachability check of a tenant site URL.

Each work item is a URL (e.g. a SharePoint Online site collection). The probe
issues one read-only request, retrying with exponential backoff on throttling
(429/503/504, honoring Retry-After), timeouts and connection errors.

  - statuses listed in HttpConfig.fatal_status_codes raise FatalProcessingError
    (e.g. 401: the credentials are bad for every site, not just this one)
  - any other status >= 400 raises ProbeError for this item only
  - success returns a small payload dict

The sync processor keeps one httpx.Client per worker thread so that no
connection object is shared across workers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import HttpConfig, THROTTLE_STATUS_CODES
from ..core.errors import FatalProcessingError
from ..safety.guardian import SafetyGuardian
from .base import AsyncBaseProcessor, BaseProcessor

logger = logging.getLogger("m365_batch_engine.processors.http_probe")

USER_AGENT = "m365-batch-engine/1.0 (read-only probe)"


class ProbeError(Exception):
    """Raised when a site answers with a non-recoverable error status."""

    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP {status_code} for {url}: {message}")


def _client_kwargs(config: HttpConfig, transport: Any) -> dict:
    headers = {
        "Accept": "application/json;odata=nometadata, text/html;q=0.9, */*;q=0.8",
        "User-Agent": USER_AGENT,
    }
    headers.update(config.headers)
    return {
        "timeout": httpx.Timeout(config.timeout_seconds, connect=config.connect_timeout_seconds),
        "follow_redirects": config.follow_redirects,
        "headers": headers,
        "transport": transport,
    }


def _retry_wait(response: httpx.Response, backoff: float) -> float:
    """Seconds to wait before the next attempt: Retry-After, but never below backoff."""
    header = response.headers.get("Retry-After")
    if header is None:
        return backoff
    try:
        return max(float(header), backoff)
    except ValueError:
        return backoff


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error") or body.get("odata.error") or {}
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, dict):
                message = message.get("value")
            if message:
                return str(message)
    return response.reason_phrase


def _evaluate(
    config: HttpConfig,
    url: str,
    response: httpx.Response,
    attempts: int,
    started: float,
) -> dict:
    status = response.status_code
    if status in config.fatal_status_codes:
        raise FatalProcessingError(
            f"HTTP {status} for {url}: {_error_message(response)} — stopping run"
        )
    if status >= 400:
        raise ProbeError(status, _error_message(response), url)
    return {
        "url": url,
        "status_code": status,
        "final_url": str(response.url),
        "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
        "attempts": attempts,
    }


class _ProbeStats:
    def __init__(self):
        self._lock = threading.Lock()
        self.requests = 0
        self.throttle_events = 0

    def request(self):
        with self._lock:
            self.requests += 1

    def throttled(self):
        with self._lock:
            self.throttle_events += 1

    def to_dict(self) -> dict:
        with self._lock:
            return {"total_requests": self.requests, "throttle_events": self.throttle_events}


class HttpProbeProcessor(BaseProcessor):
    name = "http-probe"
    description = "Read-only HTTP probe of each site URL (thread pool)"

    def __init__(
        self,
        config: Optional[HttpConfig] = None,
        guardian: Optional[SafetyGuardian] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or HttpConfig()
        self.guardian = guardian or SafetyGuardian()
        self._transport = transport
        self._sleep = sleep
        self._local = threading.local()
        self._clients: list[httpx.Client] = []
        self._clients_lock = threading.Lock()
        self._stats = _ProbeStats()

    def _client(self) -> httpx.Client:
        client = getattr(self._local, "client", None)
        if client is None:
            client = httpx.Client(**_client_kwargs(self.config, self._transport))
            self._local.client = client
            with self._clients_lock:
                self._clients.append(client)
        return client

    def close(self):
        with self._clients_lock:
            clients, self._clients = self._clients, []
        for client in clients:
            client.close()
        self._local = threading.local()

    def process(self, item: Any) -> dict:
        url = str(item).strip()
        method = self.config.method.upper()
        self.guardian.validate_request(method, url)

        backoff = self.config.initial_backoff_seconds
        started = time.monotonic()
        last_status = 0

        for attempt in range(self.config.max_retries + 1):
            try:
                response = self._client().request(method, url)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(
                    f"{type(e).__name__} on {url}, attempt {attempt + 1}/{self.config.max_retries + 1}"
                )
                if attempt == self.config.max_retries:
                    raise
                self._sleep(backoff)
                backoff = min(backoff * self.config.backoff_multiplier, self.config.max_backoff_seconds)
                continue

            self._stats.request()
            last_status = response.status_code
            if last_status in THROTTLE_STATUS_CODES:
                self._stats.throttled()
                if attempt == self.config.max_retries:
                    break
                wait_time = _retry_wait(response, backoff)
                logger.warning(
                    f"Throttled ({last_status}) on {url}. "
                    f"Retry {attempt + 1}/{self.config.max_retries} in {wait_time:.1f}s"
                )
                self._sleep(wait_time)
                backoff = min(backoff * self.config.backoff_multiplier, self.config.max_backoff_seconds)
                continue

            return _evaluate(self.config, url, response, attempt + 1, started)

        raise ProbeError(last_status, f"still throttled after {self.config.max_retries} retries", url)

    def get_stats(self) -> dict:
        return self._stats.to_dict()


class AsyncHttpProbeProcessor(AsyncBaseProcessor):
    name = "http-probe-async"
    description = "Read-only HTTP probe of each site URL (asyncio)"

    def __init__(
        self,
        config: Optional[HttpConfig] = None,
        guardian: Optional[SafetyGuardian] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or HttpConfig()
        self.guardian = guardian or SafetyGuardian()
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self._stats = _ProbeStats()

    async def open(self):
        if self._client is None:
            self._client = httpx.AsyncClient(**_client_kwargs(self.config, self._transport))

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def process(self, item: Any) -> dict:
        if self._client is None:
            raise RuntimeError("AsyncHttpProbeProcessor not opened. Use 'async with'.")

        url = str(item).strip()
        method = self.config.method.upper()
        self.guardian.validate_request(method, url)

        backoff = self.config.initial_backoff_seconds
        started = time.monotonic()
        last_status = 0

        for attempt in range(self.config.max_retries + 1):
            try:
                response = await self._client.request(method, url)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(
                    f"{type(e).__name__} on {url}, attempt {attempt + 1}/{self.config.max_retries + 1}"
                )
                if attempt == self.config.max_retries:
                    raise
                await self._sleep(backoff)
                backoff = min(backoff * self.config.backoff_multiplier, self.config.max_backoff_seconds)
                continue

            self._stats.request()
            last_status = response.status_code
            if last_status in THROTTLE_STATUS_CODES:
                self._stats.throttled()
                if attempt == self.config.max_retries:
                    break
                wait_time = _retry_wait(response, backoff)
                logger.warning(
                    f"Throttled ({last_status}) on {url}. "
                    f"Retry {attempt + 1}/{self.config.max_retries} in {wait_time:.1f}s"
                )
                await self._sleep(wait_time)
                backoff = min(backoff * self.config.backoff_multiplier, self.config.max_backoff_seconds)
                continue

            return _evaluate(self.config, url, response, attempt + 1, started)

        raise ProbeError(last_status, f"still throttled after {self.config.max_retries} retries", url)

    def get_stats(self) -> dict:
        return self._stats.to_dict()

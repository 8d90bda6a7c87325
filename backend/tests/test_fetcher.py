"""
Tests for the rate-limited fetcher and per-domain spacing.

HTTP is served by httpx.MockTransport and retry sleeps are recorded
instead of awaited, so nothing here touches the network or the clock.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from feedwatch.config import FetcherSettings
from feedwatch.services.data_ingestion.errors import (
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
)
from feedwatch.services.data_ingestion.fetcher import RateLimitedFetcher, browser_headers
from feedwatch.services.data_ingestion.rate_limiter import DomainRateLimiter


def make_fetcher(handler, max_retries=3):
    sleep = AsyncMock()
    fetcher = RateLimitedFetcher(
        FetcherSettings(
            min_domain_interval_seconds=0,
            max_retries=max_retries,
            retry_base_delay_seconds=1.0,
        ),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )
    return fetcher, sleep


def sleep_delays(sleep: AsyncMock) -> list[float]:
    return [float(call.args[0]) for call in sleep.await_args_list]


async def fetch_and_close(fetcher, url, **kwargs):
    try:
        return await fetcher.get(url, **kwargs)
    finally:
        await fetcher.close()


class TestRetryPolicy:
    """Tests for status-aware retries."""

    def test_429_retries_with_exponential_backoff(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(429)

        fetcher, sleep = make_fetcher(handler)
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(fetch_and_close(fetcher, "https://example.com/feed"))

        assert exc_info.value.status_code == 429
        assert len(calls) == 4
        assert sleep_delays(sleep) == [1.0, 2.0, 4.0]

    def test_5xx_retries_with_linear_backoff(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(503)

        fetcher, sleep = make_fetcher(handler)
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(fetch_and_close(fetcher, "https://example.com/feed"))

        assert exc_info.value.status_code == 503
        assert len(calls) == 4
        assert sleep_delays(sleep) == [1.0, 2.0, 3.0]

    def test_recovers_after_transient_server_error(self):
        statuses = [502, 500, 200]

        def handler(request):
            return httpx.Response(statuses.pop(0), text="ok")

        fetcher, sleep = make_fetcher(handler)
        response = asyncio.run(fetch_and_close(fetcher, "https://example.com/"))

        assert response.status_code == 200
        assert response.text == "ok"
        assert sleep_delays(sleep) == [1.0, 2.0]

    def test_404_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(404)

        fetcher, sleep = make_fetcher(handler)
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(fetch_and_close(fetcher, "https://example.com/missing"))

        assert exc_info.value.status_code == 404
        assert not exc_info.value.retryable
        assert len(calls) == 1
        sleep.assert_not_awaited()

    def test_retry_after_header_is_kept(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "30"})

        fetcher, _ = make_fetcher(handler, max_retries=0)
        with pytest.raises(HttpStatusError) as exc_info:
            asyncio.run(fetch_and_close(fetcher, "https://example.com/feed"))

        assert exc_info.value.retry_after == "30"


class TestTransportErrors:
    """Tests for timeout and network error mapping."""

    def test_timeout_maps_to_fetch_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        fetcher, sleep = make_fetcher(handler)
        with pytest.raises(FetchTimeoutError):
            asyncio.run(fetch_and_close(fetcher, "https://slow.example.com/"))
        sleep.assert_not_awaited()

    def test_connect_error_maps_to_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        fetcher, _ = make_fetcher(handler)
        with pytest.raises(NetworkError) as exc_info:
            asyncio.run(fetch_and_close(fetcher, "https://down.example.com/"))
        assert exc_info.value.url == "https://down.example.com/"


class TestHeaders:
    """Tests for request identity."""

    def test_default_user_agent(self):
        seen = {}

        def handler(request):
            seen["ua"] = request.headers["user-agent"]
            return httpx.Response(200)

        fetcher, _ = make_fetcher(handler)
        asyncio.run(fetch_and_close(fetcher, "https://example.com/"))

        assert seen["ua"] == FetcherSettings().user_agent

    def test_browser_headers_override_user_agent(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200)

        fetcher, _ = make_fetcher(handler)
        asyncio.run(fetch_and_close(fetcher, "https://example.com/", headers=browser_headers("TestBrowser/1.0")))

        assert seen["user-agent"] == "TestBrowser/1.0"
        assert "text/html" in seen["accept"]

    def test_head_requests(self):
        methods = []

        def handler(request):
            methods.append(request.method)
            return httpx.Response(200)

        fetcher, _ = make_fetcher(handler)

        async def run():
            try:
                await fetcher.head("https://example.com/blog")
            finally:
                await fetcher.close()

        asyncio.run(run())
        assert methods == ["HEAD"]


class TestDomainRateLimiter:
    """Tests for per-domain spacing."""

    def test_first_request_does_not_wait(self):
        now = [100.0]
        limiter = DomainRateLimiter(min_interval=2.0, clock=lambda: now[0])

        waited = asyncio.run(limiter.acquire("https://example.com/a"))

        assert waited == 0.0
        assert limiter.wait_time("example.com") == 2.0

    def test_wait_shrinks_as_time_passes(self):
        now = [100.0]
        limiter = DomainRateLimiter(min_interval=2.0, clock=lambda: now[0])
        asyncio.run(limiter.acquire("https://example.com/a"))

        now[0] = 101.5
        assert limiter.wait_time("example.com") == pytest.approx(0.5)

        now[0] = 103.0
        assert limiter.wait_time("example.com") == 0.0

    def test_domains_are_independent(self):
        now = [100.0]
        limiter = DomainRateLimiter(min_interval=2.0, clock=lambda: now[0])
        asyncio.run(limiter.acquire("https://example.com/a"))

        assert limiter.wait_time("other.org") == 0.0
        assert limiter.domain_for("https://Example.COM/path") == "example.com"

    def test_second_request_waits_out_the_interval(self):
        now = [100.0]
        limiter = DomainRateLimiter(min_interval=2.0, clock=lambda: now[0])

        async def run():
            await limiter.acquire("https://example.com/a")
            now[0] = 100.5
            with patch("feedwatch.services.data_ingestion.rate_limiter.asyncio.sleep", new=AsyncMock()) as sleep:
                waited = await limiter.acquire("https://example.com/b")
            return waited, sleep

        waited, sleep = asyncio.run(run())
        assert waited == pytest.approx(1.5)
        sleep.assert_awaited_once()

    def test_reset_forgets_history(self):
        limiter = DomainRateLimiter(min_interval=2.0, clock=lambda: 100.0)
        asyncio.run(limiter.acquire("https://example.com/a"))
        assert limiter.get_status("example.com")["tracked"]

        limiter.reset("example.com")
        assert not limiter.get_status("example.com")["tracked"]
        assert limiter.get_all_status() == []

"""
Rate-limited HTTP fetching with retry and backoff.

All outbound HTTP made by the ingestion core goes through
RateLimitedFetcher: it spaces requests per hostname, identifies itself
with a fixed User-Agent and retries throttled or failing servers.
"""

import asyncio
from typing import Awaitable, Callable, Optional
import logging

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from feedwatch.config import FetcherSettings
from feedwatch.services.data_ingestion.errors import (
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
)
from feedwatch.services.data_ingestion.rate_limiter import DomainRateLimiter

logger = logging.getLogger(__name__)

# Per-caller timeouts (seconds)
FEED_CHECK_TIMEOUT = 5.0
STATIC_PAGE_TIMEOUT = 8.0
HTML_PAGE_TIMEOUT = 10.0
FULL_ARTICLE_TIMEOUT = 15.0

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Upgrade-Insecure-Requests": "1",
}


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, HttpStatusError) and exc.retryable


class RateLimitedFetcher:
    """
    HTTP client shared by discovery, validation and extraction.

    Retry policy:
    - 429: up to max_retries, delay base * 2^(attempt-1)
    - 5xx: up to max_retries, delay base * attempt
    - other 4xx, network errors, timeouts: no retry
    """

    def __init__(
        self,
        settings: Optional[FetcherSettings] = None,
        rate_limiter: Optional[DomainRateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or FetcherSettings()
        self.rate_limiter = rate_limiter or DomainRateLimiter(
            self.settings.min_domain_interval_seconds
        )
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def user_agent(self) -> str:
        return self.settings.user_agent

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.settings.default_timeout_seconds,
                headers={"User-Agent": self.settings.user_agent},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RateLimitedFetcher":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _backoff(self, retry_state: RetryCallState) -> float:
        """Delay before the next attempt, by status of the last failure."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        attempt = retry_state.attempt_number
        base = self.settings.retry_base_delay_seconds
        if isinstance(exc, HttpStatusError) and exc.status_code == 429:
            return base * 2 ** (attempt - 1)
        return base * attempt

    def _log_retry(self, retry_state: RetryCallState):
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            f"Retrying {getattr(exc, 'url', '?')} after {exc} "
            f"(attempt {retry_state.attempt_number}/{self.settings.max_retries})"
        )

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        timeout: Optional[float] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """
        Fetch a URL, honoring per-domain spacing and the retry policy.

        Raises:
            NetworkError, FetchTimeoutError, HttpStatusError
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_retries + 1),
            wait=self._backoff,
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        response = None
        async for attempt in retrying:
            with attempt:
                response = await self._request_once(method, url, timeout, headers)
        return response

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.fetch(url, "GET", **kwargs)

    async def head(self, url: str, **kwargs) -> httpx.Response:
        return await self.fetch(url, "HEAD", **kwargs)

    async def _request_once(
        self,
        method: str,
        url: str,
        timeout: Optional[float],
        headers: Optional[dict],
    ) -> httpx.Response:
        await self.rate_limiter.acquire(url)
        client = self._get_client()

        try:
            response = await client.request(
                method,
                url,
                headers=headers,
                timeout=timeout if timeout is not None else self.settings.default_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(url, f"Timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(url, f"Network error: {e}") from e
        except httpx.InvalidURL as e:
            raise NetworkError(url, f"Invalid URL: {e}") from e

        if response.status_code >= 400:
            raise HttpStatusError(
                url,
                response.status_code,
                retry_after=response.headers.get("retry-after"),
            )
        return response


def browser_headers(user_agent: str) -> dict:
    """Headers that make a static fetch look like a regular browser visit."""
    return {"User-Agent": user_agent, **BROWSER_HEADERS}


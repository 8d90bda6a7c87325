"""
Per-domain request spacing.

Every hostname gets a minimum gap between consecutive requests so that
discovery requests and article fetches never hammer a single site.
"""

import asyncio
import time
from collections import defaultdict
from typing import Callable, Optional
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)


class DomainRateLimiter:
    """
    Minimum-interval rate limiter keyed by hostname.

    Features:
    - Per-domain last-request tracking
    - Async-safe with per-domain locks
    - Shared across all sources in a pass
    """

    def __init__(
        self,
        min_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._last_request: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def domain_for(url: str) -> str:
        return (urlparse(url).hostname or url).lower()

    def wait_time(self, domain: str) -> float:
        """Seconds until the next request to this domain is allowed."""
        last = self._last_request.get(domain)
        if last is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - last))

    async def acquire(self, url: str) -> float:
        """
        Wait until a request to the URL's hostname is allowed, then record it.

        Returns:
            Seconds spent waiting
        """
        domain = self.domain_for(url)

        async with self._locks[domain]:
            wait_seconds = self.wait_time(domain)
            if wait_seconds > 0:
                logger.debug(f"Spacing requests to {domain}, waiting {wait_seconds:.2f}s")
                await asyncio.sleep(wait_seconds)
            self._last_request[domain] = self._clock()
            return wait_seconds

    def get_status(self, domain: str) -> dict:
        """Get spacing status for a domain."""
        return {
            "domain": domain,
            "min_interval": self.min_interval,
            "wait_seconds": round(self.wait_time(domain), 3),
            "tracked": domain in self._last_request,
        }

    def get_all_status(self) -> list[dict]:
        """Get status for all tracked domains."""
        return [self.get_status(d) for d in sorted(self._last_request)]

    def reset(self, domain: Optional[str] = None):
        """Forget request history for one domain, or all of them."""
        if domain is None:
            self._last_request.clear()
        else:
            self._last_request.pop(domain, None)

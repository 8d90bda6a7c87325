"""
Resource governance for browser-backed extraction.

Headless browsers are the expensive part of a pass. The governor samples
resident memory before such work, refuses it above a hard limit, slows
down above a soft limit and gives the process a cooldown plus a
collection hint after every browser use.
"""

import asyncio
import gc
from typing import Awaitable, Callable, Optional
import logging

import psutil

from feedwatch.config import GovernorSettings
from feedwatch.services.data_ingestion.base import MonitoringType, Source

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


def process_memory_mb() -> float:
    """Resident set size of this process in MB."""
    return psutil.Process().memory_info().rss / BYTES_PER_MB


class ResourceGovernor:
    """Decides whether browser work is safe and cleans up after it."""

    def __init__(
        self,
        settings: Optional[GovernorSettings] = None,
        memory_reader: Callable[[], float] = process_memory_mb,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or GovernorSettings()
        self._memory_reader = memory_reader
        self._sleep = sleep
        self._skip = {entry.strip().lower() for entry in self.settings.skip_sources if entry.strip()}

    def memory_mb(self) -> float:
        return self._memory_reader()

    def over_limit(self) -> bool:
        return self.memory_mb() > self.settings.memory_limit_mb

    def is_skip_listed(self, source: Source) -> bool:
        return source.name.lower() in self._skip or source.url.lower() in self._skip

    def should_attempt_scraping(self, source: Source) -> bool:
        """
        Gate a source on memory pressure.

        RSS sources never need a browser and always pass. SCRAPING and ADK
        sources are refused above the hard limit and retried next pass.
        """
        if source.monitoring_type == MonitoringType.RSS:
            return True

        memory = self.memory_mb()
        if memory > self.settings.memory_limit_mb:
            logger.warning(
                f"Skipping {source.name}: memory {memory:.0f}MB exceeds "
                f"{self.settings.memory_limit_mb}MB limit"
            )
            return False
        return True

    async def before_scrape(self):
        """Insert an extra pause when memory is above the soft threshold."""
        memory = self.memory_mb()
        if memory > self.settings.memory_soft_limit_mb:
            logger.info(
                f"Memory at {memory:.0f}MB, pausing "
                f"{self.settings.soft_limit_delay_seconds}s before scraping"
            )
            await self._sleep(self.settings.soft_limit_delay_seconds)

    async def after_browser_use(self):
        """Cooldown after browser work, then ask the collector to run."""
        await self._sleep(self.settings.browser_cooldown_seconds)
        collected = gc.collect()
        logger.debug(f"Browser cooldown done, gc collected {collected} objects")

    def get_status(self) -> dict:
        memory = self.memory_mb()
        return {
            "memory_mb": round(memory, 1),
            "memory_limit_mb": self.settings.memory_limit_mb,
            "memory_soft_limit_mb": self.settings.memory_soft_limit_mb,
            "over_limit": memory > self.settings.memory_limit_mb,
            "skip_sources": sorted(self._skip),
        }

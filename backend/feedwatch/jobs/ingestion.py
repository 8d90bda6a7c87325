"""
Ingestion job wiring.

Builds the ingestion object graph once per process:
1. Shared rate-limited HTTP fetcher
2. Feed discovery and validation
3. Browser renderer, scraper and external extractor
4. Resource governor and content extraction pipeline
5. Persistence and the scheduler that drives passes
"""
from typing import Optional

import structlog

from feedwatch.config import Settings, get_settings
from feedwatch.models.database import Database
from feedwatch.services.data_ingestion.browser import BrowserRenderer
from feedwatch.services.data_ingestion.discovery import FeedDiscoveryEngine
from feedwatch.services.data_ingestion.extraction import ContentExtractionPipeline
from feedwatch.services.data_ingestion.extractor import LLMArticleExtractor
from feedwatch.services.data_ingestion.fetcher import RateLimitedFetcher
from feedwatch.services.data_ingestion.governor import ResourceGovernor
from feedwatch.services.data_ingestion.scheduler import IngestionScheduler
from feedwatch.services.data_ingestion.scraper import WebScraper
from feedwatch.services.data_ingestion.store import ArticleStore
from feedwatch.services.data_ingestion.validator import FeedValidator
from feedwatch.services.summarization import SummarizationService

logger = structlog.get_logger()


class IngestionJob:
    """
    Owns the long-lived ingestion components.

    initialize() creates the tables and is the one step whose failure
    is fatal; close() releases the HTTP client and database engine.
    """

    def __init__(self, database: Database, settings: Optional[Settings] = None):
        self.database = database
        self.settings = settings or get_settings()
        self.scheduler: Optional[IngestionScheduler] = None
        self._fetcher: Optional[RateLimitedFetcher] = None

    async def initialize(self) -> IngestionScheduler:
        logger.info("Initializing ingestion job")
        await self.database.create_tables()

        settings = self.settings
        self._fetcher = RateLimitedFetcher(settings.fetcher)
        governor = ResourceGovernor(settings.governor)
        renderer = BrowserRenderer(settings.fetcher.browser_user_agent)
        summarizer = SummarizationService(settings)

        extractor = LLMArticleExtractor(self._fetcher, settings)
        if not extractor.available:
            logger.info("No LLM key configured, ADK sources will use scraping")

        self.scheduler = IngestionScheduler(
            store=ArticleStore(self.database),
            fetcher=self._fetcher,
            discovery=FeedDiscoveryEngine(
                self._fetcher,
                cache_ttl_seconds=settings.scheduler.discovery_cache_ttl_minutes * 60,
            ),
            validator=FeedValidator(self._fetcher),
            pipeline=ContentExtractionPipeline(
                self._fetcher,
                settings,
                summarizer=summarizer,
                renderer=renderer,
                governor=governor,
            ),
            scraper=WebScraper(self._fetcher, renderer),
            extractor=extractor if extractor.available else None,
            governor=governor,
            summarizer=summarizer,
            settings=settings,
        )
        logger.info(
            "Ingestion job initialized",
            llm_summaries=summarizer.has_llm,
            memory_limit_mb=settings.governor.memory_limit_mb,
        )
        return self.scheduler

    async def close(self):
        if self.scheduler is not None:
            self.scheduler.stop()
        if self._fetcher is not None:
            await self._fetcher.close()
        await self.database.close()

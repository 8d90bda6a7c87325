"""
Ingestion Scheduler - periodic and manual ingestion passes.

One pass walks every source in listing order and, depending on how the
source is monitored, parses its feed, asks the external extractor for
articles (falling back to scraping) or scrapes its listing page. New
articles are deduplicated by link, extracted and stored.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from feedwatch.config import Settings, get_settings
from feedwatch.services.data_ingestion.base import (
    ArticleRecord,
    MonitoringType,
    PassSummary,
    RawItem,
    Source,
    SourceResult,
    new_session_id,
)
from feedwatch.services.data_ingestion.cleaning import (
    clean_title,
    is_error_title,
    is_generic_title,
    looks_like_url,
    title_from_url,
    truncate,
)
from feedwatch.services.data_ingestion.dedup import DeduplicationGuard, InsertOutcome
from feedwatch.services.data_ingestion.discovery import FeedDiscoveryEngine
from feedwatch.services.data_ingestion.errors import (
    ExtractorError,
    FetchError,
    IngestionError,
    PassInProgressError,
)
from feedwatch.services.data_ingestion.extraction import (
    ContentExtractionPipeline,
    ExtractedArticle,
    PageMetadata,
    Summarizer,
)
from feedwatch.services.data_ingestion.extractor import (
    MAX_EXTRACTED_ARTICLES,
    ArticleExtractor,
    filter_to_source_domain,
    sort_newest_first,
)
from feedwatch.services.data_ingestion.feeds import parse_feed
from feedwatch.services.data_ingestion.fetcher import HTML_PAGE_TIMEOUT, RateLimitedFetcher
from feedwatch.services.data_ingestion.governor import ResourceGovernor
from feedwatch.services.data_ingestion.scraper import WebScraper
from feedwatch.services.data_ingestion.store import ArticleStore
from feedwatch.services.data_ingestion.validator import FeedCheck, FeedValidator

logger = logging.getLogger(__name__)

PASS_JOB_ID = "ingestion_pass"
MAX_ENRICH_AFTER_PASS = 50
# Articles with content and preview both shorter than this get the page description
THIN_CONTENT_LENGTH = 50
ENRICHED_PREVIEW_LENGTH = 200
MIN_HOOK_CONTENT = 50


class SchedulerState(str, Enum):
    STOPPED = "stopped"  # Periodic monitoring off
    IDLE = "idle"  # Monitoring on, no pass running
    RUNNING = "running"  # A pass is in progress


class IngestionScheduler:
    """
    Runs ingestion passes over all sources.

    Features:
    - Periodic passes on an APScheduler interval job
    - Manual passes on demand, mutually exclusive with periodic ones
    - Per-source and per-article failure isolation
    - Date enrichment for recently scraped articles
    """

    def __init__(
        self,
        store: ArticleStore,
        fetcher: RateLimitedFetcher,
        discovery: FeedDiscoveryEngine,
        validator: FeedValidator,
        pipeline: ContentExtractionPipeline,
        scraper: WebScraper,
        extractor: Optional[ArticleExtractor],
        governor: ResourceGovernor,
        summarizer: Optional[Summarizer] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.fetcher = fetcher
        self.discovery = discovery
        self.validator = validator
        self.pipeline = pipeline
        self.scraper = scraper
        self.extractor = extractor
        self.governor = governor
        self.summarizer = summarizer
        self.settings = settings or get_settings()
        self.dedup = DeduplicationGuard(store)
        self._sleep = sleep

        self._monitoring = False
        self._pass_active = False
        self._job_scheduler: Optional[AsyncIOScheduler] = None
        self._last_pass: Optional[PassSummary] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        if self._pass_active:
            return SchedulerState.RUNNING
        if self._monitoring:
            return SchedulerState.IDLE
        return SchedulerState.STOPPED

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def last_pass(self) -> Optional[PassSummary]:
        return self._last_pass

    def start(self, run_immediately: bool = True):
        """Turn on periodic monitoring; the first pass runs right away unless told otherwise."""
        if self._monitoring:
            logger.warning("Monitoring already started")
            return

        interval = self.settings.scheduler.interval_minutes
        job_options = {}
        if run_immediately:
            # Passing next_run_time=None would add the job paused
            job_options["next_run_time"] = datetime.now(timezone.utc)

        self._job_scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._job_scheduler.add_job(
            self._periodic_pass,
            IntervalTrigger(minutes=interval),
            id=PASS_JOB_ID,
            name="Feed ingestion pass",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_options,
        )
        self._job_scheduler.start()
        self._monitoring = True
        logger.info(f"Monitoring started (interval: {interval} minutes)")

    def stop(self):
        """Turn off periodic monitoring. A pass in flight runs to completion."""
        self._monitoring = False
        if self._job_scheduler is not None:
            self._job_scheduler.shutdown(wait=False)
            self._job_scheduler = None
        logger.info("Monitoring stopped")

    def _next_run_time(self) -> Optional[datetime]:
        if self._job_scheduler is None:
            return None
        job = self._job_scheduler.get_job(PASS_JOB_ID)
        return job.next_run_time if job else None

    def get_status(self) -> dict:
        """Get scheduler status."""
        next_run = self._next_run_time()
        last = self._last_pass
        return {
            "state": self.state.value,
            "monitoring": self._monitoring,
            "pass_active": self._pass_active,
            "interval_minutes": self.settings.scheduler.interval_minutes,
            "last_pass_at": last.started_at.isoformat() if last else None,
            "last_pass_new_articles": last.new_articles if last else 0,
            "next_run_at": next_run.isoformat() if next_run else None,
            "last_results": [r.to_dict() for r in last.results] if last else [],
            "resources": self.governor.get_status(),
        }

    async def _periodic_pass(self):
        if not self._monitoring:
            return
        try:
            await self.run_pass(manual=False)
        except PassInProgressError:
            logger.info("Periodic pass skipped, another pass is still running")
        except Exception as e:
            logger.error(f"Periodic pass failed: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------

    async def run_pass(self, manual: bool = False) -> list[SourceResult]:
        """
        Run one pass over all sources.

        Args:
            manual: True for user-triggered passes; these run even when
                monitoring is stopped and use the light extraction path

        Returns:
            One SourceResult per source, in listing order

        Raises:
            PassInProgressError: another pass is running
        """
        if not manual and not self._monitoring:
            logger.debug("Monitoring stopped, ignoring periodic pass")
            return []
        if self._pass_active:
            raise PassInProgressError("An ingestion pass is already running")

        self._pass_active = True
        summary = PassSummary(started_at=datetime.now(timezone.utc), manual=manual)
        results = summary.results
        try:
            sources = await self.store.list_sources()
            logger.info(f"Starting {'manual' if manual else 'periodic'} pass over {len(sources)} sources")

            for source in sources:
                result = await self._process_source(source, manual)
                logger.info(str(result))
                results.append(result)

            new_total = summary.new_articles
            if manual and new_total > 0:
                try:
                    await self.enrich_missing_dates(min(new_total, MAX_ENRICH_AFTER_PASS))
                except Exception as e:
                    logger.warning(f"Date enrichment after pass failed: {e}", exc_info=True)
        finally:
            self._pass_active = False

        summary.duration_seconds = (datetime.now(timezone.utc) - summary.started_at).total_seconds()
        self._last_pass = summary
        logger.info(
            f"Pass completed: {summary.new_articles} new articles, "
            f"{summary.successful_sources}/{len(results)} sources ok in {summary.duration_seconds:.1f}s"
        )
        return results

    async def _process_source(self, source: Source, manual: bool) -> SourceResult:
        result = SourceResult(
            source_name=source.name,
            url=source.url,
            monitoring_type=source.monitoring_type,
        )

        if source.is_paused or self.governor.is_skip_listed(source):
            result.skipped = True
            return result

        if source.monitoring_type == MonitoringType.SCRAPING and not self.governor.should_attempt_scraping(source):
            result.skipped = True
            result.error = "memory limit reached, retrying next pass"
            return result

        try:
            if source.monitoring_type == MonitoringType.RSS:
                result.new_article_count = await self._process_rss(source, manual)
            elif source.monitoring_type == MonitoringType.ADK:
                result.new_article_count = await self._process_via_extractor(source, manual, result)
            else:
                result.new_article_count = await self._scrape_traditional(source, manual)
        except Exception as e:
            logger.error(
                f"[{source.name}] Source check failed: {e}",
                exc_info=not isinstance(e, IngestionError),
            )
            result.success = False
            result.error = str(e)

        try:
            await self.store.update_source_last_checked(source.id)
        except Exception as e:
            logger.warning(f"[{source.name}] Could not update last checked time: {e}")

        return result

    async def _process_rss(self, source: Source, manual: bool) -> int:
        response = await self.fetcher.get(source.url, timeout=HTML_PAGE_TIMEOUT)
        feed = parse_feed(response.content, source.url)
        items = feed.items[: self.settings.scheduler.rss_item_limit]
        logger.info(f"[{source.name}] Feed has {len(feed.items)} items, processing {len(items)}")
        return await self._ingest_items(source, items, manual, scraped=False)

    async def _process_via_extractor(self, source: Source, manual: bool, result: SourceResult) -> int:
        items: list[RawItem] = []
        if self.extractor is not None:
            try:
                items = await self.extractor.extract_articles(source)
            except (ExtractorError, FetchError) as e:
                logger.warning(f"[{source.name}] External extractor failed: {e}")

        filtered = filter_to_source_domain(items, source.url)
        strict = self.settings.scheduler.extractor_strict_domain
        if filtered.kept and not (strict and filtered.has_mismatch):
            kept = sort_newest_first(filtered.kept)[:MAX_EXTRACTED_ARTICLES]
            return await self._ingest_items(source, kept, manual, scraped=True)

        logger.info(
            f"[{source.name}] Extractor gave no usable in-domain articles, "
            f"falling back to scraping"
        )
        if not self.governor.should_attempt_scraping(source):
            result.skipped = True
            result.error = "memory limit reached, fallback scrape skipped"
            return 0
        return await self._scrape_traditional(source, manual)

    async def _scrape_traditional(self, source: Source, manual: bool) -> int:
        try:
            await self.governor.before_scrape()
            items = await self.scraper.scrape_articles(source)
            return await self._ingest_items(source, items, manual, scraped=True)
        finally:
            await self.governor.after_browser_use()

    async def _ingest_items(
        self,
        source: Source,
        items: list[RawItem],
        manual: bool,
        scraped: bool,
    ) -> int:
        session_id = new_session_id()
        batch_size = self.settings.scheduler.batch_size
        added = 0

        for start in range(0, len(items), batch_size):
            batch = items[start:start + batch_size]
            logger.debug(f"[{source.name}] Processing items {start + 1}-{start + len(batch)}")
            for item in batch:
                try:
                    if await self._ingest_item(source, item, manual, scraped, session_id):
                        added += 1
                except Exception as e:
                    logger.warning(
                        f"[{source.name}] Skipping article {item.link}: {e}",
                        exc_info=not isinstance(e, IngestionError),
                    )
        return added

    async def _ingest_item(
        self,
        source: Source,
        item: RawItem,
        manual: bool,
        scraped: bool,
        session_id: str,
    ) -> bool:
        if not await self.dedup.should_ingest(item.link):
            return False

        if scraped:
            if is_generic_title(clean_title(item.title)):
                logger.info(f"[{source.name}] Skipping generic title: {item.title!r}")
                return False
            extracted = await self.pipeline.extract_scraped_item(item, source, manual=manual)
        else:
            extracted = await self.pipeline.extract_item(item, light=manual, source_name=source.name)

        if looks_like_url(extracted.title):
            extracted.title = title_from_url(item.link) or "Untitled"

        if not self._acceptable(extracted, scraped):
            logger.info(f"[{source.name}] Skipping unusable article {item.link}: {extracted.title!r}")
            return False

        record = ArticleRecord(
            title=extracted.title,
            link=item.link,
            source_id=source.id,
            source_name=source.name,
            category=source.category,
            content=extracted.content,
            preview=extracted.preview,
            publisher_description=extracted.description,
            article_hook=await self._hook_for(extracted, source),
            pub_date=extracted.pub_date,
            author=extracted.author,
            session_id=session_id,
        )
        outcome, article_id = await self.dedup.insert(record)
        if outcome == InsertOutcome.INSERTED:
            logger.info(
                f"[{source.name}] New article {article_id}: {record.title[:60]!r} "
                f"(date: {record.pub_date.isoformat() if record.pub_date else 'unknown'})"
            )
            return True
        return False

    @staticmethod
    def _acceptable(extracted: ExtractedArticle, scraped: bool) -> bool:
        title = extracted.title or ""
        if is_error_title(title):
            return False
        if scraped and is_generic_title(title):
            return False
        return not (
            len(title) < 10
            and len(extracted.content or "") < 20
            and len(extracted.preview or "") < 20
        )

    async def _hook_for(self, extracted: ExtractedArticle, source: Source) -> Optional[str]:
        if self.summarizer is None:
            return None
        hook_content = extracted.content or extracted.description or extracted.preview or ""
        if len(hook_content) <= MIN_HOOK_CONTENT:
            return None
        try:
            return await self.summarizer.generate_hook(extracted.title, hook_content, source.name)
        except Exception as e:
            logger.info(f"[{source.name}] Hook generation failed, continuing without: {e}")
            return None

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    async def enrich_missing_dates(self, limit: int = MAX_ENRICH_AFTER_PASS) -> int:
        """
        Revisit recent date-less articles from scraped sources for a better date.

        Articles that arrived nearly empty (content and preview both under
        THIN_CONTENT_LENGTH) also get the page description as content,
        preview and publisher description.

        Returns:
            Number of articles updated with a date or a description
        """
        cfg = self.settings.scheduler
        since = datetime.now(timezone.utc) - timedelta(hours=cfg.enrich_window_hours)
        articles = await self.store.list_articles_missing_dates(since, limit)
        if not articles:
            return 0

        logger.info(f"Enriching dates for {len(articles)} articles")
        updated = 0
        for start in range(0, len(articles), cfg.enrich_batch_size):
            if self.governor.over_limit():
                logger.warning(
                    f"Memory {self.governor.memory_mb():.0f}MB over limit, stopping date enrichment"
                )
                break
            if start > 0:
                await self._sleep(cfg.enrich_batch_delay_seconds)

            for index, article in enumerate(articles[start:start + cfg.enrich_batch_size]):
                if index > 0:
                    await self._sleep(cfg.enrich_article_delay_seconds)
                try:
                    metadata = await self.pipeline.extract_article_metadata(article.link)
                except Exception as e:
                    logger.warning(f"Date enrichment failed for {article.link}: {e}")
                    continue
                changes = {}
                if metadata.pub_date:
                    changes["pub_date"] = metadata.pub_date
                if metadata.description and self._is_thin(article):
                    changes.update(
                        content=metadata.description,
                        preview=truncate(metadata.description, ENRICHED_PREVIEW_LENGTH),
                        publisher_description=metadata.description,
                    )
                if changes:
                    await self.store.update_article(article.id, **changes)
                    updated += 1

        logger.info(f"Enrichment updated {updated} of {len(articles)} articles")
        return updated

    @staticmethod
    def _is_thin(article: ArticleRecord) -> bool:
        return (
            len(article.content or "") < THIN_CONTENT_LENGTH
            and len(article.preview or "") < THIN_CONTENT_LENGTH
        )

    # -------------------------------------------------------------------------
    # Setup and single-URL operations
    # -------------------------------------------------------------------------

    async def register_source(
        self,
        name: str,
        url: str,
        category: str = "General",
        monitoring_type: MonitoringType = MonitoringType.RSS,
    ) -> Source:
        """
        Add a source. RSS sources are stored under their discovered feed URL.

        Raises:
            ValueError: an RSS source has no discoverable feed
        """
        monitoring_type = MonitoringType(monitoring_type)
        if monitoring_type == MonitoringType.RSS:
            feed_url = await self.discovery.discover_feed_url(url)
            if not feed_url:
                raise ValueError(f"No feed found for {url}")
            url = feed_url
        return await self.store.add_source(name, url, category, monitoring_type)

    async def discover_feed_url(self, site_url: str) -> Optional[str]:
        return await self.discovery.discover_feed_url(site_url)

    async def validate_feed(self, feed_url: str) -> bool:
        return await self.validator.validate_feed(feed_url)

    async def check_feed(self, feed_url: str) -> FeedCheck:
        return await self.validator.check_feed(feed_url)

    async def extract_article_metadata(self, page_url: str) -> PageMetadata:
        return await self.pipeline.extract_article_metadata(page_url)

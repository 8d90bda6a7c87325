"""
Data Ingestion Services for Feedwatch.

This package finds, validates and ingests articles from monitored sites:
- Feed discovery and validation (RSS, Atom, RDF, JSON Feed)
- Browser and static scraping of blog listings
- External AI extraction with domain filtering
- Content cleaning, date extraction and deduplication
- Rate limiting, retries and memory-aware scheduling
"""

from feedwatch.services.data_ingestion.base import (
    ArticleRecord,
    ArticleStatus,
    MonitoringType,
    PassSummary,
    RawItem,
    Source,
    SourceResult,
)
from feedwatch.services.data_ingestion.browser import BrowserRenderer, browser_page
from feedwatch.services.data_ingestion.dedup import DeduplicationGuard, InsertOutcome
from feedwatch.services.data_ingestion.discovery import FeedDiscoveryEngine
from feedwatch.services.data_ingestion.errors import (
    DuplicateArticleError,
    ExtractorError,
    FetchError,
    FetchTimeoutError,
    HttpStatusError,
    IngestionError,
    NetworkError,
    PassInProgressError,
)
from feedwatch.services.data_ingestion.extraction import ContentExtractionPipeline, PageMetadata
from feedwatch.services.data_ingestion.extractor import ArticleExtractor, LLMArticleExtractor
from feedwatch.services.data_ingestion.fetcher import RateLimitedFetcher
from feedwatch.services.data_ingestion.governor import ResourceGovernor
from feedwatch.services.data_ingestion.rate_limiter import DomainRateLimiter
from feedwatch.services.data_ingestion.scheduler import IngestionScheduler, SchedulerState
from feedwatch.services.data_ingestion.scraper import WebScraper
from feedwatch.services.data_ingestion.store import ArticleStore
from feedwatch.services.data_ingestion.validator import FeedCheck, FeedStatus, FeedValidator

__all__ = [
    # Types
    "ArticleRecord",
    "ArticleStatus",
    "MonitoringType",
    "PassSummary",
    "RawItem",
    "Source",
    "SourceResult",
    # Errors
    "IngestionError",
    "FetchError",
    "NetworkError",
    "FetchTimeoutError",
    "HttpStatusError",
    "DuplicateArticleError",
    "PassInProgressError",
    "ExtractorError",
    # Components
    "DomainRateLimiter",
    "RateLimitedFetcher",
    "FeedValidator",
    "FeedCheck",
    "FeedStatus",
    "FeedDiscoveryEngine",
    "BrowserRenderer",
    "browser_page",
    "ContentExtractionPipeline",
    "PageMetadata",
    "WebScraper",
    "ArticleExtractor",
    "LLMArticleExtractor",
    "ResourceGovernor",
    "DeduplicationGuard",
    "InsertOutcome",
    "ArticleStore",
    "IngestionScheduler",
    "SchedulerState",
]

"""
Base data models for feed ingestion.
"""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
from urllib.parse import urlparse


class MonitoringType(str, Enum):
    """How articles are pulled from a source. Decided when the source is set up."""
    RSS = "RSS"
    SCRAPING = "SCRAPING"
    ADK = "ADK"


class ArticleStatus(str, Enum):
    """Review state of a stored article."""
    NEW = "new"
    SELECTED = "selected"
    DISMISSED = "dismissed"
    SENT = "sent"


class ItemOrigin(str, Enum):
    """Which adapter produced a RawItem."""
    FEED = "feed"
    JSON_FEED = "json_feed"
    SCRAPED = "scraped"
    EXTRACTOR = "extractor"


@dataclass
class Source:
    """A monitored website or feed."""
    id: int
    name: str
    url: str  # Feed URL for RSS sources, site URL otherwise
    monitoring_type: MonitoringType = MonitoringType.RSS
    category: str = "General"
    is_paused: bool = False
    last_checked_at: Optional[datetime] = None

    @property
    def domain(self) -> str:
        return normalize_domain(self.url)

    @property
    def uses_browser(self) -> bool:
        return self.monitoring_type != MonitoringType.RSS


@dataclass
class RawItem:
    """
    Source-specific item before extraction.

    Every adapter (RSS/Atom, JSON Feed, listing scraper, external
    extractor) maps into this one shape. Fields a format does not have
    stay None.
    """
    link: Optional[str]
    title: Optional[str] = None
    origin: ItemOrigin = ItemOrigin.FEED

    # Content candidates, in extraction preference order
    content_snippet: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    summary: Optional[str] = None
    content_encoded: Optional[str] = None
    media_description: Optional[str] = None

    # Date candidates, in extraction preference order
    pub_date: Optional[str] = None
    iso_date: Optional[str] = None
    date: Optional[str] = None
    published: Optional[str] = None
    dc_date: Optional[str] = None
    atom_published: Optional[str] = None

    author: Optional[str] = None
    guid: Optional[str] = None

    def content_candidates(self) -> list[Optional[str]]:
        return [
            self.content_snippet,
            self.description,
            self.content,
            self.summary,
            self.content_encoded,
            self.media_description,
        ]

    def date_candidates(self) -> list[Optional[str]]:
        return [
            self.pub_date,
            self.iso_date,
            self.date,
            self.published,
            self.dc_date,
            self.atom_published,
        ]


@dataclass
class ArticleRecord:
    """Canonical article, ready to be persisted."""
    title: str
    link: str
    source_id: Optional[int] = None
    source_name: str = "Unknown Source"
    category: str = "General"
    content: str = ""
    preview: str = ""
    publisher_description: Optional[str] = None
    article_hook: Optional[str] = None
    pub_date: Optional[datetime] = None
    author: Optional[str] = None
    status: ArticleStatus = ArticleStatus.NEW
    session_id: Optional[str] = None
    id: Optional[int] = None


@dataclass
class SourceResult:
    """Outcome of processing one source during a pass."""
    source_name: str
    url: str
    new_article_count: int = 0
    success: bool = True
    error: Optional[str] = None
    skipped: bool = False
    monitoring_type: Optional[MonitoringType] = None

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        if self.skipped:
            status = "-"
        text = f"{status} {self.source_name}: new={self.new_article_count}"
        if self.error:
            text += f", error={self.error}"
        return text

    def to_dict(self) -> dict:
        return {
            "source_name": self.source_name,
            "url": self.url,
            "new_article_count": self.new_article_count,
            "success": self.success,
            "error": self.error,
            "skipped": self.skipped,
            "monitoring_type": self.monitoring_type.value if self.monitoring_type else None,
        }


@dataclass
class PassSummary:
    """Aggregate numbers for one ingestion pass."""
    started_at: datetime
    manual: bool
    results: list[SourceResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def new_articles(self) -> int:
        return sum(r.new_article_count for r in self.results)

    @property
    def successful_sources(self) -> int:
        return sum(1 for r in self.results if r.success)


def normalize_domain(url: str) -> str:
    """Hostname lower-cased with a leading www. removed."""
    host = urlparse(url).hostname or ""
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def new_session_id() -> str:
    """Batch marker shared by every article added in one source check."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


# Search-grounding redirectors that never point at the article itself
REDIRECT_MARKERS = ("vertexaisearch.cloud.google.com", "grounding-api-redirect")


def is_redirect_url(url: Optional[str]) -> bool:
    return bool(url) and any(marker in url for marker in REDIRECT_MARKERS)


def is_http_url(url: Optional[str]) -> bool:
    return bool(url) and urlparse(url).scheme in ("http", "https") and bool(urlparse(url).netloc)


def is_root_path(url: str) -> bool:
    """True for a bare origin such as https://example.com/."""
    return urlparse(url).path in ("", "/")

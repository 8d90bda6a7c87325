"""
API models for Feedwatch.
Request and response shapes, independent of the database representation.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from feedwatch.services.data_ingestion.base import ArticleStatus, MonitoringType
from feedwatch.services.data_ingestion.validator import FeedStatus

HTTP_URL_PATTERN = r"^https?://\S+$"


# =============================================================================
# Feeds
# =============================================================================

class UrlRequest(BaseModel):
    """Any single-URL operation."""
    url: str = Field(pattern=HTTP_URL_PATTERN)


class FeedDiscoveryResponse(BaseModel):
    url: str
    feed_url: Optional[str] = None
    found: bool = False


class FeedValidationResponse(BaseModel):
    url: str
    valid: bool


class FeedCheckResponse(BaseModel):
    """Detailed check of one feed URL."""
    model_config = ConfigDict(from_attributes=True)

    url: str
    status: FeedStatus
    valid: bool
    item_count: int = 0
    error: Optional[str] = None


# =============================================================================
# Sources
# =============================================================================

class SourceCreate(BaseModel):
    """New monitored source. RSS sources are resolved to their feed URL."""
    name: str = Field(min_length=1, max_length=255)
    url: str = Field(pattern=HTTP_URL_PATTERN)
    category: str = "General"
    monitoring_type: MonitoringType = MonitoringType.RSS


class SourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    url: str
    category: str
    monitoring_type: MonitoringType
    is_paused: bool = False
    last_checked_at: Optional[datetime] = None


# =============================================================================
# Articles
# =============================================================================

class ArticleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    title: str
    link: str
    source_id: Optional[int] = None
    source_name: str
    category: str
    preview: str = ""
    publisher_description: Optional[str] = None
    article_hook: Optional[str] = None
    pub_date: Optional[datetime] = None  # None means unknown
    author: Optional[str] = None
    status: ArticleStatus = ArticleStatus.NEW
    session_id: Optional[str] = None


class PageMetadataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    url: str
    title: Optional[str] = None
    content: str = ""
    pub_date: Optional[datetime] = None
    description: str = ""


class EnrichRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=500)


class EnrichResponse(BaseModel):
    updated: int


# =============================================================================
# Ingestion
# =============================================================================

class SourceResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source_name: str
    url: str
    new_article_count: int = 0
    success: bool = True
    error: Optional[str] = None
    skipped: bool = False
    monitoring_type: Optional[MonitoringType] = None


class PassResponse(BaseModel):
    """Outcome of a manual pass."""
    new_articles: int
    results: list[SourceResultOut]


class SchedulerStatusResponse(BaseModel):
    state: str
    monitoring: bool
    pass_active: bool
    interval_minutes: int
    last_pass_at: Optional[str] = None
    last_pass_new_articles: int = 0
    next_run_at: Optional[str] = None
    last_results: list[dict] = Field(default_factory=list)
    resources: dict = Field(default_factory=dict)

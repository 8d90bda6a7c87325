"""
FastAPI routes for the Feedwatch API.
"""

from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from feedwatch.models.domain import (
    ArticleOut,
    EnrichRequest,
    EnrichResponse,
    FeedCheckResponse,
    FeedDiscoveryResponse,
    FeedValidationResponse,
    PageMetadataResponse,
    PassResponse,
    SchedulerStatusResponse,
    SourceCreate,
    SourceOut,
    SourceResultOut,
    UrlRequest,
)
from feedwatch.services.data_ingestion.errors import FetchError, HttpStatusError, PassInProgressError
from feedwatch.services.data_ingestion.scheduler import IngestionScheduler

logger = structlog.get_logger(__name__)
router = APIRouter()

_scheduler: Optional[IngestionScheduler] = None


def set_scheduler(scheduler: Optional[IngestionScheduler]):
    """Install the scheduler the routes operate on (called from the app lifespan)."""
    global _scheduler
    _scheduler = scheduler


def get_scheduler() -> IngestionScheduler:
    """Dependency to get the ingestion scheduler."""
    if _scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion service not initialized",
        )
    return _scheduler


SchedulerDep = Annotated[IngestionScheduler, Depends(get_scheduler)]


# ============================================================================
# Feed Routes
# ============================================================================


@router.post("/feeds/discover", response_model=FeedDiscoveryResponse)
async def discover_feed(request: UrlRequest, scheduler: SchedulerDep):
    """
    Find the feed for a site.

    Runs the FeedDiscoveryEngine strategy chain; results are cached.
    """
    feed_url = await scheduler.discover_feed_url(request.url)
    logger.info("feed_discovery", url=request.url, feed_url=feed_url)
    return FeedDiscoveryResponse(url=request.url, feed_url=feed_url, found=feed_url is not None)


@router.post("/feeds/validate", response_model=FeedValidationResponse)
async def validate_feed(request: UrlRequest, scheduler: SchedulerDep):
    valid = await scheduler.validate_feed(request.url)
    return FeedValidationResponse(url=request.url, valid=valid)


@router.post("/feeds/check", response_model=FeedCheckResponse)
async def check_feed(request: UrlRequest, scheduler: SchedulerDep):
    """Check a feed and report why it is or is not usable."""
    check = await scheduler.check_feed(request.url)
    return FeedCheckResponse.model_validate(check)


# ============================================================================
# Source Routes
# ============================================================================


@router.post("/sources", response_model=SourceOut, status_code=status.HTTP_201_CREATED)
async def create_source(request: SourceCreate, scheduler: SchedulerDep):
    """
    Register a monitored source.

    RSS sources are stored under their discovered feed URL; a site with no
    discoverable feed is rejected.
    """
    try:
        source = await scheduler.register_source(
            name=request.name,
            url=request.url,
            category=request.category,
            monitoring_type=request.monitoring_type,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return SourceOut.model_validate(source)


@router.get("/sources", response_model=list[SourceOut])
async def list_sources(scheduler: SchedulerDep):
    sources = await scheduler.store.list_sources()
    return [SourceOut.model_validate(s) for s in sources]


# ============================================================================
# Article Routes
# ============================================================================


@router.get("/articles", response_model=list[ArticleOut])
async def list_articles(
    scheduler: SchedulerDep,
    limit: int = Query(default=50, ge=1, le=500),
):
    """Most recently ingested articles first."""
    articles = await scheduler.store.list_articles(limit=limit)
    return [ArticleOut.model_validate(a) for a in articles]


@router.post("/articles/metadata", response_model=PageMetadataResponse)
async def article_metadata(request: UrlRequest, scheduler: SchedulerDep):
    """
    Title, date, description and body for a single article page.

    An upstream 404 or 410 is passed on as 404; any other fetch failure is a 502.
    """
    try:
        metadata = await scheduler.extract_article_metadata(request.url)
    except HttpStatusError as e:
        if e.status_code in (404, 410):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except FetchError as e:
        logger.warning("metadata_fetch_failed", url=request.url, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return PageMetadataResponse(
        url=request.url,
        title=metadata.title,
        content=metadata.content,
        pub_date=metadata.pub_date,
        description=metadata.description,
    )


@router.post("/articles/enrich-dates", response_model=EnrichResponse)
async def enrich_dates(scheduler: SchedulerDep, request: Optional[EnrichRequest] = None):
    limit = request.limit if request else EnrichRequest().limit
    updated = await scheduler.enrich_missing_dates(limit)
    return EnrichResponse(updated=updated)


# ============================================================================
# Ingestion Routes
# ============================================================================


@router.post("/ingestion/run", response_model=PassResponse)
async def run_ingestion(scheduler: SchedulerDep):
    """
    Run a manual pass over all sources now.

    Returns 409 while another pass is in progress.
    """
    try:
        results = await scheduler.run_pass(manual=True)
    except PassInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return PassResponse(
        new_articles=sum(r.new_article_count for r in results),
        results=[SourceResultOut.model_validate(r) for r in results],
    )


@router.post("/ingestion/start", response_model=SchedulerStatusResponse)
async def start_monitoring(scheduler: SchedulerDep):
    scheduler.start()
    logger.info("monitoring_started")
    return SchedulerStatusResponse(**scheduler.get_status())


@router.post("/ingestion/stop", response_model=SchedulerStatusResponse)
async def stop_monitoring(scheduler: SchedulerDep):
    scheduler.stop()
    logger.info("monitoring_stopped")
    return SchedulerStatusResponse(**scheduler.get_status())


@router.get("/ingestion/status", response_model=SchedulerStatusResponse)
async def ingestion_status(scheduler: SchedulerDep):
    return SchedulerStatusResponse(**scheduler.get_status())

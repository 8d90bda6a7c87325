"""
Main FastAPI application for Feedwatch.
"""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feedwatch.api.routes import router, set_scheduler
from feedwatch.config import get_settings
from feedwatch.jobs.ingestion import IngestionJob
from feedwatch.models.database import Database

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    settings = get_settings()

    logger.info("Initializing database", url=settings.database_url)
    job = IngestionJob(Database(settings.database_url), settings)
    try:
        scheduler = await job.initialize()
    except Exception as e:
        # Without persistence nothing else can run
        logger.error("Database initialization failed", error=str(e))
        raise
    set_scheduler(scheduler)

    if settings.scheduler.autostart:
        scheduler.start()
        logger.info("Monitoring started", interval_minutes=settings.scheduler.interval_minutes)

    yield

    logger.info("Shutting down")
    set_scheduler(None)
    await job.close()


settings = get_settings()

# Create FastAPI app
app = FastAPI(
    title="Feedwatch",
    description="Feed discovery and article ingestion for monitored sites.",
    version=settings.app_version,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "feedwatch",
        "version": settings.app_version,
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Feedwatch API",
        "version": settings.app_version,
        "docs": "/docs",
        "endpoints": {
            "discover": "/api/v1/feeds/discover",
            "validate": "/api/v1/feeds/validate",
            "sources": "/api/v1/sources",
            "articles": "/api/v1/articles",
            "run": "/api/v1/ingestion/run",
            "status": "/api/v1/ingestion/status",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "feedwatch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )

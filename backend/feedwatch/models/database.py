"""
SQLAlchemy database models for Feedwatch.
Uses SQLAlchemy 2.0 async patterns.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import StaticPool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Base
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""
    pass


# =============================================================================
# Sources
# =============================================================================

class DBSource(Base):
    """Monitored website or feed."""
    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)  # Feed URL for RSS sources
    category: Mapped[str] = mapped_column(String(100), default="General")
    monitoring_type: Mapped[str] = mapped_column(String(20), default="RSS")  # RSS, SCRAPING, ADK
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    articles: Mapped[list["DBArticle"]] = relationship(back_populates="source")

    __table_args__ = (
        Index("ix_sources_url", "url", unique=True),
    )


# =============================================================================
# Articles
# =============================================================================

class DBArticle(Base):
    """Ingested article awaiting review."""
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text)
    preview: Mapped[Optional[str]] = mapped_column(Text)
    publisher_description: Mapped[Optional[str]] = mapped_column(String(300))
    article_hook: Mapped[Optional[str]] = mapped_column(Text)
    link: Mapped[str] = mapped_column(Text, nullable=False, unique=True)  # Dedup key
    pub_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))  # Null = unknown
    author: Mapped[Optional[str]] = mapped_column(String(255))

    source_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("sources.id"))
    source_name: Mapped[str] = mapped_column(String(255), default="Unknown Source")
    category: Mapped[str] = mapped_column(String(100), default="General")

    # Review state
    status: Mapped[str] = mapped_column(String(20), default="new")  # new, selected, dismissed, sent
    seen: Mapped[bool] = mapped_column(Boolean, default=False)
    viewed: Mapped[bool] = mapped_column(Boolean, default=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(64))  # Batch marker

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    source: Mapped[Optional["DBSource"]] = relationship(back_populates="articles")

    __table_args__ = (
        Index("ix_articles_status", "status"),
        Index("ix_articles_pub_date", "pub_date"),
        Index("ix_articles_created_at", "created_at"),
        Index("ix_articles_source_created", "source_id", "created_at"),
    )


# =============================================================================
# Database Connection
# =============================================================================

class Database:
    """Database connection manager."""

    def __init__(self, database_url: str):
        engine_options = {"echo": False}
        if ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database
            engine_options["poolclass"] = StaticPool
        self.engine = create_async_engine(database_url, **engine_options)
        self.async_session = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
        )

    async def create_tables(self):
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self):
        """Drop all tables (use with caution!)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self):
        await self.engine.dispose()

"""
Article and source persistence.

Thin async repository over the SQLAlchemy models. The unique constraint
on articles.link is the only deduplication guarantee; a violation
surfaces as DuplicateArticleError.
"""

from dataclasses import fields
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from feedwatch.models.database import Database, DBArticle, DBSource, utcnow
from feedwatch.services.data_ingestion.base import (
    ArticleRecord,
    ArticleStatus,
    MonitoringType,
    Source,
)
from feedwatch.services.data_ingestion.errors import DuplicateArticleError

logger = structlog.get_logger()

ARTICLE_FIELDS = {f.name for f in fields(ArticleRecord)} - {"id"}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_source(row: DBSource) -> Source:
    return Source(
        id=row.id,
        name=row.name,
        url=row.url,
        monitoring_type=MonitoringType(row.monitoring_type),
        category=row.category,
        is_paused=row.is_paused,
        last_checked_at=_as_utc(row.last_checked_at),
    )


def _to_record(row: DBArticle) -> ArticleRecord:
    return ArticleRecord(
        id=row.id,
        title=row.title,
        link=row.link,
        source_id=row.source_id,
        source_name=row.source_name,
        category=row.category,
        content=row.content or "",
        preview=row.preview or "",
        publisher_description=row.publisher_description,
        article_hook=row.article_hook,
        pub_date=_as_utc(row.pub_date),
        author=row.author,
        status=ArticleStatus(row.status),
        session_id=row.session_id,
    )


class ArticleStore:
    """Persistence collaborator used by the ingestion core."""

    def __init__(self, database: Database):
        self.db = database

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    async def list_sources(self) -> list[Source]:
        """All sources in creation order, paused ones included."""
        async with self.db.async_session() as session:
            result = await session.execute(select(DBSource).order_by(DBSource.id))
            return [_to_source(row) for row in result.scalars()]

    async def get_source(self, source_id: int) -> Optional[Source]:
        async with self.db.async_session() as session:
            row = await session.get(DBSource, source_id)
            return _to_source(row) if row else None

    async def add_source(
        self,
        name: str,
        url: str,
        category: str = "General",
        monitoring_type: MonitoringType = MonitoringType.RSS,
    ) -> Source:
        async with self.db.async_session() as session:
            row = DBSource(
                name=name,
                url=url,
                category=category,
                monitoring_type=MonitoringType(monitoring_type).value,
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ValueError(f"Source already exists: {url}") from e
            logger.info("source_added", source_id=row.id, name=name, monitoring_type=row.monitoring_type)
            return _to_source(row)

    async def update_source_last_checked(self, source_id: int):
        async with self.db.async_session() as session:
            await session.execute(
                update(DBSource).where(DBSource.id == source_id).values(last_checked_at=utcnow())
            )
            await session.commit()

    # -------------------------------------------------------------------------
    # Articles
    # -------------------------------------------------------------------------

    async def article_exists_by_link(self, link: str) -> bool:
        async with self.db.async_session() as session:
            result = await session.execute(select(DBArticle.id).where(DBArticle.link == link).limit(1))
            return result.scalar_one_or_none() is not None

    async def insert_article(self, article: ArticleRecord) -> int:
        """
        Insert a new article.

        Raises:
            DuplicateArticleError: an article with the same link exists
        """
        values = {name: getattr(article, name) for name in ARTICLE_FIELDS}
        values["status"] = ArticleStatus(article.status).value
        async with self.db.async_session() as session:
            row = DBArticle(**values)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateArticleError(article.link) from e
            logger.debug("article_inserted", article_id=row.id, link=article.link)
            return row.id

    async def update_article(self, article_id: int, **values) -> bool:
        """Update selected columns; returns False when the article does not exist."""
        unknown = set(values) - ARTICLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown article fields: {sorted(unknown)}")
        if "status" in values:
            values["status"] = ArticleStatus(values["status"]).value

        async with self.db.async_session() as session:
            result = await session.execute(
                update(DBArticle)
                .where(DBArticle.id == article_id)
                .values(**values, updated_at=utcnow())
            )
            await session.commit()
            return result.rowcount > 0

    async def get_article(self, article_id: int) -> Optional[ArticleRecord]:
        async with self.db.async_session() as session:
            row = await session.get(DBArticle, article_id)
            return _to_record(row) if row else None

    async def list_articles(self, limit: int = 50) -> list[ArticleRecord]:
        """Most recently ingested first."""
        async with self.db.async_session() as session:
            result = await session.execute(
                select(DBArticle).order_by(DBArticle.created_at.desc(), DBArticle.id.desc()).limit(limit)
            )
            return [_to_record(row) for row in result.scalars()]

    async def list_articles_missing_dates(self, since: datetime, limit: int) -> list[ArticleRecord]:
        """Date-less articles from SCRAPING/ADK sources created at or after `since`."""
        async with self.db.async_session() as session:
            result = await session.execute(
                select(DBArticle)
                .join(DBSource, DBArticle.source_id == DBSource.id)
                .where(
                    DBArticle.pub_date.is_(None),
                    DBArticle.created_at >= since,
                    DBSource.monitoring_type.in_(
                        [MonitoringType.SCRAPING.value, MonitoringType.ADK.value]
                    ),
                )
                .order_by(DBArticle.created_at.desc())
                .limit(limit)
            )
            return [_to_record(row) for row in result.scalars()]

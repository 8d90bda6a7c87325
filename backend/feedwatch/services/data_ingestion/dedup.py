"""
Link-based deduplication.
"""

from enum import Enum
from typing import Optional, Protocol
import logging

from feedwatch.services.data_ingestion.base import ArticleRecord, is_http_url
from feedwatch.services.data_ingestion.errors import DuplicateArticleError

logger = logging.getLogger(__name__)


class LinkStore(Protocol):
    async def article_exists_by_link(self, link: str) -> bool:
        ...

    async def insert_article(self, article: ArticleRecord) -> int:
        ...


class InsertOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


class DeduplicationGuard:
    """
    Keeps already-ingested links out of the pipeline.

    should_ingest is a cheap pre-check done before any extraction work;
    insert relies on the store's unique constraint for the final word.
    """

    def __init__(self, store: LinkStore):
        self.store = store

    async def should_ingest(self, link: Optional[str]) -> bool:
        if not is_http_url(link):
            logger.debug(f"Rejecting non-http link: {link!r}")
            return False
        return not await self.store.article_exists_by_link(link)

    async def insert(self, article: ArticleRecord) -> tuple[InsertOutcome, Optional[int]]:
        """Insert an article, treating a duplicate link as already ingested."""
        try:
            article_id = await self.store.insert_article(article)
        except DuplicateArticleError:
            logger.info(f"Article already ingested: {article.link}")
            return InsertOutcome.DUPLICATE, None
        return InsertOutcome.INSERTED, article_id

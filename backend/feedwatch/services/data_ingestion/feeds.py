"""
Adapters from source formats to the canonical RawItem.

One function per format:
- RSS 2.0 / RDF / Atom entries (via feedparser)
- JSON Feed items
- Listing-page scraper dicts
- External extractor dicts
"""

import json
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional, Union
import logging

import feedparser

from feedwatch.services.data_ingestion.base import ItemOrigin, RawItem
from feedwatch.services.data_ingestion.cleaning import strip_html

logger = logging.getLogger(__name__)


@dataclass
class ParsedFeed:
    """A feed document reduced to canonical items."""
    title: str = ""
    link: str = ""
    description: str = ""
    items: list[RawItem] = field(default_factory=list)
    is_json: bool = False


def _struct_to_iso(value: Optional[time.struct_time]) -> Optional[str]:
    if not value:
        return None
    return datetime(*value[:6], tzinfo=timezone.utc).isoformat()


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _author_name(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return _to_text(value.get("name"))
    return _to_text(value)


def from_feed_entry(entry: dict) -> RawItem:
    """Map a feedparser entry to a RawItem."""
    summary = entry.get("summary")
    content_encoded = None
    if entry.get("content"):
        content_encoded = entry["content"][0].get("value")

    author = entry.get("author")
    if not author and entry.get("author_detail"):
        author = _author_name(entry["author_detail"])

    return RawItem(
        link=_to_text(entry.get("link")),
        title=_to_text(entry.get("title")),
        origin=ItemOrigin.FEED,
        content_snippet=strip_html(summary) if summary else None,
        description=_to_text(summary),
        content=content_encoded,
        content_encoded=content_encoded,
        media_description=_to_text(entry.get("media_description")),
        pub_date=_to_text(entry.get("published")),
        iso_date=_struct_to_iso(entry.get("published_parsed") or entry.get("updated_parsed")),
        date=_to_text(entry.get("updated")),
        published=_to_text(entry.get("created")),
        author=_to_text(author),
        guid=_to_text(entry.get("id")),
    )


def from_json_feed_item(item: dict) -> RawItem:
    """Map a JSON Feed (jsonfeed.org) item to a RawItem."""
    author = None
    if item.get("authors"):
        author = _author_name(item["authors"][0])
    elif item.get("author"):
        author = _author_name(item["author"])

    date_value = item.get("date_published") or item.get("date_modified")
    return RawItem(
        link=_to_text(item.get("url") or item.get("id")),
        title=_to_text(item.get("title")),
        origin=ItemOrigin.JSON_FEED,
        content_snippet=_to_text(item.get("content_text") or item.get("summary")),
        description=_to_text(item.get("summary") or item.get("content_text")),
        content=_to_text(
            item.get("content_html") or item.get("content_text") or item.get("summary")
        ),
        pub_date=_to_text(date_value),
        iso_date=_to_text(date_value),
        author=author,
        guid=_to_text(item.get("id") or item.get("url")),
    )


def from_scraped(article: dict) -> RawItem:
    """Map a listing-page scraper result to a RawItem."""
    return RawItem(
        link=_to_text(article.get("link")),
        title=_to_text(article.get("title")),
        origin=ItemOrigin.SCRAPED,
        description=_to_text(article.get("preview")),
        content=_to_text(article.get("content")),
        pub_date=_to_text(article.get("pub_date")),
    )


def from_extracted(article: dict) -> RawItem:
    """Map an external extractor result to a RawItem."""
    return RawItem(
        link=_to_text(article.get("url") or article.get("link")),
        title=_to_text(article.get("title")),
        origin=ItemOrigin.EXTRACTOR,
        description=_to_text(article.get("description")),
        pub_date=_to_text(article.get("datePublished") or article.get("date_published")),
    )


def _load_json_feed(text: str) -> Optional[dict]:
    if not text.startswith("{"):
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    if isinstance(payload, dict) and payload.get("version") and (
        "items" in payload or "item" in payload
    ):
        return payload
    return None


def parse_feed(content: Union[bytes, str], url: str = "") -> ParsedFeed:
    """
    Parse a feed body of any supported format.

    JSON Feed is detected by its version/items keys; everything else is
    handed to feedparser, which tolerates most malformed XML.
    """
    text = content.decode("utf-8", errors="ignore") if isinstance(content, bytes) else content
    payload = _load_json_feed(text.strip())

    if payload is not None:
        items = payload.get("items") or payload.get("item") or []
        return ParsedFeed(
            title=payload.get("title", ""),
            link=payload.get("home_page_url") or payload.get("feed_url") or url,
            description=payload.get("description", ""),
            items=[from_json_feed_item(i) for i in items if isinstance(i, dict)],
            is_json=True,
        )

    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries:
        logger.warning(f"Feed at {url or '<inline>'} could not be parsed: {parsed.get('bozo_exception')}")

    return ParsedFeed(
        title=parsed.feed.get("title", ""),
        link=parsed.feed.get("link", url),
        description=parsed.feed.get("subtitle", ""),
        items=[from_feed_entry(entry) for entry in parsed.entries],
    )

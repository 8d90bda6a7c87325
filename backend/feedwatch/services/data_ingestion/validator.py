"""
Feed validation by content sniffing.

Servers regularly mislabel feeds (text/html for RSS, text/plain for
Atom), so validation looks at the bytes and never at the Content-Type.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
import logging

import feedparser

from feedwatch.services.data_ingestion.errors import (
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
)
from feedwatch.services.data_ingestion.fetcher import FEED_CHECK_TIMEOUT, RateLimitedFetcher

logger = logging.getLogger(__name__)

SNIFF_BYTES = 4096

HTML_MARKERS = ("<html", "<!doctype html")
FEED_MARKERS = ("<rss", "<feed", "<rdf:rdf", "<channel", "<?xml")

# Parser complaints that still leave a usable feed behind
COSMETIC_XML_ERRORS = (
    "invalid character in entity name",
    "malformed",
    "unexpected end of file",
    "unclosed token",
    "invalid character reference",
    "unescaped &",
    "xml declaration allowed only at the start",
    "undefined entity",
    "not well-formed",
)
FEED_INDICATORS = ("<rss", "<feed", "<channel", "<item", "<entry", "<?xml")


class FeedStatus(str, Enum):
    """Outcome of probing a single feed URL."""
    VALID = "valid"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"


@dataclass
class FeedCheck:
    """Result of FeedValidator.check_feed."""
    url: str
    status: FeedStatus
    item_count: int = 0
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.status == FeedStatus.VALID


def _as_text(data: Union[bytes, str], limit: Optional[int] = None) -> str:
    if isinstance(data, bytes):
        chunk = data if limit is None else data[:limit]
        return chunk.decode("utf-8", errors="ignore")
    return data if limit is None else data[:limit]


def _load_json(text: str) -> Optional[dict]:
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def is_valid_feed(data: Union[bytes, str, None]) -> bool:
    """
    Decide whether a response body looks like RSS, Atom, RDF or JSON Feed.

    Only the first 4KB is inspected for markup; JSON is parsed whole.
    """
    if not data:
        return False

    head = _as_text(data, SNIFF_BYTES).lower()
    if any(marker in head for marker in HTML_MARKERS):
        return False
    if any(marker in head for marker in FEED_MARKERS):
        return True

    payload = _load_json(_as_text(data).strip())
    if payload is None:
        return False
    return "version" in payload and ("items" in payload or "item" in payload)


def is_malformed_but_valid(content: Union[bytes, str], error_message: str) -> bool:
    """A parse error is forgivable if it is cosmetic and the body still has feed tags."""
    message = (error_message or "").lower()
    if not any(err in message for err in COSMETIC_XML_ERRORS):
        return False
    text = _as_text(content).lower()
    return any(indicator in text for indicator in FEED_INDICATORS)


def inspect_feed(content: Union[bytes, str]) -> tuple[bool, int]:
    """
    Fully validate feed content.

    Returns:
        (valid, item_count)
    """
    text = _as_text(content).strip()

    payload = _load_json(text) if text.startswith("{") else None
    if payload is not None:
        items = payload.get("items") or payload.get("item") or []
        valid = bool(payload.get("version")) and isinstance(items, list) and len(items) > 0
        return valid, len(items) if isinstance(items, list) else 0

    if not is_valid_feed(content):
        return False, 0

    parsed = feedparser.parse(content)
    entries = len(parsed.entries)

    if parsed.bozo:
        error = str(parsed.get("bozo_exception", ""))
        if entries or parsed.feed.get("title"):
            logger.debug(f"Feed parsed with recoverable error: {error}")
            return True, entries
        if is_malformed_but_valid(content, error):
            logger.info(f"Accepting malformed but plausible feed: {error}")
            return True, entries
        return False, 0

    return bool(entries or parsed.feed.get("title")), entries


class FeedValidator:
    """Fetches candidate feeds and validates them end to end."""

    def __init__(self, fetcher: RateLimitedFetcher):
        self.fetcher = fetcher

    async def validate_feed(self, url: str) -> bool:
        """Fetch a URL and decide whether it serves a usable feed."""
        check = await self.check_feed(url)
        return check.valid

    async def check_feed(self, url: str) -> FeedCheck:
        """Check a feed URL and classify the outcome."""
        try:
            response = await self.fetcher.get(url, timeout=FEED_CHECK_TIMEOUT)
        except HttpStatusError as e:
            if e.status_code == 429:
                status = FeedStatus.RATE_LIMITED
            elif e.status_code >= 500:
                status = FeedStatus.SERVER_ERROR
            elif e.status_code in (404, 410):
                status = FeedStatus.NOT_FOUND
            else:
                status = FeedStatus.INVALID
            return FeedCheck(url, status, error=str(e))
        except FetchTimeoutError as e:
            return FeedCheck(url, FeedStatus.TIMEOUT, error=str(e))
        except NetworkError as e:
            return FeedCheck(url, FeedStatus.NETWORK_ERROR, error=str(e))

        valid, count = inspect_feed(response.content)
        if not valid:
            logger.debug(f"Content at {url} is not a feed")
            return FeedCheck(url, FeedStatus.INVALID, item_count=count)
        return FeedCheck(url, FeedStatus.VALID, item_count=count)

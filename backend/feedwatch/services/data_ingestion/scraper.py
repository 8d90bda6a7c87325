"""
Listing-page scraping for sources without a feed.

Finds the site's blog/news section, renders it (headless browser first,
static fetch as fallback) and reads article cards out of the HTML with
three strategies: JSON-LD, article-like containers and, only when those
find nothing, plain list links.
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urljoin
import logging

from bs4 import BeautifulSoup

from feedwatch.services.data_ingestion.base import RawItem, Source
from feedwatch.services.data_ingestion.browser import PageRenderer
from feedwatch.services.data_ingestion.dates import parse_date_value
from feedwatch.services.data_ingestion.errors import FetchError
from feedwatch.services.data_ingestion.feeds import from_scraped
from feedwatch.services.data_ingestion.fetcher import (
    FEED_CHECK_TIMEOUT,
    HTML_PAGE_TIMEOUT,
    RateLimitedFetcher,
)

logger = logging.getLogger(__name__)

BLOG_SECTION_PATHS = [
    "/blog",
    "/posts",
    "/articles",
    "/news",
    "/press",
    "/press-releases",
    "/updates",
    "/announcements",
]

ARTICLE_SELECTORS = [
    "article",
    '[class*="article"]',
    '[class*="post"]',
    '[class*="blog"]',
    '[id*="article"]',
    '[id*="post"]',
    ".entry",
    ".blog-post",
    ".news-item",
]

LISTING_TYPES = ("BlogPosting", "Article", "NewsArticle")
MAX_LISTING_ARTICLES = 20
MAX_PREVIEW = 500
FINGERPRINT_HTML_CHARS = 10000
FINGERPRINT_TTL_SECONDS = 24 * 60 * 60


@dataclass
class PageFingerprint:
    hash: str
    last_checked: float
    links: list[str] = field(default_factory=list)


def _absolute(href: str, base_url: str) -> str:
    return href if href.startswith("http") else urljoin(base_url, href)


def _parse_listing_date(value: Optional[str]) -> Optional[datetime]:
    return parse_date_value(value) if value else None


def _from_json_ld(soup: BeautifulSoup, base_url: str) -> list[dict]:
    articles = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        entries = data if isinstance(data, list) else [data]
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("@type") not in LISTING_TYPES:
                continue
            main_entity = entry.get("mainEntityOfPage")
            link = entry.get("url") or (
                main_entity.get("@id") if isinstance(main_entity, dict) else main_entity
            )
            if not link:
                continue
            articles.append({
                "title": entry.get("headline") or entry.get("name") or "",
                "link": _absolute(str(link), base_url),
                "preview": entry.get("description") or "",
                "pub_date": _parse_listing_date(entry.get("datePublished") or entry.get("dateCreated")),
            })
    return articles


def _from_article_cards(soup: BeautifulSoup, base_url: str) -> list[dict]:
    articles = []
    for selector in ARTICLE_SELECTORS:
        for card in soup.select(selector):
            heading = card.select_one('h1, h2, h3, [class*="title"], [class*="headline"]')
            anchor = card.find("a", href=True)
            if heading is None or anchor is None:
                continue
            title = heading.get_text(" ", strip=True)
            if not title:
                continue

            preview_node = card.select_one('[class*="excerpt"], [class*="summary"], [class*="preview"], p')
            preview = preview_node.get_text(" ", strip=True) if preview_node else ""

            date_node = card.select_one('[class*="date"], time, [datetime]')
            date_text = None
            if date_node is not None:
                date_text = date_node.get("datetime") or date_node.get_text(" ", strip=True)

            articles.append({
                "title": title,
                "link": _absolute(anchor["href"], base_url),
                "preview": preview[:MAX_PREVIEW],
                "pub_date": _parse_listing_date(date_text),
            })
    return articles


def _from_list_links(soup: BeautifulSoup, base_url: str) -> list[dict]:
    articles = []
    for li in soup.select("ul li, ol li"):
        anchor = li.find("a", href=True)
        if anchor is None:
            continue
        href = anchor["href"].strip()
        title = anchor.get_text(" ", strip=True) or li.get_text(" ", strip=True)
        if not title or not href or href.startswith("#"):
            continue
        articles.append({
            "title": title,
            "link": _absolute(href, base_url),
            "preview": "",
            "pub_date": None,
        })
    return articles


def extract_listing_articles(html: str, base_url: str) -> list[dict]:
    """
    Article cards on a listing page, newest first, at most 20.

    Dated cards are ordered newest first ahead of undated ones, which
    keep their page order.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    found = _from_json_ld(soup, base_url) + _from_article_cards(soup, base_url)
    if not found:
        found = _from_list_links(soup, base_url)

    unique = []
    seen = set()
    for article in found:
        if article["link"] and article["link"] not in seen:
            seen.add(article["link"])
            unique.append(article)

    unique.sort(
        key=lambda a: (0, -a["pub_date"].timestamp()) if a["pub_date"] else (1, 0)
    )
    return unique[:MAX_LISTING_ARTICLES]


class WebScraper:
    """Traditional scraping: blog-section discovery, render, card extraction."""

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        renderer: Optional[PageRenderer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.fetcher = fetcher
        self.renderer = renderer
        self._clock = clock
        self._fingerprints: dict[int, PageFingerprint] = {}

    async def find_blog_section(self, base_url: str) -> Optional[str]:
        """First conventional blog/news path that answers a HEAD request."""
        root = base_url.rstrip("/")
        for path in BLOG_SECTION_PATHS:
            candidate = root + path
            try:
                await self.fetcher.head(candidate, timeout=FEED_CHECK_TIMEOUT)
            except FetchError:
                continue
            return candidate
        return None

    async def fetch_listing_html(self, url: str) -> str:
        """Rendered HTML when a browser is available, static HTML otherwise."""
        if self.renderer is not None:
            try:
                html = await self.renderer.render(url)
            except Exception as e:
                logger.warning(f"Browser render failed for {url}, using static fetch: {e}")
                html = None
            if html:
                return html

        response = await self.fetcher.get(url, timeout=HTML_PAGE_TIMEOUT)
        return response.text

    async def scrape_articles(self, source: Source) -> list[RawItem]:
        """
        Scrape a source's listing page.

        When the page fingerprint is unchanged since the last visit only
        articles not seen then are returned.

        Raises:
            FetchError: the listing page could not be fetched at all
        """
        blog_url = await self.find_blog_section(source.url)
        target = blog_url or source.url
        logger.info(f"[{source.name}] Scraping listing page {target}")

        html = await self.fetch_listing_html(target)
        articles = extract_listing_articles(html, target)

        fingerprint = self.create_fingerprint(html, articles)
        cached = self._fingerprints.get(source.id)
        if cached and cached.hash == fingerprint:
            logger.info(f"[{source.name}] Page unchanged, checking for new articles only")
            articles = self.find_new_articles(articles, cached.links)
        else:
            self._fingerprints[source.id] = PageFingerprint(
                hash=fingerprint,
                last_checked=self._clock(),
                links=[a["link"] for a in articles],
            )

        logger.info(f"[{source.name}] Found {len(articles)} articles on listing page")
        return [from_scraped(a) for a in articles]

    @staticmethod
    def create_fingerprint(html: str, articles: list[dict]) -> str:
        titles = "|".join(a["title"] for a in articles)
        payload = (html or "")[:FINGERPRINT_HTML_CHARS] + titles
        return hashlib.md5(payload.encode("utf-8")).hexdigest()

    @staticmethod
    def find_new_articles(current: list[dict], last_links: list[str]) -> list[dict]:
        if not last_links:
            return current
        seen = set(last_links)
        return [a for a in current if a["link"] not in seen]

    def cleanup_fingerprints(self) -> int:
        """Drop fingerprints older than a day; returns how many were dropped."""
        now = self._clock()
        stale = [
            source_id for source_id, fp in self._fingerprints.items()
            if now - fp.last_checked > FINGERPRINT_TTL_SECONDS
        ]
        for source_id in stale:
            del self._fingerprints[source_id]
        return len(stale)

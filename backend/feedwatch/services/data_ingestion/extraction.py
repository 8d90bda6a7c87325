"""
Article extraction.

Turns canonical RawItems and article pages into clean article fields:
title, body, preview, publication date, author and publisher
description. Each field has its own fallback chain; the page-title and
page-date chains are strategy lists.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol
import logging

from bs4 import BeautifulSoup

from feedwatch.config import Settings, get_settings
from feedwatch.services.data_ingestion.base import (
    RawItem,
    Source,
    is_redirect_url,
    is_root_path,
)
from feedwatch.services.data_ingestion.browser import PageRenderer
from feedwatch.services.data_ingestion.cleaning import (
    clean_content,
    clean_title,
    is_error_title,
    is_generic_title,
    looks_like_url,
    strip_html,
    title_from_url,
    truncate,
)
from feedwatch.services.data_ingestion.dates import extract_page_date, first_valid_date
from feedwatch.services.data_ingestion.errors import FetchError, HttpStatusError
from feedwatch.services.data_ingestion.fetcher import (
    FULL_ARTICLE_TIMEOUT,
    STATIC_PAGE_TIMEOUT,
    RateLimitedFetcher,
    browser_headers,
)
from feedwatch.services.data_ingestion.governor import ResourceGovernor
from feedwatch.services.data_ingestion.strategies import first_result

logger = logging.getLogger(__name__)

MIN_FULL_CONTENT = 200
MAX_DESCRIPTION = 300
PREVIEW_FALLBACK_LENGTH = 200

RENDERED_CONTENT_SELECTORS = [
    "article",
    "main article",
    ".post-content",
    ".entry-content",
    ".article-content",
    '[class*="article-content"]',
    '[class*="post-content"]',
    '[class*="entry-content"]',
    ".content",
    'section[data-testid="post"]',
    'div[data-article-body="true"]',
    "div.post",
    ".body",
    "main",
]

STATIC_CONTENT_SELECTORS = [
    "article",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".content",
    "main article",
    'section[data-testid="post"]',
    'div[data-article-body="true"]',
    "div.post",
    ".body",
]

DESCRIPTION_SELECTORS = [
    'meta[name="description"]',
    'meta[property="og:description"]',
    'meta[name="twitter:description"]',
    ".article-summary",
    ".post-excerpt",
    ".entry-summary",
    ".excerpt",
]

ARTICLE_PARAGRAPHS = 'article p, main p, [class*="article-content"] p, [class*="post-content"] p'

ARTICLE_CONTAINERS = (
    'article, [class*="article"], [class*="post-content"], [class*="entry-content"], '
    '.post, .blog-post, [role="article"]'
)

H1_REJECT_WORDS = ("blog", "all posts", "latest by topic")
H1_GENERIC_WORDS = H1_REJECT_WORDS + ("category", "tag")
H1_GENERIC_EXACT = re.compile(
    r"^(home|about|contact|careers|company|solutions|marketplace|latest)$", re.I
)


class Summarizer(Protocol):
    async def summarize(self, title: str, content: str, source_name: str) -> str:
        ...

    async def generate_hook(self, title: str, content: str, source_name: str) -> str:
        ...


@dataclass
class ExtractedArticle:
    """Article fields produced from one RawItem."""
    title: str
    content: str
    preview: str = ""
    pub_date: Optional[datetime] = None
    author: Optional[str] = None
    description: Optional[str] = None


@dataclass
class PageMetadata:
    """Fields read from a single article page."""
    title: Optional[str]
    content: str = ""
    pub_date: Optional[datetime] = None
    description: str = ""


# ----------------------------------------------------------------------
# Feed items
# ----------------------------------------------------------------------

def _first_sentence(text: str) -> Optional[str]:
    sentences = re.split(r"[.!?]+", text)
    if len(sentences) > 1:
        return sentences[0].strip()
    return None


def extract_title_and_content(item: RawItem) -> tuple[str, str]:
    """
    Pick the title and body for a feed item.

    Handles feeds that put the body in the title, over-long titles and
    URLs standing in for either field.
    """
    title = (item.title or "").strip() or "Untitled"
    content = ""
    for candidate in item.content_candidates():
        if candidate and candidate.strip():
            content = candidate.strip()
            break

    if len(title) > 200 and len(content) < 100:
        title, content = (content or "Untitled"), title

    if len(title) > 150:
        sentence = _first_sentence(title)
        if sentence and 10 < len(sentence) < 100:
            title = sentence
            if len(content) < 50:
                content = title
                title = "Untitled"

    if looks_like_url(title):
        title, content = (content or "Untitled"), title

    snippet = item.content_snippet or ""
    if looks_like_url(content) and len(snippet) > 50:
        content = snippet

    if len(content) < 50:
        content = item.link or ""

    return title, content


def fallback_preview(item: RawItem, content: str = "") -> str:
    """First 200 characters of the description, snippet or body."""
    text = strip_html(item.description or item.content_snippet or content or "")
    text = re.sub(r"\s+", " ", text).strip()
    return truncate(text, PREVIEW_FALLBACK_LENGTH)


def publisher_description(item: RawItem) -> Optional[str]:
    text = strip_html(item.description or item.content_snippet or "")
    text = re.sub(r"\s+", " ", text).strip()
    return text[:MAX_DESCRIPTION] or None


# ----------------------------------------------------------------------
# Page parsing
# ----------------------------------------------------------------------

def _text_blocks(container, selector: str, min_length: int = 0) -> str:
    blocks = []
    for node in container.select(selector):
        text = node.get_text(" ", strip=True)
        if len(text) > min_length:
            blocks.append(text)
    return "\n\n".join(blocks)


def rendered_article_text(html: str) -> str:
    """Paragraph-like text from a browser-rendered page."""
    soup = BeautifulSoup(html, "html.parser")
    best = ""
    for selector in RENDERED_CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is None:
            continue
        text = _text_blocks(container, "p, li, h2, h3, h4, blockquote", min_length=20)
        if len(text) > len(best):
            best = text

    if len(best) < MIN_FULL_CONTENT:
        main = soup.select_one('main, [role="main"], body') or soup
        paragraphs = _text_blocks(main, "p", min_length=20)
        if len(paragraphs) > len(best):
            best = paragraphs
    return best


def static_article_text(html: str) -> str:
    """Cleaned article text from a statically fetched page."""
    soup = BeautifulSoup(html, "html.parser")
    best = ""
    for selector in STATIC_CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is None:
            continue
        cleaned = clean_content(_text_blocks(container, "p, li, h2, h3, blockquote"))
        if len(cleaned) > len(best):
            best = cleaned

    if len(best) < MIN_FULL_CONTENT:
        cleaned = clean_content(_text_blocks(soup, "p"))
        if len(cleaned) > len(best):
            best = cleaned
    return best


def _meta_content(soup: BeautifulSoup, selector: str) -> str:
    tag = soup.select_one(selector)
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def _json_ld_payloads(soup: BeautifulSoup) -> list[dict]:
    payloads = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        entries = data if isinstance(data, list) else [data]
        for entry in entries:
            if isinstance(entry, dict):
                payloads.append(entry)
                graph = entry.get("@graph")
                if isinstance(graph, list):
                    payloads.extend(g for g in graph if isinstance(g, dict))
    return payloads


def _title_from_og(soup: BeautifulSoup) -> Optional[str]:
    title = _meta_content(soup, 'meta[property="og:title"]') or _meta_content(
        soup, 'meta[name="og:title"]'
    )
    return title if len(title) > 10 else None


def _title_from_json_ld(soup: BeautifulSoup) -> Optional[str]:
    for payload in _json_ld_payloads(soup):
        value = payload.get("headline") or payload.get("name")
        if isinstance(value, str) and 10 < len(value.strip()) < 200:
            return value.strip()
    return None


def _title_from_article_h1(soup: BeautifulSoup) -> Optional[str]:
    for container in soup.select(ARTICLE_CONTAINERS):
        h1 = container.find("h1")
        if h1 is None:
            continue
        text = h1.get_text(" ", strip=True)
        lowered = text.lower()
        if 10 < len(text) < 200 and not any(w in lowered for w in H1_REJECT_WORDS):
            return text
        return None
    return None


def _title_from_any_h1(soup: BeautifulSoup) -> Optional[str]:
    for h1 in soup.find_all("h1"):
        text = h1.get_text(" ", strip=True)
        lowered = text.lower()
        if (
            10 < len(text) < 200
            and not any(w in lowered for w in H1_GENERIC_WORDS)
            and not H1_GENERIC_EXACT.match(text)
        ):
            return text
    return None


def _title_from_title_tag(soup: BeautifulSoup) -> Optional[str]:
    if soup.title is None:
        return None
    title = re.sub(r"\s+", " ", soup.title.get_text()).strip()
    parts = [p.strip() for p in re.split(r"\s*[|–—]\s*|\s+-\s+", title) if p.strip()]
    if len(parts) > 1:
        title = max(parts, key=len)
    return title or None


PAGE_TITLE_STRATEGIES = [
    ("og_title", _title_from_og),
    ("json_ld", _title_from_json_ld),
    ("article_h1", _title_from_article_h1),
    ("any_h1", _title_from_any_h1),
    ("title_tag", _title_from_title_tag),
]


def extract_page_title(soup: BeautifulSoup, url: str) -> str:
    """
    Best title for an article page.

    Error-page titles are kept as-is so callers can reject the page;
    other generic titles give way to a title built from the URL slug.
    """
    title = first_result(PAGE_TITLE_STRATEGIES, soup) or "Untitled"
    title = re.sub(r"\s+", " ", title).strip()

    if is_generic_title(title) and not is_error_title(title):
        slug_title = title_from_url(url)
        if slug_title and 10 < len(slug_title) < 200:
            return slug_title
    return title


def extract_description(soup: BeautifulSoup, title: Optional[str] = None) -> str:
    """Meta/summary description, falling back to the first real paragraph."""
    title_key = (title or "").strip().lower()
    short_hit = ""

    for selector in DESCRIPTION_SELECTORS:
        for tag in soup.select(selector):
            value = (tag.get("content") if tag.name == "meta" else tag.get_text(" ", strip=True)) or ""
            value = value.strip()
            if not value or value.lower() == title_key:
                continue
            if len(value) >= 50:
                return truncate(value, MAX_DESCRIPTION)
            short_hit = short_hit or value

    for selector in (ARTICLE_PARAGRAPHS, "p"):
        for paragraph in soup.select(selector):
            text = paragraph.get_text(" ", strip=True)
            if len(text) > 50:
                return truncate(text, MAX_DESCRIPTION)
    return short_hit


def should_fetch_metadata(url: Optional[str]) -> bool:
    """Redirect links and bare homepages are never worth a page visit."""
    return bool(url) and not is_redirect_url(url) and not is_root_path(url)


class ContentExtractionPipeline:
    """
    Produces canonical article fields from RawItems and pages.

    Browser rendering is optional (renderer=None disables it) and is
    skipped whenever the governor reports memory over the hard limit.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        settings: Optional[Settings] = None,
        summarizer: Optional[Summarizer] = None,
        renderer: Optional[PageRenderer] = None,
        governor: Optional[ResourceGovernor] = None,
    ):
        self.fetcher = fetcher
        self.settings = settings or get_settings()
        self.summarizer = summarizer
        self.renderer = renderer
        self.governor = governor

    @property
    def _browser_headers(self) -> dict:
        return browser_headers(self.settings.fetcher.browser_user_agent)

    async def _render(self, url: str) -> Optional[str]:
        if self.renderer is None:
            return None
        if self.governor and self.governor.over_limit():
            logger.info(f"Memory over limit, not rendering {url}")
            return None
        try:
            return await self.renderer.render(url)
        except Exception as e:
            logger.warning(f"Browser render failed for {url}: {e}")
            return None
        finally:
            if self.governor:
                await self.governor.after_browser_use()

    async def preview_for(self, title: str, content: str, item: RawItem, source_name: str, light: bool) -> str:
        if light or self.summarizer is None:
            return fallback_preview(item, content)
        try:
            return await self.summarizer.summarize(title, content, source_name)
        except Exception as e:
            logger.warning(f"Summarization failed for {item.link}: {e}")
            return fallback_preview(item, content)

    async def extract_item(
        self,
        item: RawItem,
        light: bool = False,
        source_name: str = "RSS Feed",
    ) -> ExtractedArticle:
        """
        Extract a feed item.

        Args:
            item: Canonical feed item
            light: Skip the full-article fetch and the summarizer
            source_name: Passed to the summarizer

        Returns:
            ExtractedArticle with pub_date None when no candidate parses
        """
        title, content = extract_title_and_content(item)
        cleaned = clean_content(content)

        if not light and item.link and len(cleaned) < self.settings.scheduler.min_content_length:
            try:
                full = await self.fetch_full_article_content(item.link)
            except FetchError as e:
                logger.warning(f"Full article fetch failed for {item.link}: {e}")
                full = ""
            if len(full) > len(cleaned):
                cleaned = full

        return ExtractedArticle(
            title=title,
            content=cleaned,
            preview=await self.preview_for(title, cleaned, item, source_name, light),
            pub_date=first_valid_date(item.date_candidates()),
            author=item.author,
            description=publisher_description(item),
        )

    async def extract_scraped_item(
        self,
        item: RawItem,
        source: Source,
        manual: bool = False,
    ) -> ExtractedArticle:
        """
        Extract an item found by the listing scraper or the external extractor.

        Periodic runs visit the article page for a better title, date and
        body; manual runs only read date and description statically.
        """
        link = item.link or ""
        title = clean_title(item.title)
        if looks_like_url(title):
            title = title_from_url(link) or title

        pub_date = first_valid_date(item.date_candidates())
        description = strip_html(item.description or "")
        content = item.content or description

        if not manual and should_fetch_metadata(link):
            try:
                metadata = await self.extract_article_metadata(link)
            except FetchError as e:
                logger.warning(f"[{source.name}] Metadata fetch failed for {link}: {e}")
                metadata = None
            if metadata is not None:
                if metadata.title and (is_error_title(metadata.title) or not is_generic_title(metadata.title)):
                    title = clean_title(metadata.title)
                pub_date = metadata.pub_date or pub_date
                description = metadata.description or description
                if len(metadata.content) > len(content):
                    content = metadata.content
        elif manual and should_fetch_metadata(link) and (pub_date is None or not description):
            try:
                static_date, static_description = await self.extract_static_details(link)
            except FetchError as e:
                logger.debug(f"[{source.name}] Static details unavailable for {link}: {e}")
            else:
                pub_date = pub_date or static_date
                description = description or static_description

        cleaned = clean_content(content)
        described = RawItem(link=link, description=description or cleaned)
        return ExtractedArticle(
            title=title,
            content=cleaned,
            preview=await self.preview_for(title, cleaned, described, source.name, manual),
            pub_date=pub_date,
            description=description[:MAX_DESCRIPTION] or None,
        )

    async def fetch_full_article_content(self, url: str) -> str:
        """
        Readable text of an article page.

        Tries the browser first and accepts its text only above 200
        cleaned characters; otherwise fetches statically.

        Raises:
            FetchError: the static fetch failed (a 403 included)
        """
        html = await self._render(url)
        if html:
            text = clean_content(rendered_article_text(html))
            if len(text) > MIN_FULL_CONTENT:
                return text

        response = await self.fetcher.get(
            url,
            timeout=FULL_ARTICLE_TIMEOUT,
            headers=self._browser_headers,
        )
        return static_article_text(response.text)

    async def _page_html(self, url: str) -> str:
        html = await self._render(url)
        if html:
            return html
        response = await self.fetcher.get(
            url,
            timeout=STATIC_PAGE_TIMEOUT,
            headers=self._browser_headers,
        )
        return response.text

    async def extract_article_metadata(self, url: str) -> PageMetadata:
        """
        Title, description, date and body for an article page.

        A 403 on the page itself yields an 'Untitled' result with empty
        fields; a failed body fetch falls back to the description.
        """
        try:
            html = await self._page_html(url)
        except HttpStatusError as e:
            if e.status_code == 403:
                logger.info(f"403 Forbidden when extracting metadata from {url}")
                return PageMetadata(title="Untitled")
            raise

        soup = BeautifulSoup(html, "html.parser")
        title = extract_page_title(soup, url)
        description = extract_description(soup, title)
        pub_date = extract_page_date(soup)
        if pub_date is None:
            logger.info(f"No date found for article: {url}")

        content = static_article_text(html)
        if len(content) < MIN_FULL_CONTENT:
            try:
                full = await self.fetch_full_article_content(url)
            except FetchError as e:
                logger.info(f"Could not fetch full content from {url}, using description: {e}")
                full = description
            if len(full) > len(content):
                content = full

        return PageMetadata(
            title=title,
            content=content,
            pub_date=pub_date,
            description=description,
        )

    async def extract_static_details(self, url: str) -> tuple[Optional[datetime], str]:
        """Publication date and description from a static fetch only."""
        response = await self.fetcher.get(
            url,
            timeout=STATIC_PAGE_TIMEOUT,
            headers=self._browser_headers,
        )
        soup = BeautifulSoup(response.text, "html.parser")
        return extract_page_date(soup), extract_description(soup)

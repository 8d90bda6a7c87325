"""
External AI-assisted article extraction.

The extractor is an untrusted collaborator: it may return nothing,
redirect links, homepages or articles from other sites. Everything it
returns goes through filter_to_source_domain before use.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol
from urllib.parse import urljoin, urlparse
import logging

from anthropic import AsyncAnthropic
from bs4 import BeautifulSoup
from openai import AsyncOpenAI

from feedwatch.config import Settings, get_settings
from feedwatch.services.data_ingestion.base import (
    RawItem,
    Source,
    is_redirect_url,
    normalize_domain,
)
from feedwatch.services.data_ingestion.dates import parse_date_value
from feedwatch.services.data_ingestion.errors import ExtractorError
from feedwatch.services.data_ingestion.feeds import from_extracted
from feedwatch.services.data_ingestion.fetcher import HTML_PAGE_TIMEOUT, RateLimitedFetcher

logger = logging.getLogger(__name__)

MAX_EXTRACTED_ARTICLES = 3
MAX_CANDIDATE_LINKS = 150
MIN_PATH_BEYOND_BASE = 3

CODE_FENCE = re.compile(r"```(?:json)?\n?")
CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


class ArticleExtractor(Protocol):
    """Finds a source's most recent articles without a feed."""

    async def extract_articles(self, source: Source) -> list[RawItem]:
        ...


@dataclass
class DomainFilterResult:
    """Extractor output split into usable and rejected items."""
    kept: list[RawItem] = field(default_factory=list)
    wrong_domain: list[RawItem] = field(default_factory=list)
    invalid: list[RawItem] = field(default_factory=list)

    @property
    def has_mismatch(self) -> bool:
        return bool(self.wrong_domain)


def filter_to_source_domain(items: list[RawItem], source_url: str) -> DomainFilterResult:
    """
    Keep items that are specific article pages on the source's own domain.

    Domains compare lower-cased with a leading www. removed. Redirect
    links, the homepage, the source's base path and paths at most three
    characters longer than it are rejected as invalid.
    """
    result = DomainFilterResult()
    source_domain = normalize_domain(source_url)
    base_path = urlparse(source_url).path.rstrip("/")

    for item in items:
        link = (item.link or "").strip()
        if not link or link == "null" or is_redirect_url(link) or "google.com/grounding" in link:
            result.invalid.append(item)
            continue

        parsed = urlparse(link)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            result.invalid.append(item)
            continue

        if normalize_domain(link) != source_domain:
            result.wrong_domain.append(item)
            continue

        path = parsed.path
        if path in ("/", base_path, base_path + "/") or len(path) <= len(base_path) + MIN_PATH_BEYOND_BASE:
            result.invalid.append(item)
            continue

        result.kept.append(item)

    if result.wrong_domain or result.invalid:
        logger.info(
            f"Extractor results for {source_domain}: kept {len(result.kept)}, "
            f"wrong domain {len(result.wrong_domain)}, invalid {len(result.invalid)}"
        )
    return result


def sort_newest_first(items: list[RawItem]) -> list[RawItem]:
    """Dated items newest first, then undated ones in their original order."""
    def key(item: RawItem):
        parsed = parse_date_value(item.pub_date)
        return (0, -parsed.timestamp()) if parsed else (1, 0)

    return sorted(items, key=key)


def parse_article_array(text: Optional[str]) -> list[dict]:
    """Pull the JSON array of articles out of a model response."""
    if not text:
        return []
    cleaned = CODE_FENCE.sub("", text)
    cleaned = CONTROL_CHARS.sub("", cleaned).strip()

    match = JSON_ARRAY.search(cleaned)
    if not match:
        logger.warning("No JSON array found in extractor response")
        return []
    try:
        parsed = json.loads(match.group(0))
    except ValueError as e:
        logger.warning(f"Could not parse extractor response: {e}")
        return []
    return [entry for entry in parsed if isinstance(entry, dict)] if isinstance(parsed, list) else []


def candidate_links(html: str, base_url: str) -> list[tuple[str, str]]:
    """(text, absolute href) pairs for the anchors on a page."""
    soup = BeautifulSoup(html or "", "html.parser")
    links = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "mailto:", "javascript:")):
            continue
        absolute = urljoin(base_url, href)
        if absolute in seen:
            continue
        seen.add(absolute)
        links.append((anchor.get_text(" ", strip=True), absolute))
        if len(links) >= MAX_CANDIDATE_LINKS:
            break
    return links


class LLMArticleExtractor:
    """
    ArticleExtractor backed by an LLM reading the source page's links.

    Uses Anthropic when configured, OpenAI otherwise. Calls are spaced by
    a minimum interval to stay under provider rate limits.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        settings: Optional[Settings] = None,
        anthropic_client: Optional[AsyncAnthropic] = None,
        openai_client: Optional[AsyncOpenAI] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.settings = settings or get_settings()
        self._anthropic = anthropic_client
        self._openai = openai_client
        if self._anthropic is None and self.settings.anthropic_api_key:
            self._anthropic = AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        if self._openai is None and self.settings.openai_api_key:
            self._openai = AsyncOpenAI(api_key=self.settings.openai_api_key)
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None

    @property
    def available(self) -> bool:
        return self._anthropic is not None or self._openai is not None

    async def _respect_interval(self):
        if self._last_call is not None:
            wait = self.settings.extractor_min_interval_seconds - (self._clock() - self._last_call)
            if wait > 0:
                logger.info(f"Waiting {wait:.1f}s before next extractor call")
                await self._sleep(wait)
        self._last_call = self._clock()

    def _build_prompt(self, source: Source, links: list[tuple[str, str]]) -> str:
        domain = source.domain
        listing = "\n".join(f"- {text or '(no text)'}: {href}" for text, href in links)
        return f"""Find the {MAX_EXTRACTED_ARTICLES} MOST RECENT blog posts or articles published by {source.url}.

Rules:
1. Only return articles whose URL hostname is {domain}.
2. Every URL must be a direct link to a specific article page, not the homepage, not "{source.url}" and not a redirect.
3. Sort by publication date, newest first.
4. Use YYYY-MM-DD for datePublished, or null when no date is known.

Links found on the page:
{listing}

Return only a JSON array of objects with keys: title, url, description, datePublished."""

    async def _complete(self, prompt: str) -> str:
        if self._anthropic is not None:
            response = await self._anthropic.messages.create(
                model=self.settings.anthropic_model,
                max_tokens=1024,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.content[0].text
        response = await self._openai.chat.completions.create(
            model=self.settings.openai_model,
            max_tokens=1024,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.choices[0].message.content or ""

    async def extract_articles(self, source: Source) -> list[RawItem]:
        """
        Ask the model for the source's latest articles.

        Raises:
            ExtractorError: no model is configured or the model call failed
            FetchError: the source page could not be fetched
        """
        if not self.available:
            raise ExtractorError("No LLM API key configured for article extraction")

        response = await self.fetcher.get(source.url, timeout=HTML_PAGE_TIMEOUT)
        links = candidate_links(response.text, source.url)

        await self._respect_interval()
        try:
            text = await self._complete(self._build_prompt(source, links))
        except Exception as e:
            raise ExtractorError(f"Extractor call failed for {source.name}: {e}") from e

        articles = parse_article_array(text)
        logger.info(f"[{source.name}] Extractor returned {len(articles)} articles")
        return [from_extracted(a) for a in articles]

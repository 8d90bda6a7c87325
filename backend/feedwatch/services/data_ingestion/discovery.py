"""
Feed discovery for arbitrary websites.

Given a human-facing site URL, find one working RSS/Atom/JSON feed by
running an ordered chain of discovery strategies. Every candidate is
fetched and sniffed before it is accepted, and results (including
"nothing found") are cached for a fixed TTL.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import urljoin, urlparse
import logging

from bs4 import BeautifulSoup

from feedwatch.services.data_ingestion.errors import FetchError
from feedwatch.services.data_ingestion.fetcher import (
    FEED_CHECK_TIMEOUT,
    HTML_PAGE_TIMEOUT,
    STATIC_PAGE_TIMEOUT,
    RateLimitedFetcher,
)
from feedwatch.services.data_ingestion.strategies import AsyncStrategy, first_result_async
from feedwatch.services.data_ingestion.validator import is_valid_feed

logger = logging.getLogger(__name__)

# Conventional feed locations, most likely first
COMMON_FEED_PATHS = [
    "/feed",
    "/rss",
    "/feed.xml",
    "/rss.xml",
    "/atom.xml",
    "/feeds/all.xml",
    "/feed.json",
    "/index.rss",
    "/atom",
    "/feeds/posts/default",
    "/index.xml",
    "/feed.rss",
    "/rss2.xml",
    "/feed/",
    "/feeds/",
    "/blog/feed",
    "/blog/feed.json",
    "/blog/rss",
    "/news/feed",
    "/news/feed.json",
    "/news/rss",
    "/posts/feed",
    "/posts/feed.json",
    "/posts/rss",
    "/articles/feed",
    "/articles/feed.json",
    "/articles/rss",
    "/updates/feed",
    "/updates/feed.json",
    "/updates/rss",
    "/content/feed",
    "/content/rss",
    "/latest/feed",
    "/latest/rss",
    "/feed.rdf",
    "/feed.atom",
    "/feed/index.xml",
    "/rss/index.xml",
    "/atom/index.xml",
]

SECTION_SUFFIXES = ["", "/blog", "/news", "/posts", "/articles", "/updates"]

WORDPRESS_FEED_PATHS = [
    "/feed/",
    "/rdf/",
    "/rss/",
    "/atom/",
    "/feed/rss/",
    "/feed/rss2/",
    "/feed/atom/",
    "/wp-feed.php",
    "/?feed=rss",
    "/?feed=rss2",
    "/?feed=atom",
    "/category/uncategorized/feed/",
    "/tag/feed/",
]

FEED_LINK_TYPES = {
    "application/rss+xml",
    "application/atom+xml",
    "application/json",
    "application/feed+json",
    "text/xml",
}
FEED_TYPE_HINTS = ("xml", "json", "rss", "atom", "feed")
FEED_HREF_HINTS = ("feed", "rss", "atom")
FEED_TEXT_HINTS = ("rss", "feed", "syndication", "atom", "json")

SITEMAP_FEED_PATTERN = re.compile(r"(rss|atom|feed)\.(xml|rss|atom)|/(rss|atom|feed)(/|$)", re.I)
SITEMAP_SECTION_PATTERN = re.compile(r"^(.*?/(blog|news|posts|articles|updates))(/|$)", re.I)
MAX_SITEMAP_SECTIONS = 20


def normalize_url(url: str) -> str:
    """Add a missing scheme and drop trailing slashes."""
    url = url.strip()
    if not re.match(r"^https?://", url, re.I):
        url = "https://" + url
    return url.rstrip("/")


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def build_parent_paths(url: str) -> list[str]:
    """The origin followed by every path prefix of the URL, shortest first."""
    parsed = urlparse(url)
    origin = origin_of(url)
    bases = [origin]
    current = origin
    for segment in [s for s in parsed.path.split("/") if s]:
        current = f"{current}/{segment}"
        bases.append(current)
    return bases


def extract_feed_links(html: str, base_url: str) -> list[str]:
    """Feed candidates advertised by an HTML page, resolved to absolute URLs."""
    soup = BeautifulSoup(html, "html.parser")
    found: list[str] = []

    def add(href: Optional[str]):
        if not href:
            return
        href = href.strip()
        if not href or href.startswith(("#", "javascript:", "mailto:")):
            return
        absolute = urljoin(base_url + "/", href) if not urlparse(href).scheme else href
        if absolute not in found:
            found.append(absolute)

    for link in soup.find_all("link", href=True):
        link_type = (link.get("type") or "").lower()
        rel = [r.lower() for r in (link.get("rel") or [])]
        if link_type in FEED_LINK_TYPES:
            add(link["href"])
        elif "alternate" in rel and any(hint in link_type for hint in FEED_TYPE_HINTS):
            add(link["href"])
        elif "feed" in rel or "syndication" in rel:
            add(link["href"])

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].lower()
        text = anchor.get_text(" ", strip=True).lower()
        if any(h in href for h in FEED_HREF_HINTS) and any(h in text for h in FEED_TEXT_HINTS):
            add(anchor["href"])

    return found


def _youtube_feeds(ctx: "DiscoveryContext") -> list[str]:
    path = urlparse(ctx.site_url).path
    channel = re.search(r"/channel/([\w-]+)", path)
    if channel:
        return [f"https://www.youtube.com/feeds/videos.xml?channel_id={channel.group(1)}"]
    user = re.search(r"/(?:user|c)/([\w-]+)", path)
    if user:
        return [f"https://www.youtube.com/feeds/videos.xml?user={user.group(1)}"]
    return []


def _reddit_feeds(ctx: "DiscoveryContext") -> list[str]:
    sub = re.search(r"/r/(\w+)", urlparse(ctx.site_url).path)
    return [f"{ctx.origin}/r/{sub.group(1)}.rss"] if sub else []


def _host_matches(pattern: str) -> Callable[[str, str], bool]:
    regex = re.compile(pattern, re.I)
    return lambda host, path: bool(regex.search(host))


# (name, matches(host, path), candidates(ctx))
PLATFORM_RULES = [
    ("substack", _host_matches(r"(^|\.)substack\.com$"), lambda ctx: [ctx.site_url + "/feed"]),
    ("medium", _host_matches(r"(^|\.)medium\.com$"), lambda ctx: [ctx.site_url + "/feed"]),
    ("youtube", _host_matches(r"(^|\.)youtube\.com$"), _youtube_feeds),
    ("reddit", _host_matches(r"(^|\.)reddit\.com$"), _reddit_feeds),
    ("github", _host_matches(r"^github\.com$"), lambda ctx: [ctx.site_url + ".atom"]),
    (
        "blogger",
        _host_matches(r"(^|\.)(blogspot|blogger)\.com$"),
        lambda ctx: [ctx.origin + "/feeds/posts/default"],
    ),
    ("tumblr", _host_matches(r"(^|\.)tumblr\.com$"), lambda ctx: [ctx.origin + "/rss"]),
    (
        "mastodon",
        lambda host, path: bool(re.match(r"^/@[\w.]+$", path)) and "medium" not in host,
        lambda ctx: [ctx.site_url + ".rss"],
    ),
]

# Tried for hosts that matched no platform rule
GENERIC_PLATFORM_PATHS = ["/feed", "/feeds/posts/default", "/rss"]


@dataclass
class DiscoveryContext:
    """Per-call discovery state."""
    site_url: str
    html: Optional[str] = None
    tested: dict[str, bool] = field(default_factory=dict)

    @property
    def origin(self) -> str:
        return origin_of(self.site_url)

    @property
    def host(self) -> str:
        return (urlparse(self.site_url).hostname or "").lower()

    @property
    def path(self) -> str:
        return urlparse(self.site_url).path.rstrip("/")


class FeedDiscoveryEngine:
    """
    Locates a verified feed URL for a website.

    Strategies, in order:
    1. html_links - <link rel="alternate"> and feed-like anchors on the page
    2. parent_html_links - the same signal on parent paths
    3. common_paths - conventional feed paths under parents and sections
    4. platform - Substack, Medium, YouTube, Reddit, GitHub, Blogger, Tumblr, Mastodon
    5. wordpress - WordPress feed endpoints when the site looks like WordPress
    6. sitemap - feed-like URLs and blog sections listed in /sitemap.xml
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        cache_ttl_seconds: float = 30 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[Optional[str], float]] = {}

    def _strategies(self) -> list[AsyncStrategy]:
        return [
            ("html_links", self._from_html_links),
            ("parent_html_links", self._from_parent_html_links),
            ("common_paths", self._from_common_paths),
            ("platform", self._from_platform),
            ("wordpress", self._from_wordpress),
            ("sitemap", self._from_sitemap),
        ]

    async def discover_feed_url(self, site_url: str) -> Optional[str]:
        """
        Find a working feed for a site.

        Returns:
            The verified feed URL, or None when no strategy found one
        """
        key = normalize_url(site_url)

        cached = self._cache.get(key)
        if cached is not None:
            feed_url, expires_at = cached
            if self._clock() < expires_at:
                logger.debug(f"Discovery cache hit for {key}: {feed_url}")
                return feed_url
            del self._cache[key]

        ctx = DiscoveryContext(site_url=key)
        strategy, feed_url = await first_result_async(self._strategies(), ctx)

        if feed_url:
            logger.info(f"Discovered feed for {key} via {strategy}: {feed_url}")
        else:
            logger.info(f"No feed found for {key} ({len(ctx.tested)} candidates tested)")

        self._cache[key] = (feed_url, self._clock() + self.cache_ttl_seconds)
        return feed_url

    def clear_cache(self):
        self._cache.clear()

    def cache_size(self) -> int:
        return len(self._cache)

    # ------------------------------------------------------------------
    # Candidate testing
    # ------------------------------------------------------------------

    async def test_feed(self, url: str) -> bool:
        """GET a candidate and sniff it. Any fetch failure means "not a feed"."""
        try:
            response = await self.fetcher.get(url, timeout=FEED_CHECK_TIMEOUT)
        except FetchError as e:
            logger.debug(f"Candidate {url} failed: {e}")
            return False
        return is_valid_feed(response.content)

    async def _first_valid(self, ctx: DiscoveryContext, candidates: list[str]) -> Optional[str]:
        for url in candidates:
            if url not in ctx.tested:
                ctx.tested[url] = await self.test_feed(url)
            if ctx.tested[url]:
                return url
        return None

    async def _fetch_html(self, url: str, timeout: float = HTML_PAGE_TIMEOUT) -> Optional[str]:
        try:
            response = await self.fetcher.get(url, timeout=timeout)
        except FetchError as e:
            logger.debug(f"Could not fetch {url}: {e}")
            return None
        return response.text

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _from_html_links(self, ctx: DiscoveryContext) -> Optional[str]:
        html = await self._fetch_html(ctx.site_url)
        if html is None:
            return None
        ctx.html = html

        # The "site" may already be a feed
        if is_valid_feed(html):
            ctx.tested[ctx.site_url] = True
            return ctx.site_url

        return await self._first_valid(ctx, extract_feed_links(html, ctx.site_url))

    async def _from_parent_html_links(self, ctx: DiscoveryContext) -> Optional[str]:
        for parent in build_parent_paths(ctx.site_url):
            if parent == ctx.site_url:
                continue
            html = await self._fetch_html(parent)
            if not html:
                continue
            feed_url = await self._first_valid(ctx, extract_feed_links(html, parent))
            if feed_url:
                return feed_url
        return None

    async def _from_common_paths(self, ctx: DiscoveryContext) -> Optional[str]:
        candidates: list[str] = []
        for base in build_parent_paths(ctx.site_url):
            for suffix in SECTION_SUFFIXES:
                for path in COMMON_FEED_PATHS:
                    url = base + suffix + path
                    if url not in candidates:
                        candidates.append(url)
        return await self._first_valid(ctx, candidates)

    async def _from_platform(self, ctx: DiscoveryContext) -> Optional[str]:
        candidates: list[str] = []
        for name, matches, build in PLATFORM_RULES:
            if matches(ctx.host, ctx.path):
                logger.debug(f"{ctx.site_url} looks like {name}")
                candidates.extend(build(ctx))

        if not candidates:
            candidates = [ctx.origin + path for path in GENERIC_PLATFORM_PATHS]

        return await self._first_valid(ctx, candidates)

    def _looks_like_wordpress(self, ctx: DiscoveryContext) -> bool:
        if "wordpress" in ctx.host or "/wp-" in ctx.site_url.lower():
            return True
        html = (ctx.html or "").lower()
        return "wp-content" in html or "wp-includes" in html

    async def _from_wordpress(self, ctx: DiscoveryContext) -> Optional[str]:
        if not self._looks_like_wordpress(ctx):
            return None
        return await self._first_valid(ctx, [ctx.origin + p for p in WORDPRESS_FEED_PATHS])

    async def _from_sitemap(self, ctx: DiscoveryContext) -> Optional[str]:
        xml = await self._fetch_html(ctx.origin + "/sitemap.xml", timeout=STATIC_PAGE_TIMEOUT)
        if not xml:
            return None

        feed_like, sections = parse_sitemap(xml, ctx.origin)

        feed_url = await self._first_valid(ctx, feed_like)
        if feed_url:
            return feed_url

        for section in sections:
            feed_url = await self._first_valid(ctx, [section + p for p in COMMON_FEED_PATHS])
            if feed_url:
                return feed_url
        return None


def parse_sitemap(xml: str, origin: str) -> tuple[list[str], list[str]]:
    """
    Split same-origin sitemap <loc> entries into feed-looking URLs and
    blog/news section roots (at most MAX_SITEMAP_SECTIONS).
    """
    soup = BeautifulSoup(xml, "html.parser")
    netloc = urlparse(origin).netloc.lower()

    feed_like: list[str] = []
    sections: list[str] = []
    for loc in soup.find_all("loc"):
        url = loc.get_text(strip=True)
        if not url or urlparse(url).netloc.lower() != netloc:
            continue
        path = urlparse(url).path
        if SITEMAP_FEED_PATTERN.search(path) and url not in feed_like:
            feed_like.append(url)
            continue
        match = SITEMAP_SECTION_PATTERN.match(path)
        if match and len(sections) < MAX_SITEMAP_SECTIONS:
            section = origin + match.group(1)
            if section not in sections:
                sections.append(section)

    return feed_like, sections

"""
Tests for feed sniffing and validation.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx

from feedwatch.config import FetcherSettings
from feedwatch.services.data_ingestion.fetcher import RateLimitedFetcher
from feedwatch.services.data_ingestion.validator import (
    FeedStatus,
    FeedValidator,
    inspect_feed,
    is_malformed_but_valid,
    is_valid_feed,
)


SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Engineering</title>
    <link>https://example.com</link>
    <item>
      <title>Scaling our search cluster</title>
      <link>https://example.com/blog/scaling-search</link>
      <description>How we moved search to a sharded cluster without downtime.</description>
      <pubDate>Mon, 15 Jan 2024 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>A year of on-call lessons</title>
      <link>https://example.com/blog/on-call</link>
      <description>What twelve months of pager duty taught the platform team.</description>
      <pubDate>Sun, 14 Jan 2024 15:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

SAMPLE_ATOM = """<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Example Atom</title>
  <entry>
    <title>Atom entry title here</title>
    <link href="https://example.com/atom-entry"/>
    <updated>2024-02-01T10:00:00Z</updated>
  </entry>
</feed>
"""

SAMPLE_JSON_FEED = json.dumps({
    "version": "https://jsonfeed.org/version/1.1",
    "title": "Example JSON Feed",
    "items": [
        {"id": "1", "url": "https://example.com/posts/one", "title": "First post", "content_text": "Hello"},
    ],
})

SAMPLE_HTML = "<!DOCTYPE html><html><head><title>Home</title></head><body><p>Welcome</p></body></html>"


def make_validator(handler):
    fetcher = RateLimitedFetcher(
        FetcherSettings(min_domain_interval_seconds=0, max_retries=0),
        transport=httpx.MockTransport(handler),
        sleep=AsyncMock(),
    )
    return FeedValidator(fetcher), fetcher


def check(handler, url="https://example.com/feed"):
    validator, fetcher = make_validator(handler)

    async def run():
        try:
            return await validator.check_feed(url)
        finally:
            await fetcher.close()

    return asyncio.run(run())


class TestSniffing:
    """Tests for body-based feed detection."""

    def test_rss_is_a_feed(self):
        assert is_valid_feed(SAMPLE_RSS.encode())

    def test_atom_without_xml_declaration_is_a_feed(self):
        assert is_valid_feed(SAMPLE_ATOM)

    def test_json_feed_is_a_feed(self):
        assert is_valid_feed(SAMPLE_JSON_FEED)

    def test_html_is_not_a_feed(self):
        assert not is_valid_feed(SAMPLE_HTML)

    def test_empty_and_plain_json_are_not_feeds(self):
        assert not is_valid_feed(b"")
        assert not is_valid_feed(None)
        assert not is_valid_feed('{"name": "not a feed"}')


class TestInspectFeed:
    """Tests for full feed validation."""

    def test_rss_item_count(self):
        valid, count = inspect_feed(SAMPLE_RSS.encode())
        assert valid
        assert count == 2

    def test_json_feed_needs_items(self):
        assert inspect_feed(SAMPLE_JSON_FEED) == (True, 1)

        empty = json.dumps({"version": "https://jsonfeed.org/version/1.1", "items": []})
        assert inspect_feed(empty)[0] is False

    def test_malformed_but_plausible_feed_is_accepted(self):
        broken = (
            '<?xml version="1.0"?><rss version="2.0"><channel>'
            "<title>News & Notes</title>"
            "<item><title>Ampersands & other mistakes</title>"
            "<link>https://example.com/amp</link></item>"
            "</channel></rss>"
        )
        valid, count = inspect_feed(broken)
        assert valid
        assert count == 1

    def test_cosmetic_error_classification(self):
        assert is_malformed_but_valid("<rss><item></item>", "not well-formed (invalid token)")
        assert not is_malformed_but_valid("<div>nothing</div>", "not well-formed (invalid token)")
        assert not is_malformed_but_valid("<rss><item></item>", "document is empty")


class TestFeedValidator:
    """Tests for fetch-and-validate outcomes."""

    def test_valid_feed_despite_html_content_type(self):
        def handler(request):
            return httpx.Response(200, text=SAMPLE_RSS, headers={"Content-Type": "text/html"})

        result = check(handler)
        assert result.status == FeedStatus.VALID
        assert result.valid
        assert result.item_count == 2

    def test_html_page_is_invalid(self):
        result = check(lambda request: httpx.Response(200, text=SAMPLE_HTML))
        assert result.status == FeedStatus.INVALID
        assert not result.valid

    def test_status_classification(self):
        assert check(lambda r: httpx.Response(404)).status == FeedStatus.NOT_FOUND
        assert check(lambda r: httpx.Response(429)).status == FeedStatus.RATE_LIMITED
        assert check(lambda r: httpx.Response(503)).status == FeedStatus.SERVER_ERROR
        assert check(lambda r: httpx.Response(401)).status == FeedStatus.INVALID

    def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = check(handler)
        assert result.status == FeedStatus.NETWORK_ERROR
        assert result.error

    def test_validate_feed_returns_bool(self):
        validator, fetcher = make_validator(lambda r: httpx.Response(200, text=SAMPLE_ATOM))

        async def run():
            try:
                return await validator.validate_feed("https://example.com/atom.xml")
            finally:
                await fetcher.close()

        assert asyncio.run(run()) is True

"""
Tests for the external article extractor and its result filtering.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from feedwatch.config import FetcherSettings, Settings
from feedwatch.services.data_ingestion.base import MonitoringType, RawItem, Source
from feedwatch.services.data_ingestion.errors import ExtractorError
from feedwatch.services.data_ingestion.extractor import (
    LLMArticleExtractor,
    candidate_links,
    filter_to_source_domain,
    parse_article_array,
    sort_newest_first,
)
from feedwatch.services.data_ingestion.fetcher import RateLimitedFetcher


SOURCE = Source(id=3, name="Example", url="https://www.example.com/blog", monitoring_type=MonitoringType.ADK)

SOURCE_PAGE = """<html><body>
<a href="/blog/launch-week">Launch week recap</a>
<a href="/blog/launch-week">Launch week recap</a>
<a href="#main">Skip</a>
<a href="mailto:hi@example.com">Mail</a>
<a href="https://other.com/post">Elsewhere</a>
</body></html>
"""

MODEL_RESPONSE = "```json\n" + json.dumps([
    {
        "title": "Launch week recap",
        "url": "https://example.com/blog/launch-week",
        "description": "Everything we shipped",
        "datePublished": "2024-05-10",
    },
]) + "\n```"


def item(link, pub_date=None):
    return RawItem(link=link, title="Some article title", pub_date=pub_date)


def no_key_settings() -> Settings:
    return Settings(
        anthropic_api_key=None,
        openai_api_key=None,
        fetcher=FetcherSettings(min_domain_interval_seconds=0, max_retries=0),
    )


def make_extractor(anthropic_client=None, openai_client=None, clock=None, sleep=None):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, text=SOURCE_PAGE)

    settings = no_key_settings()
    fetcher = RateLimitedFetcher(settings.fetcher, transport=httpx.MockTransport(handler), sleep=AsyncMock())
    kwargs = {}
    if clock is not None:
        kwargs["clock"] = clock
    if sleep is not None:
        kwargs["sleep"] = sleep
    extractor = LLMArticleExtractor(
        fetcher,
        settings=settings,
        anthropic_client=anthropic_client,
        openai_client=openai_client,
        **kwargs,
    )
    return extractor, fetcher, requests


def fake_anthropic(text=MODEL_RESPONSE, error=None):
    client = MagicMock()
    if error is not None:
        client.messages.create = AsyncMock(side_effect=error)
    else:
        client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[SimpleNamespace(text=text)]))
    return client


def run(fetcher, coro):
    async def wrapper():
        try:
            return await coro
        finally:
            await fetcher.close()

    return asyncio.run(wrapper())


class TestFilterToSourceDomain:
    """Tests for extractor result filtering."""

    def test_split(self):
        kept = [
            item("https://example.com/blog/new-release"),
            item("https://www.example.com/blog/another-post"),
        ]
        wrong = [item("https://other.com/blog/post")]
        invalid = [
            item("https://vertexaisearch.cloud.google.com/grounding-api-redirect/abc"),
            item("https://example.com/"),
            item("https://example.com/blog/"),
            item("https://example.com/blog/ab"),
            item("null"),
            item(None),
            item("ftp://example.com/blog/file-download"),
        ]

        result = filter_to_source_domain(kept + wrong + invalid, SOURCE.url)

        assert result.kept == kept
        assert result.wrong_domain == wrong
        assert result.invalid == invalid
        assert result.has_mismatch

    def test_no_mismatch(self):
        result = filter_to_source_domain([item("https://example.com/blog/new-release")], SOURCE.url)
        assert not result.has_mismatch


class TestHelpers:
    """Tests for response parsing and ordering."""

    def test_sort_newest_first(self):
        items = [item("a", "2024-01-01"), item("b"), item("c", "2024-03-01"), item("d", "not a date")]
        assert [i.link for i in sort_newest_first(items)] == ["c", "a", "b", "d"]

    def test_parse_article_array(self):
        assert parse_article_array(MODEL_RESPONSE)[0]["url"] == "https://example.com/blog/launch-week"
        assert parse_article_array('Here you go: [{"title": "A"}, 3]') == [{"title": "A"}]
        assert parse_article_array("no array here") == []
        assert parse_article_array("[not json]") == []
        assert parse_article_array(None) == []

    def test_candidate_links(self):
        links = candidate_links(SOURCE_PAGE, "https://www.example.com/blog")
        assert links == [
            ("Launch week recap", "https://www.example.com/blog/launch-week"),
            ("Elsewhere", "https://other.com/post"),
        ]


class TestLLMArticleExtractor:
    """Tests for the model-backed extractor."""

    def test_no_key_raises(self):
        extractor, fetcher, requests = make_extractor()

        assert not extractor.available
        with pytest.raises(ExtractorError):
            run(fetcher, extractor.extract_articles(SOURCE))
        assert requests == []

    def test_anthropic_extraction(self):
        client = fake_anthropic()
        extractor, fetcher, requests = make_extractor(anthropic_client=client)

        items = run(fetcher, extractor.extract_articles(SOURCE))

        assert len(requests) == 1
        assert len(items) == 1
        assert items[0].link == "https://example.com/blog/launch-week"
        assert items[0].pub_date == "2024-05-10"

        prompt = client.messages.create.await_args.kwargs["messages"][0]["content"]
        assert "example.com" in prompt
        assert "https://www.example.com/blog/launch-week" in prompt

    def test_openai_extraction(self):
        client = MagicMock()
        message = SimpleNamespace(content=MODEL_RESPONSE)
        client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)])
        )
        extractor, fetcher, _ = make_extractor(openai_client=client)

        items = run(fetcher, extractor.extract_articles(SOURCE))

        assert [i.title for i in items] == ["Launch week recap"]

    def test_model_failure_is_extractor_error(self):
        extractor, fetcher, _ = make_extractor(anthropic_client=fake_anthropic(error=RuntimeError("overloaded")))

        with pytest.raises(ExtractorError):
            run(fetcher, extractor.extract_articles(SOURCE))

    def test_calls_are_spaced(self):
        ticks = iter([100.0, 102.0, 109.0])
        sleep = AsyncMock()
        extractor, fetcher, _ = make_extractor(
            anthropic_client=fake_anthropic(),
            clock=lambda: next(ticks),
            sleep=sleep,
        )

        async def twice():
            try:
                await extractor.extract_articles(SOURCE)
                await extractor.extract_articles(SOURCE)
            finally:
                await fetcher.close()

        asyncio.run(twice())
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(5.0)

"""
Tests for ingestion passes.

Each scenario wires the real components together over an in-memory
database and a fake website served through httpx.MockTransport. Sleeps
and memory readings are injected, so passes run instantly.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from feedwatch.config import FetcherSettings, GovernorSettings, SchedulerSettings, Settings
from feedwatch.models.database import Database
from feedwatch.services.data_ingestion.base import ArticleRecord, ItemOrigin, MonitoringType, RawItem, Source
from feedwatch.services.data_ingestion.discovery import FeedDiscoveryEngine
from feedwatch.services.data_ingestion.errors import PassInProgressError
from feedwatch.services.data_ingestion.extraction import ContentExtractionPipeline
from feedwatch.services.data_ingestion.fetcher import RateLimitedFetcher
from feedwatch.services.data_ingestion.governor import ResourceGovernor
from feedwatch.services.data_ingestion.scheduler import IngestionScheduler, SchedulerState
from feedwatch.services.data_ingestion.scraper import WebScraper
from feedwatch.services.data_ingestion.store import ArticleStore
from feedwatch.services.data_ingestion.validator import FeedValidator


SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Engineering</title>
    <item>
      <title>Scaling our search cluster without downtime</title>
      <link>https://example.com/blog/scaling-search</link>
      <description>How we moved search to a sharded cluster while serving full production traffic.</description>
      <pubDate>Mon, 15 Jan 2024 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>A year of on-call lessons from the platform team</title>
      <link>https://example.com/blog/on-call</link>
      <description>What twelve months of pager duty taught us about alert fatigue and ownership.</description>
      <pubDate>sometime last week</pubDate>
    </item>
  </channel>
</rss>
"""

LISTING_HTML = """<html><body>
<article class="post-card">
  <h2>Launch week recap for our platform</h2>
  <a href="/blog/launch-week">Read</a>
  <time datetime="2024-05-10">May 10</time>
  <p>Everything we shipped during launch week.</p>
</article>
</body></html>
"""

DATED_ARTICLE = """<html><head>
<title>Designing the new query planner</title>
<meta property="article:published_time" content="2024-03-05T10:00:00Z">
</head><body><article>
<p>The old query planner relied on a fixed list of heuristics that aged badly.</p>
<p>We replaced it with a cost model fed by table statistics gathered every hour.</p>
<p>Plans are now cached per normalized statement, which cut planning time sharply.</p>
</article></body></html>
"""

HOMEPAGE = """<html><head>
<link rel="alternate" type="application/rss+xml" href="/feed.xml">
</head><body></body></html>
"""


class FakeSite:
    """Serves pages keyed by host + path; everything else is a 404."""

    def __init__(self, pages: dict):
        self.pages = pages
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = request.url.host + request.url.path
        self.requests.append((request.method, key))
        if key not in self.pages:
            return httpx.Response(404)
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(200, text=self.pages[key])


class Harness:
    """An IngestionScheduler wired to real components and fakes at the edges."""

    def __init__(self, pages=None, memory_mb=100.0, extractor=None, summarizer=None, skip_sources=(), **scheduler_options):
        self.site = FakeSite(pages or {})
        self.memory_mb = memory_mb
        self.settings = Settings(
            anthropic_api_key=None,
            openai_api_key=None,
            fetcher=FetcherSettings(min_domain_interval_seconds=0, max_retries=0),
            governor=GovernorSettings(skip_sources=list(skip_sources)),
            scheduler=SchedulerSettings(**scheduler_options),
        )
        self.database = Database("sqlite+aiosqlite:///:memory:")
        self.store = ArticleStore(self.database)
        self.fetcher = RateLimitedFetcher(
            self.settings.fetcher,
            transport=httpx.MockTransport(self.site),
            sleep=AsyncMock(),
        )
        self.governor = ResourceGovernor(
            self.settings.governor,
            memory_reader=lambda: self.memory_mb,
            sleep=AsyncMock(),
        )
        self.sleep = AsyncMock()
        self.scheduler = IngestionScheduler(
            self.store,
            self.fetcher,
            FeedDiscoveryEngine(self.fetcher),
            FeedValidator(self.fetcher),
            ContentExtractionPipeline(self.fetcher, self.settings, governor=self.governor),
            WebScraper(self.fetcher),
            extractor,
            self.governor,
            summarizer=summarizer,
            settings=self.settings,
            sleep=self.sleep,
        )

    async def __aenter__(self):
        await self.database.create_tables()
        return self

    async def __aexit__(self, *exc_info):
        self.scheduler.stop()
        await self.fetcher.close()
        await self.database.close()


def scenario(body, **options):
    async def runner():
        async with Harness(**options) as h:
            return await body(h)

    return asyncio.run(runner())


def fake_extractor(items):
    extractor = MagicMock()
    extractor.extract_articles = AsyncMock(return_value=items)
    return extractor


def extracted(link, title="Launch week recap for our platform", pub_date="2024-05-10"):
    return RawItem(
        link=link,
        title=title,
        origin=ItemOrigin.EXTRACTOR,
        description="Everything we shipped during launch week.",
        pub_date=pub_date,
    )


class TestRssPasses:
    """Tests for passes over feed sources."""

    def test_manual_pass_is_idempotent(self):
        async def body(h):
            await h.store.add_source("Example", "https://example.com/feed")
            first = await h.scheduler.run_pass(manual=True)
            second = await h.scheduler.run_pass(manual=True)
            return first, second, await h.store.list_articles(), h.site.requests

        first, second, articles, requests = scenario(body, pages={"example.com/feed": SAMPLE_RSS})

        assert first[0].new_article_count == 2
        assert first[0].success
        assert second[0].new_article_count == 0
        assert len(articles) == 2
        # Light extraction never visits article pages
        assert requests == [("GET", "example.com/feed"), ("GET", "example.com/feed")]

        by_link = {a.link: a for a in articles}
        assert by_link["https://example.com/blog/scaling-search"].pub_date == datetime(2024, 1, 15, 9, tzinfo=timezone.utc)
        assert by_link["https://example.com/blog/on-call"].pub_date is None
        assert by_link["https://example.com/blog/on-call"].source_name == "Example"

    def test_periodic_pass_skipped_while_stopped(self):
        async def body(h):
            await h.store.add_source("Example", "https://example.com/feed")
            return await h.scheduler.run_pass(manual=False), h.site.requests

        results, requests = scenario(body, pages={"example.com/feed": SAMPLE_RSS})

        assert results == []
        assert requests == []

    def test_periodic_pass_runs_while_monitoring(self):
        async def body(h):
            await h.store.add_source("Example", "https://example.com/feed")
            h.scheduler.start(run_immediately=False)
            results = await h.scheduler.run_pass(manual=False)
            return results, h.site.requests

        results, requests = scenario(body, pages={"example.com/feed": SAMPLE_RSS})

        assert results[0].new_article_count == 2
        # Full extraction tries the article pages; their 404s are not fatal
        assert ("GET", "example.com/blog/on-call") in requests

    def test_failing_source_does_not_stop_the_pass(self):
        async def body(h):
            await h.store.add_source("Broken", "https://example.com/missing-feed")
            await h.store.add_source("Example", "https://example.com/feed")
            return await h.scheduler.run_pass(manual=True)

        results = scenario(body, pages={"example.com/feed": SAMPLE_RSS})

        assert [r.source_name for r in results] == ["Broken", "Example"]
        assert not results[0].success
        assert "404" in results[0].error
        assert results[1].success
        assert results[1].new_article_count == 2

    def test_hooks_are_generated_and_optional(self):
        summarizer = MagicMock()
        summarizer.generate_hook = AsyncMock(side_effect=["Why search sharding matters", RuntimeError("quota")])

        async def body(h):
            await h.store.add_source("Example", "https://example.com/feed")
            await h.scheduler.run_pass(manual=True)
            return await h.store.list_articles()

        articles = scenario(body, pages={"example.com/feed": SAMPLE_RSS}, summarizer=summarizer)

        assert len(articles) == 2
        hooks = {a.link: a.article_hook for a in articles}
        assert hooks["https://example.com/blog/scaling-search"] == "Why search sharding matters"
        assert hooks["https://example.com/blog/on-call"] is None


class TestMutualExclusion:
    """Tests for the one-pass-at-a-time rule."""

    def test_second_pass_rejected_while_running(self):
        async def body(h):
            gate = asyncio.Event()
            list_sources = h.store.list_sources

            async def slow_list_sources():
                await gate.wait()
                return await list_sources()

            h.store.list_sources = slow_list_sources
            task = asyncio.create_task(h.scheduler.run_pass(manual=True))
            await asyncio.sleep(0)

            running_state = h.scheduler.state
            with pytest.raises(PassInProgressError):
                await h.scheduler.run_pass(manual=True)

            gate.set()
            await task
            return running_state, h.scheduler.state

        running_state, final_state = scenario(body)

        assert running_state == SchedulerState.RUNNING
        assert final_state == SchedulerState.STOPPED


class TestExtractorSources:
    """Tests for ADK sources and the scraping fallback."""

    def test_wrong_domain_results_fall_back_to_scraping(self):
        extractor = fake_extractor([extracted("https://other.com/blog/someone-elses-post")])

        async def body(h):
            await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.ADK)
            results = await h.scheduler.run_pass(manual=True)
            return results, await h.store.list_articles(), h.site.requests

        results, articles, requests = scenario(
            body,
            pages={"example.com/blog": LISTING_HTML},
            extractor=extractor,
        )

        assert results[0].new_article_count == 1
        assert [a.link for a in articles] == ["https://example.com/blog/launch-week"]
        assert articles[0].pub_date == datetime(2024, 5, 10, tzinfo=timezone.utc)
        assert not any(key.startswith("other.com") for _, key in requests)

    def test_in_domain_results_are_used_directly(self):
        extractor = fake_extractor([
            extracted("https://example.com/blog/launch-week"),
            extracted("https://example.com/blog/read-more-here", title="Read more"),
        ])

        async def body(h):
            await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.ADK)
            results = await h.scheduler.run_pass(manual=True)
            return results, await h.store.list_articles(), h.site.requests

        results, articles, requests = scenario(body, extractor=extractor)

        assert results[0].new_article_count == 1
        assert [a.title for a in articles] == ["Launch week recap for our platform"]
        assert articles[0].publisher_description == "Everything we shipped during launch week."
        assert requests == []

    def test_at_most_three_newest_results(self):
        extractor = fake_extractor([
            extracted(f"https://example.com/blog/post-number-{day}", title=f"Post number {day} from the team", pub_date=f"2024-05-0{day}")
            for day in (1, 3, 4, 2)
        ])

        async def body(h):
            await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.ADK)
            await h.scheduler.run_pass(manual=True)
            return await h.store.list_articles()

        articles = scenario(body, extractor=extractor)

        assert sorted(a.link for a in articles) == [
            "https://example.com/blog/post-number-2",
            "https://example.com/blog/post-number-3",
            "https://example.com/blog/post-number-4",
        ]

    def test_strict_mode_rejects_mixed_results(self):
        extractor = fake_extractor([
            extracted("https://example.com/blog/launch-week"),
            extracted("https://other.com/blog/someone-elses-post"),
        ])

        async def body(h):
            await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.ADK)
            await h.scheduler.run_pass(manual=True)
            return h.site.requests

        requests = scenario(body, extractor=extractor, extractor_strict_domain=True)

        # The fallback scrape ran
        assert ("HEAD", "example.com/blog") in requests

    def test_fallback_skipped_over_memory_limit(self):
        extractor = fake_extractor([])

        async def body(h):
            await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.ADK)
            return await h.scheduler.run_pass(manual=True), h.site.requests

        results, requests = scenario(body, extractor=extractor, memory_mb=900.0)

        assert results[0].skipped
        assert "memory" in results[0].error
        assert requests == []
        extractor.extract_articles.assert_awaited_once()


class TestSkippedSources:
    """Tests for sources that are not processed."""

    def test_scraping_source_skipped_over_memory_limit(self):
        async def body(h):
            await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.SCRAPING)
            return await h.scheduler.run_pass(manual=True), h.site.requests

        results, requests = scenario(body, pages={"example.com/blog": LISTING_HTML}, memory_mb=900.0)

        assert results[0].skipped
        assert results[0].success
        assert results[0].error == "memory limit reached, retrying next pass"
        assert requests == []

    def test_paused_source_skipped(self):
        async def body(h):
            paused = Source(id=1, name="Paused", url="https://example.com/feed", is_paused=True)
            h.store.list_sources = AsyncMock(return_value=[paused])
            return await h.scheduler.run_pass(manual=True), h.site.requests

        results, requests = scenario(body, pages={"example.com/feed": SAMPLE_RSS})

        assert results[0].skipped
        assert requests == []

    def test_skip_listed_source(self):
        async def body(h):
            await h.store.add_source("Example", "https://example.com/feed")
            return await h.scheduler.run_pass(manual=True)

        results = scenario(body, pages={"example.com/feed": SAMPLE_RSS}, skip_sources=["example"])

        assert results[0].skipped
        assert results[0].new_article_count == 0


class TestRegisterSource:
    """Tests for source registration."""

    def test_rss_source_stored_under_feed_url(self):
        async def body(h):
            return await h.scheduler.register_source("Example", "https://example.com")

        source = scenario(body, pages={"example.com/": HOMEPAGE, "example.com/feed.xml": SAMPLE_RSS})

        assert source.url == "https://example.com/feed.xml"
        assert source.monitoring_type == MonitoringType.RSS

    def test_rss_source_without_feed(self):
        async def body(h):
            await h.scheduler.register_source("Nothing", "https://example.com")

        with pytest.raises(ValueError):
            scenario(body)

    def test_scraping_source_skips_discovery(self):
        async def body(h):
            source = await h.scheduler.register_source(
                "Example", "https://example.com", monitoring_type=MonitoringType.SCRAPING
            )
            return source, h.site.requests

        source, requests = scenario(body)

        assert source.url == "https://example.com"
        assert requests == []


class TestDateEnrichment:
    """Tests for enrich_missing_dates."""

    @staticmethod
    async def seed(h, count=3):
        source = await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.SCRAPING)
        for n in range(1, count + 1):
            await h.store.insert_article(ArticleRecord(
                title=f"Undated article number {n}",
                link=f"https://example.com/posts/{n}",
                source_id=source.id,
            ))

    PAGES = {f"example.com/posts/{n}": DATED_ARTICLE for n in range(1, 4)}

    def test_dates_filled_in_batches(self):
        async def body(h):
            await self.seed(h)
            updated = await h.scheduler.enrich_missing_dates(10)
            return updated, await h.store.list_articles(), h.sleep

        updated, articles, sleep = scenario(body, pages=self.PAGES)

        assert updated == 3
        assert all(a.pub_date == datetime(2024, 3, 5, 10, tzinfo=timezone.utc) for a in articles)
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]

    def test_thin_articles_get_page_description(self):
        body_text = "A full body that was scraped along with the listing entry, long enough to keep."

        async def body(h):
            source = await h.store.add_source("Example", "https://example.com", monitoring_type=MonitoringType.ADK)
            thin_id = await h.store.insert_article(ArticleRecord(
                title="Nearly empty article",
                link="https://example.com/posts/1",
                source_id=source.id,
                preview="Short",
            ))
            full_id = await h.store.insert_article(ArticleRecord(
                title="Article with a body",
                link="https://example.com/posts/2",
                source_id=source.id,
                content=body_text,
                preview=body_text,
            ))
            updated = await h.scheduler.enrich_missing_dates(10)
            return updated, await h.store.get_article(thin_id), await h.store.get_article(full_id)

        updated, thin, full = scenario(body, pages=self.PAGES)

        description = "The old query planner relied on a fixed list of heuristics that aged badly."
        assert updated == 2
        assert thin.content == description
        assert thin.preview == description
        assert thin.publisher_description == description
        assert full.content == body_text
        assert full.publisher_description is None
        assert full.pub_date == datetime(2024, 3, 5, 10, tzinfo=timezone.utc)

    def test_stops_over_memory_limit(self):
        async def body(h):
            await self.seed(h)
            return await h.scheduler.enrich_missing_dates(10), h.site.requests

        updated, requests = scenario(body, pages=self.PAGES, memory_mb=900.0)

        assert updated == 0
        assert requests == []


class TestLifecycle:
    """Tests for start/stop and status."""

    def test_start_and_stop(self):
        async def body(h):
            h.scheduler.start(run_immediately=False)
            started = h.scheduler.state, h.scheduler.get_status()
            h.scheduler.stop()
            return started, h.scheduler.state, h.scheduler.get_status()

        (started_state, started_status), stopped_state, stopped_status = scenario(body)

        assert started_state == SchedulerState.IDLE
        assert started_status["monitoring"] is True
        assert started_status["next_run_at"] is not None
        assert stopped_state == SchedulerState.STOPPED
        assert stopped_status["next_run_at"] is None

    def test_status_reports_last_pass(self):
        async def body(h):
            await h.store.add_source("Example", "https://example.com/feed")
            await h.scheduler.run_pass(manual=True)
            return h.scheduler.get_status()

        status = scenario(body, pages={"example.com/feed": SAMPLE_RSS})

        assert status["state"] == "stopped"
        assert status["last_pass_new_articles"] == 2
        assert status["last_results"][0]["source_name"] == "Example"
        assert status["resources"]["memory_mb"] == 100.0

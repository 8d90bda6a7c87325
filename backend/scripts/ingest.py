#!/usr/bin/env python3
"""
CLI tool for feed discovery and ingestion.

Usage:
    # Find the feed behind a site
    python -m scripts.ingest discover https://example.com

    # Check that a URL serves a feed
    python -m scripts.ingest validate https://example.com/feed.xml

    # Register a source (RSS sources are resolved to their feed URL)
    python -m scripts.ingest add-source "Example" https://example.com --type RSS

    # Run one pass over all sources
    python -m scripts.ingest run --manual

    # Title/date/description for one article page
    python -m scripts.ingest metadata https://example.com/posts/launch

    # Fill in missing dates for recently scraped articles
    python -m scripts.ingest enrich --limit 20

    # Monitor continuously (or serve the HTTP API with --api)
    python -m scripts.ingest serve --interval 30
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager

# Add parent directory to path for imports
sys.path.insert(0, str(__file__).rsplit("/", 2)[0])

from feedwatch.config import Settings, get_settings
from feedwatch.jobs.ingestion import IngestionJob
from feedwatch.models.database import Database
from feedwatch.services.data_ingestion import MonitoringType, PassInProgressError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_scheduler(settings: Settings = None):
    """Build the ingestion components for one command and tear them down after."""
    settings = settings or get_settings()
    job = IngestionJob(Database(settings.database_url), settings)
    try:
        yield await job.initialize()
    finally:
        await job.close()


async def cmd_discover(args):
    """Discover the feed for a site."""
    async with open_scheduler() as scheduler:
        feed_url = await scheduler.discover_feed_url(args.url)

    if feed_url:
        print(f"✓ Feed found: {feed_url}")
        return 0
    print(f"✗ No feed found for {args.url}")
    return 1


async def cmd_validate(args):
    """Validate a feed URL."""
    async with open_scheduler() as scheduler:
        check = await scheduler.check_feed(args.url)

    status = "✓ VALID" if check.valid else "✗ INVALID"
    print(f"{args.url}: {status} ({check.status.value})")
    if check.item_count:
        print(f"  Items: {check.item_count}")
    if check.error:
        print(f"  Error: {check.error}")
    return 0 if check.valid else 1


async def cmd_add_source(args):
    """Register a monitored source."""
    async with open_scheduler() as scheduler:
        try:
            source = await scheduler.register_source(
                name=args.name,
                url=args.url,
                category=args.category,
                monitoring_type=MonitoringType(args.type),
            )
        except ValueError as e:
            print(f"✗ {e}")
            return 1

    print(f"✓ Added source {source.id}: {source.name}")
    print(f"  URL: {source.url}")
    print(f"  Type: {source.monitoring_type.value}")
    return 0


async def cmd_run(args):
    """Run one ingestion pass."""
    settings = get_settings()
    async with open_scheduler(settings) as scheduler:
        if not args.manual:
            # A periodic pass only runs while monitoring is on
            scheduler.start(run_immediately=False)
        try:
            results = await scheduler.run_pass(manual=args.manual)
        except PassInProgressError as e:
            print(f"✗ {e}")
            return 1

    print("\n" + "=" * 60)
    print("INGESTION RESULTS")
    print("=" * 60)

    for result in results:
        print(result)

    print("-" * 60)
    print(f"New articles: {sum(r.new_article_count for r in results)}")

    return 0 if all(r.success for r in results) else 1


async def cmd_metadata(args):
    """Extract metadata for a single article page."""
    async with open_scheduler() as scheduler:
        metadata = await scheduler.extract_article_metadata(args.url)

    output = {
        "url": args.url,
        "title": metadata.title,
        "pub_date": metadata.pub_date.isoformat() if metadata.pub_date else None,
        "description": metadata.description,
        "content_length": len(metadata.content),
    }
    print(json.dumps(output, indent=2))
    return 0


async def cmd_enrich(args):
    """Fill in missing dates for recent scraped articles."""
    async with open_scheduler() as scheduler:
        updated = await scheduler.enrich_missing_dates(args.limit)

    print(f"Updated dates for {updated} articles")
    return 0


async def cmd_serve(args):
    """Run continuous monitoring."""
    settings = get_settings().model_copy(deep=True)
    settings.scheduler.interval_minutes = args.interval

    async with open_scheduler(settings) as scheduler:
        print(f"Starting monitoring (pass every {args.interval} minutes)")
        print("Press Ctrl+C to stop")

        scheduler.start()
        try:
            while scheduler.is_monitoring:
                await asyncio.sleep(60)

                status = scheduler.get_status()
                logger.debug(f"State: {status['state']}, last pass: {status['last_pass_at']}")
        except (KeyboardInterrupt, asyncio.CancelledError):
            print("\nShutting down...")

    return 0


def serve_api(args):
    """Serve the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "feedwatch.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Feedwatch - Feed Discovery and Ingestion CLI"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Discover command
    discover_parser = subparsers.add_parser("discover", help="Find the feed for a site")
    discover_parser.add_argument("url", help="Site URL")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Check that a URL serves a feed")
    validate_parser.add_argument("url", help="Feed URL")

    # Add-source command
    add_parser = subparsers.add_parser("add-source", help="Register a monitored source")
    add_parser.add_argument("name", help="Display name")
    add_parser.add_argument("url", help="Site or feed URL")
    add_parser.add_argument(
        "--type", "-t",
        choices=[t.value for t in MonitoringType],
        default=MonitoringType.RSS.value,
        help="Monitoring type (default: RSS)"
    )
    add_parser.add_argument(
        "--category", "-c",
        default="General",
        help="Category label (default: General)"
    )

    # Run command
    run_parser = subparsers.add_parser("run", help="Run one ingestion pass")
    run_parser.add_argument(
        "--manual", "-m",
        action="store_true",
        help="Manual pass: light extraction, then date enrichment"
    )

    # Metadata command
    metadata_parser = subparsers.add_parser("metadata", help="Extract metadata for an article page")
    metadata_parser.add_argument("url", help="Article URL")

    # Enrich command
    enrich_parser = subparsers.add_parser("enrich", help="Fill in missing article dates")
    enrich_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=50,
        help="Max articles to revisit (default: 50)"
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run continuous monitoring")
    serve_parser.add_argument(
        "--interval", "-i",
        type=int,
        default=30,
        help="Pass interval in minutes (default: 30)"
    )
    serve_parser.add_argument(
        "--api",
        action="store_true",
        help="Serve the HTTP API (monitoring starts with it)"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "discover": cmd_discover,
        "validate": cmd_validate,
        "add-source": cmd_add_source,
        "run": cmd_run,
        "metadata": cmd_metadata,
        "enrich": cmd_enrich,
        "serve": cmd_serve,
    }

    if args.command == "serve" and args.api:
        return serve_api(args)
    return asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    sys.exit(main())

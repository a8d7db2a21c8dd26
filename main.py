"""
Command line entry point for the crawler
"""
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, is_dataclass

from competitor_monitor import run_competitor_crawl
from config import config
from database import SnapshotStore
from exceptions import CrawlerError, InvalidInput, TargetBlocked
from monitoring import setup_logging
from review_scraper import run_review_crawl
from serp_scraper import run_serp_crawl

logger = logging.getLogger(__name__)


def create_cli():
    """Create command line interface"""
    parser = argparse.ArgumentParser(description="Web intelligence crawler")
    parser.add_argument("--log-level", default=config.log_level, help="Logging level")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serp_parser = subparsers.add_parser("serp", help="Extract search results for keywords")
    serp_parser.add_argument("keywords", nargs="+", help="Keywords to search")
    serp_parser.add_argument("--max-results", type=int, default=config.max_results)
    serp_parser.add_argument("--proxy", action="append", dest="proxies", help="Proxy URL (repeatable)")
    serp_parser.add_argument("--min-delay", type=int, default=config.min_delay_ms, help="Minimum delay in ms")
    serp_parser.add_argument("--max-delay", type=int, default=config.max_delay_ms, help="Maximum delay in ms")

    competitor_parser = subparsers.add_parser("competitor", help="Monitor competitor pages for changes")
    competitor_parser.add_argument("urls", nargs="+", help="Pages to snapshot")
    competitor_parser.add_argument("--no-store", action="store_true", help="Compare without saving snapshots")

    review_parser = subparsers.add_parser("review", help="Aggregate reviews")
    review_parser.add_argument("--source", nargs=3, action="append", dest="sources", required=True,
                               metavar=("TYPE", "URL", "BUSINESS"),
                               help="Review source: google|trustpilot|g2, page URL, business name")
    review_parser.add_argument("--max-reviews", type=int, default=config.max_reviews_per_source)

    cleanup_parser = subparsers.add_parser("cleanup", help="Remove stale snapshots")
    cleanup_parser.add_argument("--days", type=int, default=30, help="Days of snapshots to keep")

    return parser


def _to_json(value):
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_to_json(item) for item in value]
    return value


async def run_command(args):
    if args.command == "serp":
        return await run_serp_crawl(args.keywords, args.max_results, args.proxies,
                                    args.min_delay, args.max_delay)
    if args.command == "competitor":
        return await run_competitor_crawl(args.urls, include_snapshots=not args.no_store)
    if args.command == "review":
        sources = [
            {"type": source_type, "url": url, "business_name": business}
            for source_type, url, business in args.sources
        ]
        return await run_review_crawl(sources, args.max_reviews)
    raise InvalidInput(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    """Main application entry point"""
    parser = create_cli()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level.upper())

    if args.command == "cleanup":
        removed = SnapshotStore(config.db_path).cleanup_old_snapshots(args.days)
        print(f"Removed {removed} snapshots older than {args.days} days")
        return 0

    try:
        data = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except TargetBlocked as e:
        logger.error(f"Crawl blocked: {e}")
        print(json.dumps({"success": False, "error": str(e),
                          "data": _to_json(e.partial_results)}, indent=2))
        return 1
    except CrawlerError as e:
        print(json.dumps({"success": False, "error": str(e)}, indent=2))
        return 1

    print(json.dumps({"success": True, "data": _to_json(data)}, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())

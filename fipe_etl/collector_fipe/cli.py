"""CLI entry point for FIPE crawling tasks."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from fipe_etl.classifier import SegmentClassifier
from fipe_etl.collector_fipe.client import FipeClient
from fipe_etl.collector_fipe.crawler import Crawler, CrawlOptions
from fipe_etl.config import CrawlerConfig
from fipe_etl.errors import ConfigError
from fipe_etl.upsert import PostgresStore, get_db_connection

LOGGER = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[2]


def _open_crawler(config: CrawlerConfig, with_classifier: bool = False) -> Crawler:
    store = PostgresStore(get_db_connection(config.database_url))
    classifier = SegmentClassifier.from_config(config) if with_classifier else None
    return Crawler(FipeClient(config), store, classifier)


def _close(crawler: Crawler) -> None:
    crawler.client.close()
    crawler.store.conn.close()
    if crawler.classifier is not None:
        crawler.classifier.close()


def command_crawl(config: CrawlerConfig, args: argparse.Namespace) -> None:
    """Crawl FIPE data and store it in PostgreSQL."""
    options = CrawlOptions(
        reference_code=args.reference,
        years=args.years,
        months=args.months,
        brand_code=args.brand,
        model_codes=args.models,
        classify=args.classify,
        force=args.force,
        sync=args.sync,
        show_progress=args.progress,
    )
    crawler = _open_crawler(config, with_classifier=args.classify)
    try:
        summary = crawler.crawl(options)
    finally:
        _close(crawler)
    LOGGER.info("Summary: %s", summary.to_dict())


def command_status(config: CrawlerConfig) -> None:
    """Print database statistics."""
    crawler = _open_crawler(config)
    try:
        stats = crawler.status()
    finally:
        _close(crawler)
    print("\nDatabase status:")
    print(f"  References: {stats.references} ({stats.crawled_references} crawled)")
    print(f"  Brands: {stats.brands}")
    print(f"  Models: {stats.models}")
    print(f"  Model years: {stats.model_years}")
    print(f"  Prices: {stats.prices}")


def command_classify(config: CrawlerConfig, limit: Optional[int]) -> None:
    """Back-fill segments for stored models that have none."""
    crawler = _open_crawler(config, with_classifier=True)
    try:
        crawler.backfill_segments(limit)
    finally:
        _close(crawler)


def command_init_db(config: CrawlerConfig) -> None:
    conn = get_db_connection(config.database_url)
    try:
        PostgresStore(conn).ensure_schema()
    finally:
        conn.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FIPE price table crawler")
    sub = parser.add_subparsers(dest="cmd")

    crawl_parser = sub.add_parser("crawl", help="Crawl FIPE data and store in database")
    crawl_parser.add_argument("-r", "--reference", type=int, help="Specific reference table code")
    crawl_parser.add_argument("-b", "--brand", help="Specific brand code")
    crawl_parser.add_argument(
        "-y", "--years", type=int, nargs="+", help="Reference years to crawl (default: current year)"
    )
    crawl_parser.add_argument("-m", "--months", type=int, nargs="+", help="Reference months (1-12)")
    crawl_parser.add_argument("--models", nargs="+", help="Only these model codes")
    crawl_parser.add_argument(
        "--classify", action="store_true", help="Classify new models into segments with AI"
    )
    crawl_parser.add_argument(
        "--force", action="store_true", help="Re-fetch prices that are already stored"
    )
    crawl_parser.add_argument(
        "--sync",
        action="store_true",
        help="Refresh brands/models/years from the API instead of cached data",
    )
    crawl_parser.add_argument(
        "--no-progress",
        action="store_false",
        dest="progress",
        help="Do not draw the progress bar",
    )

    sub.add_parser("status", help="Show database statistics")

    classify_parser = sub.add_parser("classify", help="Assign segments to unclassified models")
    classify_parser.add_argument("--limit", type=int, help="Maximum number of models to classify")

    sub.add_parser("init-db", help="Create database tables if missing")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    load_dotenv(BASE_DIR / ".env")
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd is None:
        parser.print_help()
        return 0

    try:
        config = CrawlerConfig.from_env()
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return 1

    try:
        if args.cmd == "crawl":
            command_crawl(config, args)
        elif args.cmd == "status":
            command_status(config)
        elif args.cmd == "classify":
            command_classify(config, args.limit)
        elif args.cmd == "init-db":
            command_init_db(config)
    except Exception:
        LOGGER.exception("%s failed", args.cmd)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

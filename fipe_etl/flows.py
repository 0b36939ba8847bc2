"""Prefect flow wiring for the monthly FIPE ingestion."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from prefect import flow, get_run_logger, task

from fipe_etl.classifier import SegmentClassifier
from fipe_etl.collector_fipe.client import FipeClient
from fipe_etl.collector_fipe.crawler import Crawler, CrawlOptions
from fipe_etl.config import CrawlerConfig
from fipe_etl.upsert import PostgresStore, get_db_connection

BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")


@task(retries=2, retry_delay_seconds=300)
def crawl_task(
    years: Optional[List[int]] = None,
    months: Optional[List[int]] = None,
    brand_code: Optional[str] = None,
    sync: bool = False,
    classify: bool = False,
) -> Dict[str, Any]:
    """Run one crawl pass; completed prices are skipped on retry."""
    logger = get_run_logger()
    config = CrawlerConfig.from_env()
    conn = get_db_connection(config.database_url)
    classifier = SegmentClassifier.from_config(config) if classify else None
    try:
        with FipeClient(config) as client:
            crawler = Crawler(client, PostgresStore(conn), classifier)
            summary = crawler.crawl(
                CrawlOptions(
                    years=years,
                    months=months,
                    brand_code=brand_code,
                    sync=sync,
                    classify=classify,
                    on_progress=logger.info,
                )
            )
    finally:
        conn.close()
        if classifier is not None:
            classifier.close()
    return summary.to_dict()


@task
def status_task() -> Dict[str, int]:
    config = CrawlerConfig.from_env()
    conn = get_db_connection(config.database_url)
    try:
        return PostgresStore(conn).get_stats().model_dump()
    finally:
        conn.close()


@flow(name="fipe-monthly-flow")
def monthly_flow(
    years: Optional[List[int]] = None,
    months: Optional[List[int]] = None,
    sync: bool = True,
    classify: bool = False,
) -> Dict[str, Any]:
    """Monthly crawl -> status routine."""
    crawl_summary = crawl_task(years=years, months=months, sync=sync, classify=classify)
    stats = status_task()
    summary = {"crawl": crawl_summary, "store": stats}
    get_run_logger().info("monthly_flow summary=%s", json.dumps(summary))
    return summary

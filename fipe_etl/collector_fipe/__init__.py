"""FIPE catalog collector: API client, catalog sources and crawl orchestration."""

from .client import FipeClient
from .crawler import Crawler, CrawlOptions, CrawlSummary, FetchResult
from .sources import CachedSource, CatalogSource, RemoteSource

__all__ = [
    "FipeClient",
    "Crawler",
    "CrawlOptions",
    "CrawlSummary",
    "FetchResult",
    "CachedSource",
    "CatalogSource",
    "RemoteSource",
]

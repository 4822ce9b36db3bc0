# File: listing_scout/crawler/__init__.py
"""listing_scout.crawler: bounded discovery crawling, fetching and on-disk page artifacts."""

from .crawler import DiscoveryCrawler, PageFetcher
from .fetcher import Fetcher
from .models import CrawlContext, CrawledPage, CrawlJob, FetchResult
from .storage import CrawlStore

__all__ = [
    "CrawlContext",
    "CrawledPage",
    "CrawlJob",
    "CrawlStore",
    "DiscoveryCrawler",
    "FetchResult",
    "Fetcher",
    "PageFetcher",
]

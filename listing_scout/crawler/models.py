# listing_scout/crawler/models.py
"""
Data models for the ListingScout discovery crawler.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set


@dataclass(slots=True)
class FetchResult:
    """Outcome of one page fetch. Exactly one of ``html`` / ``error`` is set."""

    url: str
    final_url: str
    status: Optional[int] = None
    html: Optional[str] = None
    error: Optional[str] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.html is not None


@dataclass(slots=True)
class CrawledPage:
    """One persisted page; never mutated after being written."""

    url: str
    title: str
    meta_description: Optional[str]
    content: str
    headings: List[str]
    language: Optional[str]
    content_length: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "meta_description": self.meta_description,
            "content": self.content,
            "headings": list(self.headings),
            "language": self.language,
            "content_length": self.content_length,
        }


@dataclass(slots=True)
class CrawlJob:
    """Immutable seed configuration of a crawl, mirrored in ``metadata.json``."""

    crawl_id: str
    seed_urls: List[str]
    allowed_hosts: List[str]
    max_pages: int
    city_id: Optional[str] = None
    category_id: Optional[str] = None
    region_id: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def metadata(self) -> Dict[str, Any]:
        return {
            "crawl_id": self.crawl_id,
            "seed_urls": list(self.seed_urls),
            "allowed_hosts": list(self.allowed_hosts),
            "max_pages": self.max_pages,
            "started_at": self.started_at.isoformat(),
            "city_id": self.city_id,
            "category_id": self.category_id,
            "region_id": self.region_id,
        }


@dataclass
class CrawlContext:
    """State owned by exactly one running crawl.

    Only the crawl's own workers touch it, and every read-modify-write of
    ``pages_crawled`` / ``visited`` happens under ``lock``.
    """

    job: CrawlJob
    pages_crawled: int = 0
    visited: Set[str] = field(default_factory=set)
    failed_urls: List[str] = field(default_factory=list)
    skipped_empty: int = 0
    finished_at: Optional[datetime] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def crawl_id(self) -> str:
        return self.job.crawl_id

    @property
    def allowed_hosts(self) -> List[str]:
        return self.job.allowed_hosts

    @property
    def max_pages(self) -> int:
        return self.job.max_pages

    @property
    def cap_reached(self) -> bool:
        return self.pages_crawled >= self.job.max_pages

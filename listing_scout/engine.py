# File: listing_scout/engine.py
"""listing_scout.engine: starts discovery crawls in the background and answers "is it still running"."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from listing_scout.config import CrawlSettings
from listing_scout.crawler.crawler import DiscoveryCrawler, PageFetcher
from listing_scout.crawler.models import CrawlContext, CrawlJob
from listing_scout.crawler.storage import CrawlStore
from listing_scout.db import repository
from listing_scout.db.database import Database
from listing_scout.errors import MissingInputError
from listing_scout.logger import crawl_logger, logger
from listing_scout.utils import (
    allowed_hosts_for,
    generate_crawl_id,
    is_http_url,
    normalize_url,
    remove_duplicates,
)

__all__ = ["CrawlEngine"]


class CrawlEngine:
    """Facade for the CLI and tests: launch crawls, query their liveness.

    Each crawl runs on its own daemon thread with its own event loop and owns
    its CrawlContext; the engine keeps only a reference for progress queries.
    The engine offers no completion callback, callers poll :meth:`is_active`.
    """

    def __init__(
        self,
        settings: CrawlSettings,
        store: CrawlStore,
        db: Optional[Database] = None,
        fetcher_factory: Optional[Callable[[], PageFetcher]] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.db = db
        self.crawler = DiscoveryCrawler(settings, store, fetcher_factory)
        self._threads: Dict[str, threading.Thread] = {}
        self._contexts: Dict[str, CrawlContext] = {}
        self._lock = threading.Lock()

    def start(
        self,
        seed_urls: Iterable[str],
        *,
        max_pages: Optional[int] = None,
        crawl_id: Optional[str] = None,
        city_id: Optional[str] = None,
        category_id: Optional[str] = None,
        region_id: Optional[str] = None,
    ) -> str:
        """Record the job and launch it; returns the crawl id before any page is fetched."""
        seeds = _valid_seeds(seed_urls)
        if not seeds:
            raise MissingInputError("No valid http(s) seed URLs given")
        crawl_id = crawl_id or generate_crawl_id()
        job = CrawlJob(
            crawl_id=crawl_id,
            seed_urls=seeds,
            allowed_hosts=allowed_hosts_for(seeds),
            max_pages=max_pages or self.settings.max_pages,
            city_id=city_id,
            category_id=category_id,
            region_id=region_id,
        )
        self.store.write_metadata(job)
        if self.db is not None:
            repository.create_crawl(self.db, job)

        ctx = CrawlContext(job)
        thread = threading.Thread(target=self._run, args=(ctx,), name=f"crawl-{crawl_id}", daemon=True)
        with self._lock:
            self._contexts[crawl_id] = ctx
            self._threads[crawl_id] = thread
        thread.start()
        crawl_logger(crawl_id).info("Crawl started on %s", ", ".join(job.allowed_hosts))
        return crawl_id

    def _run(self, ctx: CrawlContext) -> None:
        try:
            asyncio.run(self.crawler.run(ctx))
        except Exception as exc:
            crawl_logger(ctx.crawl_id).exception("Crawl aborted")
            if self.db is not None:
                repository.mark_failed(self.db, ctx.crawl_id, str(exc) or type(exc).__name__)

    def is_active(self, crawl_id: Optional[str] = None) -> bool:
        """True while the given crawl (or, without an id, any crawl) is running."""
        with self._lock:
            if crawl_id is not None:
                thread = self._threads.get(crawl_id)
                return thread is not None and thread.is_alive()
            return any(t.is_alive() for t in self._threads.values())

    def running_crawls(self) -> List[str]:
        with self._lock:
            return [cid for cid, t in self._threads.items() if t.is_alive()]

    def progress(self, crawl_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot of an in-process crawl's counters, or None when it is unknown here."""
        with self._lock:
            ctx = self._contexts.get(crawl_id)
            thread = self._threads.get(crawl_id)
        if ctx is None:
            return None
        return {
            "crawl_id": crawl_id,
            "pages_crawled": ctx.pages_crawled,
            "visited": len(ctx.visited),
            "failed": len(ctx.failed_urls),
            "skipped_empty": ctx.skipped_empty,
            "active": thread is not None and thread.is_alive(),
        }

    def wait(self, crawl_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the crawl's thread ends; False if it is still running after *timeout*."""
        with self._lock:
            thread = self._threads.get(crawl_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()


def _valid_seeds(seed_urls: Iterable[str]) -> List[str]:
    seeds = []
    for raw in seed_urls:
        url = normalize_url(raw)
        if is_http_url(url):
            seeds.append(url)
        elif url:
            logger.warning("Ignoring invalid seed URL: %s", raw)
    return remove_duplicates(seeds)

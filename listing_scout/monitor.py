# File: listing_scout/monitor.py
"""
Completion monitor for discovery crawls.

The crawl engine has no completion callback, only an "is it running" query,
so job records are reconciled by polling. The page count always comes from
the page files on disk.
"""
from __future__ import annotations

import threading
from typing import List, Optional, Protocol, Set

from listing_scout.crawler.storage import CrawlStore
from listing_scout.db import repository
from listing_scout.db.database import Database
from listing_scout.logger import logger
from listing_scout.models import CrawlStatus

__all__ = ["ActivityProbe", "CompletionMonitor", "recover_incomplete_crawls"]


class ActivityProbe(Protocol):
    def is_active(self) -> bool: ...


class CompletionMonitor:
    """Single polling loop shared by every watched crawl.

    The timer is armed by the first :meth:`watch` and stops rescheduling
    itself once the watch set is empty; the next ``watch`` rearms it.
    """

    def __init__(
        self,
        engine: ActivityProbe,
        store: CrawlStore,
        db: Database,
        poll_interval: float = 5.0,
    ) -> None:
        self.engine = engine
        self.store = store
        self.db = db
        self.poll_interval = poll_interval
        self._watching: Set[str] = set()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def watching(self) -> Set[str]:
        with self._lock:
            return set(self._watching)

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def watch(self, crawl_id: str) -> None:
        with self._lock:
            first = not self._watching
            self._watching.add(crawl_id)
            self._stopped = False
            if first and self._timer is None:
                self._schedule()
        logger.debug("[%s] Watching for completion", crawl_id)

    def poll(self) -> None:
        """One reconciliation pass over the watch set."""
        with self._lock:
            watched = sorted(self._watching)
        if not watched:
            return

        if self.engine.is_active():
            for crawl_id in watched:
                pages = self.store.count_pages(crawl_id)
                crawl = repository.get_crawl(self.db, crawl_id)
                if crawl is not None and crawl.pages_crawled != pages:
                    repository.update_pages_crawled(self.db, crawl_id, pages)
                    logger.debug("[%s] %d pages on disk", crawl_id, pages)
            return

        for crawl_id in watched:
            pages = self.store.count_pages(crawl_id)
            if repository.mark_crawled(self.db, crawl_id, pages):
                logger.info("[%s] Crawl finished, %d pages", crawl_id, pages)
            else:
                logger.warning("[%s] No job record for finished crawl", crawl_id)
        with self._lock:
            self._watching.difference_update(watched)

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _tick(self) -> None:
        try:
            self.poll()
        except Exception:
            # keep the loop alive; the next tick retries
            logger.exception("Completion poll failed")
        with self._lock:
            self._timer = None
            if self._watching and not self._stopped:
                self._schedule()

    def _schedule(self) -> None:
        # caller holds self._lock
        timer = threading.Timer(self.poll_interval, self._tick)
        timer.daemon = True
        self._timer = timer
        timer.start()


def recover_incomplete_crawls(db: Database, store: CrawlStore) -> List[str]:
    """Settle crawls a previous process left unfinished; returns the ids now ``crawled``.

    ``crawling`` with pages on disk becomes ``crawled``, ``crawling`` without
    pages becomes ``failed``, ``processing`` goes back to ``crawled``.
    """
    recovered: List[str] = []
    incomplete = repository.find_incomplete_crawls(db)
    if incomplete:
        logger.info("Found %d incomplete crawls", len(incomplete))
    for crawl in incomplete:
        pages = store.count_pages(crawl.crawl_id)
        if crawl.status == CrawlStatus.CRAWLING.value:
            if pages > 0:
                logger.info("[%s] Interrupted with %d pages, marking crawled", crawl.crawl_id, pages)
                repository.mark_crawled(db, crawl.crawl_id, pages)
                recovered.append(crawl.crawl_id)
            else:
                logger.info("[%s] Interrupted with no pages, marking failed", crawl.crawl_id)
                repository.mark_failed(db, crawl.crawl_id, "Crawl interrupted with no pages")
        elif crawl.status == CrawlStatus.PROCESSING.value:
            logger.info("[%s] Interrupted mid-import, back to crawled", crawl.crawl_id)
            repository.mark_crawled(db, crawl.crawl_id, pages, reopen=True)
            recovered.append(crawl.crawl_id)
    return recovered

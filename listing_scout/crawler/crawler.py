# === FILE: listing_scout/crawler/crawler.py ===
from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol
from urllib.parse import urlparse, urlunparse

from listing_scout.config import CrawlSettings
from listing_scout.crawler.fetcher import Fetcher
from listing_scout.crawler.models import CrawlContext, FetchResult
from listing_scout.crawler.robots import RobotsTxtRules
from listing_scout.crawler.storage import CrawlStore
from listing_scout.logger import crawl_logger
from listing_scout.parser.html_parser import extract_page
from listing_scout.utils import extract_host, normalize_url

__all__ = ("DiscoveryCrawler", "PageFetcher")

# upper bound for a robots.txt Crawl-delay, in seconds
MAX_CRAWL_DELAY = 30.0


class PageFetcher(Protocol):
    async def __aenter__(self) -> "PageFetcher": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def fetch(self, url: str) -> FetchResult: ...

    async def fetch_robots(self, base_url: str) -> Optional[str]: ...


class DiscoveryCrawler:
    """Bounded crawl over the allowed hosts of one job.

    seeded → fetching → extracting → (persist page | skip empty) → enqueue links
    → fetching ... until the page cap is reached, no unvisited links remain or
    the optional hard timeout fires. Every accepted page is written to the
    store immediately, so progress is visible on disk while the crawl runs.

    Redirects are followed by the fetcher, but a page whose final URL leaves
    the allowed hosts is dropped, and a redirect onto an already visited URL
    is not stored a second time.
    """

    def __init__(
        self,
        settings: CrawlSettings,
        store: CrawlStore,
        fetcher_factory: Optional[Callable[[], PageFetcher]] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self._fetcher_factory = fetcher_factory or (lambda: Fetcher(settings))

    async def run(self, ctx: CrawlContext) -> CrawlContext:
        log = crawl_logger(ctx.crawl_id)
        log.info(
            "Starting crawl: %d seed URLs, hosts %s, max %d pages",
            len(ctx.job.seed_urls), ", ".join(ctx.allowed_hosts), ctx.max_pages,
        )
        start = time.monotonic()
        async with self._fetcher_factory() as fetcher:
            hard_timeout = self.settings.hard_timeout
            try:
                if hard_timeout is None:
                    await self._crawl(ctx, fetcher)
                else:
                    await asyncio.wait_for(self._crawl(ctx, fetcher), timeout=hard_timeout)
            except asyncio.TimeoutError:
                log.warning("Crawl timeout after %.0f s, stopping", hard_timeout)
        ctx.finished_at = datetime.now(timezone.utc)
        log.info(
            "Finished: %d pages kept, %d empty, %d failed in %.2f s",
            ctx.pages_crawled, ctx.skipped_empty, len(ctx.failed_urls),
            time.monotonic() - start,
        )
        return ctx

    async def process_page(
        self, ctx: CrawlContext, url: str, html: str, requested_url: Optional[str] = None
    ) -> List[str]:
        """Extract *html*, persist it unless empty, and return links newly added to the frontier.

        *requested_url* is the URL that was fetched when *url* is where a
        redirect ended up; such a page is ignored if *url* was already seen.
        """
        log = crawl_logger(ctx.crawl_id)
        page = extract_page(url, html, self.settings, ctx.allowed_hosts)
        async with ctx.lock:
            if ctx.cap_reached:
                log.info("Reached max pages (%d)", ctx.max_pages)
                return []
            if requested_url is not None and url != requested_url and url in ctx.visited:
                log.debug("Already seen %s (redirected from %s)", url, requested_url)
                return []
            ctx.visited.add(url)
            new_links = [link for link in page.links if link not in ctx.visited]
            ctx.visited.update(new_links)
            if page.is_empty:
                ctx.skipped_empty += 1
                log.info("Skipping empty page: %s", url)
                return new_links
            ctx.pages_crawled += 1
            self.store.write_page(ctx.crawl_id, ctx.pages_crawled, page.to_crawled_page())
            log.info(
                "Page %d: %s (%d chars, %d links)",
                ctx.pages_crawled, url, page.content_length, len(new_links),
            )
            if ctx.cap_reached:
                return []
            return new_links

    async def _crawl(self, ctx: CrawlContext, fetcher: PageFetcher) -> None:
        robots = await self._load_robots(ctx, fetcher)
        queue: asyncio.Queue[str] = asyncio.Queue()
        async with ctx.lock:
            for seed in ctx.job.seed_urls:
                url = normalize_url(seed)
                if url not in ctx.visited:
                    ctx.visited.add(url)
                    queue.put_nowait(url)
        host_slots: Dict[str, asyncio.Semaphore] = defaultdict(
            lambda: asyncio.Semaphore(self.settings.per_host_concurrency)
        )
        last_fetch: Dict[str, float] = {}
        workers = [
            asyncio.create_task(self._worker(ctx, queue, fetcher, host_slots, last_fetch, robots))
            for _ in range(self.settings.concurrency)
        ]
        try:
            await queue.join()
        finally:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(
        self,
        ctx: CrawlContext,
        queue: asyncio.Queue[str],
        fetcher: PageFetcher,
        host_slots: Dict[str, asyncio.Semaphore],
        last_fetch: Dict[str, float],
        robots: Dict[str, RobotsTxtRules],
    ) -> None:
        log = crawl_logger(ctx.crawl_id)
        while True:
            url = await queue.get()
            try:
                if ctx.cap_reached:
                    continue
                host = extract_host(url) or ""
                rules = robots.get(host)
                if rules is not None and not rules.can_fetch(self.settings.user_agent, urlparse(url).path):
                    log.debug("Disallowed by robots.txt: %s", url)
                    continue
                async with host_slots[host]:
                    await self._wait_crawl_delay(host, rules, last_fetch)
                    try:
                        result = await fetcher.fetch(url)
                    finally:
                        last_fetch[host] = time.monotonic()
                if not result.ok:
                    ctx.failed_urls.append(url)
                    log.warning("Failed %s: %s %s", url, result.error, result.detail)
                    continue
                final_url = normalize_url(result.final_url or url)
                if extract_host(final_url) not in ctx.allowed_hosts:
                    log.debug("Redirected off the allowed hosts: %s -> %s", url, final_url)
                    continue
                for link in await self.process_page(ctx, final_url, result.html or "", requested_url=url):
                    queue.put_nowait(link)
            except Exception:
                # only this URL's branch ends
                log.exception("Error processing %s", url)
            finally:
                queue.task_done()

    async def _wait_crawl_delay(
        self, host: str, rules: Optional[RobotsTxtRules], last_fetch: Dict[str, float]
    ) -> None:
        if rules is None:
            return
        delay = rules.crawl_delay(self.settings.user_agent)
        if not delay or host not in last_fetch:
            return
        remaining = last_fetch[host] + min(delay, MAX_CRAWL_DELAY) - time.monotonic()
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def _load_robots(self, ctx: CrawlContext, fetcher: PageFetcher) -> Dict[str, RobotsTxtRules]:
        rules: Dict[str, RobotsTxtRules] = {}
        if not self.settings.respect_robots:
            return rules
        for seed in ctx.job.seed_urls:
            parsed = urlparse(seed)
            host = parsed.hostname
            if not host or host in rules:
                continue
            text = await fetcher.fetch_robots(urlunparse((parsed.scheme, parsed.netloc, "/", "", "", "")))
            if text is not None:
                rules[host] = RobotsTxtRules(text)
        return rules

# File: tests/test_crawler.py
# Test-suite for the discovery crawler, fetcher and crawl engine
from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import web

from conftest import FakeFetcher, page_html
from listing_scout.config import CrawlSettings
from listing_scout.crawler.crawler import DiscoveryCrawler
from listing_scout.crawler.fetcher import Fetcher
from listing_scout.crawler.models import CrawlContext, CrawlJob
from listing_scout.crawler.robots import RobotsTxtRules
from listing_scout.db import repository
from listing_scout.engine import CrawlEngine
from listing_scout.errors import MissingInputError
from listing_scout.models import CrawlStatus
from listing_scout.monitor import CompletionMonitor

SEED = "https://example.nl/directory"


def make_ctx(max_pages: int = 10, seeds=(SEED,), crawl_id: str = "c1") -> CrawlContext:
    job = CrawlJob(crawl_id=crawl_id, seed_urls=list(seeds), allowed_hosts=["example.nl"], max_pages=max_pages)
    return CrawlContext(job)


def make_crawler(settings, store, pages, robots=None, redirects=None):
    fetcher = FakeFetcher(pages, robots, redirects)
    return DiscoveryCrawler(settings, store, lambda: fetcher), fetcher


# --------------------------------------------------------------------------- #
#                               Page processing                               #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_process_page_keeps_page_and_returns_same_host_links(crawl_settings, store):
    crawler = DiscoveryCrawler(crawl_settings, store)
    ctx = make_ctx(max_pages=2)
    html = page_html(
        "Directory",
        ["https://example.nl/a", "https://example.nl/b", "https://other.com/c"],
        text="x" * 80,
    )

    links = await crawler.process_page(ctx, SEED, html)

    assert links == ["https://example.nl/a", "https://example.nl/b"]
    assert ctx.pages_crawled == 1
    assert store.count_pages("c1") == 1
    saved = store.read_pages("c1")[0]
    assert saved["url"] == SEED
    assert saved["title"] == "Directory"
    assert saved["language"] == "nl"
    assert saved["content_length"] == len(saved["content"])


@pytest.mark.asyncio
async def test_process_page_skips_empty_page_but_follows_links(crawl_settings, store):
    crawler = DiscoveryCrawler(crawl_settings, store)
    ctx = make_ctx()
    links = await crawler.process_page(ctx, SEED, page_html("Shell", ["/next"], text=""))
    assert links == ["https://example.nl/next"]
    assert ctx.pages_crawled == 0
    assert ctx.skipped_empty == 1
    assert store.count_pages("c1") == 0


@pytest.mark.asyncio
async def test_process_page_does_not_return_visited_links(crawl_settings, store):
    crawler = DiscoveryCrawler(crawl_settings, store)
    ctx = make_ctx()
    ctx.visited.add("https://example.nl/a")
    links = await crawler.process_page(ctx, SEED, page_html("P", ["/a", "/b"]))
    assert links == ["https://example.nl/b"]


# --------------------------------------------------------------------------- #
#                                  Full runs                                  #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_run_follows_links_and_skips_empty_pages(crawl_settings, store):
    pages = {
        SEED: page_html("Directory", ["/a", "/b", "/missing", "https://other.com/x"]),
        "https://example.nl/a": page_html("A", ["/directory"]),
        "https://example.nl/b": page_html("B", [], text=""),
    }
    crawler, fetcher = make_crawler(crawl_settings, store, pages)
    ctx = await crawler.run(make_ctx())

    assert ctx.pages_crawled == 2
    assert ctx.skipped_empty == 1
    assert ctx.failed_urls == ["https://example.nl/missing"]
    assert ctx.finished_at is not None
    assert "https://other.com/x" not in fetcher.calls
    # the seed is fetched once even though page A links back to it
    assert fetcher.calls.count(SEED) == 1
    assert [p["title"] for p in store.read_pages("c1")] == ["Directory", "A"]


@pytest.mark.asyncio
async def test_run_stops_at_page_cap(crawl_settings, store):
    links = [f"/p{i}" for i in range(10)]
    pages = {SEED: page_html("Directory", links)}
    pages.update({f"https://example.nl/p{i}": page_html(f"P{i}", []) for i in range(10)})
    crawler, _ = make_crawler(crawl_settings, store, pages)

    ctx = await crawler.run(make_ctx(max_pages=3))

    assert ctx.pages_crawled == 3
    assert store.count_pages("c1") == 3
    assert [p.name for p in store.page_files("c1")] == ["page_0001.json", "page_0002.json", "page_0003.json"]


@pytest.mark.asyncio
async def test_run_respects_robots(store):
    settings = CrawlSettings(respect_robots=True, user_agent="TestAgent/1.0", concurrency=1)
    pages = {
        SEED: page_html("Directory", ["/private/a", "/public"]),
        "https://example.nl/private/a": page_html("Private", []),
        "https://example.nl/public": page_html("Public", []),
    }
    crawler, fetcher = make_crawler(settings, store, pages, robots="User-agent: *\nDisallow: /private\n")

    ctx = await crawler.run(make_ctx())

    assert "https://example.nl/private/a" not in fetcher.calls
    assert ctx.pages_crawled == 2


@pytest.mark.asyncio
async def test_run_hard_timeout(store):
    settings = CrawlSettings(respect_robots=False, crawl_timeout=0.3)

    class SlowFetcher(FakeFetcher):
        async def fetch(self, url):
            await asyncio.sleep(5)
            return await super().fetch(url)

    crawler = DiscoveryCrawler(settings, store, lambda: SlowFetcher({}))
    ctx = await asyncio.wait_for(crawler.run(make_ctx()), timeout=3)
    assert ctx.pages_crawled == 0
    assert ctx.finished_at is not None


@pytest.mark.asyncio
async def test_process_page_ignores_redirect_onto_visited_url(crawl_settings, store):
    crawler = DiscoveryCrawler(crawl_settings, store)
    ctx = make_ctx()
    ctx.visited.update({"https://example.nl/a", "https://example.nl/b"})

    links = await crawler.process_page(
        ctx, "https://example.nl/a", page_html("A", ["/c"]), requested_url="https://example.nl/b"
    )

    assert links == []
    assert ctx.pages_crawled == 0
    assert store.count_pages("c1") == 0


@pytest.mark.asyncio
async def test_run_drops_redirects_off_allowed_hosts(crawl_settings, store):
    pages = {
        SEED: page_html("Directory", ["/go"]),
        "https://other.com/landing": page_html("Landing", ["https://other.com/more"]),
    }
    crawler, fetcher = make_crawler(
        crawl_settings, store, pages, redirects={"https://example.nl/go": "https://other.com/landing"}
    )

    ctx = await crawler.run(make_ctx())

    assert "https://example.nl/go" in fetcher.calls
    assert ctx.pages_crawled == 1
    assert [p["url"] for p in store.read_pages("c1")] == [SEED]
    assert "https://other.com/more" not in fetcher.calls


@pytest.mark.asyncio
async def test_run_stores_page_reached_by_two_redirects_once(crawl_settings, store):
    pages = {
        SEED: page_html("Directory", ["/a", "/b"]),
        "https://example.nl/a": page_html("A", []),
    }
    crawler, _ = make_crawler(
        crawl_settings, store, pages, redirects={"https://example.nl/b": "https://example.nl/a"}
    )

    ctx = await crawler.run(make_ctx())

    assert ctx.pages_crawled == 2
    assert [p["url"] for p in store.read_pages("c1")] == [SEED, "https://example.nl/a"]


@pytest.mark.asyncio
async def test_run_keeps_redirect_target_inside_allowed_hosts(crawl_settings, store):
    pages = {
        SEED: page_html("Directory", ["/old"]),
        "https://example.nl/new": page_html("New", []),
    }
    crawler, _ = make_crawler(
        crawl_settings, store, pages, redirects={"https://example.nl/old": "https://example.nl/new"}
    )

    ctx = await crawler.run(make_ctx())

    assert [p["url"] for p in store.read_pages("c1")] == [SEED, "https://example.nl/new"]
    assert "https://example.nl/new" in ctx.visited


@pytest.mark.asyncio
async def test_run_waits_robots_crawl_delay_between_fetches(store):
    settings = CrawlSettings(respect_robots=True, user_agent="TestAgent/1.0", concurrency=3)
    pages = {
        SEED: page_html("Directory", ["/a", "/b"]),
        "https://example.nl/a": page_html("A", []),
        "https://example.nl/b": page_html("B", []),
    }
    crawler, fetcher = make_crawler(settings, store, pages, robots="User-agent: *\nCrawl-delay: 0.2\n")

    start = time.monotonic()
    ctx = await crawler.run(make_ctx())
    elapsed = time.monotonic() - start

    assert ctx.pages_crawled == 3
    assert len(fetcher.calls) == 3
    # three fetches on one host: two gaps of at least the delay
    assert elapsed >= 0.35


# --------------------------------------------------------------------------- #
#                                robots.txt                                   #
# --------------------------------------------------------------------------- #


def test_robots_longest_match_and_agent_groups():
    rules = RobotsTxtRules(
        "User-agent: TestAgent\n"
        "Disallow: /shop\n"
        "Allow: /shop/open\n"
        "Crawl-delay: 2\n"
        "\n"
        "User-agent: *\n"
        "Disallow: /\n"
    )
    assert rules.can_fetch("TestAgent/1.0", "/shop/open/1") is True
    assert rules.can_fetch("TestAgent/1.0", "/shop/closed") is False
    assert rules.can_fetch("TestAgent/1.0", "/about") is True
    assert rules.can_fetch("OtherBot", "/about") is False
    assert rules.crawl_delay("TestAgent/1.0") == 2.0


def test_robots_wildcards_and_empty_disallow():
    rules = RobotsTxtRules("User-agent: *\nDisallow: /*.php$\n")
    assert rules.can_fetch("x", "/index.php") is False
    assert rules.can_fetch("x", "/index.php?a=1") is True
    assert RobotsTxtRules("User-agent: *\nDisallow:\n").can_fetch("x", "/anything") is True


# --------------------------------------------------------------------------- #
#                              Fetcher (aiohttp)                              #
# --------------------------------------------------------------------------- #


async def _serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "localhost", port)
    await site.start()
    try:
        yield f"http://localhost:{port}"
    finally:
        await runner.cleanup()


@pytest_asyncio.fixture
async def test_server(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()
    hits = {"flaky": 0}

    async def handle_html(_):
        return web.Response(text="<html><body>Hallo</body></html>", content_type="text/html")

    async def handle_json(_):
        return web.json_response({"a": 1})

    async def handle_missing(_):
        return web.Response(status=404, text="nope")

    async def handle_big(_):
        return web.Response(body=b"x" * 5000, content_type="text/html")

    async def handle_redirect(_):
        raise web.HTTPFound("/html")

    async def handle_slow(_):
        await asyncio.sleep(3)
        return web.Response(text="late", content_type="text/html")

    async def handle_flaky(_):
        hits["flaky"] += 1
        if hits["flaky"] == 1:
            return web.Response(status=503, text="busy")
        return web.Response(text="<p>ok</p>", content_type="text/html")

    async def handle_robots(_):
        return web.Response(text="User-agent: *\nDisallow: /private", content_type="text/plain")

    app.router.add_get("/html", handle_html)
    app.router.add_get("/json", handle_json)
    app.router.add_get("/missing", handle_missing)
    app.router.add_get("/big", handle_big)
    app.router.add_get("/redirect", handle_redirect)
    app.router.add_get("/slow", handle_slow)
    app.router.add_get("/flaky", handle_flaky)
    app.router.add_get("/robots.txt", handle_robots)

    async for url in _serve_app(app, unused_tcp_port):
        yield url


@pytest.mark.asyncio
async def test_fetcher_error_kinds(test_server):
    settings = CrawlSettings(timeout=1.0, max_body_bytes=1024, retry_times=0)
    async with Fetcher(settings) as fetcher:
        ok = await fetcher.fetch(f"{test_server}/html")
        assert ok.ok and "Hallo" in ok.html and ok.status == 200

        not_html = await fetcher.fetch(f"{test_server}/json")
        assert not_html.error == "not-html"
        assert not_html.detail == "application/json"

        missing = await fetcher.fetch(f"{test_server}/missing")
        assert (missing.error, missing.status) == ("http-error", 404)

        big = await fetcher.fetch(f"{test_server}/big")
        assert big.error == "too-large"

        slow = await fetcher.fetch(f"{test_server}/slow")
        assert slow.error == "timeout"


@pytest.mark.asyncio
async def test_fetcher_follows_redirects(test_server):
    async with Fetcher(CrawlSettings()) as fetcher:
        result = await fetcher.fetch(f"{test_server}/redirect")
    assert result.ok
    assert result.final_url == f"{test_server}/html"


@pytest.mark.asyncio
async def test_fetcher_request_failed(unused_tcp_port):
    async with Fetcher(CrawlSettings(timeout=2.0)) as fetcher:
        result = await fetcher.fetch(f"http://localhost:{unused_tcp_port}/")
    assert result.error == "request-failed"
    assert not result.ok


@pytest.mark.asyncio
async def test_fetcher_requires_open_session():
    fetcher = Fetcher(CrawlSettings())
    with pytest.raises(RuntimeError):
        await fetcher.fetch("https://example.nl/")
    with pytest.raises(RuntimeError):
        await fetcher._fetch_once("https://example.nl/")


@pytest.mark.asyncio
async def test_fetch_robots(test_server, unused_tcp_port_factory):
    async with Fetcher(CrawlSettings(timeout=2.0)) as fetcher:
        text = await fetcher.fetch_robots(f"{test_server}/some/page")
        assert text is not None and "Disallow: /private" in text
        assert await fetcher.fetch_robots(f"http://localhost:{unused_tcp_port_factory()}/") is None


@pytest.mark.slow
@pytest.mark.asyncio
async def test_fetcher_retries_server_errors(test_server):
    async with Fetcher(CrawlSettings(retry_times=1)) as fetcher:
        result = await fetcher.fetch(f"{test_server}/flaky")
    assert result.ok


# --------------------------------------------------------------------------- #
#                                 Crawl engine                                #
# --------------------------------------------------------------------------- #


def test_engine_crawl_then_monitor_marks_crawled(crawl_settings, store, db, seed_ids):
    pages = {
        SEED: page_html("Directory", ["/a"]),
        "https://example.nl/a": page_html("A", []),
    }
    engine = CrawlEngine(crawl_settings, store, db, fetcher_factory=lambda: FakeFetcher(pages))
    crawl_id = engine.start([SEED, SEED + "#top"], max_pages=5, city_id=seed_ids.city_id)

    metadata = json.loads((store.crawl_path(crawl_id) / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["seed_urls"] == [SEED]
    assert metadata["allowed_hosts"] == ["example.nl"]
    assert metadata["city_id"] == seed_ids.city_id

    assert engine.wait(crawl_id, timeout=10)
    assert not engine.is_active(crawl_id)
    assert engine.running_crawls() == []
    assert engine.progress(crawl_id)["pages_crawled"] == 2
    assert engine.progress("unknown") is None

    record = repository.get_crawl(db, crawl_id)
    assert record.status == CrawlStatus.CRAWLING.value

    monitor = CompletionMonitor(engine, store, db, poll_interval=60)
    monitor.watch(crawl_id)
    monitor.poll()
    monitor.stop()

    record = repository.get_crawl(db, crawl_id)
    assert record.status == CrawlStatus.CRAWLED.value
    assert record.pages_crawled == 2
    assert record.crawl_finished_at is not None


def test_engine_rejects_invalid_seeds(crawl_settings, store):
    engine = CrawlEngine(crawl_settings, store)
    with pytest.raises(MissingInputError):
        engine.start(["ftp://example.nl/", "not a url", ""])
    assert store.list_crawls() == []

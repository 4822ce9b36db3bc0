# listing_scout/crawler/fetcher.py
"""
Fetcher module: HTTP GET with a fixed user agent, timeout, bounded redirects,
body size cap and bounded retry/backoff. Failures come back as values.
"""
from __future__ import annotations

import asyncio
import random
from typing import Optional, Sequence
from urllib.parse import urlparse, urlunparse

from aiohttp import ClientError, ClientSession, ClientTimeout

from listing_scout.config import CrawlSettings
from listing_scout.crawler.models import FetchResult
from listing_scout.logger import logger

HTML_TYPES = ("text/html", "application/xhtml+xml")
RETRY_STATUS: Sequence[int] = tuple(range(500, 600)) + (429,)


class Fetcher:
    """Fetches pages for one crawl.

    Use as an async context manager so the underlying session is closed::

        async with Fetcher(settings) as fetcher:
            result = await fetcher.fetch("https://example.nl/")
    """

    def __init__(
        self,
        settings: CrawlSettings,
        session: Optional[ClientSession] = None,
        retry_status: Sequence[int] = RETRY_STATUS,
    ) -> None:
        self.settings = settings
        self.session = session
        self._owns_session = session is None
        self._retry_status = retry_status

    async def __aenter__(self) -> Fetcher:
        if self.session is None:
            self.session = ClientSession(
                timeout=ClientTimeout(total=self.settings.timeout),
                headers={"User-Agent": self.settings.user_agent},
                raise_for_status=False,
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    async def fetch(self, url: str) -> FetchResult:
        """GET *url* and return the HTML, or a FetchResult carrying an error kind."""
        if not self.session:
            raise RuntimeError("Session not initialized")
        attempts = 0
        while True:
            result = await self._fetch_once(url)
            retryable = result.error in ("timeout", "request-failed") or (
                result.error == "http-error" and result.status in self._retry_status
            )
            if not retryable or attempts >= self.settings.retry_times:
                return result
            attempts += 1
            backoff = min(60.0, 2 ** attempts + random.random())
            logger.debug(
                "Retry %d/%d for %s after %.2f s (%s)",
                attempts, self.settings.retry_times, url, backoff, result.error,
            )
            await asyncio.sleep(backoff)

    async def fetch_robots(self, base_url: str) -> Optional[str]:
        """Return robots.txt of the site hosting *base_url*, or None when unavailable."""
        if not self.session:
            raise RuntimeError("Session not initialized")
        parsed = urlparse(base_url)
        robots_url = urlunparse((parsed.scheme, parsed.netloc, "/robots.txt", "", "", ""))
        try:
            async with self.session.get(robots_url, max_redirects=self.settings.max_redirects) as resp:
                if resp.status != 200:
                    logger.debug("robots.txt %s -> HTTP %s", robots_url, resp.status)
                    return None
                return await resp.text(errors="replace")
        except (ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Error loading %s: %s", robots_url, exc)
            return None

    async def _fetch_once(self, url: str) -> FetchResult:
        if not self.session:
            raise RuntimeError("Session not initialized")
        cap = self.settings.max_body_bytes
        try:
            async with self.session.get(
                url, allow_redirects=True, max_redirects=self.settings.max_redirects
            ) as resp:
                final_url = str(resp.url)
                status = resp.status
                if not 200 <= status < 300:
                    return FetchResult(url, final_url, status, error="http-error", detail=f"HTTP {status}")
                mime = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
                if mime not in HTML_TYPES:
                    return FetchResult(url, final_url, status, error="not-html", detail=mime or "unknown")
                if resp.content_length is not None and resp.content_length > cap:
                    return FetchResult(url, final_url, status, error="too-large", detail=str(resp.content_length))
                body = bytearray()
                async for chunk in resp.content.iter_chunked(64 * 1024):
                    body.extend(chunk)
                    if len(body) > cap:
                        return FetchResult(url, final_url, status, error="too-large", detail=f">{cap}")
                return FetchResult(url, final_url, status, html=_decode(bytes(body), resp.charset))
        except asyncio.TimeoutError:
            return FetchResult(url, url, error="timeout", detail=f"{self.settings.timeout}s")
        except ClientError as exc:
            return FetchResult(url, url, error="request-failed", detail=str(exc) or type(exc).__name__)


def _decode(body: bytes, charset: Optional[str]) -> str:
    try:
        return body.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


__all__ = ["Fetcher", "HTML_TYPES", "RETRY_STATUS"]

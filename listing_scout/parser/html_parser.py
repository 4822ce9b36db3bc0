# === FILE: listing_scout/parser/html_parser.py ===
"""HTML extraction for discovery crawls.

:func:`extract_page` turns a fetched document into the fields that are
persisted per page:

* title: document ``<title>`` text or ``""`` if absent.
* meta_description: ``<meta name="description">`` content.
* content: visible body text with navigation, headers, footers, scripts and
  landmark roles removed, whitespace collapsed, truncated to a budget.
* headings: up to N non-empty ``h1``-``h3`` texts.
* language: the ``lang`` attribute of ``<html>``.
* links: crawlable same-site links (see :func:`find_links`).

A page whose cleaned content is shorter than the configured minimum is
flagged ``is_empty`` (typically a client-rendered shell); its links are
still returned so the crawl can continue past it.
"""
from __future__ import annotations

import re
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from bs4.element import Tag

from listing_scout.config import CrawlSettings
from listing_scout.crawler.models import CrawledPage
from listing_scout.utils import normalize_url

__all__: Sequence[str] = ("ExtractedPage", "extract_page", "find_links", "skip_url")

NON_CONTENT_TAGS = ("script", "style", "nav", "footer", "header", "aside", "noscript", "template")
NON_CONTENT_ROLES = ("navigation", "banner", "contentinfo")

SKIP_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".css", ".js",
    ".ico", ".xml", ".zip", ".doc", ".docx", ".xls", ".xlsx", ".mp4", ".mp3",
)
SKIP_PATTERNS = (
    "/wp-admin", "/wp-login", "/admin", "/login", "/cart", "/checkout", "/feed", "/rss",
)

_WS_RE = re.compile(r"\s+")


@dataclass(slots=True)
class ExtractedPage:
    """Everything derived from one document."""

    url: str
    title: str
    meta_description: Optional[str]
    content: str
    headings: list[str]
    language: Optional[str]
    links: list[str] = field(default_factory=list)
    is_empty: bool = False

    @property
    def content_length(self) -> int:
        return len(self.content)

    def to_crawled_page(self) -> CrawledPage:
        return CrawledPage(
            url=self.url,
            title=self.title,
            meta_description=self.meta_description,
            content=self.content,
            headings=list(self.headings),
            language=self.language,
            content_length=self.content_length,
        )


def extract_page(
    url: str,
    html: str,
    settings: CrawlSettings,
    allowed_hosts: Collection[str],
) -> ExtractedPage:
    """Parse *html* fetched from *url* (the final, post-redirect URL)."""
    soup = BeautifulSoup(html, "html.parser")

    title_tag = soup.find("title")
    title = _clean_text(title_tag.get_text(" ")) if title_tag else ""

    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    description = None
    if isinstance(meta, Tag):
        value = meta.get("content")
        if isinstance(value, str) and value.strip():
            description = value.strip()

    html_tag = soup.find("html")
    language = None
    if isinstance(html_tag, Tag):
        lang = html_tag.get("lang")
        if isinstance(lang, str) and lang.strip():
            language = lang.strip()

    headings: list[str] = []
    for tag in soup.find_all(["h1", "h2", "h3"]):
        if len(headings) >= settings.max_headings:
            break
        text = _clean_text(tag.get_text(" "))
        if text:
            headings.append(text)

    # links are collected before stripping nav/header/footer, menus are where most of them live
    links = find_links(soup, url, allowed_hosts, settings.max_links)

    _remove_non_content(soup)
    body = soup.body or soup
    content = _clean_text(body.get_text(" "))[: settings.max_content_chars]

    return ExtractedPage(
        url=url,
        title=title,
        meta_description=description,
        content=content,
        headings=headings,
        language=language,
        links=links,
        is_empty=len(content) < settings.min_content_length,
    )


def find_links(
    soup: BeautifulSoup,
    page_url: str,
    allowed_hosts: Collection[str],
    max_links: int,
) -> list[str]:
    """Absolute, de-duplicated, crawlable links on allowed hosts, at most *max_links*."""
    hosts = {h.lower() for h in allowed_hosts}
    seen: set[str] = set()
    links: list[str] = []
    for tag in soup.find_all("a", href=True):
        if len(links) >= max_links:
            break
        if not isinstance(tag, Tag):
            continue
        href = tag.get("href")
        if not isinstance(href, str):
            continue
        raw = href.strip()
        if not raw or raw.startswith("#"):
            continue
        absolute = normalize_url(urljoin(page_url, raw))
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            continue
        if parsed.hostname.lower() not in hosts:
            continue
        if skip_url(absolute) or absolute in seen:
            continue
        seen.add(absolute)
        links.append(absolute)
    return links


def skip_url(url: str) -> bool:
    """Administrative, cart, login and feed paths, and non-HTML file extensions."""
    path = urlparse(url).path.lower()
    if path.endswith(SKIP_EXTENSIONS):
        return True
    return any(pattern in path for pattern in SKIP_PATTERNS)


def _remove_non_content(soup: BeautifulSoup) -> None:
    for element in soup(list(NON_CONTENT_TAGS)):
        element.decompose()
    for element in soup.find_all(attrs={"role": list(NON_CONTENT_ROLES)}):
        if not element.decomposed:
            element.decompose()


def _clean_text(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()

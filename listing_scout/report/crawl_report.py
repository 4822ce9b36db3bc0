# File: listing_scout/report/crawl_report.py
"""listing_scout.report.crawl_report: summary of one crawl built from its on-disk artifacts."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, TypedDict

from listing_scout.crawler.storage import CrawlStore
from listing_scout.errors import CrawlNotFoundError


class PageSummary(TypedDict, total=False):
    """One persisted page as shown in a report."""

    seq: int
    url: str
    title: str
    language: str
    content_length: int
    headings: List[str]


@dataclass(slots=True)
class CrawlReport:
    """Pages kept by a crawl plus the job metadata written at start."""

    crawl_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    pages: List[PageSummary] = field(default_factory=list)
    languages: Dict[str, int] = field(default_factory=dict)
    total_chars: int = 0

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def json(self, *, pretty: bool = False) -> str:
        data = asdict(self)
        data["page_count"] = self.page_count
        return json.dumps(data, ensure_ascii=False, indent=2 if pretty else None)


def build_report(store: CrawlStore, crawl_id: str) -> CrawlReport:
    """Collect metadata and page summaries of *crawl_id* in page order."""
    if not store.exists(crawl_id):
        raise CrawlNotFoundError(f"Crawl directory not found: {store.crawl_path(crawl_id)}")
    pages: List[PageSummary] = []
    languages: Counter[str] = Counter()
    for seq, page in enumerate(store.read_pages(crawl_id), start=1):
        language = page.get("language") or "unknown"
        languages[language] += 1
        pages.append(
            {
                "seq": seq,
                "url": page.get("url", ""),
                "title": page.get("title") or "",
                "language": language,
                "content_length": int(page.get("content_length") or 0),
                "headings": list(page.get("headings") or []),
            }
        )
    return CrawlReport(
        crawl_id=crawl_id,
        metadata=store.read_metadata(crawl_id),
        pages=pages,
        languages=dict(languages),
        total_chars=sum(p["content_length"] for p in pages),
    )


__all__ = ["CrawlReport", "PageSummary", "build_report"]

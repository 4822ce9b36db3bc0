# listing_scout/crawler/storage.py
"""
On-disk crawl artifacts.

One directory per crawl id under the configured root::

    <root>/<crawl_id>/metadata.json
    <root>/<crawl_id>/page_0001.json
    <root>/<crawl_id>/page_0002.json

The sorted ``page_`` listing reconstructs page order. The directory, not any
in-memory counter, is the source of truth for how many pages a crawl kept.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Union

from listing_scout.crawler.models import CrawledPage, CrawlJob
from listing_scout.logger import logger

METADATA_FILE = "metadata.json"
PAGE_PREFIX = "page_"


class CrawlStore:
    """Reads and writes crawl artifacts below *root*."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def crawl_path(self, crawl_id: str) -> Path:
        return self.root / crawl_id

    def exists(self, crawl_id: str) -> bool:
        return self.crawl_path(crawl_id).is_dir()

    def write_metadata(self, job: CrawlJob) -> Path:
        directory = self.crawl_path(job.crawl_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / METADATA_FILE
        _write_json(path, job.metadata())
        return path

    def read_metadata(self, crawl_id: str) -> Dict[str, Any]:
        """Metadata of a crawl, or an empty dict when the file is missing."""
        path = self.crawl_path(crawl_id) / METADATA_FILE
        if not path.is_file():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def write_page(self, crawl_id: str, seq: int, page: CrawledPage) -> Path:
        directory = self.crawl_path(crawl_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{PAGE_PREFIX}{seq:04d}.json"
        _write_json(path, page.to_dict())
        logger.info("[%s] Saved page %d: %s -> %s", crawl_id, seq, page.url, path.name)
        return path

    def page_files(self, crawl_id: str) -> List[Path]:
        directory = self.crawl_path(crawl_id)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.name.startswith(PAGE_PREFIX))

    def count_pages(self, crawl_id: str) -> int:
        """Number of persisted page files; 0 when the directory does not exist."""
        try:
            return sum(1 for name in os.listdir(self.crawl_path(crawl_id)) if name.startswith(PAGE_PREFIX))
        except OSError:
            return 0

    def read_pages(self, crawl_id: str) -> List[Dict[str, Any]]:
        return [json.loads(p.read_text(encoding="utf-8")) for p in self.page_files(crawl_id)]

    def list_crawls(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    # write-then-rename so a poller never sees a half-written page file
    tmp = path.with_name("." + path.name + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp, path)


__all__ = ["CrawlStore", "METADATA_FILE", "PAGE_PREFIX"]

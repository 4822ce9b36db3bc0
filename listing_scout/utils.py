# File: listing_scout/utils.py
"""listing_scout.utils: URL helpers, slugs, seed files and small collection utilities."""

from __future__ import annotations

import re
import secrets
import unicodedata
from pathlib import Path
from typing import Collection, List, Sequence, Union
from urllib.parse import urldefrag, urlparse

from listing_scout.logger import logger

__all__: Sequence[str] = (
    "normalize_url",
    "is_http_url",
    "extract_host",
    "allowed_hosts_for",
    "slugify",
    "generate_crawl_id",
    "read_seed_file",
    "remove_duplicates",
)

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s-]+")


def normalize_url(url: str) -> str:
    """Drop the fragment and surrounding whitespace; keep path and query as-is."""
    clean, _fragment = urldefrag(url.strip())
    return clean


def is_http_url(url: str) -> bool:
    """True for absolute http(s) URLs that carry a host."""
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def extract_host(url: str) -> str | None:
    """Lower-cased host name of *url* without port, or None."""
    return urlparse(url).hostname


def allowed_hosts_for(seed_urls: Collection[str]) -> List[str]:
    """Unique hosts of the seed URLs in first-seen order."""
    hosts = [h for h in (extract_host(u) for u in seed_urls) if h]
    return remove_duplicates(hosts)


def slugify(name: str, max_length: int = 100) -> str:
    """URL-safe slug: ascii-folded, lower case, dash separated, bounded length."""
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_STRIP_RE.sub("", folded.lower())
    slug = _SLUG_SPACE_RE.sub("-", slug).strip("-")
    return slug[:max_length].rstrip("-")


def generate_crawl_id() -> str:
    """Opaque 16-character hex token."""
    return secrets.token_hex(8)


def read_seed_file(path: Union[str, Path]) -> List[str]:
    """Read seed URLs from a text file (one per line, ``#`` comments) or an XML sitemap."""
    p = Path(path)
    if not p.is_file():
        logger.error("Seed file not found: %s", p)
        raise FileNotFoundError(f"Seed file not found: {p}")
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() == ".xml" or text.lstrip().startswith("<?xml"):
        from listing_scout.parser.sitemap_parser import parse_sitemap

        urls = parse_sitemap(text)
    else:
        urls = [
            line.strip()
            for line in text.splitlines()
            if line.strip() and not line.strip().startswith("#")
        ]
    logger.debug("Loaded %d seed URLs from %s", len(urls), p)
    return urls


def remove_duplicates(urls: Collection[str]) -> List[str]:
    """Remove duplicates while keeping order."""
    unique = list(dict.fromkeys(urls))
    removed = len(urls) - len(unique)
    if removed:
        logger.debug("Removed %d duplicate entries", removed)
    return unique

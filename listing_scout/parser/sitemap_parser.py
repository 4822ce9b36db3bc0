# File: listing_scout/parser/sitemap_parser.py
"""listing_scout.parser.sitemap_parser: reads sitemap.xml seed files and returns their URLs."""

from __future__ import annotations

from typing import List

from lxml import etree


def parse_sitemap(xml_content: str) -> List[str]:
    """Parse sitemap XML and return the URLs found in ``<loc>`` tags.

    Both ``<urlset>`` and ``<sitemapindex>`` documents are accepted; the
    parser recovers from minor markup errors instead of failing.

    Example:
    ```python
    from listing_scout.parser.sitemap_parser import parse_sitemap

    with open('seeds/sitemap.xml', encoding='utf-8') as f:
        seeds = parse_sitemap(f.read())
    ```
    """
    parser = etree.XMLParser(ns_clean=True, recover=True)
    root = etree.fromstring(xml_content.encode("utf-8"), parser=parser)
    if root is None:
        return []
    locs = root.findall(".//{*}loc")
    return [loc.text.strip() for loc in locs if loc.text and loc.text.strip()]

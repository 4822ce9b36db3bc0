# File: listing_scout/report/__init__.py
"""listing_scout.report: crawl reports in JSON and HTML, used by the CLI and tests."""

from __future__ import annotations

from listing_scout.report.crawl_report import CrawlReport, build_report
from listing_scout.report.html_report import render_html
from listing_scout.report.json_report import render_json

__all__ = ["CrawlReport", "build_report", "render_json", "render_html"]

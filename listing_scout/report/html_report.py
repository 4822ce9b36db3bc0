# File: listing_scout/report/html_report.py
"""listing_scout.report.html_report: HTML crawl report rendered with Jinja2."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from listing_scout.report.crawl_report import CrawlReport

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
TEMPLATE_NAME = "crawl_report.html.j2"


def render_html(
    report: CrawlReport,
    output_path: Union[Path, str],
    template_dir: Optional[Union[Path, str]] = None,
) -> Path:
    """Render the report template and save it at *output_path*.

    Args:
        report: CrawlReport from :func:`build_report`.
        output_path: target HTML file.
        template_dir: directory holding ``crawl_report.html.j2``; the
            template shipped with the package by default.

    Returns:
        Path of the written file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    env = Environment(
        loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )
    template = env.get_template(TEMPLATE_NAME)

    context: dict[str, Any] = {
        "crawl_id": report.crawl_id,
        "metadata": report.metadata,
        "pages": report.pages,
        "languages": report.languages,
        "total_chars": report.total_chars,
    }

    output_path.write_text(template.render(**context), encoding="utf-8")
    return output_path

# listing_scout/report/json_report.py

"""
JSON rendering of a CrawlReport.
"""
from pathlib import Path

from listing_scout.report.crawl_report import CrawlReport


def render_json(report: CrawlReport, output_path: Path | str) -> Path:
    """
    Save *report* as indented JSON at *output_path*.

    Example:
    ```python
    from listing_scout.report.json_report import render_json
    report_path = render_json(report, 'reports/crawl.json')
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report.json(pretty=True), encoding='utf-8')
    return output

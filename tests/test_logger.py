# File: tests/test_logger.py
from __future__ import annotations

import threading

from listing_scout.logger import configure, crawl_logger, init_logging, logger


def _log_to_file(tmp_path, fmt: str = "%(levelname)s %(message)s"):
    log_file = tmp_path / "logs" / "scout.log"
    configure(level="DEBUG", log_file=log_file, log_format=fmt)
    return log_file


def _restore() -> None:
    for handler in logger.handlers:
        handler.close()
    init_logging()


def test_crawl_logger_prefixes_crawl_id(tmp_path):
    log_file = _log_to_file(tmp_path)
    try:
        crawl_logger("abc123").info("Page %d: %s", 1, "https://example.nl/")
        logger.info("Import finished")
    finally:
        _restore()

    assert log_file.read_text(encoding="utf-8").splitlines() == [
        "INFO [abc123] Page 1: https://example.nl/",
        "INFO Import finished",
    ]


def test_default_format_names_the_thread(tmp_path):
    log_file = tmp_path / "scout.log"
    configure(log_file=log_file)
    try:
        worker = threading.Thread(target=lambda: crawl_logger("c9").warning("Crawl aborted"), name="crawl-c9")
        worker.start()
        worker.join()
    finally:
        _restore()

    line = log_file.read_text(encoding="utf-8").strip()
    assert "| WARNING  | crawl-c9 | [c9] Crawl aborted" in line


def test_configure_replaces_handlers(tmp_path):
    try:
        configure(log_file=tmp_path / "a.log")
        assert len(logger.handlers) == 2
        configure()
        assert len(logger.handlers) == 1
        assert logger.propagate is False
    finally:
        _restore()

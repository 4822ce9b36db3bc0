# === FILE: listing_scout/logger.py ===
"""Logging for **ListingScout**.

Everything logs through the one ``ListingScout`` logger:

      from listing_scout.logger import logger
      logger.info("Import finished")

Crawls run on background threads and the completion monitor on timer
threads, so the default format carries the thread name. Per-crawl code logs
through :func:`crawl_logger`, which prefixes each line with ``[<crawl_id>]``
so interleaved crawls stay readable in one log.

The CLI calls :func:`configure` once per invocation from ``--log-level`` /
``--log-file`` / ``--log-format``.
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Final, MutableMapping, Tuple, Union

# --------------------------------------------------------------------------- #
# Constants & basic types                                                     #
# --------------------------------------------------------------------------- #

_DEFAULT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(message)s"
_LOGGER_NAME: Final[str] = "ListingScout"
_MAX_LOG_BYTES: Final[int] = 5 * 1024 * 1024
_LOG_BACKUPS: Final[int] = 3

_LevelT = Union[int, str]


# --------------------------------------------------------------------------- #
# Handlers                                                                    #
# --------------------------------------------------------------------------- #


def _stdout_handler(fmt: str) -> logging.StreamHandler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _file_handler(file: Path | str, fmt: str) -> RotatingFileHandler:
    path = Path(file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=_MAX_LOG_BYTES,
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(fmt))
    return handler


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #


class CrawlLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the crawl id: ``[abc123] Page 3: https://...``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['crawl_id']}] {msg}", kwargs


def crawl_logger(crawl_id: str) -> CrawlLogAdapter:
    return CrawlLogAdapter(logging.getLogger(_LOGGER_NAME), {"crawl_id": crawl_id})


def configure(
    *,
    level: _LevelT = "INFO",
    log_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
    replace_handlers: bool = True,
) -> logging.Logger:
    """(Re)configure the project logger.

    Parameters
    ----------
    level
        Numeric or textual logging level (e.g. ``"DEBUG"``).
    log_file
        Rotating logfile; missing parent directories are created.
        *None* → console-only output.
    log_format
        Format string for :class:`logging.Formatter`.
    replace_handlers
        *True* – remove existing handlers; *False* – just append new one(s).
    """
    lg = logging.getLogger(_LOGGER_NAME)
    lg.setLevel(level)

    if replace_handlers:
        lg.handlers.clear()

    lg.addHandler(_stdout_handler(log_format))

    if log_file is not None:
        lg.addHandler(_file_handler(log_file, log_format))

    lg.propagate = False
    return lg


def init_logging(
    level: _LevelT = "INFO",
    log_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
) -> logging.Logger:
    """Console logging at *level*; replaces any handlers set up earlier."""
    return configure(level=level, log_file=log_file, log_format=log_format, replace_handlers=True)


logger: logging.Logger = init_logging()

__all__ = ["logger", "configure", "crawl_logger", "CrawlLogAdapter", "init_logging"]

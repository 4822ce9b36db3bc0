"""Operator-level errors.

These signal a wrong invocation (unknown slug, missing input, unknown crawl)
rather than dirty data, so they are raised and reach the CLI, which reports
them and exits non-zero. Transport failures and per-record data problems are
never raised; they travel as result values and summary counts.
"""
from __future__ import annotations


class ScoutError(Exception):
    """Base class for errors the CLI reports as fatal."""


class UnknownSlugError(ScoutError):
    """A city, category or region slug does not exist in the store."""

    def __init__(self, kind: str, slug: str) -> None:
        self.kind = kind
        self.slug = slug
        super().__init__(f"{kind.capitalize()} not found: {slug}")


class CrawlNotFoundError(ScoutError):
    """No crawl artifacts or job record exist for a crawl identifier."""


class MissingInputError(ScoutError):
    """A required argument, file or directory was not provided or is absent."""


__all__ = ["ScoutError", "UnknownSlugError", "CrawlNotFoundError", "MissingInputError"]

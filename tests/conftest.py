# File: tests/conftest.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from listing_scout.config import CrawlSettings
from listing_scout.crawler.models import FetchResult
from listing_scout.crawler.storage import CrawlStore
from listing_scout.db.database import Database
from listing_scout.db.models import Category, CategoryTranslation, City, Region


def pytest_configure(config):
    """Register custom markers so that `--strict-markers` does not fail."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


LONG_TEXT = "Lekker eten in het centrum van Amsterdam, elke dag geopend voor lunch en diner."


def page_html(title: str, links: List[str], text: str = LONG_TEXT, lang: str = "nl") -> str:
    anchors = "".join(f'<a href="{href}">link</a>' for href in links)
    return (
        f'<html lang="{lang}"><head><title>{title}</title></head>'
        f"<body><nav>{anchors}</nav><main><h1>{title}</h1><p>{text}</p></main></body></html>"
    )


class FakeFetcher:
    """In-memory PageFetcher: serves *pages*, 404 for everything else.

    *redirects* maps a requested URL to the URL the fetch ends up on.
    """

    def __init__(
        self,
        pages: Dict[str, str],
        robots: Optional[str] = None,
        redirects: Optional[Dict[str, str]] = None,
    ) -> None:
        self.pages = pages
        self.robots = robots
        self.redirects = redirects or {}
        self.calls: List[str] = []

    async def __aenter__(self) -> "FakeFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        final_url = self.redirects.get(url, url)
        if final_url in self.pages:
            return FetchResult(url, final_url, 200, html=self.pages[final_url])
        return FetchResult(url, final_url, 404, error="http-error", detail="HTTP 404")

    async def fetch_robots(self, base_url: str) -> Optional[str]:
        return self.robots


@pytest.fixture()
def crawl_settings() -> CrawlSettings:
    return CrawlSettings(
        timeout=2.0,
        concurrency=2,
        respect_robots=False,
        user_agent="TestAgent/1.0",
    )


@pytest.fixture()
def store(tmp_path: Path) -> CrawlStore:
    return CrawlStore(tmp_path / "crawls")


@dataclass
class SeedIds:
    region_id: str
    city_id: str
    other_city_id: str
    restaurants_id: str
    cafes_id: str


@pytest.fixture()
def db(tmp_path: Path) -> Database:
    database = Database(f"sqlite:///{tmp_path / 'test.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture()
def seed_ids(db: Database) -> SeedIds:
    """One region with two cities and two categories (with Dutch enrichment hints)."""
    with db.session() as session:
        region = Region(slug="netherlands", name="Netherlands", default_locale="nl")
        session.add(region)
        session.flush()
        amsterdam = City(slug="amsterdam", name="Amsterdam", region_id=region.id)
        utrecht = City(slug="utrecht", name="Utrecht", region_id=region.id)
        restaurants = Category(slug="restaurants", name="Restaurants")
        cafes = Category(slug="cafes", name="Cafes")
        session.add_all([amsterdam, utrecht, restaurants, cafes])
        session.flush()
        session.add(
            CategoryTranslation(
                category_id=restaurants.id, locale="nl", name="Restaurants",
                enrichment_hints="Mention the cuisine.",
            )
        )
        return SeedIds(region.id, amsterdam.id, utrecht.id, restaurants.id, cafes.id)

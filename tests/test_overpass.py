# File: tests/test_overpass.py
from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import web
from sqlalchemy import select

from listing_scout.config import OverpassSettings
from listing_scout.db.models import Business
from listing_scout.errors import UnknownSlugError
from listing_scout.geodata.overpass import (
    OSM_TAGS,
    OverpassClient,
    build_address,
    build_area_query,
    build_query,
    category_for,
    extract_hints,
    normalize_element,
)
from listing_scout.models import ScrapeSource

BBOX = (52.3, 4.8, 52.4, 5.0)

ELEMENTS = [
    {
        "type": "node",
        "id": 101,
        "lat": 52.37,
        "lon": 4.89,
        "tags": {
            "name": "De Kas",
            "amenity": "restaurant",
            "addr:street": "Kamerlingh Onneslaan",
            "addr:housenumber": "3",
            "addr:postcode": "1097 DE",
            "addr:city": "Amsterdam",
            "phone": "+31 20 462 4562",
            "opening_hours": "Tu-Sa 12:00-22:00; Su,Mo off",
            "cuisine": "dutch;regional",
            "payment:cards": "yes",
            "contact:instagram": "restaurantdekas",
        },
    },
    {
        "type": "way",
        "id": 202,
        "center": {"lat": 52.36, "lon": 4.88},
        "tags": {"name": "Koffie Centraal", "amenity": "cafe", "contact:website": "https://kc.nl"},
    },
    {"type": "node", "id": 303, "lat": 52.0, "lon": 4.0, "tags": {"name": "   ", "amenity": "cafe"}},
    {"type": "node", "id": 404, "lat": 52.0, "lon": 4.0, "tags": {"amenity": "restaurant"}},
    {"type": "node", "id": 505, "lat": 52.0, "lon": 4.0, "tags": {"name": "Park", "leisure": "park"}},
]


# --------------------------------------------------------------------------- #
#                              Normalization                                  #
# --------------------------------------------------------------------------- #


def test_normalize_node():
    business = normalize_element(ELEMENTS[0], "restaurants")
    assert business.name == "De Kas"
    assert business.external_id == "node/101"
    assert business.source == ScrapeSource.MAP_DATA
    assert business.address == "Kamerlingh Onneslaan 3, 1097 DE, Amsterdam"
    assert (business.latitude, business.longitude) == (52.37, 4.89)
    assert business.google_maps_url.endswith("query=52.37,4.89")
    assert business.opening_hours["tuesday"] == "12:00-22:00"
    assert business.opening_hours["monday"] == "closed"
    assert business.opening_hours_raw == "Tu-Sa 12:00-22:00; Su,Mo off"
    assert business.raw_data["amenity"] == "restaurant"
    assert business.category_slug == "restaurants"


def test_normalize_way_uses_center():
    business = normalize_element(ELEMENTS[1])
    assert business.external_id == "way/202"
    assert (business.latitude, business.longitude) == (52.36, 4.88)
    assert business.website == "https://kc.nl"
    assert business.address is None
    assert business.opening_hours is None


@pytest.mark.parametrize("element", [ELEMENTS[2], ELEMENTS[3]])
def test_elements_without_name_are_dropped(element):
    assert normalize_element(element) is None


def test_hints():
    hints = extract_hints(ELEMENTS[0]["tags"])
    assert hints["cuisine"] == ["dutch", "regional"]
    assert hints["payment"] == {"cards": "yes"}
    assert hints["social"] == {"instagram": "restaurantdekas"}
    assert extract_hints({"name": "x"}) == {}


def test_build_address_partial():
    assert build_address({"addr:street": "Damrak"}) == "Damrak"
    assert build_address({"addr:postcode": "1012", "addr:city": "Amsterdam"}) == "1012, Amsterdam"
    assert build_address({}) is None


def test_category_for_first_rule_wins():
    # amenity=school is listed for two categories
    assert category_for({"amenity": "school"}) == "elementary-schools"
    assert category_for({"amenity": "cafe"}) == "cafes"
    assert category_for({"leisure": "park"}) is None


def test_queries():
    query = build_query(OSM_TAGS["markets"], BBOX, timeout=25)
    assert query.startswith("[out:json][timeout:25];")
    assert 'node["amenity"="marketplace"](52.3,4.8,52.4,5.0);' in query
    assert 'way["shop"="marketplace"](52.3,4.8,52.4,5.0);' in query
    assert "out center" in query

    area = build_area_query('Den "Haag"', [("amenity", "cafe")])
    assert 'area["name"="Den \\"Haag\\""]["boundary"="administrative"]->.searchArea;' in area
    assert 'node["amenity"="cafe"](area.searchArea);' in area


# --------------------------------------------------------------------------- #
#                              Client (aiohttp)                               #
# --------------------------------------------------------------------------- #


async def _serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "localhost", port)
    await site.start()
    try:
        yield f"http://localhost:{port}"
    finally:
        await runner.cleanup()


@pytest_asyncio.fixture
async def overpass_server(unused_tcp_port: int) -> AsyncIterator[str]:
    app = web.Application()
    queries = []
    app["queries"] = queries

    async def handle_ok(request):
        form = await request.post()
        queries.append(form["data"])
        return web.json_response({"version": 0.6, "elements": ELEMENTS})

    async def handle_html(_):
        return web.Response(text="<html>runtime error</html>", content_type="text/html")

    async def handle_limited(_):
        return web.Response(status=429, text="slow down")

    async def handle_broken(_):
        return web.Response(status=500, text="boom")

    async def handle_no_elements(_):
        return web.json_response({"remark": "timeout"})

    app.router.add_post("/ok", handle_ok)
    app.router.add_post("/html", handle_html)
    app.router.add_post("/limited", handle_limited)
    app.router.add_post("/broken", handle_broken)
    app.router.add_post("/no-elements", handle_no_elements)

    async for url in _serve_app(app, unused_tcp_port):
        yield url


def _settings(url: str) -> OverpassSettings:
    return OverpassSettings(url=url, timeout=5)


@pytest.mark.asyncio
async def test_search_returns_named_candidates(overpass_server):
    async with OverpassClient(_settings(f"{overpass_server}/ok")) as client:
        result = await client.search("restaurants", BBOX)
    assert result.ok
    names = [c.name for c in result.candidates]
    assert names == ["De Kas", "Koffie Centraal", "Park"]
    assert all(c.category_slug == "restaurants" for c in result.candidates)


@pytest.mark.asyncio
async def test_search_unknown_category_sends_nothing(overpass_server):
    async with OverpassClient(_settings(f"{overpass_server}/ok")) as client:
        result = await client.search("astronauts", BBOX)
    assert not result.ok
    assert result.error.kind == "no-category-mapping"
    assert result.candidates == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path,kind,status",
    [
        ("/html", "invalid-response", 200),
        ("/no-elements", "invalid-response", 200),
        ("/limited", "rate-limited", 429),
        ("/broken", "http-error", 500),
    ],
)
async def test_search_backend_errors(overpass_server, path, kind, status):
    async with OverpassClient(_settings(f"{overpass_server}{path}")) as client:
        result = await client.search("cafes", BBOX)
    assert result.error.kind == kind
    assert result.error.status == status
    assert result.candidates == []


@pytest.mark.asyncio
async def test_search_unreachable(unused_tcp_port):
    async with OverpassClient(_settings(f"http://localhost:{unused_tcp_port}/")) as client:
        result = await client.search("cafes", BBOX)
    assert result.error.kind == "request-failed"


@pytest.mark.asyncio
async def test_query_city_assigns_categories(overpass_server):
    async with OverpassClient(_settings(f"{overpass_server}/ok")) as client:
        result = await client.query_city("Amsterdam")
    by_name = {c.name: c.category_slug for c in result.candidates}
    assert by_name == {"De Kas": "restaurants", "Koffie Centraal": "cafes"}


@pytest.mark.asyncio
async def test_import_city_creates_then_skips(overpass_server, db, seed_ids):
    async with OverpassClient(_settings(f"{overpass_server}/ok")) as client:
        first = await client.import_city(db, seed_ids.city_id)
        second = await client.import_city(db, seed_ids.city_id)

    assert (first.created, first.skipped, first.failed) == (2, 0, 0)
    assert (second.created, second.skipped, second.failed) == (0, 2, 0)

    with db.session() as session:
        kas = session.scalar(select(Business).where(Business.external_id == "node/101"))
        assert kas.status == "pending"
        assert kas.source == "map_data"
        assert kas.slug == "de-kas"
        assert kas.city_id == seed_ids.city_id
        assert kas.region_id == seed_ids.region_id
        assert kas.category_id == seed_ids.restaurants_id
        assert kas.hints["cuisine"] == ["dutch", "regional"]
        assert len(session.scalars(select(Business)).all()) == 2


@pytest.mark.asyncio
async def test_import_city_reports_backend_error(overpass_server, db, seed_ids):
    async with OverpassClient(_settings(f"{overpass_server}/limited")) as client:
        summary = await client.import_city(db, seed_ids.city_id)
    assert summary.error == "rate-limited (429)"
    assert summary.total == 0


@pytest.mark.asyncio
async def test_import_city_unknown_city(overpass_server, db):
    async with OverpassClient(_settings(f"{overpass_server}/ok")) as client:
        with pytest.raises(UnknownSlugError):
            await client.import_city(db, "no-such-city")

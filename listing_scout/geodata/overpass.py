# listing_scout/geodata/overpass.py
"""
OpenStreetMap Overpass client for discovering businesses.

Two static tables drive it:

* :data:`OSM_TAGS` maps a category slug to the alternate ``(key, value)`` tag
  pairs that business type is tagged with.
* :data:`TAG_CATEGORY_RULES` is the reverse, ordered mapping used by a
  whole-city import: the first rule matching a feature decides its category;
  features no rule matches are skipped.

Example::

    async with OverpassClient(settings) as client:
        result = await client.search("restaurants", (52.3, 4.8, 52.4, 5.0))
        if result.ok:
            for business in result.candidates:
                print(business.name, business.address)
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from aiohttp import ClientError, ClientSession, ClientTimeout

from listing_scout.config import OverpassSettings
from listing_scout.db import repository
from listing_scout.db.database import Database
from listing_scout.db.models import City
from listing_scout.errors import UnknownSlugError
from listing_scout.logger import logger
from listing_scout.models import CandidateBusiness, ScrapeSource
from listing_scout.parser.opening_hours import parse_opening_hours
from listing_scout.pipeline.batches import ImportSummary

BBox = Tuple[float, float, float, float]

OSM_TAGS: Dict[str, List[Tuple[str, str]]] = {
    "restaurants": [("amenity", "restaurant")],
    "cafes": [("amenity", "cafe")],
    "bakeries": [("shop", "bakery")],
    "butchers": [("shop", "butcher")],
    "supermarkets": [("shop", "supermarket")],
    "markets": [("amenity", "marketplace"), ("shop", "marketplace")],
    "wineries": [("craft", "winery"), ("shop", "wine")],
    "cider-houses": [("amenity", "bar"), ("amenity", "pub")],
    "doctors": [("amenity", "doctors"), ("healthcare", "doctor")],
    "dentists": [("amenity", "dentist"), ("healthcare", "dentist")],
    "hospitals": [("amenity", "hospital")],
    "veterinarians": [("amenity", "veterinary")],
    "hair-salons": [("shop", "hairdresser"), ("shop", "beauty")],
    "libraries": [("amenity", "library")],
    "elementary-schools": [("amenity", "school")],
    "high-schools": [("amenity", "school")],
    "music-schools": [("amenity", "music_school"), ("leisure", "music_school")],
    "language-schools": [("office", "language_school"), ("amenity", "language_school")],
    "lawyers": [("office", "lawyer"), ("office", "notary")],
    "accountants": [("office", "accountant"), ("office", "tax_advisor")],
    "electricians": [("craft", "electrician")],
    "plumbers": [("craft", "plumber")],
    "car-services": [("shop", "car_repair"), ("shop", "car")],
    "real-estate": [("office", "estate_agent")],
    "municipalities": [("amenity", "townhall"), ("office", "government")],
}


def _reverse_rules(tags: Dict[str, List[Tuple[str, str]]]) -> List[Tuple[str, str, str]]:
    rules: List[Tuple[str, str, str]] = []
    seen = set()
    for slug, pairs in tags.items():
        for key, value in pairs:
            # a pair shared by two categories belongs to the first one listed
            if (key, value) not in seen:
                seen.add((key, value))
                rules.append((key, value, slug))
    return rules


TAG_CATEGORY_RULES: List[Tuple[str, str, str]] = _reverse_rules(OSM_TAGS)

HINT_TAGS = ("cuisine", "wheelchair", "diet:vegetarian", "diet:vegan", "takeaway", "delivery", "outdoor_seating")
SOCIAL_TAGS = {
    "contact:facebook": "facebook",
    "contact:instagram": "instagram",
    "contact:twitter": "twitter",
}

MAPS_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query={lat},{lon}"


# --------------------------------------------------------------------------- #
# Result types                                                                #
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class GeodataError:
    """Typed backend failure: ``no-category-mapping``, ``rate-limited``,
    ``http-error``, ``invalid-response`` or ``request-failed``."""

    kind: str
    status: Optional[int] = None
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.kind} ({self.status})" if self.status is not None else self.kind


@dataclass(slots=True)
class GeodataResult:
    candidates: List[CandidateBusiness] = field(default_factory=list)
    error: Optional[GeodataError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# --------------------------------------------------------------------------- #
# Query building                                                              #
# --------------------------------------------------------------------------- #


def tags_for_category(category_slug: str) -> Optional[List[Tuple[str, str]]]:
    return OSM_TAGS.get(category_slug)


def has_tags(category_slug: str) -> bool:
    return category_slug in OSM_TAGS


def build_query(tags: Sequence[Tuple[str, str]], bbox: BBox, timeout: int = 60) -> str:
    """Overpass QL for nodes and ways carrying any of *tags* inside *bbox* (south, west, north, east)."""
    south, west, north, east = bbox
    scope = f"({south},{west},{north},{east})"
    return _wrap(_filters(tags, scope), timeout)


def build_area_query(city_name: str, tags: Sequence[Tuple[str, str]], timeout: int = 60) -> str:
    """Overpass QL for every feature carrying any of *tags* inside the named area."""
    name = _escape(city_name)
    head = f'area["name"="{name}"]["boundary"="administrative"]->.searchArea;\n'
    return _wrap(_filters(tags, "(area.searchArea)"), timeout, head)


def _filters(tags: Sequence[Tuple[str, str]], scope: str) -> List[str]:
    lines: List[str] = []
    for key, value in tags:
        selector = f'["{_escape(key)}"="{_escape(value)}"]'
        lines.append(f"node{selector}{scope};")
        lines.append(f"way{selector}{scope};")
    return lines


def _wrap(filters: List[str], timeout: int, head: str = "") -> str:
    body = "\n  ".join(filters)
    return f"[out:json][timeout:{timeout}];\n{head}(\n  {body}\n);\nout center tags;\n"


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


# --------------------------------------------------------------------------- #
# Normalization                                                               #
# --------------------------------------------------------------------------- #


def has_name(element: Dict[str, Any]) -> bool:
    name = (element.get("tags") or {}).get("name")
    return isinstance(name, str) and bool(name.strip())


def category_for(tags: Dict[str, Any]) -> Optional[str]:
    """Category slug of the first rule whose tag pair the feature carries."""
    for key, value, slug in TAG_CATEGORY_RULES:
        if tags.get(key) == value:
            return slug
    return None


def extract_coordinates(element: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    if element.get("type") == "node" and "lat" in element and "lon" in element:
        return element["lat"], element["lon"]
    center = element.get("center") or {}
    if "lat" in center and "lon" in center:
        return center["lat"], center["lon"]
    return None, None


def build_address(tags: Dict[str, Any]) -> Optional[str]:
    """``street number, postcode, city``; missing parts are omitted, None when nothing is left."""
    street = tags.get("addr:street")
    number = tags.get("addr:housenumber")
    street_line = None
    if street:
        street_line = f"{street} {number}" if number else street
    parts = [p for p in (street_line, tags.get("addr:postcode"), tags.get("addr:city")) if p]
    return ", ".join(parts) or None


def build_google_maps_url(lat: Optional[float], lon: Optional[float]) -> Optional[str]:
    if lat is None or lon is None:
        return None
    return MAPS_SEARCH_URL.format(lat=lat, lon=lon)


def extract_hints(tags: Dict[str, Any]) -> Dict[str, Any]:
    """Secondary facts worth passing to enrichment; only keys that are present."""
    hints: Dict[str, Any] = {}
    for key in HINT_TAGS:
        value = tags.get(key)
        if value:
            hints[key.replace("diet:", "diet_")] = value
    if "cuisine" in hints:
        hints["cuisine"] = [c.strip() for c in hints["cuisine"].split(";") if c.strip()]
    payment = {k.split(":", 1)[1]: v for k, v in tags.items() if k.startswith("payment:") and v}
    if payment:
        hints["payment"] = payment
    social = {name: tags[key] for key, name in SOCIAL_TAGS.items() if tags.get(key)}
    if social:
        hints["social"] = social
    return hints


def normalize_element(element: Dict[str, Any], category_slug: Optional[str] = None) -> Optional[CandidateBusiness]:
    """Turn one Overpass element into a CandidateBusiness; None when it has no usable name."""
    if not has_name(element):
        return None
    tags: Dict[str, Any] = element.get("tags") or {}
    lat, lon = extract_coordinates(element)
    raw_hours = tags.get("opening_hours")
    return CandidateBusiness(
        name=tags["name"],
        source=ScrapeSource.MAP_DATA,
        external_id=f"{element.get('type')}/{element.get('id')}",
        address=build_address(tags),
        phone=tags.get("phone") or tags.get("contact:phone"),
        website=tags.get("website") or tags.get("contact:website") or tags.get("url"),
        email=tags.get("email") or tags.get("contact:email"),
        latitude=lat,
        longitude=lon,
        opening_hours=parse_opening_hours(raw_hours) if isinstance(raw_hours, str) else None,
        opening_hours_raw=raw_hours,
        google_maps_url=build_google_maps_url(lat, lon),
        category_slug=category_slug,
        hints=extract_hints(tags),
        raw_data=dict(tags),
    )


# --------------------------------------------------------------------------- #
# Client                                                                      #
# --------------------------------------------------------------------------- #


class OverpassClient:
    """Async client for the Overpass interpreter endpoint.

    Use as an async context manager, or hand in an existing ClientSession.
    """

    def __init__(self, settings: OverpassSettings, session: Optional[ClientSession] = None) -> None:
        self.settings = settings
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "OverpassClient":
        if self.session is None:
            self.session = ClientSession(
                timeout=ClientTimeout(total=self.settings.timeout),
                headers={"User-Agent": self.settings.user_agent},
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    async def search(self, category_slug: str, bbox: BBox) -> GeodataResult:
        """Named features of one category inside *bbox*."""
        tags = tags_for_category(category_slug)
        if tags is None:
            logger.warning("No OSM tag mapping for category %s", category_slug)
            return GeodataResult(error=GeodataError("no-category-mapping", detail=category_slug))
        query = build_query(tags, bbox, int(self.settings.timeout))
        logger.info("Overpass query for %s: %d chars", category_slug, len(query))
        elements, error = await self._request(query)
        if error is not None:
            return GeodataResult(error=error)
        candidates = [c for c in (normalize_element(e, category_slug) for e in elements) if c is not None]
        logger.info("Overpass found %d %s in bbox", len(candidates), category_slug)
        return GeodataResult(candidates)

    async def query_city(self, city_name: str) -> GeodataResult:
        """Every named feature inside the city matching any category rule, tagged with its category."""
        pairs = [(key, value) for key, value, _slug in TAG_CATEGORY_RULES]
        query = build_area_query(city_name, pairs, int(self.settings.timeout))
        logger.info("Overpass city query for %s: %d chars", city_name, len(query))
        elements, error = await self._request(query)
        if error is not None:
            return GeodataResult(error=error)
        candidates: List[CandidateBusiness] = []
        unmatched = 0
        for element in elements:
            slug = category_for(element.get("tags") or {})
            if slug is None:
                unmatched += 1
                continue
            candidate = normalize_element(element, slug)
            if candidate is not None:
                candidates.append(candidate)
        logger.info(
            "Overpass found %d businesses in %s (%d without a category)", len(candidates), city_name, unmatched
        )
        return GeodataResult(candidates)

    async def import_city(self, db: Database, city_id: str, region_id: Optional[str] = None) -> ImportSummary:
        """Query a city and create-or-skip every feature as a pending business."""
        with db.session() as session:
            city = session.get(City, city_id)
            if city is None:
                raise UnknownSlugError("city", city_id)
            city_name = city.name
            region_id = region_id or city.region_id
            category_ids = repository.category_ids_by_slug(session)

        result = await self.query_city(city_name)
        summary = ImportSummary()
        if not result.ok:
            summary.error = str(result.error)
            logger.warning("Overpass import for %s failed: %s", city_name, result.error)
            return summary

        for candidate in result.candidates:
            category_id = category_ids.get(candidate.category_slug or "")
            # map features that fail validation are skipped like duplicates
            outcome = repository.create_business(
                db,
                candidate,
                city_id=city_id,
                category_id=category_id,
                region_id=region_id,
                invalid=repository.SKIPPED,
            )
            summary.record(outcome)
        logger.info(
            "Overpass import for %s: %d created, %d skipped, %d failed",
            city_name, summary.created, summary.skipped, summary.failed,
        )
        return summary

    async def _request(self, query: str) -> Tuple[List[Dict[str, Any]], Optional[GeodataError]]:
        if not self.session:
            raise RuntimeError("Session not initialized")
        try:
            async with self.session.post(self.settings.url, data={"data": query}) as resp:
                body = await resp.text(errors="replace")
                status = resp.status
        except asyncio.TimeoutError:
            logger.error("Overpass request timed out after %s s", self.settings.timeout)
            return [], GeodataError("request-failed", detail="timeout")
        except ClientError as exc:
            logger.error("Overpass request failed: %s", exc)
            return [], GeodataError("request-failed", detail=str(exc) or type(exc).__name__)

        if status == 429:
            logger.warning("Overpass rate limited, retry later")
            return [], GeodataError("rate-limited", status)
        if status != 200:
            logger.error("Overpass error %d: %s", status, body[:200])
            return [], GeodataError("http-error", status, body[:200])
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            # Overpass sometimes serves an HTML error page with status 200
            logger.error("Overpass returned non-JSON response: %s", body[:200])
            return [], GeodataError("invalid-response", status, body[:200])
        elements = data.get("elements") if isinstance(data, dict) else None
        if not isinstance(elements, list):
            logger.error("Overpass response has no elements array")
            return [], GeodataError("invalid-response", status)
        return elements, None


__all__ = [
    "OSM_TAGS",
    "TAG_CATEGORY_RULES",
    "BBox",
    "GeodataError",
    "GeodataResult",
    "OverpassClient",
    "build_address",
    "build_area_query",
    "build_google_maps_url",
    "build_query",
    "category_for",
    "extract_hints",
    "has_tags",
    "normalize_element",
    "tags_for_category",
]

# File: listing_scout/models.py
"""listing_scout.models: domain types shared by the geodata, crawl and batch layers."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional


class BusinessStatus(str, enum.Enum):
    """Lifecycle: pending → researching → researched → enriched → verified (or rejected)."""

    PENDING = "pending"
    RESEARCHING = "researching"
    RESEARCHED = "researched"
    ENRICHED = "enriched"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ScrapeSource(str, enum.Enum):
    """Provenance of a business record."""

    MAP_DATA = "map_data"
    DIRECTORY_SITE = "directory_site"
    USER_SUBMITTED = "user_submitted"
    DISCOVERY_CRAWL = "discovery_crawl"
    GOOGLE_MAPS = "google_maps"
    MANUAL = "manual"


class CrawlStatus(str, enum.Enum):
    CRAWLING = "crawling"
    CRAWLED = "crawled"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class CandidateBusiness:
    """An unreviewed business record produced by map data or a crawl import.

    ``external_id`` is the deduplication key: ``<type>/<id>`` for map
    features, a provenance-derived token for listing-site records.
    """

    name: str
    source: ScrapeSource
    external_id: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    opening_hours: Optional[Dict[str, str]] = None
    opening_hours_raw: Optional[str] = None
    google_maps_url: Optional[str] = None
    description: Optional[str] = None
    category_slug: Optional[str] = None
    hints: Dict[str, Any] = field(default_factory=dict)
    raw_data: Dict[str, Any] = field(default_factory=dict)
    status: BusinessStatus = BusinessStatus.PENDING

    def __post_init__(self) -> None:
        self.name = (self.name or "").strip()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        data["status"] = self.status.value
        return data


__all__ = ["BusinessStatus", "ScrapeSource", "CrawlStatus", "CandidateBusiness"]

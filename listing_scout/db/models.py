"""
SQLAlchemy ORM models for ListingScout.

Organized into sections:
- Geography & taxonomy (regions, cities, categories)
- Businesses and their per-locale translations
- Discovery crawl job records
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from listing_scout.db.database import Base
from listing_scout.models import BusinessStatus, CrawlStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class TimestampMixin:
    """Mixin for created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, index=True
    )


# ==============================================================================
# Geography & taxonomy
# ==============================================================================


class Region(Base, TimestampMixin):
    __tablename__ = "regions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_locale: Mapped[str] = mapped_column(String(10), default="en")

    cities: Mapped[list["City"]] = relationship(back_populates="region")


class City(Base, TimestampMixin):
    __tablename__ = "cities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    region_id: Mapped[str | None] = mapped_column(ForeignKey("regions.id"), index=True)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)

    region: Mapped[Region | None] = relationship(back_populates="cities")


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class CategoryTranslation(Base, TimestampMixin):
    """Per-locale category name plus the hints handed to enrichment."""

    __tablename__ = "category_translations"
    __table_args__ = (UniqueConstraint("category_id", "locale", name="uq_category_translation"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_id: Mapped[str] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"))
    locale: Mapped[str] = mapped_column(String(10), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    enrichment_hints: Mapped[str | None] = mapped_column(Text)


# ==============================================================================
# Businesses
# ==============================================================================


class Business(Base, TimestampMixin):
    """A business listing: raw discovered data plus enrichment output."""

    __tablename__ = "businesses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    # deduplication key: "node/123" for map data, provenance-derived otherwise
    external_id: Mapped[str | None] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=BusinessStatus.PENDING.value, index=True)
    source: Mapped[str] = mapped_column(String(30), nullable=False)

    address: Mapped[str | None] = mapped_column(String(500))
    phone: Mapped[str | None] = mapped_column(String(100))
    website: Mapped[str | None] = mapped_column(String(500))
    email: Mapped[str | None] = mapped_column(String(255))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    google_maps_url: Mapped[str | None] = mapped_column(String(500))
    opening_hours: Mapped[dict | None] = mapped_column(JSON)
    rating: Mapped[float | None] = mapped_column(Float)
    review_count: Mapped[int | None] = mapped_column(Integer)
    raw_data: Mapped[dict | None] = mapped_column(JSON)
    hints: Mapped[dict | None] = mapped_column(JSON)

    city_id: Mapped[str | None] = mapped_column(ForeignKey("cities.id"), index=True)
    category_id: Mapped[str | None] = mapped_column(ForeignKey("categories.id"), index=True)
    region_id: Mapped[str | None] = mapped_column(ForeignKey("regions.id"), index=True)

    # Enrichment output
    description: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)
    highlights: Mapped[list | None] = mapped_column(JSON)
    warnings: Mapped[list | None] = mapped_column(JSON)
    integration_tips: Mapped[list | None] = mapped_column(JSON)
    cultural_notes: Mapped[list | None] = mapped_column(JSON)
    service_specialties: Mapped[list | None] = mapped_column(JSON)
    languages_spoken: Mapped[list | None] = mapped_column(JSON)
    languages_taught: Mapped[list | None] = mapped_column(JSON)
    speaks_english: Mapped[bool | None] = mapped_column(Boolean)
    speaks_english_confidence: Mapped[float | None] = mapped_column(Float)
    newcomer_friendly_score: Mapped[float | None] = mapped_column(Float)
    local_gem_score: Mapped[float | None] = mapped_column(Float)
    quality_score: Mapped[float | None] = mapped_column(Float)
    category_fit_score: Mapped[float | None] = mapped_column(Float)
    suggested_category_slug: Mapped[str | None] = mapped_column(String(100))
    sentiment_summary: Mapped[str | None] = mapped_column(Text)
    review_insights: Mapped[dict | None] = mapped_column(JSON)
    last_enriched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    city: Mapped[City | None] = relationship()
    category: Mapped[Category | None] = relationship()
    region: Mapped[Region | None] = relationship()
    translations: Mapped[list["BusinessTranslation"]] = relationship(back_populates="business")


class BusinessTranslation(Base, TimestampMixin):
    __tablename__ = "business_translations"
    __table_args__ = (UniqueConstraint("business_id", "locale", name="uq_business_translation"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), index=True)
    locale: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)
    highlights: Mapped[list | None] = mapped_column(JSON)
    warnings: Mapped[list | None] = mapped_column(JSON)
    integration_tips: Mapped[list | None] = mapped_column(JSON)
    cultural_notes: Mapped[list | None] = mapped_column(JSON)
    content_source: Mapped[str | None] = mapped_column(String(30))
    source_locale: Mapped[str | None] = mapped_column(String(10))

    business: Mapped[Business] = relationship(back_populates="translations")


class CityTranslation(Base, TimestampMixin):
    __tablename__ = "city_translations"
    __table_args__ = (UniqueConstraint("city_id", "locale", name="uq_city_translation"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    city_id: Mapped[str] = mapped_column(ForeignKey("cities.id", ondelete="CASCADE"), index=True)
    locale: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)


# ==============================================================================
# Discovery crawl job records
# ==============================================================================


class DiscoveryCrawl(Base, TimestampMixin):
    """Job record of one discovery crawl; page files live on disk."""

    __tablename__ = "discovery_crawls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    crawl_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=CrawlStatus.CRAWLING.value, index=True)
    seed_urls: Mapped[list] = mapped_column(JSON, default=list)
    max_pages: Mapped[int] = mapped_column(Integer, default=200)
    pages_crawled: Mapped[int] = mapped_column(Integer, default=0)
    businesses_created: Mapped[int] = mapped_column(Integer, default=0)
    businesses_skipped: Mapped[int] = mapped_column(Integer, default=0)
    businesses_failed: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text)

    city_id: Mapped[str | None] = mapped_column(ForeignKey("cities.id"))
    category_id: Mapped[str | None] = mapped_column(ForeignKey("categories.id"))
    region_id: Mapped[str | None] = mapped_column(ForeignKey("regions.id"))

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    crawl_finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

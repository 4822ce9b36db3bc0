# listing_scout/pipeline/schemas.py
"""
Pydantic shapes of the entries inside result files.

Each entry is validated on its own, so one malformed entry fails alone and
the rest of the file is still applied.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Entry(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DiscoveredBusiness(_Entry):
    """A business found by the external extraction step in crawled pages."""

    name: str = ""
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    city_slug: Optional[str] = None
    category_slug: Optional[str] = None
    description: Optional[str] = None
    source_url: Optional[str] = None

    @field_validator("name", mode="before")
    def _strip_name(cls, v: Any) -> Any:
        return "" if v is None else (v.strip() if isinstance(v, str) else v)


class TranslationEntry(_Entry):
    business_id: str = Field(min_length=1)
    description: Optional[str] = None
    summary: Optional[str] = None
    highlights: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    integration_tips: List[str] = Field(default_factory=list)
    cultural_notes: List[str] = Field(default_factory=list)

    @field_validator("highlights", "warnings", "integration_tips", "cultural_notes", mode="before")
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v


class CityTranslationEntry(_Entry):
    city_id: str = Field(min_length=1)
    description: Optional[str] = None


class EnrichmentEntry(_Entry):
    business_id: str = Field(min_length=1)
    description: Optional[str] = None
    summary: Optional[str] = None
    speaks_english: Optional[bool] = None
    speaks_english_confidence: Optional[float] = None
    newcomer_friendly_score: Optional[float] = None
    local_gem_score: Optional[float] = None
    quality_score: Optional[float] = None
    category_fit_score: Optional[float] = None
    suggested_category_slug: Optional[str] = None
    sentiment_summary: Optional[str] = None
    highlights: Optional[List[str]] = None
    warnings: Optional[List[str]] = None
    integration_tips: Optional[List[str]] = None
    cultural_notes: Optional[List[str]] = None
    service_specialties: Optional[List[str]] = None
    languages_spoken: Optional[List[str]] = None
    languages_taught: Optional[List[str]] = None
    review_insights: Optional[Dict[str, Any]] = None

    def updates(self) -> Dict[str, Any]:
        """Fields carried by this entry, without the id and without nulls."""
        return self.model_dump(exclude={"business_id"}, exclude_none=True)


__all__ = ["DiscoveredBusiness", "TranslationEntry", "CityTranslationEntry", "EnrichmentEntry"]

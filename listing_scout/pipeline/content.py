# listing_scout/pipeline/content.py
"""
Translation and enrichment batches.

Exports select the businesses still missing the work, imports apply the
results by business id:

* translations and city translations are upserts keyed on
  ``(entity id, locale)`` and can be re-run safely;
* enrichments only land on businesses whose summary is still empty, so a
  second run skips everything the first one applied.
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from pydantic import ValidationError
from sqlalchemy import and_, case, exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from listing_scout.db import repository
from listing_scout.db.database import Database
from listing_scout.db.models import (
    Business,
    BusinessTranslation,
    Category,
    CategoryTranslation,
    City,
    CityTranslation,
    Region,
)
from listing_scout.errors import ScoutError
from listing_scout.logger import logger
from listing_scout.models import BusinessStatus
from listing_scout.pipeline.batches import ImportSummary, read_result_file, write_batches
from listing_scout.pipeline.schemas import CityTranslationEntry, EnrichmentEntry, TranslationEntry

SUPPORTED_LOCALES = {"es": "Spanish", "nl": "Dutch"}
TRANSLATION_BATCH_SIZE = 25
ENRICHMENT_BATCH_SIZE = 10
ENRICH_DIR = "enrich"

LANGUAGE_CODES = {
    "spanish": "es",
    "english": "en",
    "galician": "gl",
    "galego": "gl",
    "portuguese": "pt",
    "german": "de",
    "french": "fr",
    "dutch": "nl",
    "italian": "it",
}

TRANSLATED_STATUSES = (BusinessStatus.ENRICHED.value, BusinessStatus.VERIFIED.value)
UNENRICHED_STATUSES = (
    BusinessStatus.PENDING.value,
    BusinessStatus.RESEARCHING.value,
    BusinessStatus.RESEARCHED.value,
)


def translation_dir(output_dir: Union[str, Path], locale: str) -> Path:
    return Path(output_dir) / f"translate_{locale}"


def check_locale(locale: Optional[str]) -> str:
    if locale not in SUPPORTED_LOCALES:
        raise ScoutError(f"Locale must be one of {', '.join(sorted(SUPPORTED_LOCALES))}, got {locale!r}")
    return locale


def normalize_language(lang: Any) -> str:
    """Two-letter code for a language name or code (``"Galego"`` -> ``"gl"``)."""
    if not isinstance(lang, str):
        return str(lang)
    lowered = lang.strip().lower()
    return LANGUAGE_CODES.get(lowered, lowered[:2])


def _region_id(session, region_slug: Optional[str]) -> Optional[str]:
    if region_slug is None:
        return None
    return repository.get_region_by_slug(session, region_slug).id


# --------------------------------------------------------------------------- #
# Export                                                                      #
# --------------------------------------------------------------------------- #


def export_translations(
    db: Database,
    locale: str,
    output_dir: Union[str, Path],
    *,
    region_slug: Optional[str] = None,
    limit: Optional[int] = None,
    batch_size: int = TRANSLATION_BATCH_SIZE,
) -> List[Path]:
    """Batch enriched businesses that have a description but no *locale* translation yet."""
    check_locale(locale)
    with db.session() as session:
        region_id = _region_id(session, region_slug)
        translated = exists().where(
            BusinessTranslation.business_id == Business.id,
            BusinessTranslation.locale == locale,
            BusinessTranslation.description.is_not(None),
            BusinessTranslation.description != "",
        )
        stmt = (
            select(Business)
            .where(
                Business.status.in_(TRANSLATED_STATUSES),
                Business.description.is_not(None),
                Business.description != "",
                ~translated,
            )
            .order_by(Business.created_at.desc(), Business.id)
        )
        if region_id:
            stmt = stmt.where(Business.region_id == region_id)
        if limit:
            stmt = stmt.limit(limit)
        businesses = [_translation_payload(b) for b in session.scalars(stmt)]

    logger.info("Found %d businesses missing %s translations", len(businesses), SUPPORTED_LOCALES[locale])
    if not businesses:
        return []

    def build(part: Sequence[Dict[str, Any]], number: int, total: int) -> Dict[str, Any]:
        return {
            "type": "translation",
            "target_locale": locale,
            "batch": number,
            "total_batches": total,
            "count": len(part),
            "businesses": list(part),
        }

    return write_batches(translation_dir(output_dir, locale), businesses, batch_size, build)


def _translation_payload(business: Business) -> Dict[str, Any]:
    return {
        "id": business.id,
        "name": business.name,
        "description": business.description,
        "summary": business.summary,
        "highlights": business.highlights or [],
        "warnings": business.warnings or [],
        "integration_tips": business.integration_tips or [],
        "cultural_notes": business.cultural_notes or [],
    }


def export_enrichments(
    db: Database,
    output_dir: Union[str, Path],
    *,
    region_slug: Optional[str] = None,
    limit: Optional[int] = None,
    batch_size: int = ENRICHMENT_BATCH_SIZE,
) -> List[Path]:
    """Batch businesses without a summary together with category hints and every category slug."""
    with db.session() as session:
        region_id = _region_id(session, region_slug)
        all_category_slugs = repository.category_slugs(session)
        hints = aliased(CategoryTranslation)
        stmt = (
            select(Business, Category, City, Region, hints.enrichment_hints)
            .outerjoin(Category, Category.id == Business.category_id)
            .outerjoin(City, City.id == Business.city_id)
            .outerjoin(Region, Region.id == Business.region_id)
            .outerjoin(hints, and_(hints.category_id == Category.id, hints.locale == Region.default_locale))
            .where(Business.status.in_(UNENRICHED_STATUSES), Business.summary.is_(None))
            .order_by(
                case((Business.rating.is_(None), 1), else_=0),
                Business.rating.desc(),
                Business.id,
            )
        )
        if region_id:
            stmt = stmt.where(Business.region_id == region_id)
        if limit:
            stmt = stmt.limit(limit)
        businesses = [_enrichment_payload(*row) for row in session.execute(stmt)]

    logger.info("Found %d businesses needing enrichment", len(businesses))
    if not businesses:
        return []

    def build(part: Sequence[Dict[str, Any]], number: int, total: int) -> Dict[str, Any]:
        return {
            "type": "enrichment",
            "batch": number,
            "total_batches": total,
            "count": len(part),
            "all_category_slugs": all_category_slugs,
            "businesses": list(part),
        }

    return write_batches(Path(output_dir) / ENRICH_DIR, businesses, batch_size, build)


def _enrichment_payload(
    business: Business,
    category: Optional[Category],
    city: Optional[City],
    region: Optional[Region],
    enrichment_hints: Optional[str],
) -> Dict[str, Any]:
    raw = business.raw_data or {}
    return {
        "id": business.id,
        "name": business.name,
        "category": category.name if category else "Unknown",
        "category_slug": category.slug if category else None,
        "city": city.name if city else "Unknown",
        "region": region.slug if region else None,
        "address": business.address,
        "phone": business.phone,
        "website": business.website,
        "rating": business.rating,
        "review_count": business.review_count or 0,
        "reviews_text": _reviews_text(raw),
        "place_types": list(raw.get("types") or [])[:5],
        "hints": business.hints or {},
        "enrichment_hints": enrichment_hints,
    }


def _reviews_text(raw: Dict[str, Any]) -> str:
    text = raw.get("reviews_text")
    if isinstance(text, str) and text:
        return text
    reviews = raw.get("reviews")
    if isinstance(reviews, list) and reviews:
        lines = []
        for review in reviews[:10]:
            lines.append(
                "[{lang}] {author} ({rating}*): {text}".format(
                    lang=review.get("language") or "unknown",
                    author=review.get("author") or "Anonymous",
                    rating=review.get("rating") or "?",
                    text=review.get("text") or "",
                )
            )
        return "\n---\n".join(lines)
    return "No reviews available."


# --------------------------------------------------------------------------- #
# Import                                                                      #
# --------------------------------------------------------------------------- #


def import_translations(db: Database, files: Sequence[Path], dry_run: bool = False) -> ImportSummary:
    """Upsert business translations; each file names its ``target_locale``."""
    summary = ImportSummary(dry_run=dry_run)
    for path in files:
        data = read_result_file(path)
        if data is None:
            continue
        locale = data.get("target_locale")
        entries = data.get("translations") or []
        logger.info("Reading %s: %d translations for locale %r", path, len(entries), locale)
        for entry in entries:
            summary.record(_apply_translation(db, entry, locale, dry_run))
    _log_upserts("translations", summary)
    return summary


def _apply_translation(db: Database, entry: Any, locale: Any, dry_run: bool) -> str:
    try:
        check_locale(locale)
        item = TranslationEntry.model_validate(entry)
    except (ScoutError, ValidationError) as exc:
        logger.warning("Invalid translation entry: %s", exc)
        return "failed"
    values = {
        "description": item.description,
        "summary": item.summary,
        "highlights": item.highlights,
        "warnings": item.warnings,
        "integration_tips": item.integration_tips,
        "cultural_notes": item.cultural_notes,
        "content_source": "ai_generated",
        "source_locale": "en",
    }
    try:
        with db.session() as session:
            if session.get(Business, item.business_id) is None:
                logger.warning("Translation for unknown business %s", item.business_id)
                return "failed"
            if dry_run:
                return "ok"
            row = session.scalar(
                select(BusinessTranslation).where(
                    BusinessTranslation.business_id == item.business_id,
                    BusinessTranslation.locale == locale,
                )
            )
            if row is None:
                session.add(BusinessTranslation(business_id=item.business_id, locale=locale, **values))
            else:
                for key, value in values.items():
                    setattr(row, key, value)
    except SQLAlchemyError as exc:
        logger.error("Failed to upsert translation for %s: %s", item.business_id, exc)
        return "failed"
    return "ok"


def import_city_translations(db: Database, files: Sequence[Path], dry_run: bool = False) -> ImportSummary:
    """Upsert city descriptions per locale."""
    summary = ImportSummary(dry_run=dry_run)
    for path in files:
        data = read_result_file(path)
        if data is None:
            continue
        locale = data.get("target_locale")
        entries = data.get("translations") or []
        logger.info("Reading %s: %d city translations for locale %r", path, len(entries), locale)
        for entry in entries:
            summary.record(_apply_city_translation(db, entry, locale, dry_run))
    _log_upserts("city translations", summary)
    return summary


def _apply_city_translation(db: Database, entry: Any, locale: Any, dry_run: bool) -> str:
    try:
        check_locale(locale)
        item = CityTranslationEntry.model_validate(entry)
    except (ScoutError, ValidationError) as exc:
        logger.warning("Invalid city translation entry: %s", exc)
        return "failed"
    try:
        with db.session() as session:
            if session.get(City, item.city_id) is None:
                logger.warning("Translation for unknown city %s", item.city_id)
                return "failed"
            if dry_run:
                return "ok"
            row = session.scalar(
                select(CityTranslation).where(
                    CityTranslation.city_id == item.city_id, CityTranslation.locale == locale
                )
            )
            if row is None:
                session.add(CityTranslation(city_id=item.city_id, locale=locale, description=item.description))
            else:
                row.description = item.description
    except SQLAlchemyError as exc:
        logger.error("Failed to upsert city translation for %s: %s", item.city_id, exc)
        return "failed"
    return "ok"


def import_enrichments(db: Database, files: Sequence[Path], dry_run: bool = False) -> ImportSummary:
    """Apply enrichment results to businesses whose summary is still empty.

    Applied entries count as ``ok``; businesses that already carry a summary
    or do not exist are ``skipped``; empty or malformed entries ``failed``.
    """
    summary = ImportSummary(dry_run=dry_run)
    summarized: Set[str] = set()
    for path in files:
        data = read_result_file(path)
        if data is None:
            continue
        entries = data.get("enrichments") or []
        logger.info("Reading %s: %d enrichments", path, len(entries))
        for entry in entries:
            summary.record(_apply_enrichment(db, entry, dry_run, summarized))
    prefix = "[DRY RUN] Would import" if dry_run else "Imported"
    logger.info(
        "%s %d enrichments (%d skipped, %d failed)", prefix, summary.ok, summary.skipped, summary.failed
    )
    return summary


def _apply_enrichment(db: Database, entry: Any, dry_run: bool, summarized: Set[str]) -> str:
    try:
        item = EnrichmentEntry.model_validate(entry)
    except ValidationError as exc:
        logger.warning("Invalid enrichment entry: %s", exc)
        return "failed"
    updates = item.updates()
    if not updates:
        logger.warning("No enrichment data for %s", item.business_id)
        return "failed"
    for key in ("languages_spoken", "languages_taught"):
        if key in updates:
            updates[key] = [normalize_language(lang) for lang in updates[key]]
    try:
        with db.session() as session:
            business = session.get(Business, item.business_id)
            if business is None or business.summary is not None or item.business_id in summarized:
                logger.info("Skipped %s (already enriched or not found)", item.business_id)
                return "skipped"
            if "summary" in updates:
                summarized.add(item.business_id)
            if dry_run:
                return "ok"
            for key, value in updates.items():
                setattr(business, key, value)
            business.status = BusinessStatus.ENRICHED.value
            business.last_enriched_at = datetime.now(timezone.utc)
    except SQLAlchemyError as exc:
        logger.error("Failed to enrich %s: %s", item.business_id, exc)
        return "failed"
    return "ok"


def _log_upserts(what: str, summary: ImportSummary) -> None:
    prefix = "[DRY RUN] Would import" if summary.dry_run else "Imported"
    logger.info("%s %d %s (%d failures)", prefix, summary.ok, what, summary.failed)


__all__ = [
    "ENRICHMENT_BATCH_SIZE",
    "ENRICH_DIR",
    "SUPPORTED_LOCALES",
    "TRANSLATION_BATCH_SIZE",
    "check_locale",
    "export_enrichments",
    "export_translations",
    "import_city_translations",
    "import_enrichments",
    "import_translations",
    "normalize_language",
    "translation_dir",
]

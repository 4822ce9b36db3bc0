# listing_scout/pipeline/sync.py
"""
Differential export of enrichment work as a re-applicable SQL script.

Businesses become ``UPDATE ... WHERE id = '<id>'`` statements, translations
become ``INSERT ... ON CONFLICT (business_id, locale) DO UPDATE``; applying
the script twice leaves the target in the same state.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from sqlalchemy import select

from listing_scout.db.database import Database
from listing_scout.db.models import Business, BusinessTranslation
from listing_scout.errors import ScoutError
from listing_scout.logger import logger

BUSINESS_FIELDS = (
    "description",
    "summary",
    "highlights",
    "warnings",
    "integration_tips",
    "cultural_notes",
    "service_specialties",
    "languages_spoken",
    "languages_taught",
    "speaks_english",
    "speaks_english_confidence",
    "newcomer_friendly_score",
    "local_gem_score",
    "quality_score",
    "category_fit_score",
    "suggested_category_slug",
    "sentiment_summary",
    "review_insights",
    "opening_hours",
    "status",
    "last_enriched_at",
    "updated_at",
)

TRANSLATION_FIELDS = (
    "business_id",
    "locale",
    "description",
    "summary",
    "highlights",
    "warnings",
    "integration_tips",
    "cultural_notes",
    "content_source",
    "source_locale",
)

TRANSLATION_KEY = ("business_id", "locale")


def parse_timestamp(text: str) -> datetime:
    """ISO 8601 to an aware UTC datetime; naive input is taken as UTC."""
    try:
        value = datetime.fromisoformat(text.strip())
    except ValueError as exc:
        raise ScoutError(f"Invalid timestamp: {text!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_since(
    since: Optional[str],
    all_rows: bool,
    timestamp_file: Union[str, Path],
) -> Optional[datetime]:
    """Lower bound for the export; None means every row.

    An explicit *since* wins over the saved timestamp; ``all_rows`` wins over
    both. Without either and without a saved timestamp every row is exported.
    """
    if all_rows:
        return None
    if since:
        return parse_timestamp(since)
    path = Path(timestamp_file)
    if path.is_file():
        return parse_timestamp(path.read_text(encoding="utf-8"))
    logger.warning("No sync timestamp at %s, exporting all rows", path)
    return None


def save_timestamp(timestamp_file: Union[str, Path], now: Optional[datetime] = None) -> str:
    """Store the sync point (default: current UTC time) and return it as ISO text."""
    path = Path(timestamp_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    path.write_text(stamp, encoding="utf-8")
    logger.info("Saved sync timestamp: %s", stamp)
    return stamp


def export_changes(db: Database, since: Optional[datetime] = None, all_rows: bool = False) -> str:
    """SQL script covering businesses with a summary and translations changed after *since*."""
    since = None if all_rows else since
    with db.session() as session:
        business_stmt = select(Business).where(Business.summary.is_not(None)).order_by(Business.id)
        translation_stmt = select(BusinessTranslation).order_by(
            BusinessTranslation.business_id, BusinessTranslation.locale
        )
        if since is not None:
            business_stmt = business_stmt.where(Business.updated_at > since)
            translation_stmt = translation_stmt.where(BusinessTranslation.updated_at > since)
        businesses = list(session.scalars(business_stmt))
        translations = list(session.scalars(translation_stmt))

    lines: List[str] = [
        "-- Listing sync export",
        f"-- Generated: {datetime.now(timezone.utc).isoformat()}",
        f"-- Since: {since.isoformat() if since else 'all time'}",
        f"-- Businesses: {len(businesses)}",
        f"-- Translations: {len(translations)}",
        "",
        "BEGIN;",
        "",
    ]
    lines.extend(business_update_sql(b) for b in businesses)
    if translations:
        lines.append("")
    lines.extend(translation_upsert_sql(t) for t in translations)
    lines.extend(["", "COMMIT;", ""])
    logger.info("Sync export: %d businesses, %d translations", len(businesses), len(translations))
    return "\n".join(lines)


def business_update_sql(business: Business) -> str:
    sets = ",\n".join(f"  {name} = {sql_value(getattr(business, name))}" for name in BUSINESS_FIELDS)
    return f"UPDATE businesses SET\n{sets}\nWHERE id = {sql_literal(business.id)};\n"


def translation_upsert_sql(translation: BusinessTranslation) -> str:
    columns = ", ".join(TRANSLATION_FIELDS)
    values = ", ".join(sql_value(getattr(translation, name)) for name in TRANSLATION_FIELDS)
    updates = ", ".join(
        f"{name} = EXCLUDED.{name}" for name in _without(TRANSLATION_FIELDS, TRANSLATION_KEY)
    )
    return (
        f"INSERT INTO business_translations ({columns})\n"
        f"VALUES ({values})\n"
        f"ON CONFLICT ({', '.join(TRANSLATION_KEY)}) DO UPDATE SET {updates};\n"
    )


def sql_value(value: Any) -> str:
    if value is None:
        return "NULL"
    if value is True:
        return "TRUE"
    if value is False:
        return "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return sql_literal(value.isoformat())
    if isinstance(value, (list, dict)):
        return sql_literal(json.dumps(value, ensure_ascii=False, sort_keys=True))
    return sql_literal(str(value))


def sql_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _without(fields: Iterable[str], excluded: Iterable[str]) -> List[str]:
    skip = set(excluded)
    return [f for f in fields if f not in skip]


__all__ = [
    "BUSINESS_FIELDS",
    "TRANSLATION_FIELDS",
    "business_update_sql",
    "export_changes",
    "parse_timestamp",
    "resolve_since",
    "save_timestamp",
    "sql_literal",
    "sql_value",
    "translation_upsert_sql",
]

# listing_scout/pipeline/discovery.py
"""
Discovery hand-off: crawled pages out, extracted businesses back in.

``export_crawl`` batches the pages of one crawl together with the context
the extraction step needs (target city/category, every category slug, the
region's cities). ``import_results`` reads the ``*_result.json`` files that
step produces and creates one pending business per entry, create-or-skip.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import select

from listing_scout.crawler.storage import CrawlStore
from listing_scout.db import repository
from listing_scout.db.database import Database
from listing_scout.db.models import City
from listing_scout.errors import CrawlNotFoundError
from listing_scout.logger import logger
from listing_scout.models import CandidateBusiness, ScrapeSource
from listing_scout.pipeline.batches import ImportSummary, read_result_file, write_batches
from listing_scout.pipeline.schemas import DiscoveredBusiness
from listing_scout.utils import slugify

BATCH_TYPE = "discovery_extraction"
DEFAULT_BATCH_SIZE = 5


def export_crawl(
    store: CrawlStore,
    db: Database,
    crawl_id: str,
    batch_dir: Union[str, Path],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> List[Path]:
    """Write the crawl's pages as batches under ``<batch_dir>/<crawl_id>/``."""
    if not store.exists(crawl_id):
        raise CrawlNotFoundError(f"Crawl directory not found: {store.crawl_path(crawl_id)}")
    metadata = store.read_metadata(crawl_id)
    pages = store.read_pages(crawl_id)
    logger.info("[%s] Found %d crawled pages", crawl_id, len(pages))
    if not pages:
        logger.info("[%s] Nothing to export", crawl_id)
        return []

    region_id = metadata.get("region_id")
    with db.session() as session:
        context = {
            "region_id": region_id,
            "target_city_id": metadata.get("city_id"),
            "target_category_id": metadata.get("category_id"),
            "all_category_slugs": repository.category_slugs(session),
            "all_cities": _cities(session, region_id),
        }

    def build(part: Sequence[Dict[str, Any]], number: int, total: int) -> Dict[str, Any]:
        return {
            "type": BATCH_TYPE,
            "crawl_id": crawl_id,
            "batch": number,
            "total_batches": total,
            "count": len(part),
            "context": context,
            "pages": list(part),
        }

    written = write_batches(Path(batch_dir) / crawl_id, pages, batch_size, build)
    logger.info("[%s] Exported %d pages in %d batches", crawl_id, len(pages), len(written))
    return written


def _cities(session, region_id: Optional[str]) -> List[Dict[str, str]]:
    stmt = select(City.slug, City.name).order_by(City.name)
    if region_id:
        stmt = stmt.where(City.region_id == region_id)
    return [{"slug": slug, "name": name} for slug, name in session.execute(stmt)]


def discovery_external_id(city_slug: Optional[str], name: str) -> str:
    """Fallback dedup key for listing-site records, which have no natural id."""
    return f"discovery:{city_slug or '-'}:{slugify(name)}"


def import_results(db: Database, files: Sequence[Path], dry_run: bool = False) -> ImportSummary:
    """Create businesses from extraction result files.

    The crawl id is the name of the directory holding each file. When a job
    record exists for it, a real run marks it ``processing`` and finally
    ``completed`` with its counts. A dry run reports the same counts and
    writes nothing.
    """
    with db.session() as session:
        cities = _city_lookup(session)
        categories = repository.category_ids_by_slug(session)
    logger.info(
        "Processing %d discovery result file(s); known cities: %d, categories: %d%s",
        len(files), len(cities), len(categories), " [DRY RUN]" if dry_run else "",
    )

    summary = ImportSummary(dry_run=dry_run)
    per_crawl: Dict[str, ImportSummary] = defaultdict(ImportSummary)
    seen: Set[str] = set()
    for path in files:
        data = read_result_file(path)
        if data is None:
            continue
        crawl_id = path.parent.name
        entries = data.get("businesses") or []
        logger.info("Reading %s: %d businesses (crawl: %s)", path, len(entries), crawl_id)
        if not dry_run and crawl_id not in per_crawl and repository.mark_processing(db, crawl_id):
            logger.debug("[%s] Crawl record moved to processing", crawl_id)
        file_summary = per_crawl[crawl_id]
        for entry in entries:
            outcome = _import_one(db, entry, crawl_id, cities, categories, seen, dry_run)
            file_summary.record(outcome)
            summary.record(outcome)

    if not dry_run:
        for crawl_id, counts in per_crawl.items():
            repository.mark_completed(db, crawl_id, counts.created, counts.skipped, counts.failed)

    prefix = "[DRY RUN] Would create" if dry_run else "Created"
    logger.info(
        "%s %d businesses (%d skipped, %d failed)", prefix, summary.created, summary.skipped, summary.failed
    )
    return summary


def _import_one(
    db: Database,
    entry: Any,
    crawl_id: str,
    cities: Dict[str, Tuple[str, Optional[str]]],
    categories: Dict[str, str],
    seen: Set[str],
    dry_run: bool,
) -> str:
    try:
        found = DiscoveredBusiness.model_validate(entry)
    except ValidationError as exc:
        logger.warning("Invalid business entry in crawl %s: %s", crawl_id, exc.errors()[0].get("msg"))
        return repository.FAILED
    if not found.name:
        logger.warning("Business with no name in crawl %s", crawl_id)
        return repository.FAILED

    external_id = discovery_external_id(found.city_slug, found.name)
    if external_id in seen:
        logger.debug("Duplicate in this run, skipping: %s", found.name)
        return repository.SKIPPED
    seen.add(external_id)

    city_id, region_id = cities.get(found.city_slug or "", (None, None))
    candidate = CandidateBusiness(
        name=found.name,
        source=ScrapeSource.DISCOVERY_CRAWL,
        external_id=external_id,
        address=found.address,
        phone=found.phone,
        website=found.website,
        email=found.email,
        description=found.description,
        category_slug=found.category_slug,
        raw_data={
            "source_url": found.source_url,
            "crawl_id": crawl_id,
            "discovered_at": datetime.now(timezone.utc).isoformat(),
        },
    )
    outcome = repository.create_business(
        db,
        candidate,
        city_id=city_id,
        category_id=categories.get(found.category_slug or ""),
        region_id=region_id,
        dry_run=dry_run,
    )
    if outcome == repository.CREATED and not dry_run:
        logger.info("Created: %s (%s/%s)", found.name, found.city_slug, found.category_slug)
    return outcome


def _city_lookup(session) -> Dict[str, Tuple[str, Optional[str]]]:
    rows = session.execute(select(City.slug, City.id, City.region_id))
    return {slug: (city_id, region_id) for slug, city_id, region_id in rows}


__all__ = ["BATCH_TYPE", "DEFAULT_BATCH_SIZE", "discovery_external_id", "export_crawl", "import_results"]

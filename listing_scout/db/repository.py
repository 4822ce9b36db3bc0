"""
Store operations shared by the geodata import, the crawl engine, the
completion monitor and the batch pipeline.

Every write opens its own transaction, so one entity is applied completely
or not at all and a failure never blocks the next entity.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from listing_scout.crawler.models import CrawlJob
from listing_scout.db.database import Database
from listing_scout.db.models import Business, Category, City, DiscoveryCrawl, Region
from listing_scout.errors import UnknownSlugError
from listing_scout.logger import logger
from listing_scout.models import CandidateBusiness, CrawlStatus
from listing_scout.utils import slugify

CREATED = "created"
SKIPPED = "skipped"
FAILED = "failed"


# --------------------------------------------------------------------------- #
# Businesses                                                                  #
# --------------------------------------------------------------------------- #


def business_exists(session: Session, external_id: str) -> bool:
    stmt = select(Business.id).where(Business.external_id == external_id).limit(1)
    return session.execute(stmt).first() is not None


def create_business(
    db: Database,
    candidate: CandidateBusiness,
    *,
    city_id: Optional[str] = None,
    category_id: Optional[str] = None,
    region_id: Optional[str] = None,
    dry_run: bool = False,
    invalid: str = FAILED,
) -> str:
    """Create-or-skip one business; returns ``created``, ``skipped`` or ``failed``.

    A candidate without a name, or whose name yields no slug, is rejected
    with the *invalid* outcome. A candidate whose ``external_id`` is already
    stored is skipped and the stored row is left untouched. With ``dry_run``
    the checks run but nothing is written.
    """
    if not candidate.name:
        logger.warning("Business without a name rejected (external id %s)", candidate.external_id)
        return invalid
    slug = slugify(candidate.name)
    if not slug:
        logger.warning("Business name %r yields an empty slug", candidate.name)
        return invalid

    try:
        if candidate.external_id:
            with db.session() as session:
                if business_exists(session, candidate.external_id):
                    logger.debug("Duplicate business skipped: %s", candidate.external_id)
                    return SKIPPED
        if dry_run:
            return CREATED
        with db.session() as session:
            session.add(_business_from_candidate(candidate, slug, city_id, category_id, region_id))
    except IntegrityError as exc:
        if _is_unique_violation(exc):
            logger.debug("Duplicate business skipped on insert: %s", candidate.external_id)
            return SKIPPED
        logger.warning("Failed to create business %r: %s", candidate.name, exc.orig)
        return FAILED
    except SQLAlchemyError as exc:
        logger.warning("Failed to create business %r: %s", candidate.name, exc)
        return FAILED
    return CREATED


def _business_from_candidate(
    candidate: CandidateBusiness,
    slug: str,
    city_id: Optional[str],
    category_id: Optional[str],
    region_id: Optional[str],
) -> Business:
    return Business(
        name=candidate.name,
        slug=slug,
        external_id=candidate.external_id,
        source=candidate.source.value,
        status=candidate.status.value,
        address=candidate.address,
        phone=candidate.phone,
        website=candidate.website,
        email=candidate.email,
        latitude=candidate.latitude,
        longitude=candidate.longitude,
        opening_hours=candidate.opening_hours,
        google_maps_url=candidate.google_maps_url,
        description=candidate.description,
        raw_data=candidate.raw_data or None,
        hints=candidate.hints or None,
        city_id=city_id,
        category_id=category_id,
        region_id=region_id,
    )


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate" in message


# --------------------------------------------------------------------------- #
# Slug lookups                                                                #
# --------------------------------------------------------------------------- #


def get_city_by_slug(session: Session, slug: str) -> City:
    city = session.scalar(select(City).where(City.slug == slug))
    if city is None:
        raise UnknownSlugError("city", slug)
    return city


def get_category_by_slug(session: Session, slug: str) -> Category:
    category = session.scalar(select(Category).where(Category.slug == slug))
    if category is None:
        raise UnknownSlugError("category", slug)
    return category


def get_region_by_slug(session: Session, slug: str) -> Region:
    region = session.scalar(select(Region).where(Region.slug == slug))
    if region is None:
        raise UnknownSlugError("region", slug)
    return region


def category_ids_by_slug(session: Session) -> Dict[str, str]:
    return dict(session.execute(select(Category.slug, Category.id)).all())


def category_slugs(session: Session) -> List[str]:
    return list(session.scalars(select(Category.slug).order_by(Category.slug)))


# --------------------------------------------------------------------------- #
# Crawl job records                                                           #
# --------------------------------------------------------------------------- #


def create_crawl(db: Database, job: CrawlJob) -> DiscoveryCrawl:
    with db.session() as session:
        crawl = DiscoveryCrawl(
            crawl_id=job.crawl_id,
            status=CrawlStatus.CRAWLING.value,
            seed_urls=list(job.seed_urls),
            max_pages=job.max_pages,
            pages_crawled=0,
            city_id=job.city_id,
            category_id=job.category_id,
            region_id=job.region_id,
            started_at=job.started_at,
        )
        session.add(crawl)
    logger.debug("[%s] Crawl record created", job.crawl_id)
    return crawl


def get_crawl(db: Database, crawl_id: str) -> Optional[DiscoveryCrawl]:
    with db.session() as session:
        return session.scalar(select(DiscoveryCrawl).where(DiscoveryCrawl.crawl_id == crawl_id))


def update_pages_crawled(db: Database, crawl_id: str, pages: int) -> bool:
    """Store a new page count; False when no record exists."""
    with db.session() as session:
        crawl = _crawl_for_update(session, crawl_id)
        if crawl is None:
            return False
        if crawl.pages_crawled != pages:
            crawl.pages_crawled = pages
        return True


def mark_crawled(db: Database, crawl_id: str, pages: int, *, reopen: bool = False) -> bool:
    """Move a crawling record to ``crawled`` with its final page count.

    Records that already left the crawling state keep their status, except
    that ``reopen`` also moves an interrupted ``processing`` record back.
    Returns False when no record exists.
    """
    movable = {CrawlStatus.CRAWLING.value}
    if reopen:
        movable.add(CrawlStatus.PROCESSING.value)
    with db.session() as session:
        crawl = _crawl_for_update(session, crawl_id)
        if crawl is None:
            return False
        if crawl.status in movable:
            crawl.status = CrawlStatus.CRAWLED.value
            crawl.pages_crawled = pages
            crawl.crawl_finished_at = _utcnow()
        return True


def mark_processing(db: Database, crawl_id: str) -> bool:
    with db.session() as session:
        crawl = _crawl_for_update(session, crawl_id)
        if crawl is None:
            return False
        crawl.status = CrawlStatus.PROCESSING.value
        crawl.processing_started_at = _utcnow()
        return True


def mark_completed(db: Database, crawl_id: str, created: int, skipped: int, failed: int) -> bool:
    with db.session() as session:
        crawl = _crawl_for_update(session, crawl_id)
        if crawl is None:
            return False
        crawl.status = CrawlStatus.COMPLETED.value
        crawl.businesses_created = created
        crawl.businesses_skipped = skipped
        crawl.businesses_failed = failed
        crawl.completed_at = _utcnow()
        return True


def mark_failed(db: Database, crawl_id: str, error: str) -> bool:
    with db.session() as session:
        crawl = _crawl_for_update(session, crawl_id)
        if crawl is None:
            return False
        crawl.status = CrawlStatus.FAILED.value
        crawl.error = error
        return True


def find_incomplete_crawls(db: Database) -> List[DiscoveryCrawl]:
    """Crawls a previous process left in ``crawling`` or ``processing``."""
    pending = (CrawlStatus.CRAWLING.value, CrawlStatus.PROCESSING.value)
    with db.session() as session:
        stmt = select(DiscoveryCrawl).where(DiscoveryCrawl.status.in_(pending)).order_by(DiscoveryCrawl.id)
        return list(session.scalars(stmt))


def _crawl_for_update(session: Session, crawl_id: str) -> Optional[DiscoveryCrawl]:
    return session.scalar(select(DiscoveryCrawl).where(DiscoveryCrawl.crawl_id == crawl_id))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = [
    "CREATED",
    "SKIPPED",
    "FAILED",
    "business_exists",
    "create_business",
    "get_city_by_slug",
    "get_category_by_slug",
    "get_region_by_slug",
    "category_ids_by_slug",
    "category_slugs",
    "create_crawl",
    "get_crawl",
    "update_pages_crawled",
    "mark_crawled",
    "mark_processing",
    "mark_completed",
    "mark_failed",
    "find_incomplete_crawls",
]

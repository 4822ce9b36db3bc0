# File: tests/test_discovery_pipeline.py
from __future__ import annotations

import json
from pathlib import Path

import pytest
from sqlalchemy import func, select

from listing_scout.crawler.models import CrawledPage, CrawlJob
from listing_scout.db import repository
from listing_scout.db.models import Business
from listing_scout.errors import CrawlNotFoundError, MissingInputError
from listing_scout.models import CandidateBusiness, CrawlStatus, ScrapeSource
from listing_scout.pipeline.batches import ImportSummary, chunk, resolve_result_files
from listing_scout.pipeline.discovery import discovery_external_id, export_crawl, import_results

CRAWL_ID = "abc123"


def _crawl(db, store, seed_ids, pages: int) -> None:
    job = CrawlJob(
        crawl_id=CRAWL_ID,
        seed_urls=["https://example.nl/"],
        allowed_hosts=["example.nl"],
        max_pages=50,
        city_id=seed_ids.city_id,
        category_id=seed_ids.restaurants_id,
        region_id=seed_ids.region_id,
    )
    store.write_metadata(job)
    repository.create_crawl(db, job)
    for n in range(1, pages + 1):
        page = CrawledPage(
            url=f"https://example.nl/{n}", title=f"Page {n}", meta_description=None,
            content="y" * 70, headings=[f"H{n}"], language="nl", content_length=70,
        )
        store.write_page(CRAWL_ID, n, page)
    repository.mark_crawled(db, CRAWL_ID, pages)


def _result_file(batch_dir: Path, businesses, name: str = "batch_001_result.json") -> Path:
    directory = batch_dir / CRAWL_ID
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(json.dumps({"businesses": businesses}), encoding="utf-8")
    return path


BUSINESSES = [
    {
        "name": " Café de Jaren ",
        "address": "Nieuwe Doelenstraat 20",
        "city_slug": "amsterdam",
        "category_slug": "cafes",
        "source_url": "https://example.nl/1",
    },
    {"name": "Broodje Bert", "city_slug": "utrecht", "category_slug": "restaurants"},
    {"name": "Broodje Bert", "city_slug": "utrecht", "category_slug": "restaurants"},
    {"name": "", "city_slug": "amsterdam"},
    {"name": "Nowhere Diner", "city_slug": "atlantis", "category_slug": "unknown"},
    "not an object",
]


# --------------------------------------------------------------------------- #
#                                   Export                                    #
# --------------------------------------------------------------------------- #


def test_export_writes_numbered_batches_with_context(db, store, seed_ids, tmp_path):
    _crawl(db, store, seed_ids, pages=7)
    written = export_crawl(store, db, CRAWL_ID, tmp_path / "batches", batch_size=3)

    assert [p.name for p in written] == ["batch_001.json", "batch_002.json", "batch_003.json"]
    assert all(p.parent == tmp_path / "batches" / CRAWL_ID for p in written)

    first = json.loads(written[0].read_text(encoding="utf-8"))
    last = json.loads(written[-1].read_text(encoding="utf-8"))
    assert first["type"] == "discovery_extraction"
    assert first["crawl_id"] == CRAWL_ID
    assert (first["batch"], first["total_batches"], first["count"]) == (1, 3, 3)
    assert last["count"] == 1
    assert [p["url"] for p in first["pages"]] == [f"https://example.nl/{n}" for n in (1, 2, 3)]

    context = first["context"]
    assert context["target_city_id"] == seed_ids.city_id
    assert context["target_category_id"] == seed_ids.restaurants_id
    assert context["region_id"] == seed_ids.region_id
    assert context["all_category_slugs"] == ["cafes", "restaurants"]
    assert context["all_cities"] == [
        {"slug": "amsterdam", "name": "Amsterdam"},
        {"slug": "utrecht", "name": "Utrecht"},
    ]


def test_export_replaces_previous_batches(db, store, seed_ids, tmp_path):
    _crawl(db, store, seed_ids, pages=4)
    export_crawl(store, db, CRAWL_ID, tmp_path, batch_size=1)
    written = export_crawl(store, db, CRAWL_ID, tmp_path, batch_size=4)
    assert sorted(p.name for p in (tmp_path / CRAWL_ID).iterdir()) == ["batch_001.json"]
    assert len(written) == 1


def test_export_unknown_crawl(db, store, tmp_path):
    with pytest.raises(CrawlNotFoundError):
        export_crawl(store, db, "nope", tmp_path)


def test_export_crawl_without_pages(db, store, seed_ids, tmp_path):
    _crawl(db, store, seed_ids, pages=0)
    assert export_crawl(store, db, CRAWL_ID, tmp_path) == []


# --------------------------------------------------------------------------- #
#                                   Import                                    #
# --------------------------------------------------------------------------- #


def test_import_counts_and_creates_pending_businesses(db, store, seed_ids, tmp_path):
    _crawl(db, store, seed_ids, pages=1)
    path = _result_file(tmp_path, BUSINESSES)

    summary = import_results(db, [path])

    assert (summary.created, summary.skipped, summary.failed) == (3, 1, 2)
    with db.session() as session:
        jaren = session.scalar(
            select(Business).where(Business.external_id == discovery_external_id("amsterdam", "Café de Jaren"))
        )
        assert jaren.name == "Café de Jaren"
        assert jaren.slug == "cafe-de-jaren"
        assert jaren.status == "pending"
        assert jaren.source == ScrapeSource.DISCOVERY_CRAWL.value
        assert jaren.city_id == seed_ids.city_id
        assert jaren.region_id == seed_ids.region_id
        assert jaren.category_id == seed_ids.cafes_id
        assert jaren.raw_data["crawl_id"] == CRAWL_ID
        assert jaren.raw_data["source_url"] == "https://example.nl/1"

        nowhere = session.scalar(select(Business).where(Business.name == "Nowhere Diner"))
        assert nowhere.city_id is None
        assert nowhere.category_id is None

    record = repository.get_crawl(db, CRAWL_ID)
    assert record.status == CrawlStatus.COMPLETED.value
    assert (record.businesses_created, record.businesses_skipped, record.businesses_failed) == (3, 1, 2)
    assert record.completed_at is not None


def test_reimport_skips_everything(db, store, seed_ids, tmp_path):
    _crawl(db, store, seed_ids, pages=1)
    path = _result_file(tmp_path, BUSINESSES)
    import_results(db, [path])

    again = import_results(db, [path])

    assert (again.created, again.skipped, again.failed) == (0, 4, 2)
    with db.session() as session:
        assert session.scalar(select(func.count()).select_from(Business)) == 3


def test_dry_run_matches_real_run_and_writes_nothing(db, store, seed_ids, tmp_path):
    _crawl(db, store, seed_ids, pages=1)
    path = _result_file(tmp_path, BUSINESSES)

    dry = import_results(db, [path], dry_run=True)

    assert dry.dry_run
    assert (dry.created, dry.skipped, dry.failed) == (3, 1, 2)
    with db.session() as session:
        assert session.scalar(select(func.count()).select_from(Business)) == 0
    assert repository.get_crawl(db, CRAWL_ID).status == CrawlStatus.CRAWLED.value

    real = import_results(db, [path])
    assert (real.created, real.skipped, real.failed) == (dry.created, dry.skipped, dry.failed)


def test_import_without_crawl_record(db, seed_ids, tmp_path):
    path = _result_file(tmp_path, BUSINESSES[:1])
    summary = import_results(db, [path])
    assert summary.created == 1
    assert repository.get_crawl(db, CRAWL_ID) is None


def test_unreadable_result_file_is_ignored(db, seed_ids, tmp_path):
    directory = tmp_path / CRAWL_ID
    directory.mkdir()
    bad = directory / "batch_001_result.json"
    bad.write_text("{ not json", encoding="utf-8")
    good = _result_file(tmp_path, BUSINESSES[:1], "batch_002_result.json")
    summary = import_results(db, [bad, good])
    assert summary.created == 1


def test_create_business_rejects_unsluggable_name(db):
    candidate = CandidateBusiness(name="???", source=ScrapeSource.MANUAL, external_id="manual:1")
    assert repository.create_business(db, candidate) == repository.FAILED
    assert repository.create_business(db, candidate, invalid=repository.SKIPPED) == repository.SKIPPED


# --------------------------------------------------------------------------- #
#                                Batch helpers                                #
# --------------------------------------------------------------------------- #


def test_resolve_result_files(tmp_path):
    (tmp_path / "batch_002_result.json").write_text("{}", encoding="utf-8")
    (tmp_path / "batch_001_result.json").write_text("{}", encoding="utf-8")
    (tmp_path / "batch_001.json").write_text("{}", encoding="utf-8")

    files = resolve_result_files(tmp_path)
    assert [p.name for p in files] == ["batch_001_result.json", "batch_002_result.json"]
    assert resolve_result_files(file=tmp_path / "batch_001.json") == [tmp_path / "batch_001.json"]

    with pytest.raises(MissingInputError):
        resolve_result_files()
    with pytest.raises(MissingInputError):
        resolve_result_files(tmp_path / "missing")
    with pytest.raises(MissingInputError):
        resolve_result_files(file=tmp_path / "missing.json")
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(MissingInputError):
        resolve_result_files(empty)


def test_chunk_and_summary():
    assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        chunk([1], 0)

    summary = ImportSummary()
    for outcome in ("created", "created", "skipped", "failed"):
        summary.record(outcome)
    other = ImportSummary(ok=2)
    summary.merge(other)
    assert summary.total == 6
    assert summary.to_dict()["created"] == 2
    with pytest.raises(ValueError):
        summary.record("exploded")

# === FILE: listing_scout/cli.py ===
#!/usr/bin/env python3
"""
Command line entry point of ListingScout.

Commands:
  init-db              Create the database tables
  config               Show the effective configuration
  crawl                Run a discovery crawl and record its pages
  resume               Settle crawls an earlier process left unfinished
  export               Write a crawl's pages as extraction batches
  import               Create businesses from extraction results
  content-export       Write translation or enrichment batches
  content-import       Apply translation, city translation or enrichment results
  sync-export          Print changed enrichment work as an SQL script
  sync-save-timestamp  Remember now as the last sync point
  overpass-search      Search OpenStreetMap features of one category in a bbox
  overpass-import      Import every mapped business of a city
  report               Save a JSON and/or HTML report of one crawl

Common options:
  --config PATH       YAML/JSON config (default: configs/default.yaml when present)
  --log-level LEVEL   Logging level (DEBUG, INFO, ...)
  --log-file PATH     Log file (stdout only when omitted)
  --log-format FORMAT Logging format string

Example:
  listing-scout crawl --url https://example.nl/directory --city amsterdam --max-pages 50
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from pydantic import ValidationError

from listing_scout import __version__
from listing_scout.config import ScoutConfig, load_config
from listing_scout.crawler.storage import CrawlStore
from listing_scout.db import repository
from listing_scout.db.database import Database
from listing_scout.engine import CrawlEngine
from listing_scout.errors import MissingInputError, ScoutError
from listing_scout.geodata.overpass import OverpassClient
from listing_scout.logger import init_logging, logger
from listing_scout.monitor import CompletionMonitor, recover_incomplete_crawls
from listing_scout.pipeline import content, discovery, sync
from listing_scout.pipeline.batches import ImportSummary, resolve_result_files
from listing_scout.report import build_report, render_html, render_json
from listing_scout.utils import read_seed_file

CONTEXT_SETTINGS = dict(help_option_names=["--help"])


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


def _config(ctx) -> ScoutConfig:
    return ctx.obj['config']


def _database(ctx) -> Database:
    db = ctx.obj.get('db')
    if db is None:
        db = Database(_config(ctx).database_url)
        db.create_all()
        ctx.obj['db'] = db
        ctx.call_on_close(db.dispose)
    return db


def _echo_summary(label: str, summary: ImportSummary, upsert: bool = False) -> None:
    prefix = '[DRY RUN] ' if summary.dry_run else ''
    if upsert:
        click.echo(f'{prefix}{label}: {summary.ok} saved, {summary.skipped} skipped, {summary.failed} failed')
    else:
        click.echo(
            f'{prefix}{label}: {summary.created} created, {summary.skipped} skipped, {summary.failed} failed'
        )


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='ListingScout, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Path to the YAML/JSON configuration file.'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Logging level'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Log file (stdout only when omitted)'
)
@click.option(
    '--log-format', 'log_format',
    default='%(asctime)s %(levelname)s %(message)s',
    show_default=True,
    help='Logging format string'
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, log_format):
    """ListingScout command group."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    try:
        cfg = load_config(config_path)
    except (OSError, ValueError, TypeError, ValidationError) as e:
        print_error(f'Failed to load configuration: {e}')
    ctx.ensure_object(dict)
    ctx.obj['config'] = cfg


@cli.command('init-db', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def init_db(ctx):
    """Create all database tables."""
    _database(ctx)
    click.echo(f'Database ready: {_config(ctx).database_url}')


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Show the effective configuration as JSON."""
    click.echo(_config(ctx).model_dump_json(indent=2))


# --------------------------------------------------------------------------- #
# Crawling                                                                    #
# --------------------------------------------------------------------------- #


def _resolve_targets(
    db: Database, city: Optional[str], category: Optional[str], region: Optional[str]
) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    city_id = category_id = region_id = None
    with db.session() as session:
        if city:
            found = repository.get_city_by_slug(session, city)
            city_id, region_id = found.id, found.region_id
        if category:
            category_id = repository.get_category_by_slug(session, category).id
        if region:
            region_id = repository.get_region_by_slug(session, region).id
    return city_id, category_id, region_id


@cli.command('crawl', context_settings=CONTEXT_SETTINGS)
@click.option('--url', '-u', 'urls', multiple=True, help='Seed URL (repeatable)')
@click.option(
    '--seed-file', 'seed_file',
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help='File with one seed URL per line, or an XML sitemap'
)
@click.option('--city', default=None, help='Target city slug')
@click.option('--category', default=None, help='Target category slug')
@click.option('--region', default=None, help='Region slug (defaults to the city\'s region)')
@click.option('--max-pages', 'max_pages', type=int, default=None, help='Override crawl.max_pages')
@click.pass_context
def crawl(ctx, urls, seed_file, city, category, region, max_pages):
    """Crawl from the seed URLs and keep every page with content."""
    cfg = _config(ctx)
    try:
        seeds = list(urls)
        if seed_file is not None:
            seeds.extend(read_seed_file(seed_file))
        if not seeds:
            raise MissingInputError('Provide --url or --seed-file')
        db = _database(ctx)
        city_id, category_id, region_id = _resolve_targets(db, city, category, region)

        store = CrawlStore(cfg.paths.crawl_dir)
        engine = CrawlEngine(cfg.crawl, store, db)
        monitor = CompletionMonitor(engine, store, db, cfg.monitor.poll_interval)
        crawl_id = engine.start(
            seeds,
            max_pages=max_pages,
            city_id=city_id,
            category_id=category_id,
            region_id=region_id,
        )
        click.echo(f'Crawl started: {crawl_id}')
        monitor.watch(crawl_id)
        try:
            engine.wait(crawl_id)
            monitor.poll()
        finally:
            monitor.stop()
    except (ScoutError, FileNotFoundError) as e:
        print_error(str(e))

    click.echo(f'Crawl {crawl_id} finished: {store.count_pages(crawl_id)} pages in {store.crawl_path(crawl_id)}')
    click.echo(f'Next: listing-scout export --crawl-id {crawl_id}')


@cli.command('resume', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def resume(ctx):
    """Settle crawls left in 'crawling' or 'processing' by an interrupted process."""
    store = CrawlStore(_config(ctx).paths.crawl_dir)
    recovered = recover_incomplete_crawls(_database(ctx), store)
    if not recovered:
        click.echo('No crawls ready for export.')
        return
    for crawl_id in recovered:
        click.echo(f'Ready for export: {crawl_id}')


# --------------------------------------------------------------------------- #
# Discovery batches                                                           #
# --------------------------------------------------------------------------- #


@cli.command('export', context_settings=CONTEXT_SETTINGS)
@click.option('--crawl-id', 'crawl_id', required=True, help='Crawl to export')
@click.option('--batch-size', 'batch_size', type=click.IntRange(min=1), default=discovery.DEFAULT_BATCH_SIZE,
              show_default=True, help='Pages per batch')
@click.option('--output-dir', 'output_dir', default=None, type=click.Path(file_okay=False, path_type=Path),
              help='Batch root (default: paths.batch_dir)')
@click.pass_context
def export_cmd(ctx, crawl_id, batch_size, output_dir):
    """Write the pages of one crawl as extraction batches."""
    cfg = _config(ctx)
    store = CrawlStore(cfg.paths.crawl_dir)
    try:
        written = discovery.export_crawl(
            store, _database(ctx), crawl_id, output_dir or cfg.paths.batch_dir, batch_size
        )
    except ScoutError as e:
        print_error(str(e))
    if not written:
        click.echo('Nothing to export!')
        return
    click.echo(f'Exported {len(written)} batches to {written[0].parent}/')


@cli.command('import', context_settings=CONTEXT_SETTINGS)
@click.option('--dir', 'directory', default=None, type=click.Path(path_type=Path),
              help='Process all *_result.json files in a directory')
@click.option('--file', 'file', default=None, type=click.Path(path_type=Path),
              help='Process a single result file')
@click.option('--dry-run', is_flag=True, help='Count without writing to the database')
@click.pass_context
def import_cmd(ctx, directory, file, dry_run):
    """Create businesses from extraction result files."""
    try:
        files = resolve_result_files(directory, file)
    except ScoutError as e:
        print_error(str(e))
    summary = discovery.import_results(_database(ctx), files, dry_run=dry_run)
    _echo_summary('Businesses', summary)


# --------------------------------------------------------------------------- #
# Content batches                                                             #
# --------------------------------------------------------------------------- #


@cli.command('content-export', context_settings=CONTEXT_SETTINGS)
@click.argument('kind', type=click.Choice(['translations', 'enrichments']))
@click.option('--locale', default=None, type=click.Choice(sorted(content.SUPPORTED_LOCALES)),
              help='Target locale (translations only)')
@click.option('--limit', type=click.IntRange(min=1), default=None, help='Max businesses in total')
@click.option('--batch-size', 'batch_size', type=click.IntRange(min=1), default=None,
              help='Businesses per file (default: 25 translations, 10 enrichments)')
@click.option('--region', default=None, help='Region slug filter')
@click.option('--output-dir', 'output_dir', default=None, type=click.Path(file_okay=False, path_type=Path),
              help='Batch root (default: paths.content_dir)')
@click.pass_context
def content_export(ctx, kind, locale, limit, batch_size, region, output_dir):
    """Write translation or enrichment batches."""
    cfg = _config(ctx)
    output_dir = output_dir or cfg.paths.content_dir
    try:
        if kind == 'translations':
            if locale is None:
                raise MissingInputError('--locale is required for translations')
            written = content.export_translations(
                _database(ctx), locale, output_dir, region_slug=region, limit=limit,
                batch_size=batch_size or content.TRANSLATION_BATCH_SIZE,
            )
        else:
            written = content.export_enrichments(
                _database(ctx), output_dir, region_slug=region, limit=limit,
                batch_size=batch_size or content.ENRICHMENT_BATCH_SIZE,
            )
    except ScoutError as e:
        print_error(str(e))
    if not written:
        click.echo('Nothing to export!')
        return
    click.echo(f'Exported {len(written)} batches to {written[0].parent}/')


@cli.command('content-import', context_settings=CONTEXT_SETTINGS)
@click.argument('kind', type=click.Choice(['translations', 'city-translations', 'enrichments']))
@click.option('--dir', 'directory', default=None, type=click.Path(path_type=Path),
              help='Process all *_result.json files in a directory')
@click.option('--file', 'file', default=None, type=click.Path(path_type=Path),
              help='Process a single result file')
@click.option('--dry-run', is_flag=True, help='Count without writing to the database')
@click.pass_context
def content_import(ctx, kind, directory, file, dry_run):
    """Apply translation, city translation or enrichment results."""
    try:
        files = resolve_result_files(directory, file)
    except ScoutError as e:
        print_error(str(e))
    importers = {
        'translations': content.import_translations,
        'city-translations': content.import_city_translations,
        'enrichments': content.import_enrichments,
    }
    summary = importers[kind](_database(ctx), files, dry_run=dry_run)
    _echo_summary(kind.replace('-', ' ').capitalize(), summary, upsert=True)


# --------------------------------------------------------------------------- #
# Sync                                                                        #
# --------------------------------------------------------------------------- #


@cli.command('sync-export', context_settings=CONTEXT_SETTINGS)
@click.option('--since', default=None, help='Override the saved timestamp (ISO 8601)')
@click.option('--all', 'all_rows', is_flag=True, help='Export every enriched business')
@click.option('--output', '-o', 'output', default=None, type=click.Path(dir_okay=False, path_type=Path),
              help='Write the SQL to a file instead of stdout')
@click.pass_context
def sync_export(ctx, since, all_rows, output):
    """Export changed enrichment work as an SQL script."""
    cfg = _config(ctx)
    try:
        since_dt = sync.resolve_since(since, all_rows, cfg.paths.sync_timestamp_file)
    except ScoutError as e:
        print_error(str(e))
    script = sync.export_changes(_database(ctx), since_dt, all_rows)
    if output is None:
        click.echo(script)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(script, encoding='utf-8')
    click.echo(f'SQL written to {output}')


@cli.command('sync-save-timestamp', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def sync_save_timestamp(ctx):
    """Store the current UTC time as the last sync point."""
    stamp = sync.save_timestamp(_config(ctx).paths.sync_timestamp_file)
    click.echo(f'Saved sync timestamp: {stamp}')


# --------------------------------------------------------------------------- #
# Geodata                                                                     #
# --------------------------------------------------------------------------- #


def _parse_bbox(value: str) -> Tuple[float, float, float, float]:
    parts = [p.strip() for p in value.split(',')]
    if len(parts) != 4:
        raise click.BadParameter('expected south,west,north,east')
    try:
        south, west, north, east = (float(p) for p in parts)
    except ValueError:
        raise click.BadParameter('coordinates must be numbers')
    return south, west, north, east


@cli.command('overpass-search', context_settings=CONTEXT_SETTINGS)
@click.option('--category', required=True, help='Category slug')
@click.option('--bbox', required=True, help='Bounding box: south,west,north,east')
@click.option('--pretty', is_flag=True, help='Indent JSON output')
@click.pass_context
def overpass_search(ctx, category, bbox, pretty):
    """Print the named map features of one category inside a bounding box."""
    box = _parse_bbox(bbox)

    async def _runner():
        async with OverpassClient(_config(ctx).overpass) as client:
            return await client.search(category, box)

    result = asyncio.run(_runner())
    if not result.ok:
        print_error(f'Overpass search failed: {result.error}')
    data = [c.to_dict() for c in result.candidates]
    click.echo(json.dumps(data, ensure_ascii=False, indent=2 if pretty else None))


@cli.command('overpass-import', context_settings=CONTEXT_SETTINGS)
@click.option('--city', required=True, help='City slug')
@click.pass_context
def overpass_import(ctx, city):
    """Create pending businesses for every mapped feature of a city."""
    db = _database(ctx)
    try:
        city_id, _category_id, region_id = _resolve_targets(db, city, None, None)
    except ScoutError as e:
        print_error(str(e))

    async def _runner():
        async with OverpassClient(_config(ctx).overpass) as client:
            return await client.import_city(db, city_id, region_id)

    summary = asyncio.run(_runner())
    if summary.error:
        print_error(f'Overpass import failed: {summary.error}')
    _echo_summary('Businesses', summary)


# --------------------------------------------------------------------------- #
# Reports                                                                     #
# --------------------------------------------------------------------------- #


@cli.command('report', context_settings=CONTEXT_SETTINGS)
@click.option('--crawl-id', 'crawl_id', required=True, help='Crawl to report on')
@click.option(
    '--json', '-j', 'json_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Save a JSON report'
)
@click.option(
    '--html', '-h', 'html_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Save an HTML report'
)
@click.option(
    '--template', '-t', 'template_dir',
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help='Directory holding crawl_report.html.j2'
)
@click.pass_context
def report(ctx, crawl_id, json_output, html_output, template_dir):
    """Summarize the pages a crawl kept."""
    store = CrawlStore(_config(ctx).paths.crawl_dir)
    try:
        crawl_report = build_report(store, crawl_id)
    except ScoutError as e:
        print_error(str(e))

    if not json_output and not html_output:
        click.echo(crawl_report.json(pretty=True))
        return

    if json_output:
        saved_json = render_json(crawl_report, json_output)
        click.echo(f'JSON report: {saved_json}')

    if html_output:
        try:
            saved_html = render_html(crawl_report, html_output, template_dir)
        except Exception as e:
            logger.debug('HTML rendering failed', exc_info=True)
            print_error(f'Failed to save HTML report: {e}')
        click.echo(f'HTML report: {saved_html}')


if __name__ == "__main__":
    cli()

#!/usr/bin/env python3
"""
Feed Orchestrator CLI.

Command-line triggers for feed sync and categorization:
- sync-feed: Queue a sync job for one feed
- sync-due-feeds: Queue sync jobs for every feed whose interval has elapsed
- categorize: Queue (or run inline) classification of unprocessed products
- process-queue: Admit pending jobs and wait for them
- reap: Resume or fail stalled jobs
- status: Queue and categorization counters
- build-index: Build the prepared category index from a taxonomy file

Usage:
    python cli.py sync-feed FEED_ID --run
    python cli.py categorize --feed-id FEED_ID --limit 200
    python cli.py reap --dry-run
    python cli.py build-index --taxonomy data/taxonomy.json
"""

from __future__ import annotations

import json
import sys
from typing import Optional

import click

from feed_orchestrator.config import (
    CATEGORY_INDEX_PATH,
    DEFAULT_CATEGORIZE_LIMIT,
    STALL_MAX_AGE_MINUTES,
    TAXONOMY_PATH,
)
from feed_orchestrator.errors import AlreadyRunning, FeedOrchestratorError
from feed_orchestrator.events import configure_logging


def _services(use_mock: bool = False):
    from feed_orchestrator.runtime import build_services
    return build_services(use_mock=use_mock, auto_requeue=False)


def _run_queue(services) -> None:
    """Admit and wait until nothing is pending or in flight."""
    queue = services.queue
    while True:
        result = queue.process_queue()
        queue.wait_idle()
        if not result["admitted"]:
            break


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """Feed Orchestrator CLI - Job triggers for feed sync and categorization."""
    import logging
    configure_logging(logging.DEBUG if verbose else logging.INFO)


# =============================================================================
# SYNC
# =============================================================================

@cli.command("sync-feed")
@click.argument("feed_id")
@click.option("--run", "run_now", is_flag=True, help="Process the queue after scheduling")
def sync_feed(feed_id: str, run_now: bool):
    """Queue a sync job for FEED_ID."""
    services = _services()
    try:
        feed = services.feeds.get(feed_id)
        if feed is None:
            click.echo(click.style(f"✗ Feed not found: {feed_id}", fg="red"), err=True)
            sys.exit(1)

        job_id = services.queue.schedule_feed_sync(feed_id, user_id=feed.user_id)
        click.echo(click.style("✓ Sync job queued", fg="green"))
        click.echo(f"  Job ID:  {job_id}")
        click.echo(f"  Feed:    {feed_id} ({feed.feed_url()})")

        if run_now:
            _run_queue(services)
            job = services.ledger.require(job_id)
            click.echo(f"  Status:  {job.status.value}")
            click.echo(f"  Items:   {job.items_processed} processed, {job.items_failed} failed "
                       f"of {job.items_total}")
    except AlreadyRunning as e:
        click.echo(click.style(f"⚠ {e}", fg="yellow"), err=True)
        sys.exit(2)
    except FeedOrchestratorError as e:
        click.echo(click.style(f"✗ Failed to queue sync: {e}", fg="red"), err=True)
        sys.exit(1)
    finally:
        services.close()


@cli.command("sync-due-feeds")
@click.option("--run", "run_now", is_flag=True, help="Process the queue after scheduling")
def sync_due_feeds(run_now: bool):
    """Queue sync jobs for every due feed."""
    from workers.scheduler import schedule_due_feeds

    services = _services()
    try:
        results = schedule_due_feeds(services.feeds, services.queue)
        click.echo(click.style(
            f"✓ Scheduled {results['scheduled']} of {results['checked']} active feeds", fg="green"
        ))
        if results["skipped"]:
            click.echo(f"  Skipped (already queued or running): {results['skipped']}")
        if results["errors"]:
            click.echo(click.style(f"  Errors: {results['errors']}", fg="red"))
        if run_now:
            _run_queue(services)
    finally:
        services.close()


# =============================================================================
# CATEGORIZATION
# =============================================================================

@cli.command("categorize")
@click.option("--feed-id", help="Only products from this feed")
@click.option("--limit", default=DEFAULT_CATEGORIZE_LIMIT, type=int, help="Max products to classify")
@click.option("--inline", is_flag=True, help="Classify now instead of queueing a job")
@click.option("--mock-llm", is_flag=True, help="Use the mock oracle")
def categorize(feed_id: Optional[str], limit: int, inline: bool, mock_llm: bool):
    """Classify products that have not been categorized yet."""
    services = _services(use_mock=mock_llm)
    try:
        if inline:
            stats = services.category_processor.process_unprocessed(limit=limit, feed_id=feed_id)
            click.echo(click.style("✓ Categorization finished", fg="green"))
            click.echo(f"  Processed:      {stats['processed']}")
            click.echo(f"  Successful:     {stats['successful']}")
            click.echo(f"  Uncategorized:  {stats['uncategorized']}")
            click.echo(f"  Failed:         {stats['failed']}")
            return

        job_id = services.queue.schedule_categorization(feed_id=feed_id, limit=limit)
        click.echo(click.style("✓ Categorization job queued", fg="green"))
        click.echo(f"  Job ID:  {job_id}")
        click.echo(f"  Scope:   {feed_id or 'all feeds'} (limit {limit})")
    except AlreadyRunning as e:
        click.echo(click.style(f"⚠ {e}", fg="yellow"), err=True)
        sys.exit(2)
    finally:
        services.close()


# =============================================================================
# QUEUE OPERATIONS
# =============================================================================

@cli.command("process-queue")
@click.option("--no-wait", is_flag=True, help="Admit once and exit without waiting")
def process_queue(no_wait: bool):
    """Admit pending jobs up to the concurrency ceiling."""
    services = _services()
    try:
        if no_wait:
            result = services.queue.process_queue()
            click.echo(f"Admitted {len(result['admitted'])} jobs ({result['running']} running)")
            return
        _run_queue(services)
        click.echo(json.dumps(services.queue.get_queue_status(), indent=2))
    finally:
        services.close(wait=not no_wait)


@cli.command("reap")
@click.option("--max-age", default=STALL_MAX_AGE_MINUTES, type=int, help="Stall threshold in minutes")
@click.option("--dry-run", is_flag=True, help="Report only")
def reap(max_age: int, dry_run: bool):
    """Resume or fail jobs that stopped making progress."""
    services = _services()
    try:
        results = services.reaper.cleanup_stalled(max_age_minutes=max_age, dry_run=dry_run)
        services.queue.wait_idle()

        color = "yellow" if dry_run else "green"
        click.echo(click.style(
            f"{'[dry-run] ' if dry_run else ''}Found {results['found']} stalled jobs", fg=color
        ))
        for job in results["jobs"]:
            click.echo(f"  {job['id']:<18} {job['kind']:<11} {job['resource_key']:<24} "
                       f"chunks {job['completed_chunks']}/{job['total_chunks']} -> {job['action']}")
        if not dry_run:
            click.echo(f"  Resumed: {results['resumed']}  Failed: {results['failed']}  "
                       f"Errors: {results['errors']}  Snapshots purged: {results['snapshots_purged']}")
    finally:
        services.close()


@cli.command("status")
@click.option("--feed-id", help="Categorization counters for one feed")
def status(feed_id: Optional[str]):
    """Show queue and categorization counters."""
    services = _services()
    try:
        queue_status = services.queue.get_queue_status()
        stats = services.category_processor.get_processing_stats(feed_id)
        click.echo(click.style("Queue", bold=True))
        for key, value in queue_status.items():
            click.echo(f"  {key:<16} {value}")
        click.echo(click.style("Categorization" + (f" ({feed_id})" if feed_id else ""), bold=True))
        for key, value in stats.items():
            click.echo(f"  {key:<16} {value}")
    finally:
        services.close()


# =============================================================================
# INDEX
# =============================================================================

@cli.command("build-index")
@click.option("--taxonomy", "taxonomy_path", default=TAXONOMY_PATH, help="Raw taxonomy JSON file")
@click.option("--output", default=CATEGORY_INDEX_PATH, help="Prepared index output path")
def build_index(taxonomy_path: str, output: str):
    """Build the prepared category index from a taxonomy file."""
    from feed_orchestrator.taxonomy.index import CategoryIndex, load_taxonomy

    try:
        index = CategoryIndex.build(load_taxonomy(taxonomy_path))
    except (OSError, ValueError, KeyError) as e:
        click.echo(click.style(f"✗ Failed to load taxonomy: {e}", fg="red"), err=True)
        sys.exit(1)

    index.save(output)
    stats = index.stats()
    click.echo(click.style(f"✓ Wrote {output}", fg="green"))
    for key, value in stats.items():
        click.echo(f"  {key:<16} {value}")


if __name__ == "__main__":
    cli()

"""
Scheduler - Periodic trigger that turns due feeds into sync jobs.

A feed is due when it is active, not paused, and its sync interval has
elapsed since the last completed sync. Feeds that already have a sync job
pending or running are skipped.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from feed_orchestrator.errors import AlreadyRunning
from feed_orchestrator.events import configure_logging, log_event
from feed_orchestrator.feeds.store import FeedStore
from feed_orchestrator.jobs.models import JobKind, JobTrigger, resource_key_for
from feed_orchestrator.jobs.queue import JobQueue
from feed_orchestrator.runtime import build_services

logger = logging.getLogger(__name__)


def schedule_due_feeds(feeds: FeedStore, queue: JobQueue, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Create sync jobs for every due feed.

    Returns:
        {"checked", "scheduled", "skipped", "errors", "job_ids"}
    """
    now = now or datetime.utcnow()
    results: Dict[str, Any] = {
        "checked": 0,
        "scheduled": 0,
        "skipped": 0,
        "errors": 0,
        "job_ids": [],
    }

    for feed in feeds.list_active():
        results["checked"] += 1
        if not feed.is_due(now):
            continue

        resource_key = resource_key_for(JobKind.SYNC, feed.id)
        if queue.ledger.pending_for_resource(resource_key) is not None:
            results["skipped"] += 1
            continue

        try:
            job_id = queue.schedule_feed_sync(feed.id, user_id=feed.user_id, trigger=JobTrigger.SCHEDULED)
        except AlreadyRunning:
            results["skipped"] += 1
            continue
        except Exception as e:
            logger.error("Failed to schedule sync for feed %s: %s", feed.id, e)
            results["errors"] += 1
            continue

        results["scheduled"] += 1
        results["job_ids"].append(job_id)

    logger.info("Scheduler: checked=%d scheduled=%d skipped=%d",
                results["checked"], results["scheduled"], results["skipped"])
    return results


def run_scheduler(in_memory: bool = False) -> Dict[str, Any]:
    """Entry point: schedule due feeds, then run one admission pass."""
    configure_logging()

    services = build_services(in_memory=in_memory, auto_requeue=False)
    try:
        results = schedule_due_feeds(services.feeds, services.queue)
        admitted = services.queue.process_queue()
        services.queue.wait_idle()
    finally:
        services.close()

    log_event("scheduler_completed", scheduled=results["scheduled"],
              admitted=len(admitted["admitted"]))
    return results


if __name__ == "__main__":
    run_scheduler()

"""
Batch Processor - Execute a running job in checkpointed chunks.

Work set:
- sync: products parsed from the feed (snapshotted as source dicts)
- categorize: ids of unprocessed products (snapshotted as ids)

Every chunk is followed by an atomic checkpoint write, so a job interrupted
at any point resumes from the first chunk that was not recorded. Job status
is re-read before each chunk; a job set to failed from outside stops there.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from feed_orchestrator.categorization.processor import CategoryProcessor
from feed_orchestrator.config import (
    CATEGORIZE_AFTER_SYNC,
    CATEGORIZE_BATCH_SIZE,
    CHUNK_DELAY_SECS,
    DEFAULT_CATEGORIZE_LIMIT,
    SYNC_BATCH_SIZE,
)
from feed_orchestrator.errors import FeedOrchestratorError, PersistenceError, error_code
from feed_orchestrator.events import log_event
from feed_orchestrator.feeds.fetcher import FeedFetcher
from feed_orchestrator.feeds.models import Product
from feed_orchestrator.feeds.store import FeedStore, ProductStore
from feed_orchestrator.jobs.ledger import JobLedger
from feed_orchestrator.jobs.models import (
    Job,
    JobKind,
    JobOutcome,
    JobStatus,
    JobTrigger,
    new_job_id,
    resource_key_for,
)
from feed_orchestrator.notifications.webhooks import WebhookNotifier

logger = logging.getLogger(__name__)

COMPLETION_EVENTS = {
    JobKind.SYNC: "sync_completed",
    JobKind.CATEGORIZE: "categorization_completed",
}


class BatchProcessor:

    def __init__(
        self,
        ledger: JobLedger,
        products: ProductStore,
        feeds: FeedStore,
        fetcher: Optional[FeedFetcher] = None,
        category_processor: Optional[CategoryProcessor] = None,
        notifier: Optional[WebhookNotifier] = None,
        sync_batch_size: int = SYNC_BATCH_SIZE,
        categorize_batch_size: int = CATEGORIZE_BATCH_SIZE,
        chunk_delay_seconds: float = CHUNK_DELAY_SECS,
        categorize_after_sync: bool = CATEGORIZE_AFTER_SYNC,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.products = products
        self.feeds = feeds
        self.fetcher = fetcher or FeedFetcher()
        self.category_processor = category_processor
        self.notifier = notifier
        self.batch_sizes = {
            JobKind.SYNC: max(1, sync_batch_size),
            JobKind.CATEGORIZE: max(1, categorize_batch_size),
        }
        self.chunk_delay_seconds = chunk_delay_seconds
        self.categorize_after_sync = categorize_after_sync
        self.sleep = sleep

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def execute(self, job: Job) -> JobOutcome:
        """
        Run a job that has been admitted (status running).

        Picks up from the checkpoint when the job already has one. Chunk-level
        errors fail the job and are reported in the outcome, not raised.
        """
        started = time.monotonic()
        log_event("job_started", job_id=job.id, job_kind=job.kind.value,
                  resource_key=job.resource_key, trigger=job.trigger.value)

        try:
            job, items = self._prepare(job)
        except Exception as e:
            return self._fail(job, e, started)

        return self._run(job, items, started)

    def check_resumable(self, job: Job) -> List[Any]:
        """
        Load the work set a resume would continue from.

        Raises:
            PersistenceError: If the job has no resumable checkpoint or its
                snapshot is gone
        """
        if not job.checkpoint.is_resumable():
            raise PersistenceError(f"Job {job.id} has no resumable checkpoint")

        items = self.ledger.load_snapshot(job.id)
        if items is None:
            raise PersistenceError(f"Snapshot for job {job.id} is missing")
        return items

    def resume(self, job: Job, items: Optional[List[Any]] = None) -> JobOutcome:
        """Continue a running job from its checkpoint (see check_resumable)."""
        if items is None:
            items = self.check_resumable(job)

        log_event("job_resumed", job_id=job.id, job_kind=job.kind.value,
                  resource_key=job.resource_key,
                  offset=job.checkpoint.last_processed_offset,
                  completed_chunks=job.checkpoint.completed_chunks,
                  total_chunks=job.checkpoint.total_chunks)
        return self._run(job, items, time.monotonic())

    # =========================================================================
    # WORK SET
    # =========================================================================

    def _prepare(self, job: Job) -> Tuple[Job, List[Any]]:
        if job.checkpoint.started:
            items = self.ledger.load_snapshot(job.id)
            if items is None:
                raise PersistenceError(f"Snapshot for job {job.id} is missing")
            logger.info("Job %s continuing from offset %d",
                        job.id, job.checkpoint.last_processed_offset)
            return job, items

        items = self._build_work_set(job)
        snapshot_ref = self.ledger.save_snapshot(job.id, items) if items else None
        total_chunks = math.ceil(len(items) / self.batch_sizes[job.kind])
        job = self.ledger.set_work_set(job.id, len(items), total_chunks, snapshot_ref)

        logger.info("Job %s work set: %d items in %d chunks", job.id, len(items), total_chunks)
        return job, items

    def _build_work_set(self, job: Job) -> List[Any]:
        if job.kind == JobKind.SYNC:
            feed = self.feeds.get(job.feed_id)
            if feed is None:
                raise PersistenceError(f"Feed {job.feed_id} not found")
            products = self.fetcher.fetch_products(feed.feed_url(), feed_id=feed.id)
            return [p.source_dict() for p in products]

        limit = job.limit or DEFAULT_CATEGORIZE_LIMIT
        return [p.id for p in self.products.list_unprocessed(limit, feed_id=job.feed_id)]

    # =========================================================================
    # CHUNK LOOP
    # =========================================================================

    def _run(self, job: Job, items: List[Any], started: float) -> JobOutcome:
        batch_size = self.batch_sizes[job.kind]
        offset = job.checkpoint.last_processed_offset

        try:
            for chunk_no, start in enumerate(range(offset, len(items), batch_size)):
                current = self.ledger.get(job.id)
                if current is None or current.status != JobStatus.RUNNING:
                    return self._cancelled(job, started)

                if chunk_no > 0 and job.kind == JobKind.SYNC and self.chunk_delay_seconds > 0:
                    self.sleep(self.chunk_delay_seconds)

                chunk = items[start:start + batch_size]
                processed, failed = self._process_chunk(job, chunk)
                job = self.ledger.record_chunk(job.id, processed, failed, start + len(chunk))

                log_event("chunk_completed", job_id=job.id, job_kind=job.kind.value,
                          resource_key=job.resource_key,
                          chunk=job.checkpoint.completed_chunks,
                          total_chunks=job.checkpoint.total_chunks,
                          processed=processed, failed=failed)
        except Exception as e:
            return self._fail(job, e, started)

        return self._finish(job, started)

    def _process_chunk(self, job: Job, chunk: List[Any]) -> Tuple[int, int]:
        if job.kind == JobKind.SYNC:
            return self._upsert_chunk(job, chunk)
        return self._categorize_chunk(chunk)

    def _upsert_chunk(self, job: Job, chunk: List[Dict[str, Any]]) -> Tuple[int, int]:
        processed = failed = 0
        for data in chunk:
            product = Product.from_dict(data)
            try:
                self.products.upsert(job.feed_id, product)
                processed += 1
            except Exception as e:
                logger.warning("Failed to upsert product %s: %s", product.sku, e)
                failed += 1
        return processed, failed

    def _categorize_chunk(self, product_ids: List[str]) -> Tuple[int, int]:
        if self.category_processor is None:
            raise FeedOrchestratorError("No category processor configured")

        found = self.products.get_many(product_ids)
        missing = len(product_ids) - len(found)

        todo = [p for p in found.values() if not p.category_processed]
        already_done = len(found) - len(todo)

        stats = self.category_processor.process_products(todo)
        return stats["processed"] + already_done, stats["failed"] + missing

    # =========================================================================
    # TERMINAL STATES
    # =========================================================================

    def _finish(self, job: Job, started: float) -> JobOutcome:
        if not self.ledger.complete(job.id):
            # Failed externally after the last chunk
            return self._cancelled(job, started)

        self.ledger.purge_snapshot(job.id)
        final = self.ledger.require(job.id)

        if final.kind == JobKind.SYNC:
            self._after_sync(final)
        self._notify(final)

        log_event("job_completed", job_id=final.id, job_kind=final.kind.value,
                  resource_key=final.resource_key,
                  duration_ms=_elapsed_ms(started),
                  items_total=final.items_total,
                  items_processed=final.items_processed,
                  items_failed=final.items_failed)
        return _outcome(final)

    def _fail(self, job: Job, exc: Exception, started: float) -> JobOutcome:
        message = str(exc) or exc.__class__.__name__
        self.ledger.fail(job.id, message, error_code(exc))
        log_event("job_failed", job_id=job.id, job_kind=job.kind.value,
                  resource_key=job.resource_key,
                  duration_ms=_elapsed_ms(started),
                  error=message, error_code=error_code(exc),
                  offset=job.checkpoint.last_processed_offset)
        return _outcome(self.ledger.get(job.id) or job, error=message)

    def _cancelled(self, job: Job, started: float) -> JobOutcome:
        current = self.ledger.get(job.id) or job
        log_event("job_cancelled", job_id=job.id, job_kind=job.kind.value,
                  resource_key=job.resource_key,
                  duration_ms=_elapsed_ms(started),
                  status=current.status.value,
                  offset=current.checkpoint.last_processed_offset)
        return _outcome(current, error=current.error)

    # =========================================================================
    # COMPLETION SIDE EFFECTS
    # =========================================================================

    def _after_sync(self, job: Job) -> None:
        try:
            self.feeds.mark_synced(job.feed_id)
        except Exception as e:
            logger.warning("Failed to update last sync time for feed %s: %s", job.feed_id, e)

        if not self.categorize_after_sync:
            return
        try:
            self.schedule_follow_up(job)
        except Exception as e:
            logger.warning("Failed to schedule categorization after job %s: %s", job.id, e)

    def schedule_follow_up(self, job: Job) -> Optional[str]:
        """
        Queue a categorize job for the feed a sync job just finished.

        Skipped when one is already pending or running for that feed.
        """
        resource_key = resource_key_for(JobKind.CATEGORIZE, job.feed_id)
        if self.ledger.running_for_resource(resource_key) is not None:
            return None
        if self.ledger.pending_for_resource(resource_key) is not None:
            return None

        follow_up = self.ledger.create(Job(
            id=new_job_id(),
            kind=JobKind.CATEGORIZE,
            resource_key=resource_key,
            feed_id=job.feed_id,
            user_id=job.user_id,
            trigger=JobTrigger.FOLLOW_UP,
            limit=job.items_total or DEFAULT_CATEGORIZE_LIMIT,
        ))
        logger.info("Scheduled categorization job %s after sync %s", follow_up.id, job.id)
        return follow_up.id

    def _notify(self, job: Job) -> None:
        if self.notifier is None:
            return
        self.notifier.notify(job.user_id, {
            "event": COMPLETION_EVENTS[job.kind],
            "feedId": job.feed_id,
            "jobId": job.id,
            "itemsProcessed": job.items_processed,
            "itemsFailed": job.items_failed,
        })


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _outcome(job: Job, error: Optional[str] = None) -> JobOutcome:
    return JobOutcome(
        job_id=job.id,
        status=job.status,
        items_total=job.items_total or 0,
        items_processed=job.items_processed,
        items_failed=job.items_failed,
        error=error if error is not None else job.error,
    )


__all__ = ["BatchProcessor", "COMPLETION_EVENTS"]

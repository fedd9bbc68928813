"""
Job Queue - Admission control over the job ledger.

Jobs are created pending and admitted FIFO up to a concurrency ceiling.
Admission is a ledger compare-and-set that also claims the job's resource,
so at most one job per resource runs even with several workers polling.

Admitted jobs run on a thread pool. When one finishes its slot is freed and
another admission pass is triggered after a short delay.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any, Dict, Optional

from feed_orchestrator.config import (
    DEFAULT_CATEGORIZE_LIMIT,
    MAX_CONCURRENT_JOBS,
    PENDING_FETCH_LIMIT,
    REQUEUE_DELAY_SECS,
)
from feed_orchestrator.errors import AlreadyRunning, QueueClosed
from feed_orchestrator.events import log_event
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
from feed_orchestrator.jobs.processor import BatchProcessor

logger = logging.getLogger(__name__)


class JobQueue:

    def __init__(
        self,
        ledger: JobLedger,
        processor: BatchProcessor,
        max_concurrent: int = MAX_CONCURRENT_JOBS,
        pending_fetch_limit: int = PENDING_FETCH_LIMIT,
        requeue_delay_seconds: float = REQUEUE_DELAY_SECS,
        auto_requeue: bool = True,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.ledger = ledger
        self.processor = processor
        self.max_concurrent = max_concurrent
        self.pending_fetch_limit = pending_fetch_limit
        self.requeue_delay_seconds = requeue_delay_seconds
        self.auto_requeue = auto_requeue

        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_concurrent, thread_name_prefix="feed-job"
        )
        self._in_flight: Dict[str, Optional[Future]] = {}
        self._lock = threading.Lock()
        self._admission_lock = threading.Lock()
        self._requeue_timer: Optional[threading.Timer] = None
        self._closed = False

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def schedule(
        self,
        resource_key: str,
        kind: JobKind,
        feed_id: Optional[str] = None,
        user_id: Optional[str] = None,
        trigger: JobTrigger = JobTrigger.MANUAL,
        limit: Optional[int] = None,
    ) -> str:
        """
        Create a pending job for a resource.

        Raises:
            AlreadyRunning: If a job for the resource is currently running
        """
        running = self.ledger.running_for_resource(resource_key)
        if running is not None:
            raise AlreadyRunning(resource_key, running.id)

        job = self.ledger.create(Job(
            id=new_job_id(),
            kind=kind,
            resource_key=resource_key,
            feed_id=feed_id,
            user_id=user_id,
            trigger=trigger,
            limit=limit,
        ))
        log_event("job_scheduled", job_id=job.id, job_kind=kind.value,
                  resource_key=resource_key, trigger=trigger.value)
        return job.id

    def schedule_feed_sync(self, feed_id: str, user_id: Optional[str] = None,
                           trigger: JobTrigger = JobTrigger.MANUAL) -> str:
        return self.schedule(
            resource_key_for(JobKind.SYNC, feed_id), JobKind.SYNC,
            feed_id=feed_id, user_id=user_id, trigger=trigger,
        )

    def schedule_categorization(self, feed_id: Optional[str] = None,
                                limit: int = DEFAULT_CATEGORIZE_LIMIT,
                                user_id: Optional[str] = None,
                                trigger: JobTrigger = JobTrigger.MANUAL) -> str:
        return self.schedule(
            resource_key_for(JobKind.CATEGORIZE, feed_id), JobKind.CATEGORIZE,
            feed_id=feed_id, user_id=user_id, trigger=trigger, limit=limit,
        )

    # =========================================================================
    # ADMISSION
    # =========================================================================

    def process_queue(self) -> Dict[str, Any]:
        """
        Admit pending jobs up to the concurrency ceiling.

        Pending jobs are read oldest first, a page at a time, until the free
        slots are filled or no pending job is left. Jobs whose resource is
        busy are skipped and stay pending. Safe to call at any time and from
        several places; each pending job is started at most once.

        Returns:
            {"admitted": [job ids], "skipped": n, "running": n}
        """
        result: Dict[str, Any] = {"admitted": [], "skipped": 0, "running": 0}
        if self._closed:
            return result

        with self._admission_lock:
            running = self.ledger.count_by_status(JobStatus.RUNNING)
            result["running"] = running
            slots = self.max_concurrent - running
            if slots <= 0:
                logger.debug("Queue at capacity (%d running)", running)
                return result

            busy_resources = set()
            offset = 0
            while len(result["admitted"]) < slots and not self._closed:
                page = self.ledger.list_by_status(
                    JobStatus.PENDING, limit=self.pending_fetch_limit, offset=offset
                )
                if not page:
                    break

                admitted_before = len(result["admitted"])
                if not self._admit_page(page, slots, busy_resources, result):
                    break
                if len(page) < self.pending_fetch_limit:
                    break
                # Admitted jobs left the pending set; skipped ones are still in it
                offset += len(page) - (len(result["admitted"]) - admitted_before)

            result["running"] = running + len(result["admitted"])

        if result["admitted"] or result["skipped"]:
            logger.info("Queue pass: admitted=%d skipped=%d running=%d",
                        len(result["admitted"]), result["skipped"], result["running"])
        return result

    def _admit_page(self, page, slots: int, busy_resources: set, result: Dict[str, Any]) -> bool:
        """Admit from one page of pending jobs; False once the pool refuses work."""
        for job in page:
            if len(result["admitted"]) >= slots:
                break
            if job.resource_key in busy_resources or self._is_in_flight(job.id):
                result["skipped"] += 1
                continue

            started = self.ledger.try_start(job.id)
            if started is None:
                # Resource busy or another worker took it
                busy_resources.add(job.resource_key)
                result["skipped"] += 1
                continue

            busy_resources.add(started.resource_key)
            try:
                self._submit(started, self.processor.execute, started)
            except QueueClosed as e:
                self.ledger.fail(started.id, str(e), e.code)
                log_event("job_admission_aborted", job_id=started.id, reason=e.code)
                return False

            result["admitted"].append(started.id)
            log_event("job_admitted", job_id=started.id, job_kind=started.kind.value,
                      resource_key=started.resource_key)
        return True

    def resume_job(self, job: Job) -> None:
        """
        Continue a running job from its checkpoint on the worker pool.

        Raises:
            AlreadyRunning: If this process is still executing the job
            PersistenceError: If the job cannot be resumed
            QueueClosed: If the worker pool has been shut down
        """
        if self._is_in_flight(job.id):
            raise AlreadyRunning(job.resource_key, job.id)
        items = self.processor.check_resumable(job)
        self._submit(job, self.processor.resume, job, items)

    # =========================================================================
    # STATUS / LIFECYCLE
    # =========================================================================

    def get_queue_status(self) -> Dict[str, Any]:
        running = self.ledger.count_by_status(JobStatus.RUNNING)
        with self._lock:
            in_flight = len(self._in_flight)
        return {
            "pending": self.ledger.count_by_status(JobStatus.PENDING),
            "running": running,
            "completed": self.ledger.count_by_status(JobStatus.COMPLETED),
            "failed": self.ledger.count_by_status(JobStatus.FAILED),
            "in_flight": in_flight,
            "max_concurrent": self.max_concurrent,
            "available_slots": max(0, self.max_concurrent - running),
        }

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until this process has no jobs executing; False on timeout."""
        with self._lock:
            futures = [f for f in self._in_flight.values() if f is not None]
        if not futures:
            return True
        _, not_done = wait_futures(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        with self._lock:
            if self._requeue_timer is not None:
                self._requeue_timer.cancel()
                self._requeue_timer = None
        self._executor.shutdown(wait=wait)
        logger.info("Job queue shut down")

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _is_in_flight(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._in_flight

    def _submit(self, job: Job, fn, *args) -> None:
        with self._lock:
            self._in_flight[job.id] = None
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as e:
            with self._lock:
                self._in_flight.pop(job.id, None)
            raise QueueClosed(f"Job queue is shut down; job {job.id} was not started") from e
        with self._lock:
            self._in_flight[job.id] = future
        # Registered outside the lock: the callback may run immediately
        future.add_done_callback(lambda f, job=job: self._on_done(job, f))

    def _on_done(self, job: Job, future: Future) -> None:
        with self._lock:
            self._in_flight.pop(job.id, None)

        exc = future.exception() if not future.cancelled() else None
        if exc is not None:
            # The job stays running in the ledger; the stall reaper recovers it
            logger.error("Job %s worker crashed: %r", job.id, exc)
        else:
            outcome: Optional[JobOutcome] = future.result() if not future.cancelled() else None
            if outcome is not None:
                logger.info("Job %s finished: %s", job.id, outcome.status.value)

        if self.auto_requeue and not self._closed:
            self._schedule_requeue()

    def _schedule_requeue(self) -> None:
        with self._lock:
            if self._requeue_timer is not None:
                return
            timer = threading.Timer(self.requeue_delay_seconds, self._requeue)
            timer.daemon = True
            self._requeue_timer = timer
        timer.start()

    def _requeue(self) -> None:
        with self._lock:
            self._requeue_timer = None
        try:
            self.process_queue()
        except Exception as e:
            logger.error("Queue re-trigger failed: %s", e)


__all__ = ["JobQueue"]

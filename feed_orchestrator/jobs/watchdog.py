"""
Watchdog - Recovery of stalled jobs and expired snapshots.

A job is stalled when it is running, started before the cutoff, and has not
written a checkpoint since the cutoff. Stalled jobs with chunks left are
resumed from their checkpoint; the rest are failed so their resource can be
admitted again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from feed_orchestrator.config import STALL_MAX_AGE_MINUTES
from feed_orchestrator.errors import StallTimeout, error_code
from feed_orchestrator.events import log_event
from feed_orchestrator.jobs.ledger import JobLedger
from feed_orchestrator.jobs.models import Job
from feed_orchestrator.jobs.queue import JobQueue

logger = logging.getLogger(__name__)


class StallReaper:

    def __init__(self, ledger: JobLedger, queue: JobQueue, clock: Optional[Callable[[], datetime]] = None):
        self.ledger = ledger
        self.queue = queue
        self._clock = clock or datetime.utcnow

    def cleanup_stalled(self, max_age_minutes: int = STALL_MAX_AGE_MINUTES, dry_run: bool = False) -> Dict[str, Any]:
        """
        Resume or fail stalled running jobs.

        Args:
            max_age_minutes: Stall threshold
            dry_run: If True, only report what would be done

        Returns:
            Summary of stalled jobs found and actions taken
        """
        cutoff = self._clock() - timedelta(minutes=max_age_minutes)

        results: Dict[str, Any] = {
            "found": 0,
            "resumed": 0,
            "failed": 0,
            "errors": 0,
            "jobs": [],
            "dry_run": dry_run,
        }

        for job in self.ledger.find_stalled(cutoff):
            results["found"] += 1
            action = "resume" if job.can_resume() else "fail"
            results["jobs"].append({
                "id": job.id,
                "kind": job.kind.value,
                "resource_key": job.resource_key,
                "started_at": str(job.started_at),
                "heartbeat_at": str(job.heartbeat_at),
                "completed_chunks": job.checkpoint.completed_chunks,
                "total_chunks": job.checkpoint.total_chunks,
                "resume_count": job.resume_count,
                "action": action,
            })

            if dry_run:
                continue

            try:
                outcome = self._recover(job, cutoff, max_age_minutes)
            except Exception as e:
                logger.error("Failed to recover job %s: %s", job.id, e)
                results["errors"] += 1
                continue
            if outcome in ("resumed", "failed"):
                results[outcome] += 1

        purged = 0 if dry_run else self.ledger.purge_expired_snapshots()
        results["snapshots_purged"] = purged

        logger.info("Watchdog: found=%d stalled jobs, resumed=%d, failed=%d",
                    results["found"], results["resumed"], results["failed"])
        return results

    def _recover(self, job: Job, cutoff: datetime, max_age_minutes: int) -> str:
        """
        Recover a single stalled job.

        Returns:
            "resumed", "failed", or "skipped" if another reaper got there first
        """
        if not job.can_resume():
            if job.checkpoint.is_resumable():
                detail = f"gave up after {job.resume_count} resumes"
            else:
                detail = "no resumable checkpoint"
            stall = StallTimeout(job.id, max_age_minutes, detail)
            if not self.ledger.fail(job.id, str(stall), stall.code):
                return "skipped"
            log_event("job_stall_failed", job_id=job.id, job_kind=job.kind.value,
                      resource_key=job.resource_key, detail=detail)
            return "failed"

        claimed = self.ledger.claim_for_resume(job.id, cutoff)
        if claimed is None:
            return "skipped"

        try:
            self.queue.resume_job(claimed)
        except Exception as e:
            message = f"Job stalled and resume failed: {e}"
            self.ledger.fail(job.id, message, error_code(e))
            log_event("job_stall_failed", job_id=job.id, job_kind=job.kind.value,
                      resource_key=job.resource_key, detail=message)
            return "failed"

        log_event("job_stall_resumed", job_id=job.id, job_kind=job.kind.value,
                  resource_key=job.resource_key, resume_count=claimed.resume_count,
                  offset=claimed.checkpoint.last_processed_offset)
        return "resumed"


__all__ = ["StallReaper"]

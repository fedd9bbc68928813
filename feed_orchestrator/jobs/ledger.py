"""
Job Ledger - Persistent source of truth for job state.

Every status transition is a compare-and-set: it only applies if the job is
still in the expected state. Admission (pending -> running) also claims the
job's resource key, which is what enforces "at most one running job per
resource" across workers.

InMemoryJobLedger backs tests and single-process runs. The Firestore
implementation lives in firestore_ledger.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from feed_orchestrator.config import SNAPSHOT_TTL_HOURS
from feed_orchestrator.errors import JobNotFound
from feed_orchestrator.jobs.models import Job, JobStatus, JobTrigger

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class JobLedger(ABC):
    """Job persistence with atomic transitions."""

    # -------------------------------------------------------------------------
    # CRUD / queries
    # -------------------------------------------------------------------------

    @abstractmethod
    def create(self, job: Job) -> Job:
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        pass

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    @abstractmethod
    def list_by_status(self, status: JobStatus, limit: Optional[int] = None, offset: int = 0) -> List[Job]:
        """Jobs in a status, oldest created first, skipping the first `offset`."""

    @abstractmethod
    def count_by_status(self, status: JobStatus) -> int:
        pass

    @abstractmethod
    def running_for_resource(self, resource_key: str) -> Optional[Job]:
        pass

    def pending_for_resource(self, resource_key: str) -> Optional[Job]:
        for job in self.list_by_status(JobStatus.PENDING):
            if job.resource_key == resource_key:
                return job
        return None

    @abstractmethod
    def find_stalled(self, cutoff: datetime) -> List[Job]:
        """Running jobs started before cutoff with no checkpoint write since."""

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    @abstractmethod
    def try_start(self, job_id: str) -> Optional[Job]:
        """
        pending -> running, claiming the job's resource key.

        Returns:
            The running Job, or None if the job was not pending or another
            job holds the resource
        """

    @abstractmethod
    def set_work_set(self, job_id: str, items_total: int, total_chunks: int,
                     snapshot_ref: Optional[str]) -> Job:
        """Record the size of the work set once it is known."""

    @abstractmethod
    def record_chunk(self, job_id: str, processed: int, failed: int, chunk_end: int) -> Job:
        """
        Atomically add chunk counters and advance the checkpoint.

        A chunk whose end is not past the current offset was already
        recorded and is ignored. Returns the job as stored afterwards.
        """

    @abstractmethod
    def complete(self, job_id: str) -> bool:
        """running -> completed; False if the job was no longer running."""

    @abstractmethod
    def fail(self, job_id: str, error: str, error_code: Optional[str] = None) -> bool:
        """
        pending/running -> failed, keeping the checkpoint.

        Also the external cancellation signal. False if already terminal.
        """

    @abstractmethod
    def claim_for_resume(self, job_id: str, cutoff: datetime) -> Optional[Job]:
        """
        Claim a stalled job for resumption.

        Only one caller wins: the job must still be stalled relative to
        cutoff. The heartbeat is refreshed and resume_count incremented.
        """

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    @abstractmethod
    def save_snapshot(self, job_id: str, items: List[Any]) -> str:
        """Persist the job's work set; returns the snapshot reference."""

    @abstractmethod
    def load_snapshot(self, job_id: str) -> Optional[List[Any]]:
        pass

    @abstractmethod
    def purge_snapshot(self, job_id: str) -> None:
        pass

    @abstractmethod
    def purge_expired_snapshots(self) -> int:
        """Delete expired snapshots of terminal jobs; returns the count."""


# =============================================================================
# IN-MEMORY LEDGER
# =============================================================================

class InMemoryJobLedger(JobLedger):
    """
    Dict-backed ledger; one lock makes every transition atomic.

    Stored jobs are copied in and out so callers never share state with the
    ledger.
    """

    def __init__(self, clock: Optional[Clock] = None, snapshot_ttl_hours: int = SNAPSHOT_TTL_HOURS):
        self._clock = clock or datetime.utcnow
        self._snapshot_ttl = timedelta(hours=snapshot_ttl_hours)
        self._jobs: Dict[str, Job] = {}
        self._locks: Dict[str, str] = {}  # resource_key -> job_id
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._seq: Dict[str, int] = {}
        self._mutex = threading.RLock()

    def now(self) -> datetime:
        return self._clock()

    def create(self, job: Job) -> Job:
        with self._mutex:
            now = self.now()
            stored = copy.deepcopy(job)
            stored.created_at = stored.created_at or now
            stored.updated_at = now
            self._jobs[stored.id] = stored
            self._seq[stored.id] = len(self._seq)
            return copy.deepcopy(stored)

    def get(self, job_id: str) -> Optional[Job]:
        with self._mutex:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_by_status(self, status: JobStatus, limit: Optional[int] = None, offset: int = 0) -> List[Job]:
        with self._mutex:
            jobs = [j for j in self._jobs.values() if j.status == status]
            jobs.sort(key=lambda j: (j.created_at, self._seq[j.id]))
            jobs = jobs[offset:]
            if limit is not None:
                jobs = jobs[:limit]
            return [copy.deepcopy(j) for j in jobs]

    def count_by_status(self, status: JobStatus) -> int:
        with self._mutex:
            return sum(1 for j in self._jobs.values() if j.status == status)

    def running_for_resource(self, resource_key: str) -> Optional[Job]:
        with self._mutex:
            for job in self._jobs.values():
                if job.resource_key == resource_key and job.status == JobStatus.RUNNING:
                    return copy.deepcopy(job)
            return None

    def find_stalled(self, cutoff: datetime) -> List[Job]:
        with self._mutex:
            return [copy.deepcopy(j) for j in self._jobs.values() if j.is_stalled(cutoff)]

    def try_start(self, job_id: str) -> Optional[Job]:
        with self._mutex:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None

            holder_id = self._locks.get(job.resource_key)
            if holder_id and holder_id != job_id:
                holder = self._jobs.get(holder_id)
                if holder is not None and holder.status == JobStatus.RUNNING:
                    return None

            now = self.now()
            self._locks[job.resource_key] = job_id
            job.status = JobStatus.RUNNING
            job.started_at = now
            job.heartbeat_at = now
            job.updated_at = now
            return copy.deepcopy(job)

    def set_work_set(self, job_id: str, items_total: int, total_chunks: int,
                     snapshot_ref: Optional[str]) -> Job:
        with self._mutex:
            job = self._require_stored(job_id)
            now = self.now()
            job.items_total = items_total
            job.checkpoint.total_chunks = total_chunks
            job.snapshot_ref = snapshot_ref
            job.heartbeat_at = now
            job.updated_at = now
            return copy.deepcopy(job)

    def record_chunk(self, job_id: str, processed: int, failed: int, chunk_end: int) -> Job:
        with self._mutex:
            job = self._require_stored(job_id)
            if chunk_end <= job.checkpoint.last_processed_offset:
                return copy.deepcopy(job)

            now = self.now()
            job.items_processed += processed
            job.items_failed += failed
            job.checkpoint.completed_chunks = min(
                job.checkpoint.completed_chunks + 1, job.checkpoint.total_chunks
            )
            job.checkpoint.last_processed_offset = chunk_end
            job.heartbeat_at = now
            job.updated_at = now
            return copy.deepcopy(job)

    def complete(self, job_id: str) -> bool:
        with self._mutex:
            job = self._require_stored(job_id)
            if job.status != JobStatus.RUNNING:
                return False
            now = self.now()
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.updated_at = now
            self._release(job)
            return True

    def fail(self, job_id: str, error: str, error_code: Optional[str] = None) -> bool:
        with self._mutex:
            job = self._require_stored(job_id)
            if job.status.is_terminal:
                return False
            now = self.now()
            job.status = JobStatus.FAILED
            job.error = error
            job.error_code = error_code
            job.completed_at = now
            job.updated_at = now
            self._release(job)
            return True

    def claim_for_resume(self, job_id: str, cutoff: datetime) -> Optional[Job]:
        with self._mutex:
            job = self._jobs.get(job_id)
            if job is None or not job.is_stalled(cutoff):
                return None
            now = self.now()
            job.heartbeat_at = now
            job.resume_count += 1
            job.trigger = JobTrigger.STALL_RESUME
            job.updated_at = now
            return copy.deepcopy(job)

    def save_snapshot(self, job_id: str, items: List[Any]) -> str:
        with self._mutex:
            now = self.now()
            self._snapshots[job_id] = {
                "items": copy.deepcopy(items),
                "created_at": now,
                "expires_at": now + self._snapshot_ttl,
            }
            return job_id

    def load_snapshot(self, job_id: str) -> Optional[List[Any]]:
        with self._mutex:
            snapshot = self._snapshots.get(job_id)
            return copy.deepcopy(snapshot["items"]) if snapshot else None

    def purge_snapshot(self, job_id: str) -> None:
        with self._mutex:
            self._snapshots.pop(job_id, None)

    def purge_expired_snapshots(self) -> int:
        with self._mutex:
            now = self.now()
            expired = [
                job_id for job_id, snap in self._snapshots.items()
                if snap["expires_at"] < now and self._is_terminal_or_missing(job_id)
            ]
            for job_id in expired:
                del self._snapshots[job_id]
            return len(expired)

    def has_snapshot(self, job_id: str) -> bool:
        with self._mutex:
            return job_id in self._snapshots

    def resource_holder(self, resource_key: str) -> Optional[str]:
        with self._mutex:
            return self._locks.get(resource_key)

    def force_status(self, job_id: str, status: JobStatus, **fields: Any) -> None:
        """Overwrite stored fields without transition checks (tests, admin)."""
        with self._mutex:
            job = self._require_stored(job_id)
            job.status = status
            for name, value in fields.items():
                setattr(job, name, value)

    def _require_stored(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    def _release(self, job: Job) -> None:
        if self._locks.get(job.resource_key) == job.id:
            del self._locks[job.resource_key]

    def _is_terminal_or_missing(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        return job is None or job.status.is_terminal


__all__ = ["JobLedger", "InMemoryJobLedger", "Clock"]

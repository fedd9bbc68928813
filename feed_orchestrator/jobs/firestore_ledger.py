"""
Firestore Job Ledger - Transactional job state in Firestore.

All transitions run inside Firestore transactions. Admission reads the job
document and the resource lock document in the same transaction, so two
workers racing to start jobs for one resource cannot both succeed.

Collections:
- sync_jobs/{jobId}: Job documents
- job_locks/{resourceKey}: Resource locks ({job_id, acquired_at})
- job_data/{jobId}: Work-set snapshots ({items, created_at, expires_at})
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import firestore

from feed_orchestrator.config import (
    JOB_DATA_COLLECTION,
    JOBS_COLLECTION,
    RESOURCE_LOCKS_COLLECTION,
    SNAPSHOT_TTL_HOURS,
)
from feed_orchestrator.errors import JobNotFound, PersistenceError
from feed_orchestrator.firestore_client import get_db
from feed_orchestrator.jobs.ledger import JobLedger
from feed_orchestrator.jobs.models import Job, JobStatus, JobTrigger

logger = logging.getLogger(__name__)

# Upper bound on documents touched by one maintenance query
QUERY_LIMIT = 100


class FirestoreJobLedger(JobLedger):

    def __init__(self, db: Optional[firestore.Client] = None, snapshot_ttl_hours: int = SNAPSHOT_TTL_HOURS):
        self._db = db
        self.snapshot_ttl = timedelta(hours=snapshot_ttl_hours)

    @property
    def db(self) -> firestore.Client:
        return self._db or get_db()

    def _job_ref(self, job_id: str):
        return self.db.collection(JOBS_COLLECTION).document(job_id)

    def _lock_ref(self, resource_key: str):
        return self.db.collection(RESOURCE_LOCKS_COLLECTION).document(resource_key)

    def _snapshot_ref(self, job_id: str):
        return self.db.collection(JOB_DATA_COLLECTION).document(job_id)

    def _run(self, name: str, fn, *args):
        """Run a transactional function, wrapping Firestore failures."""
        transaction = self.db.transaction()
        try:
            return fn(transaction, *args)
        except (JobNotFound, PersistenceError):
            raise
        except gcloud_exceptions.GoogleAPIError as e:
            raise PersistenceError(f"Ledger {name} failed: {e}") from e

    # =========================================================================
    # CRUD / QUERIES
    # =========================================================================

    def create(self, job: Job) -> Job:
        now = datetime.utcnow()
        job.created_at = job.created_at or now
        job.updated_at = now
        try:
            self._job_ref(job.id).set(job.to_dict())
        except gcloud_exceptions.GoogleAPIError as e:
            raise PersistenceError(f"Failed to create job {job.id}: {e}") from e

        logger.info("Created job: %s, kind=%s, resource=%s",
                    job.id, job.kind.value, job.resource_key)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        doc = self._job_ref(job_id).get()
        return Job.from_dict(doc.to_dict()) if doc.exists else None

    def list_by_status(self, status: JobStatus, limit: Optional[int] = None, offset: int = 0) -> List[Job]:
        query = (
            self.db.collection(JOBS_COLLECTION)
            .where("status", "==", status.value)
            .order_by("created_at")
        )
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [Job.from_dict(doc.to_dict()) for doc in query.stream()]

    def count_by_status(self, status: JobStatus) -> int:
        query = self.db.collection(JOBS_COLLECTION).where("status", "==", status.value)
        result = query.count().get()
        return int(result[0][0].value)

    def running_for_resource(self, resource_key: str) -> Optional[Job]:
        query = (
            self.db.collection(JOBS_COLLECTION)
            .where("resource_key", "==", resource_key)
            .where("status", "==", JobStatus.RUNNING.value)
            .limit(1)
        )
        for doc in query.stream():
            return Job.from_dict(doc.to_dict())
        return None

    def find_stalled(self, cutoff: datetime) -> List[Job]:
        query = (
            self.db.collection(JOBS_COLLECTION)
            .where("status", "==", JobStatus.RUNNING.value)
            .where("started_at", "<", cutoff)
            .limit(QUERY_LIMIT)
        )
        # Heartbeat may be null, so that half of the condition is checked here
        jobs = [Job.from_dict(doc.to_dict()) for doc in query.stream()]
        return [job for job in jobs if job.is_stalled(cutoff)]

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def try_start(self, job_id: str) -> Optional[Job]:
        db = self.db
        job_ref = self._job_ref(job_id)

        @firestore.transactional
        def start_transaction(transaction, job_ref):
            doc = job_ref.get(transaction=transaction)
            if not doc.exists:
                return None

            data = doc.to_dict()
            if data.get("status") != JobStatus.PENDING.value:
                return None

            resource_key = data.get("resource_key")
            lock_ref = self._lock_ref(resource_key)
            lock_doc = lock_ref.get(transaction=transaction)

            if lock_doc.exists:
                holder_id = lock_doc.to_dict().get("job_id")
                if holder_id and holder_id != job_id:
                    holder = db.collection(JOBS_COLLECTION).document(holder_id).get(transaction=transaction)
                    if holder.exists and holder.to_dict().get("status") == JobStatus.RUNNING.value:
                        return None

            now = datetime.utcnow()
            transaction.set(lock_ref, {
                "resource_key": resource_key,
                "job_id": job_id,
                "acquired_at": now,
            })
            updates = {
                "status": JobStatus.RUNNING.value,
                "started_at": now,
                "heartbeat_at": now,
                "updated_at": now,
            }
            transaction.update(job_ref, updates)

            updated = data.copy()
            updated.update(updates)
            return Job.from_dict(updated)

        job = self._run("start", start_transaction, job_ref)
        if job:
            logger.info("Started job: %s (resource %s)", job_id, job.resource_key)
        return job

    def set_work_set(self, job_id: str, items_total: int, total_chunks: int,
                     snapshot_ref: Optional[str]) -> Job:
        job_ref = self._job_ref(job_id)

        @firestore.transactional
        def work_set_transaction(transaction, job_ref):
            doc = job_ref.get(transaction=transaction)
            if not doc.exists:
                raise JobNotFound(f"Job {job_id} not found")

            data = doc.to_dict()
            checkpoint = dict(data.get("checkpoint") or {})
            checkpoint["total_chunks"] = total_chunks
            checkpoint.setdefault("completed_chunks", 0)
            checkpoint.setdefault("last_processed_offset", 0)

            now = datetime.utcnow()
            updates = {
                "items_total": items_total,
                "checkpoint": checkpoint,
                "snapshot_ref": snapshot_ref,
                "heartbeat_at": now,
                "updated_at": now,
            }
            transaction.update(job_ref, updates)
            data.update(updates)
            return Job.from_dict(data)

        return self._run("set_work_set", work_set_transaction, job_ref)

    def record_chunk(self, job_id: str, processed: int, failed: int, chunk_end: int) -> Job:
        job_ref = self._job_ref(job_id)

        @firestore.transactional
        def chunk_transaction(transaction, job_ref):
            doc = job_ref.get(transaction=transaction)
            if not doc.exists:
                raise JobNotFound(f"Job {job_id} not found")

            data = doc.to_dict()
            checkpoint = dict(data.get("checkpoint") or {})
            if chunk_end <= checkpoint.get("last_processed_offset", 0):
                return Job.from_dict(data)

            total_chunks = checkpoint.get("total_chunks", 0)
            checkpoint["completed_chunks"] = min(checkpoint.get("completed_chunks", 0) + 1, total_chunks)
            checkpoint["last_processed_offset"] = chunk_end

            now = datetime.utcnow()
            updates = {
                "items_processed": data.get("items_processed", 0) + processed,
                "items_failed": data.get("items_failed", 0) + failed,
                "checkpoint": checkpoint,
                "heartbeat_at": now,
                "updated_at": now,
            }
            transaction.update(job_ref, updates)
            data.update(updates)
            return Job.from_dict(data)

        return self._run("record_chunk", chunk_transaction, job_ref)

    def complete(self, job_id: str) -> bool:
        job_ref = self._job_ref(job_id)

        @firestore.transactional
        def complete_transaction(transaction, job_ref):
            doc = job_ref.get(transaction=transaction)
            if not doc.exists:
                raise JobNotFound(f"Job {job_id} not found")

            data = doc.to_dict()
            if data.get("status") != JobStatus.RUNNING.value:
                return False

            lock_ref = self._lock_ref(data.get("resource_key"))
            lock_doc = lock_ref.get(transaction=transaction)

            now = datetime.utcnow()
            transaction.update(job_ref, {
                "status": JobStatus.COMPLETED.value,
                "completed_at": now,
                "updated_at": now,
            })
            if lock_doc.exists and lock_doc.to_dict().get("job_id") == job_id:
                transaction.delete(lock_ref)
            return True

        completed = self._run("complete", complete_transaction, job_ref)
        if completed:
            logger.info("Completed job: %s", job_id)
        return completed

    def fail(self, job_id: str, error: str, error_code: Optional[str] = None) -> bool:
        job_ref = self._job_ref(job_id)

        @firestore.transactional
        def fail_transaction(transaction, job_ref):
            doc = job_ref.get(transaction=transaction)
            if not doc.exists:
                raise JobNotFound(f"Job {job_id} not found")

            data = doc.to_dict()
            if data.get("status") in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
                return False

            lock_ref = self._lock_ref(data.get("resource_key"))
            lock_doc = lock_ref.get(transaction=transaction)

            now = datetime.utcnow()
            transaction.update(job_ref, {
                "status": JobStatus.FAILED.value,
                "error": error,
                "error_code": error_code,
                "completed_at": now,
                "updated_at": now,
            })
            if lock_doc.exists and lock_doc.to_dict().get("job_id") == job_id:
                transaction.delete(lock_ref)
            return True

        failed = self._run("fail", fail_transaction, job_ref)
        if failed:
            logger.warning("Failed job: %s, error=%s", job_id, error)
        return failed

    def claim_for_resume(self, job_id: str, cutoff: datetime) -> Optional[Job]:
        job_ref = self._job_ref(job_id)

        @firestore.transactional
        def claim_transaction(transaction, job_ref):
            doc = job_ref.get(transaction=transaction)
            if not doc.exists:
                return None

            data = doc.to_dict()
            if not Job.from_dict(data).is_stalled(cutoff):
                return None

            now = datetime.utcnow()
            updates = {
                "heartbeat_at": now,
                "resume_count": data.get("resume_count", 0) + 1,
                "trigger": JobTrigger.STALL_RESUME.value,
                "updated_at": now,
            }
            transaction.update(job_ref, updates)
            data.update(updates)
            return Job.from_dict(data)

        return self._run("claim_for_resume", claim_transaction, job_ref)

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def save_snapshot(self, job_id: str, items: List[Any]) -> str:
        now = datetime.utcnow()
        try:
            self._snapshot_ref(job_id).set({
                "job_id": job_id,
                "items": items,
                "created_at": now,
                "expires_at": now + self.snapshot_ttl,
            })
        except gcloud_exceptions.GoogleAPIError as e:
            raise PersistenceError(f"Failed to save snapshot for job {job_id}: {e}") from e
        return f"{JOB_DATA_COLLECTION}/{job_id}"

    def load_snapshot(self, job_id: str) -> Optional[List[Any]]:
        doc = self._snapshot_ref(job_id).get()
        if not doc.exists:
            return None
        return list(doc.to_dict().get("items") or [])

    def purge_snapshot(self, job_id: str) -> None:
        try:
            self._snapshot_ref(job_id).delete()
        except gcloud_exceptions.GoogleAPIError as e:
            logger.warning("Failed to purge snapshot for job %s: %s", job_id, e)

    def purge_expired_snapshots(self) -> int:
        now = datetime.utcnow()
        query = (
            self.db.collection(JOB_DATA_COLLECTION)
            .where("expires_at", "<", now)
            .limit(QUERY_LIMIT)
        )

        purged = 0
        for doc in query.stream():
            job = self.get(doc.id)
            if job is not None and not job.status.is_terminal:
                continue
            doc.reference.delete()
            purged += 1

        if purged:
            logger.info("Purged %d expired snapshots", purged)
        return purged


__all__ = ["FirestoreJobLedger"]

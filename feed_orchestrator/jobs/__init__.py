"""
Jobs Package - Job ledger, batch execution, admission, and stall recovery.

This package provides:
- models: Job, Checkpoint, and status enums
- ledger: JobLedger interface and InMemoryJobLedger
- processor: BatchProcessor (checkpointed chunk execution)
- queue: JobQueue (admission control + worker pool)
- watchdog: StallReaper

FirestoreJobLedger is imported from jobs.firestore_ledger directly.
"""

from feed_orchestrator.jobs.models import (
    Checkpoint,
    Job,
    JobKind,
    JobOutcome,
    JobStatus,
    JobTrigger,
    new_job_id,
    resource_key_for,
)
from feed_orchestrator.jobs.ledger import InMemoryJobLedger, JobLedger
from feed_orchestrator.jobs.processor import BatchProcessor
from feed_orchestrator.jobs.queue import JobQueue
from feed_orchestrator.jobs.watchdog import StallReaper


__all__ = [
    # Models
    "Checkpoint",
    "Job",
    "JobKind",
    "JobOutcome",
    "JobStatus",
    "JobTrigger",
    "new_job_id",
    "resource_key_for",
    # Ledger
    "JobLedger",
    "InMemoryJobLedger",
    # Execution
    "BatchProcessor",
    "JobQueue",
    "StallReaper",
]

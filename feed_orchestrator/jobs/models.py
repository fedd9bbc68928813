"""
Job Models - Data models for the sync/categorize job ledger.

Firestore Collections:
- sync_jobs/{jobId}: Job documents
- job_data/{jobId}: Work-set snapshots for resumable jobs
- job_locks/{resourceKey}: Per-resource running locks
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from feed_orchestrator.config import MAX_RESUMES


class JobKind(str, Enum):
    """Job kinds."""
    SYNC = "sync"              # Fetch a feed and upsert its products
    CATEGORIZE = "categorize"  # Classify unprocessed products


class JobStatus(str, Enum):
    """Job status states."""
    PENDING = "pending"      # Waiting for admission
    RUNNING = "running"      # Admitted and being processed
    COMPLETED = "completed"  # Terminal
    FAILED = "failed"        # Terminal (also the cancellation signal)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobTrigger(str, Enum):
    """What created or restarted the job."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    FOLLOW_UP = "follow_up"        # Categorization scheduled after a sync
    STALL_RESUME = "stall_resume"  # Restarted by the stall reaper


CATEGORIZE_ALL = "*"


def resource_key_for(kind: JobKind, feed_id: Optional[str] = None) -> str:
    """
    Resource key used for the one-running-job-per-resource rule.

    Sync jobs are keyed by feed id. Categorize jobs get their own namespace
    so a feed can sync while its products are being classified.
    """
    if kind == JobKind.SYNC:
        if not feed_id:
            raise ValueError("sync jobs require a feed id")
        return feed_id
    return f"categorize:{feed_id or CATEGORIZE_ALL}"


def new_job_id() -> str:
    return f"job-{uuid.uuid4().hex[:12]}"


@dataclass
class Checkpoint:
    """Chunk-level progress of a running job."""
    total_chunks: int = 0
    completed_chunks: int = 0
    last_processed_offset: int = 0

    @property
    def started(self) -> bool:
        return self.total_chunks > 0

    def is_resumable(self) -> bool:
        """True when the work set is known and chunks remain."""
        return self.started and self.completed_chunks < self.total_chunks

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "completed_chunks": self.completed_chunks,
            "last_processed_offset": self.last_processed_offset,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Checkpoint":
        data = data or {}
        return cls(
            total_chunks=int(data.get("total_chunks", 0)),
            completed_chunks=int(data.get("completed_chunks", 0)),
            last_processed_offset=int(data.get("last_processed_offset", 0)),
        )


@dataclass
class Job:
    """Job ledger document model."""
    id: str
    kind: JobKind
    resource_key: str
    status: JobStatus = JobStatus.PENDING
    feed_id: Optional[str] = None
    user_id: Optional[str] = None
    trigger: JobTrigger = JobTrigger.MANUAL
    limit: Optional[int] = None  # Categorize: max products to take

    # Progress
    items_total: Optional[int] = None
    items_processed: int = 0
    items_failed: int = 0
    checkpoint: Checkpoint = field(default_factory=Checkpoint)
    snapshot_ref: Optional[str] = None

    # Stall recovery
    resume_count: int = 0
    max_resumes: int = MAX_RESUMES

    # Results
    error: Optional[str] = None
    error_code: Optional[str] = None

    # Timestamps
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    heartbeat_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict."""
        return {
            "id": self.id,
            "kind": self.kind.value if isinstance(self.kind, JobKind) else self.kind,
            "resource_key": self.resource_key,
            "status": self.status.value if isinstance(self.status, JobStatus) else self.status,
            "feed_id": self.feed_id,
            "user_id": self.user_id,
            "trigger": self.trigger.value if isinstance(self.trigger, JobTrigger) else self.trigger,
            "limit": self.limit,
            "items_total": self.items_total,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "checkpoint": self.checkpoint.to_dict(),
            "snapshot_ref": self.snapshot_ref,
            "resume_count": self.resume_count,
            "max_resumes": self.max_resumes,
            "error": self.error,
            "error_code": self.error_code,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "heartbeat_at": self.heartbeat_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from Firestore dict."""
        return cls(
            id=data.get("id", ""),
            kind=JobKind(data["kind"]) if data.get("kind") else JobKind.SYNC,
            resource_key=data.get("resource_key", ""),
            status=JobStatus(data["status"]) if data.get("status") else JobStatus.PENDING,
            feed_id=data.get("feed_id"),
            user_id=data.get("user_id"),
            trigger=JobTrigger(data["trigger"]) if data.get("trigger") else JobTrigger.MANUAL,
            limit=data.get("limit"),
            items_total=data.get("items_total"),
            items_processed=data.get("items_processed", 0),
            items_failed=data.get("items_failed", 0),
            checkpoint=Checkpoint.from_dict(data.get("checkpoint")),
            snapshot_ref=data.get("snapshot_ref"),
            resume_count=data.get("resume_count", 0),
            max_resumes=data.get("max_resumes", MAX_RESUMES),
            error=data.get("error"),
            error_code=data.get("error_code"),
            created_at=data.get("created_at"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            heartbeat_at=data.get("heartbeat_at"),
            updated_at=data.get("updated_at"),
        )

    @property
    def last_progress_at(self) -> Optional[datetime]:
        """Latest evidence of progress: heartbeat, else start time."""
        return self.heartbeat_at or self.started_at

    def is_stalled(self, cutoff: datetime) -> bool:
        """Running, started before cutoff, and no checkpoint write since."""
        if self.status != JobStatus.RUNNING or self.started_at is None:
            return False
        if _naive(self.started_at) >= cutoff:
            return False
        return self.heartbeat_at is None or _naive(self.heartbeat_at) < cutoff

    def can_resume(self) -> bool:
        return self.checkpoint.is_resumable() and self.resume_count < self.max_resumes


@dataclass
class JobOutcome:
    """Result of executing or resuming a job."""
    job_id: str
    status: JobStatus
    items_total: int = 0
    items_processed: int = 0
    items_failed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "items_total": self.items_total,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "error": self.error,
        }


def _naive(value: datetime) -> datetime:
    # Firestore returns tz-aware datetimes; the ledger compares in naive UTC.
    return value.replace(tzinfo=None) if value.tzinfo else value


__all__ = [
    "JobKind",
    "JobStatus",
    "JobTrigger",
    "Checkpoint",
    "Job",
    "JobOutcome",
    "CATEGORIZE_ALL",
    "resource_key_for",
    "new_job_id",
]

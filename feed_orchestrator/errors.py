"""
Errors - Exception taxonomy for feed sync and categorization.

Propagation policy:
- Per-item errors (one product upsert, one oracle batch) are caught and counted
- Chunk-level and ledger-level errors fail the whole job
- AlreadyRunning is a caller-visible rejection, never retried internally
"""

from __future__ import annotations

from typing import Optional


class FeedOrchestratorError(Exception):
    """Base class for all orchestrator errors."""

    code = "ERROR"


class FetchError(FeedOrchestratorError):
    """Raised when the source feed cannot be reached."""

    code = "FETCH_FAILED"

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to fetch feed '{url}': {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


class ParseError(FeedOrchestratorError):
    """Raised when feed content is malformed."""

    code = "PARSE_FAILED"


class PersistenceError(FeedOrchestratorError):
    """Raised when the ledger or product store is unavailable or conflicts."""

    code = "PERSISTENCE_FAILED"


class OracleError(FeedOrchestratorError):
    """Raised when the classification oracle fails or returns garbage."""

    code = "ORACLE_FAILED"


class AlreadyRunning(FeedOrchestratorError):
    """Raised when a job is scheduled for a resource that already has one running."""

    code = "ALREADY_RUNNING"

    def __init__(self, resource_key: str, running_job_id: Optional[str] = None):
        message = f"A job is already running for resource '{resource_key}'"
        if running_job_id:
            message += f" (job {running_job_id})"
        super().__init__(message)
        self.resource_key = resource_key
        self.running_job_id = running_job_id


class QueueClosed(FeedOrchestratorError):
    """Raised when work is handed to a job queue that has been shut down."""

    code = "QUEUE_CLOSED"


class StallTimeout(FeedOrchestratorError):
    """
    Recorded by the stall reaper against jobs that stopped making progress.

    Workers never raise this; the reaper uses it to build the job's error.
    """

    code = "STALL_TIMEOUT"

    def __init__(self, job_id: str, max_age_minutes: int, detail: str = ""):
        message = f"Job {job_id} stalled for more than {max_age_minutes} minutes"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.job_id = job_id
        self.max_age_minutes = max_age_minutes


class JobNotFound(PersistenceError):
    """Raised when a job id has no ledger record."""

    code = "JOB_NOT_FOUND"


def error_code(exc: BaseException) -> str:
    """Stable error code for a caught exception."""
    return getattr(exc, "code", None) or "EXCEPTION"


__all__ = [
    "FeedOrchestratorError",
    "FetchError",
    "ParseError",
    "PersistenceError",
    "OracleError",
    "AlreadyRunning",
    "QueueClosed",
    "StallTimeout",
    "JobNotFound",
    "error_code",
]

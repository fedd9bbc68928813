"""
Structured event logging.

Uses one-line JSON records for Cloud Logging compatibility.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime
from typing import Any, Optional

logger = logging.getLogger("feed_orchestrator.events")

WORKER_ID = os.getenv("WORKER_ID", f"worker-{uuid.uuid4().hex[:8]}")


def log_event(
    event: str,
    job_id: Optional[str] = None,
    job_kind: Optional[str] = None,
    resource_key: Optional[str] = None,
    duration_ms: Optional[int] = None,
    **extra: Any,
) -> None:
    """
    Log a structured event.

    Uses JSON for Cloud Logging compatibility.
    """
    record = {
        "event": event,
        "worker_id": WORKER_ID,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }

    if job_id:
        record["job_id"] = job_id
    if job_kind:
        record["job_kind"] = job_kind
    if resource_key:
        record["resource_key"] = resource_key
    if duration_ms is not None:
        record["duration_ms"] = duration_ms

    record.update(extra)

    logger.info(json.dumps(record, default=str))


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging for worker entry points (JSON lines, no prefix)."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
    )


__all__ = ["log_event", "configure_logging", "WORKER_ID"]

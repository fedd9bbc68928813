"""
Feed Worker - Bounded job processing run for the feed orchestrator.

This worker:
1. Recovers stalled jobs (resume from checkpoint or fail)
2. Admits pending jobs up to the concurrency ceiling
3. Waits for admitted jobs, re-admitting as slots free up
4. Exits when nothing is pending or running, or the time budget is spent

Designed to run as a Cloud Run Job triggered on a schedule. Jobs still
running at the deadline keep their checkpoint and are picked up by the
stall reaper of a later run.
"""

from __future__ import annotations

import logging
import os
import signal
import time
from typing import Any, Dict, Optional

from feed_orchestrator.events import configure_logging, log_event
from feed_orchestrator.jobs.models import JobStatus
from feed_orchestrator.runtime import Services, build_services

logger = logging.getLogger(__name__)

# Worker configuration
MAX_SECONDS_PER_RUN = int(os.getenv("MAX_SECONDS_PER_RUN", "840"))  # 14 min
SAFETY_MARGIN_SECS = int(os.getenv("SAFETY_MARGIN_SECS", "60"))
WAIT_INTERVAL_SECS = float(os.getenv("WAIT_INTERVAL_SECS", "5"))
REAP_ON_START = os.getenv("REAP_ON_START", "true").lower() == "true"


class FeedWorker:
    """
    Queue-draining worker.

    Bounded execution: admits and waits on jobs until the queue is empty or
    MAX_SECONDS_PER_RUN is exhausted, then exits.
    """

    def __init__(self, services: Services, max_seconds: int = MAX_SECONDS_PER_RUN,
                 wait_interval: float = WAIT_INTERVAL_SECS):
        self.services = services
        self.max_seconds = max_seconds
        self.wait_interval = wait_interval
        self.running = False
        self.admitted = 0
        self._deadline = 0.0

    def start(self, reap: bool = REAP_ON_START) -> Dict[str, Any]:
        start_time = time.time()
        self._deadline = start_time + self.max_seconds - SAFETY_MARGIN_SECS
        self.running = True

        log_event("worker_started", deadline_secs=self.max_seconds - SAFETY_MARGIN_SECS)

        try:
            if reap:
                self.services.reaper.cleanup_stalled()
            self._run_loop()
        finally:
            self.running = False
            log_event("worker_stopped", jobs_admitted=self.admitted,
                      duration_ms=int((time.time() - start_time) * 1000))

        return self.services.queue.get_queue_status()

    def stop(self):
        """Signal the worker to stop admitting jobs."""
        log_event("worker_stopping", reason="signal")
        self.running = False

    def handle_signal(self, signum, frame):
        log_event("signal_received", signal=signum)
        self.stop()

    def _run_loop(self):
        queue = self.services.queue
        ledger = self.services.ledger

        while self.running and time.time() < self._deadline:
            try:
                result = queue.process_queue()
            except Exception as e:
                log_event("admission_error", error=str(e), error_type=type(e).__name__)
                break
            self.admitted += len(result["admitted"])

            idle = queue.wait_idle(timeout=self.wait_interval)
            if idle and ledger.count_by_status(JobStatus.PENDING) == 0:
                log_event("no_jobs_available", action="exiting")
                break

        if time.time() >= self._deadline:
            log_event("deadline_reached", reason="time_budget_exhausted")


def run_worker(in_memory: bool = False) -> Dict[str, Any]:
    """Entry point for running the worker."""
    configure_logging()

    services = build_services(in_memory=in_memory, auto_requeue=False)
    worker = FeedWorker(services)
    signal.signal(signal.SIGTERM, worker.handle_signal)
    signal.signal(signal.SIGINT, worker.handle_signal)

    try:
        return worker.start()
    finally:
        services.close(wait=False)


def run_reaper(dry_run: Optional[bool] = None) -> Dict[str, Any]:
    """Entry point for running the stall reaper as a scheduled task."""
    configure_logging()

    if dry_run is None:
        dry_run = os.getenv("REAPER_DRY_RUN", "false").lower() == "true"

    services = build_services(auto_requeue=False)
    log_event("reaper_started", dry_run=dry_run)
    try:
        results = services.reaper.cleanup_stalled(dry_run=dry_run)
        # Resumed jobs run on this process's pool; let them finish
        services.queue.wait_idle()
    finally:
        services.close()

    log_event("reaper_completed", results=results)
    return results


if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1 and sys.argv[1] == "reaper":
        run_reaper()
    else:
        run_worker()

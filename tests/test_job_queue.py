"""Tests for admission control: concurrency ceiling, resource exclusivity, FIFO."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import WorkerCrash, wait_for
from feed_orchestrator.errors import AlreadyRunning, QueueClosed
from feed_orchestrator.jobs.models import JobKind, JobOutcome, JobStatus
from feed_orchestrator.jobs.queue import JobQueue


class StubProcessor:
    """Completes jobs in the ledger; optionally blocks until released."""

    def __init__(self, ledger, block=False):
        self.ledger = ledger
        self.release = threading.Event()
        if not block:
            self.release.set()
        self.executed = []
        self.resumed = []
        self._lock = threading.Lock()

    def execute(self, job):
        with self._lock:
            self.executed.append(job.id)
        self.release.wait(timeout=5)
        self.ledger.complete(job.id)
        return JobOutcome(job.id, JobStatus.COMPLETED)

    def check_resumable(self, job):
        return []

    def resume(self, job, items):
        with self._lock:
            self.resumed.append(job.id)
        return self.execute(job)


class CrashingProcessor(StubProcessor):
    def execute(self, job):
        raise WorkerCrash("boom")


@pytest.fixture
def make_queue(ledger):
    queues = []

    def factory(processor, **kwargs):
        kwargs.setdefault("auto_requeue", False)
        queue = JobQueue(ledger, processor, **kwargs)
        queues.append(queue)
        return queue

    yield factory
    for queue in queues:
        queue.shutdown(wait=True)


class TestScheduling:

    def test_schedule_creates_pending_job(self, ledger, make_queue):
        queue = make_queue(StubProcessor(ledger))
        job_id = queue.schedule_feed_sync("feed-1", user_id="user-1")

        job = ledger.require(job_id)
        assert job.status == JobStatus.PENDING
        assert job.kind == JobKind.SYNC
        assert job.resource_key == "feed-1"

    def test_categorization_uses_own_resource_namespace(self, ledger, make_queue):
        queue = make_queue(StubProcessor(ledger))
        assert ledger.require(queue.schedule_categorization("feed-1")).resource_key == "categorize:feed-1"
        assert ledger.require(queue.schedule_categorization()).resource_key == "categorize:*"

    def test_schedule_rejects_running_resource(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor, max_concurrent=2)
        first = queue.schedule_feed_sync("feed-1")
        queue.process_queue()

        with pytest.raises(AlreadyRunning) as exc_info:
            queue.schedule_feed_sync("feed-1")
        assert exc_info.value.running_job_id == first

        # Other resources are unaffected
        queue.schedule_feed_sync("feed-2")
        processor.release.set()


class TestAdmission:

    def test_concurrency_ceiling(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor, max_concurrent=5)
        for i in range(7):
            queue.schedule_feed_sync(f"feed-{i}")

        first = queue.process_queue()
        assert len(first["admitted"]) == 5
        assert ledger.count_by_status(JobStatus.RUNNING) == 5
        assert ledger.count_by_status(JobStatus.PENDING) == 2

        assert queue.process_queue()["admitted"] == []

        processor.release.set()
        assert queue.wait_idle(timeout=5)
        assert len(queue.process_queue()["admitted"]) == 2
        assert queue.wait_idle(timeout=5)
        assert ledger.count_by_status(JobStatus.COMPLETED) == 7

    def test_admission_is_fifo(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor, max_concurrent=2)
        ids = [queue.schedule_feed_sync(f"feed-{i}") for i in range(3)]

        assert queue.process_queue()["admitted"] == ids[:2]
        processor.release.set()

    def test_one_running_job_per_resource(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor, max_concurrent=5)
        first = queue.schedule_feed_sync("feed-1")
        second = queue.schedule_feed_sync("feed-1")

        result = queue.process_queue()
        assert result["admitted"] == [first]
        assert result["skipped"] == 1

        # Still blocked while the first runs
        assert queue.process_queue()["admitted"] == []

        processor.release.set()
        assert queue.wait_idle(timeout=5)
        assert queue.process_queue()["admitted"] == [second]

    def test_busy_resource_backlog_does_not_starve_other_feeds(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor, max_concurrent=5, pending_fetch_limit=10)
        busy = [queue.schedule_feed_sync("busy-feed") for _ in range(11)]
        idle = queue.schedule_feed_sync("idle-feed")

        result = queue.process_queue()

        assert result["admitted"] == [busy[0], idle]
        assert result["running"] == 2
        assert ledger.count_by_status(JobStatus.PENDING) == 10
        processor.release.set()

    def test_admission_pages_through_pending_jobs_in_order(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor, max_concurrent=4, pending_fetch_limit=3)
        first = queue.schedule_feed_sync("feed-1")
        for _ in range(4):
            queue.schedule_feed_sync("feed-1")
        others = [queue.schedule_feed_sync(f"feed-{i}") for i in range(2, 6)]

        result = queue.process_queue()

        assert result["admitted"] == [first] + others[:3]
        assert ledger.require(others[3]).status == JobStatus.PENDING
        processor.release.set()

    def test_closed_pool_fails_admitted_job(self, ledger, make_queue):
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        queue = make_queue(StubProcessor(ledger), executor=executor)
        first = queue.schedule_feed_sync("feed-1")
        second = queue.schedule_feed_sync("feed-2")

        result = queue.process_queue()

        assert result["admitted"] == []
        failed = ledger.require(first)
        assert failed.status == JobStatus.FAILED
        assert failed.error_code == "QUEUE_CLOSED"
        assert ledger.require(second).status == JobStatus.PENDING
        assert ledger.resource_holder("feed-1") is None
        assert queue.get_queue_status()["in_flight"] == 0

    def test_resume_on_closed_pool_raises(self, ledger, make_queue):
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        queue = make_queue(StubProcessor(ledger), executor=executor)
        job = ledger.try_start(queue.schedule_feed_sync("feed-1"))

        with pytest.raises(QueueClosed):
            queue.resume_job(job)
        assert queue.get_queue_status()["in_flight"] == 0

    def test_competing_queues_admit_each_job_once(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queues = [make_queue(processor, max_concurrent=5) for _ in range(4)]
        queues[0].schedule_feed_sync("feed-1")
        queues[0].schedule_feed_sync("feed-1")
        queues[0].schedule_feed_sync("feed-2")

        barrier = threading.Barrier(len(queues))
        admitted = []
        lock = threading.Lock()

        def run(queue):
            barrier.wait()
            result = queue.process_queue()
            with lock:
                admitted.extend(result["admitted"])

        threads = [threading.Thread(target=run, args=(q,)) for q in queues]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(admitted) == len(set(admitted)) == 2
        running = ledger.list_by_status(JobStatus.RUNNING)
        assert sorted(j.resource_key for j in running) == ["feed-1", "feed-2"]
        processor.release.set()

    def test_finished_jobs_trigger_requeue(self, ledger, make_queue):
        processor = StubProcessor(ledger)
        queue = make_queue(processor, max_concurrent=2, auto_requeue=True, requeue_delay_seconds=0)
        for i in range(6):
            queue.schedule_feed_sync(f"feed-{i}")

        queue.process_queue()

        assert wait_for(lambda: ledger.count_by_status(JobStatus.COMPLETED) == 6)
        assert sorted(processor.executed) == sorted(j.id for j in ledger.list_by_status(JobStatus.COMPLETED))

    def test_worker_crash_leaves_job_running(self, ledger, make_queue):
        queue = make_queue(CrashingProcessor(ledger))
        job_id = queue.schedule_feed_sync("feed-1")

        queue.process_queue()

        assert wait_for(lambda: queue.get_queue_status()["in_flight"] == 0)
        assert ledger.require(job_id).status == JobStatus.RUNNING

    def test_closed_queue_admits_nothing(self, ledger, make_queue):
        queue = make_queue(StubProcessor(ledger))
        queue.schedule_feed_sync("feed-1")
        queue.shutdown()
        assert queue.process_queue()["admitted"] == []


class TestResumeAndStatus:

    def test_resume_rejects_job_in_flight(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor)
        job_id = queue.schedule_feed_sync("feed-1")
        queue.process_queue()

        with pytest.raises(AlreadyRunning):
            queue.resume_job(ledger.require(job_id))
        processor.release.set()

    def test_resume_runs_on_pool(self, ledger, make_queue):
        processor = StubProcessor(ledger)
        queue = make_queue(processor)
        job_id = queue.schedule_feed_sync("feed-1")
        job = ledger.try_start(job_id)

        queue.resume_job(job)

        assert queue.wait_idle(timeout=5)
        assert processor.resumed == [job_id]
        assert ledger.require(job_id).status == JobStatus.COMPLETED

    def test_queue_status_counts(self, ledger, make_queue):
        processor = StubProcessor(ledger, block=True)
        queue = make_queue(processor, max_concurrent=3)
        for i in range(4):
            queue.schedule_feed_sync(f"feed-{i}")
        queue.process_queue()

        status = queue.get_queue_status()

        assert status["pending"] == 1
        assert status["running"] == 3
        assert status["in_flight"] == 3
        assert status["available_slots"] == 0
        assert status["max_concurrent"] == 3
        processor.release.set()

"""Tests for turning due feeds into sync jobs."""

from datetime import timedelta

import pytest

from feed_orchestrator.feeds.models import Feed, FeedType
from feed_orchestrator.feeds.store import InMemoryFeedStore
from feed_orchestrator.jobs.models import Job, JobKind, JobStatus, JobTrigger
from feed_orchestrator.jobs.queue import JobQueue
from workers.scheduler import schedule_due_feeds


class IdleProcessor:
    def execute(self, job):
        raise AssertionError("scheduler tests never admit jobs")


@pytest.fixture
def queue(ledger):
    queue = JobQueue(ledger, IdleProcessor(), auto_requeue=False)
    yield queue
    queue.shutdown()


@pytest.fixture
def feeds(clock):
    now = clock()
    return InMemoryFeedStore([
        Feed(id="never-synced", user_id="u1", url="https://a.example/feed.xml"),
        Feed(id="stale", user_id="u1", url="https://b.example/feed.xml",
             sync_interval_seconds=3600, last_sync_at=now - timedelta(hours=2)),
        Feed(id="fresh", user_id="u1", url="https://c.example/feed.xml",
             sync_interval_seconds=3600, last_sync_at=now - timedelta(minutes=10)),
        Feed(id="paused", user_id="u1", url="https://d.example/feed.xml", is_paused=True),
        Feed(id="inactive", user_id="u1", url="https://e.example/feed.xml", status="disabled"),
    ])


class TestScheduleDueFeeds:

    def test_schedules_due_feeds_only(self, ledger, queue, feeds, clock):
        results = schedule_due_feeds(feeds, queue, now=clock())

        assert results["checked"] == 3
        assert results["scheduled"] == 2
        jobs = [ledger.require(job_id) for job_id in results["job_ids"]]
        assert sorted(j.feed_id for j in jobs) == ["never-synced", "stale"]
        assert all(j.trigger == JobTrigger.SCHEDULED and j.kind == JobKind.SYNC for j in jobs)
        assert all(j.user_id == "u1" for j in jobs)

    def test_pending_job_is_not_duplicated(self, ledger, queue, feeds, clock):
        schedule_due_feeds(feeds, queue, now=clock())
        results = schedule_due_feeds(feeds, queue, now=clock())

        assert results["scheduled"] == 0
        assert results["skipped"] == 2
        assert ledger.count_by_status(JobStatus.PENDING) == 2

    def test_running_feed_is_skipped(self, ledger, queue, feeds, clock):
        ledger.create(Job(id="job-running", kind=JobKind.SYNC, resource_key="stale", feed_id="stale"))
        ledger.try_start("job-running")

        results = schedule_due_feeds(feeds, queue, now=clock())

        assert results["scheduled"] == 1
        assert results["skipped"] == 1


class TestFeedModel:

    def test_is_due(self, clock):
        feed = Feed(id="f", user_id="u", sync_interval_seconds=60, last_sync_at=clock())
        assert not feed.is_due(clock() + timedelta(seconds=59))
        assert feed.is_due(clock() + timedelta(seconds=60))

    def test_boribon_feed_url_uses_uuid(self):
        feed = Feed.from_dict({"id": "f", "userId": "u", "type": "boribon", "uuid": "abc-123"})
        assert feed.type == FeedType.BORIBON
        assert feed.feed_url().endswith("/abc-123")

    def test_unknown_type_falls_back_to_generic(self):
        feed = Feed.from_dict({"id": "f", "userId": "u", "type": "ftp", "url": "https://x.example/f.xml"})
        assert feed.type == FeedType.GENERIC
        assert feed.feed_url() == "https://x.example/f.xml"

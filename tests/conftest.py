"""Shared fixtures: a small taxonomy, in-memory stores, and test doubles."""

import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from feed_orchestrator.categorization.categorizer import AIBatchCategorizer
from feed_orchestrator.categorization.processor import CategoryProcessor
from feed_orchestrator.feeds.fetcher import FeedFetcher
from feed_orchestrator.feeds.models import Feed, Product
from feed_orchestrator.feeds.store import InMemoryFeedStore, InMemoryProductStore
from feed_orchestrator.jobs.ledger import InMemoryJobLedger
from feed_orchestrator.jobs.models import Job, JobKind, new_job_id, resource_key_for
from feed_orchestrator.taxonomy.index import CategoryIndex
from feed_orchestrator.taxonomy.matcher import CategoryMatcher
from feed_orchestrator.taxonomy.models import Taxonomy


TAXONOMY_RECORDS = [
    {"key": 1, "title": "Jucarii", "path": "Jucarii", "children_count": 3},
    {"key": 2, "title": "Jucarii de plus", "path": "Jucarii > Jucarii de plus", "children_count": 0},
    {"key": 3, "title": "Jocuri de societate", "path": "Jucarii > Jocuri de societate", "children_count": 0},
    {"key": 4, "title": "Constructii", "path": "Jucarii > Constructii", "children_count": 2},
    {"key": 5, "title": "Seturi LEGO", "path": "Jucarii > Constructii > Seturi LEGO",
     "children_count": 0, "nomenclature_name": "LEGO"},
    {"key": 6, "title": "Cuburi magnetice", "path": "Jucarii > Constructii > Cuburi magnetice",
     "children_count": 0},
    {"key": 7, "title": "Papusi", "path": "Papusi", "children_count": 1},
    {"key": 8, "title": "Papusi fashion", "path": "Papusi > Papusi fashion", "children_count": 0},
    {"key": 10, "title": "Vehicule", "path": "Vehicule", "children_count": 1},
    {"key": 11, "title": "Masinute", "path": "Vehicule > Masinute", "children_count": 0},
]


class FakeClock:
    """Controllable naive-UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class SleepRecorder:
    """Records sleeps and advances its own monotonic time instead of blocking."""

    def __init__(self):
        self.calls: List[float] = []
        self.now = 0.0

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.now += seconds

    def monotonic(self) -> float:
        return self.now


class StaticFetcher(FeedFetcher):
    """Serves fixed feed bytes instead of making HTTP requests."""

    def __init__(self, raw: bytes = b"<products/>"):
        super().__init__()
        self.raw = raw
        self.urls: List[str] = []

    def fetch(self, url: str) -> bytes:
        self.urls.append(url)
        return self.raw


class RecordingNotifier:
    def __init__(self):
        self.calls: List[Dict[str, Any]] = []

    def notify(self, user_id, payload):
        self.calls.append({"user_id": user_id, **payload})
        return {"delivered": 1, "failed": 0}


def vendor_feed_xml(count: int, prefix: str = "SKU", categories: Optional[List[str]] = None) -> bytes:
    categories = categories or ["Jucarii", "Seturi LEGO"]
    cats = "".join(f"<category>{c}</category>" for c in categories)
    items = "".join(
        f"<product><id>{prefix}-{i}</id><name>Product {i}</name>"
        f"<price_b2c>{10 + i}.99</price_b2c><quantity>{i % 3}</quantity>"
        f"<brand>Acme</brand><categories>{cats}</categories></product>"
        for i in range(count)
    )
    return f"<?xml version='1.0' encoding='UTF-8'?><products>{items}</products>".encode("utf-8")


@pytest.fixture
def taxonomy() -> Taxonomy:
    return Taxonomy.from_records(TAXONOMY_RECORDS)


@pytest.fixture
def index(taxonomy) -> CategoryIndex:
    return CategoryIndex.build(taxonomy)


@pytest.fixture
def matcher(index) -> CategoryMatcher:
    return CategoryMatcher(index)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock) -> InMemoryJobLedger:
    return InMemoryJobLedger(clock=clock)


@pytest.fixture
def product_store() -> InMemoryProductStore:
    return InMemoryProductStore()


@pytest.fixture
def feed() -> Feed:
    return Feed(id="feed-1", user_id="user-1", url="https://example.com/feed.xml")


@pytest.fixture
def feed_store(feed) -> InMemoryFeedStore:
    return InMemoryFeedStore([feed])


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def make_products(count: int, feed_id: str = "feed-1", categories: Optional[List[str]] = None) -> List[Product]:
    return [
        Product(sku=f"P{i}", title=f"Product {i}", feed_id=feed_id,
                original_categories=list(categories or ["Seturi LEGO"]))
        for i in range(count)
    ]


@pytest.fixture
def category_processor(taxonomy, matcher, product_store) -> CategoryProcessor:
    """Index-only classification over the shared product store."""
    categorizer = AIBatchCategorizer(llm=None, taxonomy=taxonomy, matcher=matcher, strategy="index")
    return CategoryProcessor(product_store, categorizer)


class WorkerCrash(BaseException):
    """Simulates the worker process dying mid-job (not caught as a job error)."""


class CrashingProductStore(InMemoryProductStore):
    """Product store that kills the worker on the first upsert of one sku."""

    def __init__(self, crash_on_sku: Optional[str] = None):
        super().__init__()
        self.crash_on_sku = crash_on_sku
        self.upserts: Dict[str, int] = {}

    def upsert(self, feed_id, product):
        if product.sku == self.crash_on_sku:
            self.crash_on_sku = None
            raise WorkerCrash(f"worker died at {product.sku}")
        self.upserts[product.sku] = self.upserts.get(product.sku, 0) + 1
        return super().upsert(feed_id, product)


def start_job(ledger, kind: JobKind = JobKind.SYNC, feed_id: Optional[str] = "feed-1",
              limit: Optional[int] = None, user_id: str = "user-1") -> Job:
    """Create a job and admit it directly through the ledger."""
    job = ledger.create(Job(
        id=new_job_id(),
        kind=kind,
        resource_key=resource_key_for(kind, feed_id),
        feed_id=feed_id,
        user_id=user_id,
        limit=limit,
    ))
    started = ledger.try_start(job.id)
    assert started is not None
    return started


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll until predicate() is true or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()

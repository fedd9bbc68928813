"""
Runtime wiring - Build the collaborators a worker or CLI command needs.

Production uses Firestore stores and the Vertex oracle. `in_memory=True`
wires in-memory stores for local dry runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from feed_orchestrator.categorization.categorizer import AIBatchCategorizer
from feed_orchestrator.categorization.llm_client import LLMClient, get_llm_client
from feed_orchestrator.categorization.processor import CategoryProcessor
from feed_orchestrator.config import CATEGORIZATION_STRATEGY
from feed_orchestrator.feeds.fetcher import FeedFetcher
from feed_orchestrator.feeds.store import (
    FeedStore,
    InMemoryFeedStore,
    InMemoryProductStore,
    InMemoryWebhookStore,
    ProductStore,
    WebhookStore,
)
from feed_orchestrator.jobs.ledger import InMemoryJobLedger, JobLedger
from feed_orchestrator.jobs.processor import BatchProcessor
from feed_orchestrator.jobs.queue import JobQueue
from feed_orchestrator.jobs.watchdog import StallReaper
from feed_orchestrator.notifications.webhooks import WebhookNotifier
from feed_orchestrator.taxonomy.index import CategoryIndex, get_category_index
from feed_orchestrator.taxonomy.matcher import CategoryMatcher

logger = logging.getLogger(__name__)


@dataclass
class Services:
    ledger: JobLedger
    products: ProductStore
    feeds: FeedStore
    webhooks: WebhookStore
    category_processor: CategoryProcessor
    processor: BatchProcessor
    queue: JobQueue
    reaper: StallReaper

    def close(self, wait: bool = True) -> None:
        self.queue.shutdown(wait=wait)


def build_category_processor(
    products: ProductStore,
    index: Optional[CategoryIndex] = None,
    llm: Optional[LLMClient] = None,
    strategy: str = CATEGORIZATION_STRATEGY,
    use_mock: bool = False,
) -> CategoryProcessor:
    index = index or get_category_index()
    if llm is None and strategy != "index":
        llm = get_llm_client(use_mock=use_mock)
    categorizer = AIBatchCategorizer(
        llm=llm,
        taxonomy=index.taxonomy,
        matcher=CategoryMatcher(index),
        strategy=strategy,
    )
    return CategoryProcessor(products, categorizer)


def build_services(
    in_memory: bool = False,
    use_mock: bool = False,
    strategy: str = CATEGORIZATION_STRATEGY,
    auto_requeue: bool = True,
) -> Services:
    """Wire ledger, stores, processor, queue, and reaper."""
    if in_memory:
        ledger: JobLedger = InMemoryJobLedger()
        products: ProductStore = InMemoryProductStore()
        feeds: FeedStore = InMemoryFeedStore()
        webhooks: WebhookStore = InMemoryWebhookStore()
    else:
        from feed_orchestrator.feeds.firestore_store import (
            FirestoreFeedStore,
            FirestoreProductStore,
            FirestoreWebhookStore,
        )
        from feed_orchestrator.jobs.firestore_ledger import FirestoreJobLedger

        ledger = FirestoreJobLedger()
        products = FirestoreProductStore()
        feeds = FirestoreFeedStore()
        webhooks = FirestoreWebhookStore()

    category_processor = build_category_processor(products, strategy=strategy, use_mock=use_mock)
    processor = BatchProcessor(
        ledger=ledger,
        products=products,
        feeds=feeds,
        fetcher=FeedFetcher(),
        category_processor=category_processor,
        notifier=WebhookNotifier(webhooks),
    )
    queue = JobQueue(ledger, processor, auto_requeue=auto_requeue)
    reaper = StallReaper(ledger, queue)

    logger.info("Services ready (in_memory=%s, strategy=%s)", in_memory, strategy)
    return Services(
        ledger=ledger,
        products=products,
        feeds=feeds,
        webhooks=webhooks,
        category_processor=category_processor,
        processor=processor,
        queue=queue,
        reaper=reaper,
    )


__all__ = ["Services", "build_services", "build_category_processor"]

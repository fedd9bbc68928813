"""
Feeds Package - Feed configuration, product records, fetch/parse, stores.

Firestore-backed stores are imported from feeds.firestore_store directly so
that in-memory use does not require a Firestore client.
"""

from feed_orchestrator.feeds.models import (
    Classification,
    Feed,
    FeedType,
    Product,
    Webhook,
    product_id,
)
from feed_orchestrator.feeds.fetcher import FeedFetcher
from feed_orchestrator.feeds.store import (
    FeedStore,
    InMemoryFeedStore,
    InMemoryProductStore,
    InMemoryWebhookStore,
    ProductStore,
    WebhookStore,
)


__all__ = [
    "Classification",
    "Feed",
    "FeedType",
    "Product",
    "Webhook",
    "product_id",
    "FeedFetcher",
    "FeedStore",
    "ProductStore",
    "WebhookStore",
    "InMemoryFeedStore",
    "InMemoryProductStore",
    "InMemoryWebhookStore",
]

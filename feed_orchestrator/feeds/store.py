"""
Stores - Product, feed, and webhook persistence interfaces.

The persistent store is a collaborator: the orchestrator only needs upsert,
"unprocessed" queries, and classification writes. InMemory implementations
back tests and local runs; Firestore implementations live in firestore_store.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from feed_orchestrator.errors import PersistenceError
from feed_orchestrator.feeds.models import Classification, Feed, Product, Webhook

logger = logging.getLogger(__name__)


class ProductStore(ABC):
    """Product persistence used by sync and categorize jobs."""

    @abstractmethod
    def upsert(self, feed_id: str, product: Product) -> str:
        """
        Create or update a product, preserving existing classification fields.

        Returns:
            Product document id
        """

    @abstractmethod
    def get(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    def get_many(self, product_ids: List[str]) -> Dict[str, Product]:
        """Fetch several products; missing ids are omitted from the result."""

    @abstractmethod
    def list_unprocessed(self, limit: int, feed_id: Optional[str] = None) -> List[Product]:
        pass

    @abstractmethod
    def update_classification(self, product_id: str, classification: Classification) -> None:
        pass

    @abstractmethod
    def processing_stats(self, feed_id: Optional[str] = None) -> Dict[str, int]:
        """Return total / processed / unprocessed counts."""


class FeedStore(ABC):
    """Feed configuration lookups."""

    @abstractmethod
    def get(self, feed_id: str) -> Optional[Feed]:
        pass

    @abstractmethod
    def list_active(self) -> List[Feed]:
        pass

    @abstractmethod
    def mark_synced(self, feed_id: str, when: Optional[datetime] = None) -> None:
        pass


class WebhookStore(ABC):
    """Webhook registrations."""

    @abstractmethod
    def list_active_for_user(self, user_id: str) -> List[Webhook]:
        pass

    @abstractmethod
    def record_trigger(self, webhook_id: str, data: Dict[str, Any]) -> None:
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryProductStore(ProductStore):
    """Thread-safe dict-backed product store."""

    def __init__(self):
        self._products: Dict[str, Product] = {}
        self._lock = threading.Lock()

    def upsert(self, feed_id: str, product: Product) -> str:
        product = copy.deepcopy(product)
        product.feed_id = feed_id
        with self._lock:
            existing = self._products.get(product.id)
            if existing is not None:
                product.category_processed = existing.category_processed
                product.taxonomy_key = existing.taxonomy_key
                product.taxonomy_title = existing.taxonomy_title
                product.taxonomy_path = existing.taxonomy_path
                product.category_match_type = existing.category_match_type
                product.category_confidence = existing.category_confidence
                product.category_updated_at = existing.category_updated_at
            else:
                product.category_processed = False
            self._products[product.id] = product
        return product.id

    def get(self, product_id: str) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            return copy.deepcopy(product) if product else None

    def get_many(self, product_ids: List[str]) -> Dict[str, Product]:
        with self._lock:
            return {
                pid: copy.deepcopy(self._products[pid])
                for pid in product_ids
                if pid in self._products
            }

    def list_unprocessed(self, limit: int, feed_id: Optional[str] = None) -> List[Product]:
        with self._lock:
            found = [
                copy.deepcopy(p) for p in self._products.values()
                if not p.category_processed and (feed_id is None or p.feed_id == feed_id)
            ]
        return found[:limit]

    def update_classification(self, product_id: str, classification: Classification) -> None:
        fields = classification.to_fields()
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise PersistenceError(f"Product {product_id} not found")
            product.category_processed = fields["categoryProcessed"]
            product.taxonomy_key = fields["taxonomyKey"]
            product.taxonomy_title = fields["taxonomyTitle"]
            product.taxonomy_path = fields["taxonomyPath"]
            product.category_match_type = fields["categoryMatchType"]
            product.category_confidence = fields["categoryConfidence"]
            product.category_updated_at = fields["categoryUpdatedAt"]

    def processing_stats(self, feed_id: Optional[str] = None) -> Dict[str, int]:
        with self._lock:
            scoped = [p for p in self._products.values() if feed_id is None or p.feed_id == feed_id]
        processed = sum(1 for p in scoped if p.category_processed)
        return {
            "total": len(scoped),
            "processed": processed,
            "unprocessed": len(scoped) - processed,
        }

    def all(self) -> List[Product]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._products.values()]


class InMemoryFeedStore(FeedStore):
    def __init__(self, feeds: Optional[List[Feed]] = None):
        self._feeds: Dict[str, Feed] = {f.id: f for f in feeds or []}
        self._lock = threading.Lock()

    def add(self, feed: Feed) -> None:
        with self._lock:
            self._feeds[feed.id] = feed

    def get(self, feed_id: str) -> Optional[Feed]:
        with self._lock:
            feed = self._feeds.get(feed_id)
            return copy.deepcopy(feed) if feed else None

    def list_active(self) -> List[Feed]:
        with self._lock:
            return [
                copy.deepcopy(f) for f in self._feeds.values()
                if f.status == "active" and not f.is_paused
            ]

    def mark_synced(self, feed_id: str, when: Optional[datetime] = None) -> None:
        with self._lock:
            feed = self._feeds.get(feed_id)
            if feed is not None:
                feed.last_sync_at = when or datetime.utcnow()


class InMemoryWebhookStore(WebhookStore):
    def __init__(self, webhooks: Optional[List[Webhook]] = None):
        self._webhooks: Dict[str, Webhook] = {w.id: w for w in webhooks or []}
        self.triggers: List[Dict[str, Any]] = []

    def list_active_for_user(self, user_id: str) -> List[Webhook]:
        return [w for w in self._webhooks.values() if w.user_id == user_id and w.is_active]

    def record_trigger(self, webhook_id: str, data: Dict[str, Any]) -> None:
        self.triggers.append({"webhook_id": webhook_id, **data})


__all__ = [
    "ProductStore",
    "FeedStore",
    "WebhookStore",
    "InMemoryProductStore",
    "InMemoryFeedStore",
    "InMemoryWebhookStore",
]

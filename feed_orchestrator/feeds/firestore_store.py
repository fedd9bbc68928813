"""
Firestore Stores - Production product, feed, and webhook persistence.

Collections:
- products/{feedId}_{sku}
- feeds/{feedId}
- webhooks/{webhookId}
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import firestore

from feed_orchestrator.config import FEEDS_COLLECTION, PRODUCTS_COLLECTION, WEBHOOKS_COLLECTION
from feed_orchestrator.errors import PersistenceError
from feed_orchestrator.feeds.models import Classification, Feed, Product, Webhook, product_id
from feed_orchestrator.feeds.store import FeedStore, ProductStore, WebhookStore
from feed_orchestrator.firestore_client import get_db

logger = logging.getLogger(__name__)

# Firestore caps getAll / "in" batches; keep reads bounded.
READ_BATCH = 100


class FirestoreProductStore(ProductStore):

    def __init__(self, db: Optional[firestore.Client] = None):
        self._db = db

    @property
    def db(self) -> firestore.Client:
        return self._db or get_db()

    def _collection(self):
        return self.db.collection(PRODUCTS_COLLECTION)

    def upsert(self, feed_id: str, product: Product) -> str:
        pid = product_id(feed_id, product.sku)
        doc_ref = self._collection().document(pid)
        now = datetime.utcnow()

        data = product.source_dict()
        data["id"] = pid
        data["feedId"] = feed_id
        data["lastUpdated"] = now

        try:
            existing = doc_ref.get()
            if not existing.exists:
                data.update({
                    "createdAt": now,
                    "categoryProcessed": False,
                    "taxonomyKey": None,
                    "taxonomyTitle": None,
                    "taxonomyPath": None,
                    "categoryUpdatedAt": None,
                })
            # merge=True keeps classification fields written by earlier passes
            doc_ref.set(data, merge=True)
        except gcloud_exceptions.GoogleAPIError as e:
            raise PersistenceError(f"Failed to upsert product {pid}: {e}") from e

        return pid

    def get(self, product_id: str) -> Optional[Product]:
        doc = self._collection().document(product_id).get()
        return Product.from_dict(doc.to_dict()) if doc.exists else None

    def get_many(self, product_ids: List[str]) -> Dict[str, Product]:
        found: Dict[str, Product] = {}
        for start in range(0, len(product_ids), READ_BATCH):
            refs = [self._collection().document(pid) for pid in product_ids[start:start + READ_BATCH]]
            for doc in self.db.get_all(refs):
                if doc.exists:
                    found[doc.id] = Product.from_dict(doc.to_dict())
        return found

    def list_unprocessed(self, limit: int, feed_id: Optional[str] = None) -> List[Product]:
        query = self._collection().where("categoryProcessed", "==", False)
        if feed_id:
            query = query.where("feedId", "==", feed_id)
        query = query.limit(int(limit))
        return [Product.from_dict(doc.to_dict()) for doc in query.stream()]

    def update_classification(self, product_id: str, classification: Classification) -> None:
        fields = classification.to_fields()
        fields["categoryUpdatedAt"] = firestore.SERVER_TIMESTAMP
        try:
            self._collection().document(product_id).update(fields)
        except gcloud_exceptions.NotFound as e:
            raise PersistenceError(f"Product {product_id} not found") from e
        except gcloud_exceptions.GoogleAPIError as e:
            raise PersistenceError(f"Failed to update product {product_id}: {e}") from e

    def processing_stats(self, feed_id: Optional[str] = None) -> Dict[str, int]:
        base = self._collection()
        if feed_id:
            base = base.where("feedId", "==", feed_id)

        total = _count(base)
        processed = _count(base.where("categoryProcessed", "==", True))
        return {
            "total": total,
            "processed": processed,
            "unprocessed": total - processed,
        }


class FirestoreFeedStore(FeedStore):

    def __init__(self, db: Optional[firestore.Client] = None):
        self._db = db

    @property
    def db(self) -> firestore.Client:
        return self._db or get_db()

    def get(self, feed_id: str) -> Optional[Feed]:
        doc = self.db.collection(FEEDS_COLLECTION).document(feed_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict()
        data["id"] = doc.id
        return Feed.from_dict(data)

    def list_active(self) -> List[Feed]:
        query = (
            self.db.collection(FEEDS_COLLECTION)
            .where("status", "==", "active")
            .where("isPaused", "==", False)
        )
        feeds = []
        for doc in query.stream():
            data = doc.to_dict()
            data["id"] = doc.id
            feeds.append(Feed.from_dict(data))
        return feeds

    def mark_synced(self, feed_id: str, when: Optional[datetime] = None) -> None:
        now = when or datetime.utcnow()
        self.db.collection(FEEDS_COLLECTION).document(feed_id).update({
            "lastSyncAt": now,
            "updatedAt": now,
        })


class FirestoreWebhookStore(WebhookStore):

    def __init__(self, db: Optional[firestore.Client] = None):
        self._db = db

    @property
    def db(self) -> firestore.Client:
        return self._db or get_db()

    def list_active_for_user(self, user_id: str) -> List[Webhook]:
        query = (
            self.db.collection(WEBHOOKS_COLLECTION)
            .where("userId", "==", user_id)
            .where("isActive", "==", True)
        )
        hooks = []
        for doc in query.stream():
            data = doc.to_dict()
            data["id"] = doc.id
            hooks.append(Webhook.from_dict(data))
        return hooks

    def record_trigger(self, webhook_id: str, data: Dict[str, Any]) -> None:
        self.db.collection(WEBHOOKS_COLLECTION).document(webhook_id).update({
            "lastTriggered": datetime.utcnow(),
            "lastTriggerData": data,
        })


def _count(query) -> int:
    result = query.count().get()
    return int(result[0][0].value)


__all__ = [
    "FirestoreProductStore",
    "FirestoreFeedStore",
    "FirestoreWebhookStore",
]

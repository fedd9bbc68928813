"""
Feed Models - Feeds, products, and webhooks.

Firestore Collections:
- feeds/{feedId}: Feed configuration
- products/{feedId}_{sku}: Normalized product records
- webhooks/{webhookId}: Outbound notification targets

Products are a normalized core record plus an open `extra` map, so arbitrary
source fields round-trip without a fixed schema.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from feed_orchestrator.config import (
    BORIBON_FEED_URL,
    DEFAULT_SYNC_INTERVAL_SECS,
    UNCATEGORIZED_TITLE,
)
from feed_orchestrator.taxonomy.models import CategoryMatchResult, TaxonomyEntry


class FeedType(str, Enum):
    """Supported feed sources."""
    GENERIC = "generic"
    BORIBON = "boribon"


@dataclass
class Feed:
    """Feed configuration document."""
    id: str
    user_id: str
    url: str = ""
    type: FeedType = FeedType.GENERIC
    uuid: Optional[str] = None
    name: Optional[str] = None
    status: str = "active"
    is_paused: bool = False
    sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL_SECS
    last_sync_at: Optional[datetime] = None

    def feed_url(self) -> str:
        """Resolve the URL to fetch for this feed."""
        if self.type == FeedType.BORIBON:
            return BORIBON_FEED_URL.format(uuid=self.uuid)
        return self.url

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """Check if the sync interval has elapsed since the last sync."""
        if self.status != "active" or self.is_paused:
            return False
        if self.last_sync_at is None:
            return True
        now = now or datetime.utcnow()
        last = self.last_sync_at.replace(tzinfo=None)
        return (now - last).total_seconds() >= self.sync_interval_seconds

    def to_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "url": self.url,
            "type": self.type.value if isinstance(self.type, FeedType) else self.type,
            "uuid": self.uuid,
            "name": self.name,
            "status": self.status,
            "isPaused": self.is_paused,
            "syncInterval": self.sync_interval_seconds,
            "lastSyncAt": self.last_sync_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feed":
        """Create from Firestore dict."""
        feed_type = data.get("type") or FeedType.GENERIC.value
        return cls(
            id=data.get("id", ""),
            user_id=data.get("userId", ""),
            url=data.get("url", ""),
            type=FeedType(feed_type) if feed_type in FeedType._value2member_map_ else FeedType.GENERIC,
            uuid=data.get("uuid"),
            name=data.get("name"),
            status=data.get("status", "active"),
            is_paused=bool(data.get("isPaused", False)),
            sync_interval_seconds=int(data.get("syncInterval", DEFAULT_SYNC_INTERVAL_SECS)),
            last_sync_at=data.get("lastSyncAt"),
        )


@dataclass
class Product:
    """Normalized product record."""
    sku: str
    title: str = ""
    feed_id: Optional[str] = None
    description: str = ""
    brand: str = ""
    price: str = ""
    original_categories: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    # Classification fields (the only fields categorization writes)
    category_processed: bool = False
    taxonomy_key: Optional[int] = None
    taxonomy_title: Optional[str] = None
    taxonomy_path: Optional[str] = None
    category_match_type: Optional[str] = None
    category_confidence: Optional[float] = None
    category_updated_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return product_id(self.feed_id or "", self.sku)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict."""
        return {
            "id": self.id,
            "feedId": self.feed_id,
            "sku": self.sku,
            "title": self.title,
            "description": self.description,
            "brand": self.brand,
            "price": self.price,
            "originalCategories": list(self.original_categories),
            "extra": dict(self.extra),
            **self.classification_dict(),
        }

    def classification_dict(self) -> Dict[str, Any]:
        return {
            "categoryProcessed": self.category_processed,
            "taxonomyKey": self.taxonomy_key,
            "taxonomyTitle": self.taxonomy_title,
            "taxonomyPath": self.taxonomy_path,
            "categoryMatchType": self.category_match_type,
            "categoryConfidence": self.category_confidence,
            "categoryUpdatedAt": self.category_updated_at,
        }

    def source_dict(self) -> Dict[str, Any]:
        """Feed-owned fields only; used for snapshots and upserts."""
        data = self.to_dict()
        for key in self.classification_dict():
            data.pop(key, None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        """Create from Firestore dict."""
        return cls(
            sku=str(data.get("sku", "")),
            title=data.get("title", ""),
            feed_id=data.get("feedId"),
            description=data.get("description", ""),
            brand=data.get("brand", ""),
            price=data.get("price", ""),
            original_categories=list(data.get("originalCategories") or []),
            extra=dict(data.get("extra") or {}),
            category_processed=bool(data.get("categoryProcessed", False)),
            taxonomy_key=data.get("taxonomyKey"),
            taxonomy_title=data.get("taxonomyTitle"),
            taxonomy_path=data.get("taxonomyPath"),
            category_match_type=data.get("categoryMatchType"),
            category_confidence=data.get("categoryConfidence"),
            category_updated_at=data.get("categoryUpdatedAt"),
        )


@dataclass(frozen=True)
class Classification:
    """Classification to write onto a product; entry None means Uncategorized."""
    entry: Optional[TaxonomyEntry]
    match_type: Optional[str] = None
    confidence: Optional[float] = None

    @classmethod
    def from_match(cls, result: Optional[CategoryMatchResult]) -> "Classification":
        if result is None or result.entry is None:
            return cls(entry=None)
        return cls(result.entry, result.match_type.value, result.score)

    def to_fields(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        if self.entry is None:
            return {
                "categoryProcessed": True,
                "taxonomyKey": 0,
                "taxonomyTitle": UNCATEGORIZED_TITLE,
                "taxonomyPath": UNCATEGORIZED_TITLE,
                "categoryMatchType": None,
                "categoryConfidence": None,
                "categoryUpdatedAt": now,
            }
        return {
            "categoryProcessed": True,
            "taxonomyKey": self.entry.key,
            "taxonomyTitle": self.entry.title,
            "taxonomyPath": self.entry.path,
            "categoryMatchType": self.match_type,
            "categoryConfidence": self.confidence,
            "categoryUpdatedAt": now,
        }


@dataclass
class Webhook:
    """Outbound notification target."""
    id: str
    user_id: str
    url: str
    name: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    events: List[str] = field(default_factory=lambda: ["sync_completed"])
    is_active: bool = True

    def wants(self, event: str) -> bool:
        return self.is_active and (not self.events or event in self.events)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Webhook":
        return cls(
            id=data.get("id", ""),
            user_id=data.get("userId", ""),
            url=data.get("url", ""),
            name=data.get("name", ""),
            headers=dict(data.get("headers") or {}),
            events=list(data.get("events") or ["sync_completed"]),
            is_active=bool(data.get("isActive", True)),
        )


def product_id(feed_id: str, sku: str) -> str:
    """Stable product document id."""
    return f"{feed_id}_{sku}"


__all__ = [
    "FeedType",
    "Feed",
    "Product",
    "Classification",
    "Webhook",
    "product_id",
]

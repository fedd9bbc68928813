"""
Category Index - Build-time prepared lookup structures over the taxonomy.

Two structures:
- exact: normalized title / alternate name -> entry
- keywords: word (len > 2) -> entries containing that word

Read-only at runtime. Safe to share across threads without locking.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from feed_orchestrator.taxonomy.models import Taxonomy, TaxonomyEntry
from feed_orchestrator.taxonomy.normalize import normalize_text, tokenize

logger = logging.getLogger(__name__)

INDEX_FORMAT_VERSION = 1


class CategoryIndex:
    """Immutable exact-lookup map plus keyword inverted index."""

    def __init__(
        self,
        taxonomy: Taxonomy,
        exact: Dict[str, TaxonomyEntry],
        keywords: Dict[str, Tuple[TaxonomyEntry, ...]],
    ):
        self.taxonomy = taxonomy
        self._exact: Mapping[str, TaxonomyEntry] = MappingProxyType(dict(exact))
        self._keywords: Mapping[str, Tuple[TaxonomyEntry, ...]] = MappingProxyType(dict(keywords))
        self._exact_keys: Tuple[str, ...] = tuple(self._exact.keys())

    # =========================================================================
    # BUILD
    # =========================================================================

    @classmethod
    def build(cls, taxonomy: Taxonomy) -> "CategoryIndex":
        """Build the index from taxonomy entries."""
        exact: Dict[str, TaxonomyEntry] = {}
        keywords: Dict[str, List[TaxonomyEntry]] = {}

        for entry in taxonomy:
            for text in (entry.title, entry.alt_name):
                normalized = normalize_text(text or "")
                if not normalized:
                    continue

                existing = exact.get(normalized)
                # Same normalized name on two entries: keep the more specific one
                if existing is None or entry.path_depth > existing.path_depth:
                    exact[normalized] = entry

                for word in tokenize(normalized):
                    bucket = keywords.setdefault(word, [])
                    if entry not in bucket:
                        bucket.append(entry)

        for word, bucket in keywords.items():
            bucket.sort(key=lambda e: e.path_depth, reverse=True)

        logger.info("Built category index: %d exact keys, %d keywords, %d entries",
                    len(exact), len(keywords), len(taxonomy))

        return cls(
            taxonomy,
            exact,
            {word: tuple(bucket) for word, bucket in keywords.items()},
        )

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def lookup_exact(self, normalized: str) -> Optional[TaxonomyEntry]:
        return self._exact.get(normalized)

    def lookup_keyword(self, word: str) -> Tuple[TaxonomyEntry, ...]:
        return self._keywords.get(word, ())

    @property
    def exact_keys(self) -> Tuple[str, ...]:
        return self._exact_keys

    def stats(self) -> Dict[str, int]:
        return {
            "entries": len(self.taxonomy),
            "leaves": len(self.taxonomy.leaves),
            "exact_keys": len(self._exact),
            "keywords": len(self._keywords),
        }

    # =========================================================================
    # PERSISTENCE (offline build step)
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the prepared-index JSON layout (entries referenced by key)."""
        return {
            "version": INDEX_FORMAT_VERSION,
            "entries": [e.to_dict() for e in self.taxonomy],
            "exact": {k: e.key for k, e in self._exact.items()},
            "keywords": {w: [e.key for e in bucket] for w, bucket in self._keywords.items()},
            "metadata": {
                "totalCategories": len(self.taxonomy),
                "buildDate": datetime.utcnow().isoformat() + "Z",
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryIndex":
        version = data.get("version")
        if version != INDEX_FORMAT_VERSION:
            raise ValueError(f"Unsupported category index version: {version}")

        taxonomy = Taxonomy.from_records(data.get("entries", []))
        exact = {}
        for key, entry_key in data.get("exact", {}).items():
            entry = taxonomy.get(entry_key)
            if entry is not None:
                exact[key] = entry
        keywords = {}
        for word, entry_keys in data.get("keywords", {}).items():
            bucket = tuple(e for e in (taxonomy.get(k) for k in entry_keys) if e is not None)
            if bucket:
                keywords[word] = bucket
        return cls(taxonomy, exact, keywords)

    def save(self, path: str) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
        logger.info("Wrote category index to %s", path)

    @classmethod
    def load(cls, path: str) -> "CategoryIndex":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def load_taxonomy(path: str) -> Taxonomy:
    """Load a raw taxonomy mapping file (list of category records)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("categories", [])
    taxonomy = Taxonomy.from_records(data)
    logger.info("Loaded %d taxonomy entries (%d leaves) from %s",
                len(taxonomy), len(taxonomy.leaves), path)
    return taxonomy


_index: Optional[CategoryIndex] = None


def get_category_index() -> CategoryIndex:
    """
    Get the process-wide category index.

    Loads the prepared index if present, else builds from the raw taxonomy.
    """
    global _index
    if _index is None:
        from feed_orchestrator.config import CATEGORY_INDEX_PATH, TAXONOMY_PATH

        if Path(CATEGORY_INDEX_PATH).exists():
            _index = CategoryIndex.load(CATEGORY_INDEX_PATH)
        else:
            _index = CategoryIndex.build(load_taxonomy(TAXONOMY_PATH))
    return _index


__all__ = [
    "CategoryIndex",
    "load_taxonomy",
    "get_category_index",
]

"""
Taxonomy Models - Reference data for canonical product categories.

TaxonomyEntry is loaded once at process start and never mutated.
CategoryMatchResult is transient and folded into the product record.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

PATH_SEPARATOR = " > "


class MatchType(str, Enum):
    """How a category match was found."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    KEYWORD = "keyword"
    ORACLE = "oracle"


@dataclass(frozen=True)
class TaxonomyEntry:
    """One canonical taxonomy category."""
    key: int
    title: str
    path: str
    path_depth: int
    child_count: Optional[int] = None
    alt_name: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        """Entries with no children are the only valid classification targets."""
        return not self.child_count

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-compatible dict."""
        return {
            "key": self.key,
            "title": self.title,
            "path": self.path,
            "pathDepth": self.path_depth,
            "childCount": self.child_count,
            "altName": self.alt_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaxonomyEntry":
        """
        Create from a taxonomy mapping record.

        Accepts both prepared-index keys (altName, childCount) and the raw
        marketplace export keys (nomenclature_name, children_count).
        """
        path = data.get("path") or data.get("title", "")
        depth = data.get("pathDepth", data.get("path_depth"))
        if depth is None:
            depth = len(path.split(PATH_SEPARATOR)) if path else 1
        child_count = data.get("childCount", data.get("children_count", data.get("child_count")))
        return cls(
            key=int(data["key"]),
            title=data.get("title", ""),
            path=path,
            path_depth=int(depth),
            child_count=int(child_count) if child_count is not None else None,
            alt_name=data.get("altName", data.get("nomenclature_name")) or None,
        )


@dataclass(frozen=True)
class CategoryMatchResult:
    """Best taxonomy entry for a set of informal category strings."""
    entry: Optional[TaxonomyEntry]
    match_type: Optional[MatchType]
    score: float

    @property
    def matched(self) -> bool:
        return self.entry is not None


class Taxonomy:
    """
    Immutable collection of taxonomy entries.

    Leaf status comes from child_count when the source has it; otherwise it is
    derived from paths (an entry is a parent when another path extends it).
    """

    def __init__(self, entries: Iterable[TaxonomyEntry]):
        entries = list(entries)
        if any(e.child_count is None for e in entries):
            entries = _derive_child_counts(entries)
        self._entries: Dict[int, TaxonomyEntry] = {e.key: e for e in entries}
        self._leaves: Dict[int, TaxonomyEntry] = {
            k: e for k, e in self._entries.items() if e.is_leaf
        }

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "Taxonomy":
        return cls(TaxonomyEntry.from_dict(r) for r in records)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries.values())

    def get(self, key: int) -> Optional[TaxonomyEntry]:
        return self._entries.get(key)

    def get_leaf(self, key: int) -> Optional[TaxonomyEntry]:
        return self._leaves.get(key)

    @property
    def leaves(self) -> List[TaxonomyEntry]:
        return list(self._leaves.values())


def _derive_child_counts(entries: List[TaxonomyEntry]) -> List[TaxonomyEntry]:
    counts: Dict[str, int] = {}
    for entry in entries:
        parts = entry.path.split(PATH_SEPARATOR)
        if len(parts) > 1:
            parent = PATH_SEPARATOR.join(parts[:-1])
            counts[parent] = counts.get(parent, 0) + 1

    derived = []
    for entry in entries:
        if entry.child_count is not None:
            derived.append(entry)
            continue
        derived.append(TaxonomyEntry(
            key=entry.key,
            title=entry.title,
            path=entry.path,
            path_depth=entry.path_depth,
            child_count=counts.get(entry.path, 0),
            alt_name=entry.alt_name,
        ))
    return derived


__all__ = [
    "MatchType",
    "TaxonomyEntry",
    "CategoryMatchResult",
    "Taxonomy",
    "PATH_SEPARATOR",
]

"""
Taxonomy Package - Canonical categories, index, and deterministic matcher.

This package provides:
- models: TaxonomyEntry, Taxonomy, CategoryMatchResult
- normalize: Text normalization and tokenization
- index: CategoryIndex (exact map + keyword inverted index)
- matcher: CategoryMatcher.find_best_match
"""

from feed_orchestrator.taxonomy.models import (
    CategoryMatchResult,
    MatchType,
    Taxonomy,
    TaxonomyEntry,
)
from feed_orchestrator.taxonomy.normalize import normalize_text, tokenize
from feed_orchestrator.taxonomy.index import CategoryIndex, get_category_index, load_taxonomy
from feed_orchestrator.taxonomy.matcher import CategoryMatcher


__all__ = [
    "CategoryMatchResult",
    "MatchType",
    "Taxonomy",
    "TaxonomyEntry",
    "normalize_text",
    "tokenize",
    "CategoryIndex",
    "get_category_index",
    "load_taxonomy",
    "CategoryMatcher",
]

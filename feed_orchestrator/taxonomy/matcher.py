"""
Category Matcher - Resolve informal feed categories to one taxonomy entry.

Strategies, per input string, in order:
1. Exact lookup on the normalized string (score 1.0)
2. Edit-distance similarity against every indexed key (kept if > 0.6)
3. Keyword overlap through the inverted index (kept if > 0.3)

Across inputs the deepest entry wins, then the highest score. Unmatched
input returns None; it is never an error.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from feed_orchestrator.taxonomy.index import CategoryIndex
from feed_orchestrator.taxonomy.models import CategoryMatchResult, MatchType, TaxonomyEntry
from feed_orchestrator.taxonomy.normalize import STOPLIST, normalize_text, tokenize

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.6
KEYWORD_THRESHOLD = 0.3
ACCEPTANCE_FLOOR = 0.3


def similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b))."""
    return Levenshtein.normalized_similarity(a, b)


class CategoryMatcher:
    """Deterministic matcher over an immutable CategoryIndex."""

    def __init__(
        self,
        index: CategoryIndex,
        stoplist: Iterable[str] = STOPLIST,
        fuzzy_threshold: float = FUZZY_THRESHOLD,
        keyword_threshold: float = KEYWORD_THRESHOLD,
        acceptance_floor: float = ACCEPTANCE_FLOOR,
    ):
        self.index = index
        self.stoplist = frozenset(normalize_text(s) for s in stoplist)
        self.fuzzy_threshold = fuzzy_threshold
        self.keyword_threshold = keyword_threshold
        self.acceptance_floor = acceptance_floor

    def find_best_match(self, categories: Iterable[str]) -> Optional[CategoryMatchResult]:
        """
        Find the single best taxonomy entry for a product's categories.

        Args:
            categories: Informal category strings from the feed

        Returns:
            CategoryMatchResult, or None if nothing clears the acceptance floor
        """
        candidates: List[CategoryMatchResult] = []

        for raw in categories or []:
            normalized = normalize_text(raw)
            if not normalized or normalized in self.stoplist:
                continue

            result = self._match_one(normalized)
            if result is not None and result.score > self.acceptance_floor:
                candidates.append(result)

        if not candidates:
            return None

        candidates.sort(key=lambda r: (r.entry.path_depth, r.score), reverse=True)
        best = candidates[0]
        logger.debug("Matched %s -> %s (%s, %.2f)",
                     list(categories), best.entry.title, best.match_type.value, best.score)
        return best

    def _match_one(self, normalized: str) -> Optional[CategoryMatchResult]:
        exact = self.index.lookup_exact(normalized)
        if exact is not None:
            return CategoryMatchResult(exact, MatchType.EXACT, 1.0)

        fuzzy = self._fuzzy_match(normalized)
        if fuzzy is not None:
            return fuzzy

        return self._keyword_match(normalized)

    def _fuzzy_match(self, normalized: str) -> Optional[CategoryMatchResult]:
        keys = self.index.exact_keys
        if not keys:
            return None

        best = process.extractOne(
            normalized,
            keys,
            scorer=Levenshtein.normalized_similarity,
            score_cutoff=self.fuzzy_threshold,
        )
        if best is None:
            return None

        key, score, _ = best
        if score <= self.fuzzy_threshold:
            return None
        return CategoryMatchResult(self.index.lookup_exact(key), MatchType.FUZZY, float(score))

    def _keyword_match(self, normalized: str) -> Optional[CategoryMatchResult]:
        words = tokenize(normalized)
        if not words:
            return None

        hits: Dict[int, Tuple[TaxonomyEntry, int]] = {}
        for word in words:
            for entry in self.index.lookup_keyword(word):
                _, count = hits.get(entry.key, (entry, 0))
                hits[entry.key] = (entry, count + 1)

        best: Optional[CategoryMatchResult] = None
        for entry, count in hits.values():
            score = count / len(words)
            if score <= self.keyword_threshold:
                continue
            if (
                best is None
                or score > best.score
                or (score == best.score and entry.path_depth > best.entry.path_depth)
            ):
                best = CategoryMatchResult(entry, MatchType.KEYWORD, score)
        return best


__all__ = [
    "CategoryMatcher",
    "similarity",
    "FUZZY_THRESHOLD",
    "KEYWORD_THRESHOLD",
    "ACCEPTANCE_FLOOR",
]

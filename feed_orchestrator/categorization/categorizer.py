"""
AI Batch Categorizer - Classify products against leaf taxonomy entries.

One oracle request per batch of products. Batches are capped, and consecutive
oracle requests from one categorizer are spaced by a fixed delay to respect
oracle rate limits, also across classify() calls. Each batch is retried with
exponential backoff; a batch that still fails leaves all of its products
unmatched rather than failing the caller.

Strategies:
- ai: every product goes to the oracle
- hybrid: exact index hits on leaf entries skip the oracle
- index: deterministic matcher only, no oracle calls
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from feed_orchestrator.categorization.llm_client import CLASSIFICATION_RESPONSE_SCHEMA, LLMClient
from feed_orchestrator.categorization.retry import retry_call
from feed_orchestrator.config import (
    CATEGORIZATION_STRATEGY,
    ORACLE_BATCH_DELAY_SECS,
    ORACLE_BATCH_SIZE,
    ORACLE_MAX_ATTEMPTS,
    ORACLE_MIN_CONFIDENCE,
)
from feed_orchestrator.errors import OracleError
from feed_orchestrator.feeds.models import Classification, Product
from feed_orchestrator.taxonomy.matcher import CategoryMatcher
from feed_orchestrator.taxonomy.models import MatchType, Taxonomy, TaxonomyEntry
from feed_orchestrator.taxonomy.normalize import normalize_text

logger = logging.getLogger(__name__)

STRATEGIES = ("ai", "hybrid", "index")

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class MatchOutcome:
    """Classification result for one product of a batch."""
    product_index: int
    match: Optional[TaxonomyEntry]
    confidence: Optional[float] = None
    match_type: Optional[MatchType] = None

    def to_classification(self) -> Classification:
        if self.match is None:
            return Classification(entry=None)
        match_type = self.match_type.value if self.match_type else None
        return Classification(self.match, match_type, self.confidence)


class AIBatchCategorizer:
    """Batch classification through the oracle with an optional index fast path."""

    def __init__(
        self,
        llm: Optional[LLMClient],
        taxonomy: Taxonomy,
        matcher: Optional[CategoryMatcher] = None,
        strategy: str = CATEGORIZATION_STRATEGY,
        batch_size: int = ORACLE_BATCH_SIZE,
        batch_delay_seconds: float = ORACLE_BATCH_DELAY_SECS,
        max_attempts: int = ORACLE_MAX_ATTEMPTS,
        min_confidence: float = ORACLE_MIN_CONFIDENCE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown categorization strategy: {strategy}")
        if strategy != "ai" and matcher is None:
            raise ValueError(f"Strategy '{strategy}' requires a CategoryMatcher")
        if strategy != "index" and llm is None:
            raise ValueError(f"Strategy '{strategy}' requires an LLM client")

        self.llm = llm
        self.taxonomy = taxonomy
        self.matcher = matcher
        self.strategy = strategy
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self.max_attempts = max_attempts
        self.min_confidence = min_confidence
        self.sleep = sleep
        self.clock = clock
        self._oracle_lock = threading.Lock()
        self._last_oracle_at: Optional[float] = None
        self._candidates = sorted(taxonomy.leaves, key=lambda e: e.key)

    # =========================================================================
    # PUBLIC
    # =========================================================================

    def classify(self, products: Sequence[Product]) -> List[MatchOutcome]:
        """
        Classify any number of products in capped batches.

        Returned outcomes are indexed against the full input list.
        """
        outcomes: List[MatchOutcome] = []
        for start in range(0, len(products), self.batch_size):
            batch = products[start:start + self.batch_size]
            for outcome in self.classify_batch(batch):
                outcomes.append(MatchOutcome(
                    product_index=start + outcome.product_index,
                    match=outcome.match,
                    confidence=outcome.confidence,
                    match_type=outcome.match_type,
                ))
        return outcomes

    def classify_batch(self, products: Sequence[Product]) -> List[MatchOutcome]:
        """
        Classify one batch with at most one successful oracle request.

        Returns:
            Exactly len(products) outcomes, in input order
        """
        outcomes: Dict[int, MatchOutcome] = {}
        pending: List[int] = []

        for i, product in enumerate(products):
            fast = self._fast_path(i, product)
            if fast is not None:
                outcomes[i] = fast
            else:
                pending.append(i)

        if pending and self.strategy != "index":
            subset = [products[i] for i in pending]
            for local_index, outcome in enumerate(self._ask_oracle(subset)):
                product_index = pending[local_index]
                outcomes[product_index] = MatchOutcome(
                    product_index, outcome.match, outcome.confidence, outcome.match_type
                )

        return [outcomes.get(i) or MatchOutcome(i, None) for i in range(len(products))]

    # =========================================================================
    # INDEX PATH
    # =========================================================================

    def _fast_path(self, i: int, product: Product) -> Optional[MatchOutcome]:
        if self.strategy == "ai" or self.matcher is None:
            return None

        if self.strategy == "index":
            result = self.matcher.find_best_match(product.original_categories)
            if result is None:
                return MatchOutcome(i, None)
            if not result.entry.is_leaf:
                logger.debug("Index matched non-leaf %s for product %s", result.entry.key, product.sku)
                return MatchOutcome(i, None)
            return MatchOutcome(i, result.entry, result.score, result.match_type)

        # hybrid: only an exact hit on a leaf is trusted without the oracle
        for raw in product.original_categories:
            entry = self.matcher.index.lookup_exact(normalize_text(raw))
            if entry is not None and entry.is_leaf:
                return MatchOutcome(i, entry, 1.0, MatchType.EXACT)
        return None

    # =========================================================================
    # ORACLE PATH
    # =========================================================================

    def _ask_oracle(self, products: Sequence[Product]) -> List[MatchOutcome]:
        prompt = self.build_prompt(products)

        def attempt() -> List[MatchOutcome]:
            reply = self.llm.generate(prompt, response_schema=CLASSIFICATION_RESPONSE_SCHEMA)
            return self.parse_reply(reply, len(products))

        with self._oracle_lock:
            self._wait_for_oracle()
            try:
                outcomes = retry_call(attempt, max_attempts=self.max_attempts, sleep=self.sleep)
            except OracleError as e:
                logger.error("Oracle batch of %d products failed after %d attempts: %s",
                             len(products), self.max_attempts, e)
                return [MatchOutcome(i, None) for i in range(len(products))]
            finally:
                self._last_oracle_at = self.clock()

        matched = sum(1 for o in outcomes if o.match is not None)
        logger.info("Oracle classified %d/%d products", matched, len(products))
        return outcomes

    def _wait_for_oracle(self) -> None:
        # Caller holds _oracle_lock
        if self._last_oracle_at is None or self.batch_delay_seconds <= 0:
            return
        remaining = self.batch_delay_seconds - (self.clock() - self._last_oracle_at)
        if remaining > 0:
            logger.debug("Waiting %.1fs before next oracle batch", remaining)
            self.sleep(remaining)

    def build_prompt(self, products: Sequence[Product]) -> str:
        """Render the batch classification prompt."""
        category_lines = "\n".join(f"{e.key}: {e.path}" for e in self._candidates)
        product_lines = "\n".join(
            f'{i}: "{p.title}" - Categories: [{", ".join(p.original_categories)}]'
            for i, p in enumerate(products)
        )
        return (
            "You are a product categorization expert. Assign each product to the most "
            "specific matching category from the list below. Only use category IDs "
            "from the list.\n\n"
            f"Available categories (id: path):\n{category_lines}\n\n"
            f"Products (index: title - original categories):\n{product_lines}\n\n"
            "Respond with a JSON array only, one object per product:\n"
            '[{"productIndex": 0, "categoryId": 123, "categoryTitle": "...", "confidence": 0.9}]\n'
            "confidence is between 0 and 1. Use a low confidence when unsure."
        )

    def parse_reply(self, reply: str, count: int) -> List[MatchOutcome]:
        """
        Parse an oracle reply into exactly `count` outcomes.

        Items referencing a non-leaf key, an unknown product index, or a
        confidence at or below the acceptance threshold become None.

        Raises:
            OracleError: If the reply is not a JSON array
        """
        text = _FENCE_RE.sub("", (reply or "").strip())
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise OracleError(f"Oracle reply is not valid JSON: {e}") from e

        if isinstance(data, dict):
            data = data.get("results") or data.get("products")
        if not isinstance(data, list):
            raise OracleError("Oracle reply is not a JSON array")

        found: Dict[int, MatchOutcome] = {}
        for item in data:
            outcome = self._parse_item(item, count)
            if outcome is not None and outcome.product_index not in found:
                found[outcome.product_index] = outcome

        return [found.get(i) or MatchOutcome(i, None) for i in range(count)]

    def _parse_item(self, item: Any, count: int) -> Optional[MatchOutcome]:
        if not isinstance(item, dict):
            return None
        try:
            index = int(item.get("productIndex"))
            key = int(item.get("categoryId"))
            confidence = float(item.get("confidence", 0))
        except (TypeError, ValueError):
            return None

        if not 0 <= index < count:
            return None

        entry = self.taxonomy.get_leaf(key)
        if entry is None:
            logger.debug("Oracle returned non-leaf or unknown key %s for product %d", key, index)
            return MatchOutcome(index, None)
        if confidence <= self.min_confidence:
            return MatchOutcome(index, None)
        return MatchOutcome(index, entry, min(confidence, 1.0), MatchType.ORACLE)


__all__ = ["AIBatchCategorizer", "MatchOutcome", "STRATEGIES"]

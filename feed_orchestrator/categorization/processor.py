"""
Category Processor - Classify products and write the results back.

Used two ways:
- standalone, via process_unprocessed (CLI / scheduled trigger)
- per chunk, by the batch processor running a categorize job
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from feed_orchestrator.categorization.categorizer import AIBatchCategorizer
from feed_orchestrator.config import DEFAULT_CATEGORIZE_LIMIT
from feed_orchestrator.errors import PersistenceError
from feed_orchestrator.feeds.models import Product
from feed_orchestrator.feeds.store import ProductStore

logger = logging.getLogger(__name__)


class CategoryProcessor:

    def __init__(self, products: ProductStore, categorizer: AIBatchCategorizer):
        self.products = products
        self.categorizer = categorizer

    def process_products(self, products: Sequence[Product]) -> Dict[str, int]:
        """
        Classify products and persist each classification.

        Products the categorizer cannot place are written as Uncategorized so
        they leave the unprocessed set. A failed write is counted and the
        product stays unprocessed.

        Returns:
            {"processed", "successful", "uncategorized", "failed"}
        """
        stats = {"processed": 0, "successful": 0, "uncategorized": 0, "failed": 0}
        if not products:
            return stats

        outcomes = self.categorizer.classify(products)
        for outcome in outcomes:
            product = products[outcome.product_index]
            try:
                self.products.update_classification(product.id, outcome.to_classification())
            except PersistenceError as e:
                logger.warning("Failed to store classification for %s: %s", product.id, e)
                stats["failed"] += 1
                continue

            stats["processed"] += 1
            if outcome.match is not None:
                stats["successful"] += 1
            else:
                stats["uncategorized"] += 1

        logger.info(
            "Categorized %d products: successful=%d uncategorized=%d failed=%d",
            len(products), stats["successful"], stats["uncategorized"], stats["failed"],
        )
        return stats

    def process_unprocessed(self, limit: int = DEFAULT_CATEGORIZE_LIMIT,
                            feed_id: Optional[str] = None) -> Dict[str, int]:
        """Classify up to `limit` products that have not been categorized yet."""
        pending: List[Product] = self.products.list_unprocessed(limit, feed_id=feed_id)
        if not pending:
            logger.info("No unprocessed products%s", f" for feed {feed_id}" if feed_id else "")
            return {"processed": 0, "successful": 0, "uncategorized": 0, "failed": 0}
        return self.process_products(pending)

    def get_processing_stats(self, feed_id: Optional[str] = None) -> Dict[str, int]:
        return self.products.processing_stats(feed_id)


__all__ = ["CategoryProcessor"]

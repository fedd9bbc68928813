"""
Categorization Package - Oracle-backed product classification.

This package provides:
- llm_client: LLMClient (Vertex / mock) and get_llm_client
- retry: retry_call bounded-retry combinator
- categorizer: AIBatchCategorizer and MatchOutcome
- processor: CategoryProcessor (classify + write back)
"""

from feed_orchestrator.categorization.llm_client import (
    LLMClient,
    MockLLMClient,
    VertexLLMClient,
    get_llm_client,
)
from feed_orchestrator.categorization.retry import retry_call
from feed_orchestrator.categorization.categorizer import AIBatchCategorizer, MatchOutcome
from feed_orchestrator.categorization.processor import CategoryProcessor


__all__ = [
    "LLMClient",
    "MockLLMClient",
    "VertexLLMClient",
    "get_llm_client",
    "retry_call",
    "AIBatchCategorizer",
    "MatchOutcome",
    "CategoryProcessor",
]

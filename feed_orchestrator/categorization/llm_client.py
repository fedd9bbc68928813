"""
LLM Client - Classification oracle backends (Vertex AI / mock).

The oracle is a text-in, text-out collaborator. Prompt construction and
reply parsing live in the categorizer; this module only handles the
transport.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from feed_orchestrator.config import MODEL_FLASH, PROJECT_ID, REGION
from feed_orchestrator.errors import OracleError

logger = logging.getLogger(__name__)

# Native structured output for batch classification replies
CLASSIFICATION_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "productIndex": {"type": "integer"},
            "categoryId": {"type": "integer"},
            "categoryTitle": {"type": "string"},
            "confidence": {"type": "number"},
        },
        "required": ["productIndex", "categoryId", "confidence"],
    },
}


class LLMClient(ABC):
    """
    Abstract oracle interface.

    Implementations:
    - VertexLLMClient: Production Vertex AI
    - MockLLMClient: Tests and dry runs
    """

    @abstractmethod
    def generate(self, prompt: str, response_schema: Optional[Dict[str, Any]] = None) -> str:
        """
        Generate a reply for the prompt.

        Raises:
            OracleError: If the backend call fails
        """

    @abstractmethod
    def get_model_name(self) -> str:
        pass


class VertexLLMClient(LLMClient):
    """Production oracle using Vertex AI Gemini models."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: str = REGION,
        model_name: str = MODEL_FLASH,
    ):
        self.project_id = project_id or os.environ.get("GOOGLE_CLOUD_PROJECT", PROJECT_ID)
        self.location = location
        self.model_name = model_name
        self._initialized = False

    def _ensure_initialized(self) -> None:
        """Lazy initialization of Vertex AI."""
        if self._initialized:
            return

        import vertexai
        vertexai.init(project=self.project_id, location=self.location)
        self._initialized = True
        logger.info("Vertex AI initialized: project=%s, location=%s",
                    self.project_id, self.location)

    def get_model_name(self) -> str:
        return self.model_name

    def generate(self, prompt: str, response_schema: Optional[Dict[str, Any]] = None) -> str:
        from vertexai.generative_models import GenerationConfig, GenerativeModel

        try:
            self._ensure_initialized()
            model = GenerativeModel(self.model_name)

            config_kwargs: Dict[str, Any] = {
                "temperature": 0.0,
                "max_output_tokens": 8192,
                "response_mime_type": "application/json",
            }
            if response_schema:
                config_kwargs["response_schema"] = response_schema

            response = model.generate_content(
                prompt,
                generation_config=GenerationConfig(**config_kwargs),
            )
            result = response.text.strip()
        except Exception as e:
            logger.error("LLM completion failed: %s", e)
            raise OracleError(f"Oracle request failed: {e}") from e

        logger.debug("LLM response length: %d chars", len(result))
        return result


Scripted = Union[str, BaseException]


class MockLLMClient(LLMClient):
    """
    Mock oracle for tests.

    Replies are consumed in order from `responses`; an exception instance in
    the script is raised instead of returned. When the script runs out the
    default response is returned.
    """

    def __init__(self, responses: Optional[List[Scripted]] = None, default_response: str = "[]"):
        self.responses: List[Scripted] = list(responses or [])
        self.default_response = default_response
        self.call_count = 0
        self.prompts: List[str] = []

    @property
    def last_prompt(self) -> Optional[str]:
        return self.prompts[-1] if self.prompts else None

    def get_model_name(self) -> str:
        return "mock-model"

    def generate(self, prompt: str, response_schema: Optional[Dict[str, Any]] = None) -> str:
        self.call_count += 1
        self.prompts.append(prompt)

        reply: Scripted = self.responses.pop(0) if self.responses else self.default_response
        if isinstance(reply, BaseException):
            raise reply
        return reply


def get_llm_client(use_mock: bool = False) -> LLMClient:
    """
    Factory function to get appropriate LLM client.

    Args:
        use_mock: If True, return MockLLMClient

    Returns:
        LLMClient instance
    """
    if use_mock or os.environ.get("USE_MOCK_LLM", "").lower() == "true":
        logger.info("Using MockLLMClient")
        return MockLLMClient()

    logger.info("Using VertexLLMClient")
    return VertexLLMClient()


__all__ = [
    "LLMClient",
    "VertexLLMClient",
    "MockLLMClient",
    "get_llm_client",
    "CLASSIFICATION_RESPONSE_SCHEMA",
]

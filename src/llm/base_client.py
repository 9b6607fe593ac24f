# src/llm/base_client.py — v1
"""Abstract interface of the AI text-generation collaborator.

Provider integrations live outside this package. The pipeline only calls
generate() and never retries; retry policy belongs to the implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from reportflow.llm.models import AIConfig, GenerateOptions, LLMResponse


class BaseLLMClient(ABC):
    """Unified interface for text generation."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        config: AIConfig,
        options: GenerateOptions | None = None,
    ) -> LLMResponse:
        """Generate text for a prompt with the resolved provider/model config."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (anthropic, openai, google, ...)."""

# src/llm/adapters/anthropic_adapter.py — v1
"""Anthropic Claude adapter implementing BaseLLMClient.

Uses the official anthropic SDK. The model and temperature come from the
AIConfig resolved per stage, so one adapter instance serves every stage.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from reportflow.llm.base_client import BaseLLMClient
from reportflow.llm.models import AIConfig, GenerateOptions, LLMResponse

logger = logging.getLogger(__name__)


class AnthropicAdapter(BaseLLMClient):
    """Adapter for Anthropic Claude models."""

    def __init__(self, api_key: str | None = None, system: str | None = None) -> None:
        self._api_key = api_key
        self._system = system
        self.__client = None  # Lazy initialization

    @property
    def _client(self):
        """Lazy-init Anthropic client (only on first API call)."""
        if self.__client is None:
            try:
                import anthropic
            except ImportError as e:
                raise ImportError(
                    "anthropic package required: pip install reportflow[anthropic]"
                ) from e
            self.__client = anthropic.AsyncAnthropic(api_key=self._api_key or None)
        return self.__client

    async def generate(
        self,
        prompt: str,
        config: AIConfig,
        options: GenerateOptions | None = None,
    ) -> LLMResponse:
        """Single-turn completion via the Messages API."""
        kwargs: dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_output_tokens,
            "temperature": config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self._system:
            kwargs["system"] = self._system
        if options is not None and options.timeout_s:
            kwargs["timeout"] = options.timeout_s

        start = time.monotonic()
        response = await self._client.messages.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)
        logger.debug(
            "Anthropic call %s: %d in / %d out tokens in %dms",
            config.model,
            response.usage.input_tokens,
            response.usage.output_tokens,
            latency_ms,
        )

        return LLMResponse(
            content=self._extract_content(response),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            provider="anthropic",
            latency_ms=latency_ms,
            metadata={"stop_reason": getattr(response, "stop_reason", None)},
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @staticmethod
    def _extract_content(response: Any) -> str:
        """Concatenate the text blocks of a response."""
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )

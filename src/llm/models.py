# src/llm/models.py — v1
"""AI collaborator types: AIConfig, GenerateOptions, LLMResponse."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AIConfig(BaseModel):
    """Provider/model configuration passed with every generate call."""

    provider: str
    model: str
    temperature: float = 0.2
    max_output_tokens: int = 8192
    extra: dict[str, Any] = Field(default_factory=dict)


class GenerateOptions(BaseModel):
    """Per-call options."""

    timeout_s: float | None = None
    vision_attachments: list[str] = Field(default_factory=list)
    stage_id: str | None = None


class LLMResponse(BaseModel):
    """Normalized response from the AI collaborator."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    provider: str = ""
    latency_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

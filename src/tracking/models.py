# src/tracking/models.py — v1
"""Tracking models: AI call records and per-stage aggregates."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class LLMCallRecord(BaseModel):
    """One AI collaborator call made on behalf of a stage."""

    call_id: str
    timestamp: datetime
    document_id: str
    stage_id: str
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0
    status: Literal["success", "failed", "timeout"]
    error: str | None = None


class StageCallStats(BaseModel):
    """Aggregated calls for one stage id."""

    stage_id: str
    total_calls: int
    failure_count: int
    total_tokens: int
    avg_latency_ms: float

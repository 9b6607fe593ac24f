# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

Ledger types live in versioning.ledger and are re-exported here so that
callers import every domain type from one place.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from reportflow.versioning.ledger import (
    HistoryEntry,
    LatestPointer,
    Snapshot,
    VersionLedger,
)

__all__ = [
    "ChangeProposal",
    "DocumentStatus",
    "FeedbackInput",
    "FeedbackSummary",
    "FilteredFeedback",
    "HistoryEntry",
    "LatestPointer",
    "RawStageFeedback",
    "Report",
    "Snapshot",
    "StageResult",
    "VersionLedger",
]

DocumentStatus = Literal["draft", "processing", "generated"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === REPORT ===


class Report(BaseModel):
    """The unit of work driven through the stages."""

    # --- Identity ---
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str = ""
    inputs: dict[str, Any] = Field(default_factory=dict)

    # --- Processing state ---
    current_stage: str | None = None
    status: DocumentStatus = "draft"
    stage_outputs: dict[str, str] = Field(default_factory=dict)
    stage_prompts: dict[str, str] = Field(default_factory=dict)
    ledger: VersionLedger = Field(default_factory=VersionLedger)

    # --- Timestamps ---
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def touch(self) -> None:
        self.updated_at = _utcnow()


# === FEEDBACK ===


class ChangeProposal(BaseModel):
    """One normalised reviewer proposal."""

    id: str
    change_type: Literal["add", "modify", "delete", "restructure"] = "modify"
    severity: Literal["critical", "important", "suggestion"] = "suggestion"
    section: str = ""
    description: str
    original_text: str = ""
    proposed_text: str = ""
    reasoning: str = ""


class FilteredFeedback(BaseModel):
    """Caller-selected subset of feedback items to merge."""

    kind: Literal["filtered"] = "filtered"
    changes: list[dict[str, Any]]
    source_stage: str | None = None


class RawStageFeedback(BaseModel):
    """Legacy mode: merge the full stored output of one review stage."""

    kind: Literal["raw_stage_output"] = "raw_stage_output"
    stage_id: str


FeedbackInput = Annotated[
    Union[FilteredFeedback, RawStageFeedback], Field(discriminator="kind")
]


class FeedbackSummary(BaseModel):
    """Change count plus short descriptions for progress displays."""

    stage_id: str
    count: int = 0
    descriptions: list[str] = Field(default_factory=list)
    changes: list[dict[str, Any]] = Field(default_factory=list)
    approved: bool = False


# === STAGE EXECUTION ===


class StageResult(BaseModel):
    """Outcome of one StageRunner.execute call."""

    stage_id: str
    stage_output: str
    concept_updated: bool
    prompt: str = ""
    snapshot_key: str | None = None
    snapshot: Snapshot | None = None
    processing_time_ms: int = 0

# src/api/models.py — v1
"""API-level models: request bodies, ledger views and response envelopes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from reportflow.core.models import HistoryEntry, LatestPointer
from reportflow.streaming.models import StreamingSession
from reportflow.tracking.models import LLMCallRecord, StageCallStats


# === REQUESTS ===


class CreateReportRequest(BaseModel):
    title: str = ""
    inputs: dict[str, Any] = Field(default_factory=dict)


class ExecuteStageRequest(BaseModel):
    """Optional custom prompt replacing the built one."""

    custom_input: str | None = None


class RestoreVersionRequest(BaseModel):
    stage_id: str
    reason: str | None = None


class ProcessFeedbackRequest(BaseModel):
    """Editor merge input.

    With filtered_changes the listed changes are merged; without them the
    stored raw output of the review stage is merged as a whole.
    """

    filtered_changes: list[dict[str, Any]] | None = None


class ConceptContentRequest(BaseModel):
    content: str


class AdjustRequest(BaseModel):
    instruction: str


class OverrideConceptRequest(BaseModel):
    content: str
    reason: str | None = None


class ManualStageRequest(BaseModel):
    stage_id: str
    content: str


class PromptPreviewRequest(BaseModel):
    instruction: str | None = None


class ExpressModeRequest(BaseModel):
    """Express run options; auto_accept falls back to the configured default."""

    stages: list[str] | None = None
    auto_accept: bool | None = None
    include_generation: bool = False


# === VIEWS ===


class SnapshotInfo(BaseModel):
    """Snapshot metadata without its content."""

    stage_id: str
    version: int
    timestamp: datetime
    source: str | None = None
    length: int = 0
    is_latest: bool = False


class VersionsView(BaseModel):
    """Ledger view of one report."""

    document_id: str
    latest: LatestPointer | None = None
    latest_content: str | None = None
    snapshots: list[SnapshotInfo] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)


class DeleteStageResult(BaseModel):
    stage_id: str
    removed: list[str] = Field(default_factory=list)
    latest: LatestPointer | None = None


class SessionStatusView(BaseModel):
    session: StreamingSession
    in_flight: bool = False


class SessionSummary(BaseModel):
    """One row of the active session listing."""

    document_id: str
    stage_id: str
    status: str
    percentage: float
    current_substep: str | None = None
    started_at: datetime

    @classmethod
    def from_session(cls, session: StreamingSession) -> SessionSummary:
        return cls(
            document_id=session.document_id,
            stage_id=session.stage_id,
            status=session.status,
            percentage=session.overall_percentage,
            current_substep=session.current_substep,
            started_at=session.started_at,
        )


class SessionsView(BaseModel):
    active_sessions: int = 0
    sessions: list[SessionSummary] = Field(default_factory=list)
    in_flight: list[str] = Field(default_factory=list)


class CallLogView(BaseModel):
    """AI calls recorded for one report, with per-stage aggregates."""

    document_id: str
    calls: list[LLMCallRecord] = Field(default_factory=list)
    stages: list[StageCallStats] = Field(default_factory=list)


# === ENVELOPES ===


def success_envelope(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """Standard success body: {success, data, message}."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"success": True, "data": data, "message": message}


def error_envelope(
    error_type: str,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Standard error body: {success: false, error: {...}}."""
    return {
        "success": False,
        "error": {
            "type": error_type,
            "code": code,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }

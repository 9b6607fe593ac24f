# src/streaming/models.py — v1
"""Progress session and event models.

Sessions are mutable and owned by the ProgressBus. Events are immutable
and carry a per-session sequence number so observers can order frames.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SubstepStatus = Literal["pending", "running", "completed", "error"]
SessionStatus = Literal["active", "completed", "error", "cancelled"]

EventType = Literal[
    # --- Stage session events ---
    "progress",
    "step_start",
    "step_progress",
    "step_complete",
    "step_error",
    "stage_complete",
    "stage_error",
    "cancelled",
    "token",
    # --- Express run events ---
    "stage_start",
    "express_summary",
    "express_complete",
    "express_error",
]

TERMINAL_EVENTS: frozenset[str] = frozenset(
    {"stage_complete", "stage_error", "cancelled", "express_complete", "express_error"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Substep(BaseModel):
    """Progress of one sub-unit within a stage execution."""

    id: str
    label: str
    status: SubstepStatus = "pending"
    percentage: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "error")


class StreamingSession(BaseModel):
    """Progress of one (document, stage) execution."""

    document_id: str
    stage_id: str
    status: SessionStatus = "active"
    substeps: list[Substep] = Field(default_factory=list)
    overall_percentage: float = 0.0
    current_substep: str | None = None
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None
    seq: int = 0

    @property
    def session_id(self) -> str:
        return f"{self.document_id}-{self.stage_id}"

    @property
    def is_terminal(self) -> bool:
        return self.status != "active"

    def find_substep(self, substep_id: str) -> Substep | None:
        for substep in self.substeps:
            if substep.id == substep_id:
                return substep
        return None

    def recompute_percentage(self) -> float:
        total = len(self.substeps)
        completed = sum(1 for s in self.substeps if s.status == "completed")
        self.overall_percentage = (completed / total * 100) if total else 0.0
        return self.overall_percentage


class PipelineEvent(BaseModel):
    """One typed progress event delivered to observers."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    document_id: str
    stage_id: str | None = None
    seq: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)
    substep_id: str | None = None
    percentage: float | None = None
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_sse(self) -> str:
        """Serialise as one server-sent-events data frame."""
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"

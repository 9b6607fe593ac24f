# src/core/errors.py — v1
"""Error taxonomy for the report pipeline.

Every error carries the document and stage it relates to so that callers
(HTTP handlers, the express orchestrator, the CLI) can surface it without
re-deriving context.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    code = "PIPELINE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        document_id: str | None = None,
        stage_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.document_id = document_id
        self.stage_id = stage_id
        self.details = details or {}

    def context(self) -> dict[str, Any]:
        """Return non-empty context fields plus details."""
        ctx: dict[str, Any] = dict(self.details)
        if self.document_id is not None:
            ctx["document_id"] = self.document_id
        if self.stage_id is not None:
            ctx["stage_id"] = self.stage_id
        return ctx


class ValidationError(PipelineError):
    """Bad input (unknown stage, missing field, empty feedback selection)."""

    code = "VALIDATION_FAILED"


class NotFoundError(PipelineError):
    """A referenced document, stage or snapshot does not exist."""

    code = "NOT_FOUND"


class NoConceptError(PipelineError):
    """The editor role was invoked before any concept snapshot exists."""

    code = "NO_CONCEPT"


class ParseError(PipelineError):
    """AI output could not be interpreted as structured data."""

    code = "AI_RESPONSE_INVALID"

    def __init__(self, message: str, *, raw_text: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.raw_text = raw_text


class StageExecutionError(PipelineError):
    """The AI collaborator failed (error or timeout) while running a stage."""

    code = "AI_PROCESSING_FAILED"

    def __init__(
        self,
        stage_id: str,
        cause: BaseException,
        *,
        document_id: str | None = None,
    ) -> None:
        reason = str(cause) or type(cause).__name__
        super().__init__(
            f"Stage '{stage_id}' failed: {reason}",
            document_id=document_id,
            stage_id=stage_id,
            details={"cause": type(cause).__name__},
        )
        self.cause = cause

# src/logging/context.py — v1
"""Contextual logging support — attach document_id, run_id, stage to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Set per stage execution; asyncio tasks inherit a copy on creation.
_document_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "document_id", default=None
)
_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_stage_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage_id", default=None
)
_substep: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "substep", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    document_id: str | None = None
    run_id: str | None = None
    stage_id: str | None = None
    substep: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        document_id=_document_id.get(),
        run_id=_run_id.get(),
        stage_id=_stage_id.get(),
        substep=_substep.get(),
    )


def set_document_context(document_id: str, run_id: str | None = None) -> None:
    """Set document-level context (once per request or express run)."""
    _document_id.set(document_id)
    _run_id.set(run_id)


def set_stage_context(stage_id: str, substep: str | None = None) -> None:
    """Set stage-level context (per stage execution and substep)."""
    _stage_id.set(stage_id)
    _substep.set(substep)


def clear_context() -> None:
    """Reset all context variables."""
    _document_id.set(None)
    _run_id.set(None)
    _stage_id.set(None)
    _substep.set(None)

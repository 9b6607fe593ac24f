# src/streaming/progress_bus.py — v1
"""Progress bus — per-(document, stage) sessions with substep tracking.

One writer (the StageRunner driving a session) and any number of
subscribers. Subscriptions are keyed by (document, stage) rather than by
session, so an observer attached before a stage starts, or across a
re-run, keeps receiving events.

Token events are simulated: a finished text is chunked and emitted with a
short delay between pieces. This gives observers incremental output while
the AI collaborator itself does not stream.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from reportflow.config.stages import SubstepDefinition
from reportflow.streaming.models import (
    EventType,
    PipelineEvent,
    StreamingSession,
    Substep,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[PipelineEvent], None]
SessionKey = tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressBus:
    """Session registry and event fan-out."""

    def __init__(
        self,
        *,
        token_chunks: int = 20,
        token_delay_s: float = 0.05,
        retention: timedelta = timedelta(hours=24),
    ) -> None:
        self._sessions: dict[SessionKey, StreamingSession] = {}
        self._subscribers: dict[SessionKey, list[EventCallback]] = defaultdict(list)
        self.token_chunks = max(1, token_chunks)
        self.token_delay_s = max(0.0, token_delay_s)
        self.retention = retention

    # === SESSIONS ===

    def create_session(
        self,
        document_id: str,
        stage_id: str,
        substeps: Sequence[SubstepDefinition],
    ) -> StreamingSession:
        """Open a fresh session, replacing any previous one for the key."""
        session = StreamingSession(
            document_id=document_id,
            stage_id=stage_id,
            substeps=[Substep(id=s.substep_id, label=s.label) for s in substeps],
        )
        self._sessions[(document_id, stage_id)] = session
        logger.info(
            "Session %s created with %d substeps", session.session_id, len(substeps)
        )
        return session

    def get_session(self, document_id: str, stage_id: str) -> StreamingSession | None:
        return self._sessions.get((document_id, stage_id))

    def close_session(self, document_id: str, stage_id: str) -> bool:
        """Drop a session immediately. Subscriptions are left in place."""
        return self._sessions.pop((document_id, stage_id), None) is not None

    def active_sessions(self) -> list[StreamingSession]:
        return [s for s in self._sessions.values() if s.status == "active"]

    def cleanup(self, now: datetime | None = None) -> int:
        """Remove sessions started before the retention window. Returns the count."""
        cutoff = (now or _utcnow()) - self.retention
        stale = [key for key, s in self._sessions.items() if s.started_at < cutoff]
        for key in stale:
            del self._sessions[key]
            logger.debug("Cleaned up session %s-%s", *key)
        return len(stale)

    # === SUBSTEP TRANSITIONS ===

    def _writable(
        self, document_id: str, stage_id: str, substep_id: str
    ) -> tuple[StreamingSession, Substep] | None:
        session = self.get_session(document_id, stage_id)
        if session is None or session.is_terminal:
            return None
        substep = session.find_substep(substep_id)
        if substep is None:
            logger.warning("Unknown substep %s in session %s", substep_id, session.session_id)
            return None
        if substep.is_terminal:
            return None
        return session, substep

    def start_substep(self, document_id: str, stage_id: str, substep_id: str) -> None:
        found = self._writable(document_id, stage_id, substep_id)
        if found is None:
            return
        session, substep = found
        substep.status = "running"
        substep.start_time = _utcnow()
        session.current_substep = substep_id
        session.recompute_percentage()
        self._emit(
            session,
            "step_start",
            substep_id=substep_id,
            percentage=0,
            message=f"Started {substep.label}",
        )

    def update_substep(
        self,
        document_id: str,
        stage_id: str,
        substep_id: str,
        percentage: int,
        message: str | None = None,
    ) -> None:
        """Report partial progress; 100 percent completes the substep."""
        if percentage >= 100:
            self.complete_substep(document_id, stage_id, substep_id, message=message)
            return
        found = self._writable(document_id, stage_id, substep_id)
        if found is None:
            return
        session, substep = found
        substep.status = "running"
        substep.percentage = max(substep.percentage, max(0, percentage))
        if substep.start_time is None:
            substep.start_time = _utcnow()
        if message:
            substep.message = message
        session.current_substep = substep_id
        session.recompute_percentage()
        self._emit(
            session,
            "step_progress",
            substep_id=substep_id,
            percentage=substep.percentage,
            message=message or f"{substep.label} - {substep.percentage}%",
        )

    def complete_substep(
        self,
        document_id: str,
        stage_id: str,
        substep_id: str,
        *,
        message: str | None = None,
        output: str | None = None,
    ) -> None:
        found = self._writable(document_id, stage_id, substep_id)
        if found is None:
            return
        session, substep = found
        substep.status = "completed"
        substep.percentage = 100
        substep.end_time = _utcnow()
        if message:
            substep.message = message
        session.recompute_percentage()
        self._emit(
            session,
            "step_complete",
            substep_id=substep_id,
            percentage=100,
            message=message or f"Completed {substep.label}",
            data={"output": output} if output is not None else {},
        )

    def error_substep(
        self, document_id: str, stage_id: str, substep_id: str, error: str
    ) -> None:
        found = self._writable(document_id, stage_id, substep_id)
        if found is None:
            return
        session, substep = found
        substep.status = "error"
        substep.end_time = _utcnow()
        substep.message = error
        session.current_substep = substep_id
        session.recompute_percentage()
        logger.error("Substep %s failed in %s: %s", substep_id, session.session_id, error)
        self._emit(
            session,
            "step_error",
            substep_id=substep_id,
            percentage=substep.percentage,
            message=f"Error in {substep.label}: {error}",
        )

    # === STAGE TRANSITIONS ===

    def complete_stage(
        self,
        document_id: str,
        stage_id: str,
        result: str,
        *,
        data: dict[str, Any] | None = None,
    ) -> None:
        session = self.get_session(document_id, stage_id)
        if session is None or session.is_terminal:
            return
        session.status = "completed"
        session.finished_at = _utcnow()
        self._emit(
            session,
            "stage_complete",
            percentage=session.overall_percentage,
            message="Stage completed",
            data={"result": result, **(data or {})},
        )
        logger.info("Session %s completed", session.session_id)

    def error_stage(
        self,
        document_id: str,
        stage_id: str,
        error: str,
        *,
        can_retry: bool = True,
        code: str | None = None,
    ) -> None:
        session = self.get_session(document_id, stage_id)
        if session is None or session.is_terminal:
            return
        session.status = "error"
        session.finished_at = _utcnow()
        self._emit(
            session,
            "stage_error",
            percentage=session.overall_percentage,
            message=error,
            data={"can_retry": can_retry, "code": code},
        )
        logger.error("Session %s failed: %s", session.session_id, error)

    def cancel(self, document_id: str, stage_id: str) -> bool:
        """Mark the session cancelled. The in-flight AI call is not aborted."""
        session = self.get_session(document_id, stage_id)
        if session is None or session.is_terminal:
            return False
        session.status = "cancelled"
        session.finished_at = _utcnow()
        self._emit(session, "cancelled", message="Stage cancelled")
        logger.info("Session %s cancelled", session.session_id)
        return True

    # === TOKENS ===

    async def stream_text(self, document_id: str, stage_id: str, text: str) -> int:
        """Emit text as a series of token events; returns the number emitted.

        Stops early when the session becomes terminal (for example when
        it is cancelled while chunks are still being sent).
        """
        if not text:
            return 0
        size = max(1, -(-len(text) // self.token_chunks))
        emitted = 0
        for start in range(0, len(text), size):
            session = self.get_session(document_id, stage_id)
            if session is None or session.is_terminal:
                break
            token = text[start : start + size]
            self._emit(
                session,
                "token",
                data={"token": token, "accumulated": text[: start + size]},
            )
            emitted += 1
            if self.token_delay_s and start + size < len(text):
                await asyncio.sleep(self.token_delay_s)
        return emitted

    # === SUBSCRIPTIONS ===

    def subscribe(
        self, document_id: str, stage_id: str, callback: EventCallback
    ) -> Callable[[], None]:
        """Register callback for events of (document, stage); returns unsubscribe."""
        key = (document_id, stage_id)
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[key]

        return unsubscribe

    def subscriber_count(self, document_id: str, stage_id: str) -> int:
        return len(self._subscribers.get((document_id, stage_id), ()))

    def snapshot_event(self, document_id: str, stage_id: str) -> PipelineEvent | None:
        """Current session state as a progress event, for late joiners. Not broadcast."""
        session = self.get_session(document_id, stage_id)
        if session is None:
            return None
        return PipelineEvent(
            type="progress",
            document_id=document_id,
            stage_id=stage_id,
            seq=session.seq,
            percentage=session.overall_percentage,
            message=f"Resuming at {round(session.overall_percentage)}%",
            data={"session": session.model_dump(mode="json")},
        )

    def _emit(
        self,
        session: StreamingSession,
        event_type: EventType,
        **fields: Any,
    ) -> PipelineEvent:
        session.seq += 1
        event = PipelineEvent(
            type=event_type,
            document_id=session.document_id,
            stage_id=session.stage_id,
            seq=session.seq,
            **fields,
        )
        for callback in list(self._subscribers.get((session.document_id, session.stage_id), ())):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Subscriber failed on %s event for %s", event_type, session.session_id
                )
        return event

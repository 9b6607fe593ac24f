# tests/unit/streaming/test_unit_progress_bus.py — v1
"""Tests for streaming/progress_bus.py — sessions, substeps, fan-out."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from reportflow.config.stages import ROLE_SUBSTEPS
from reportflow.streaming.models import PipelineEvent
from reportflow.streaming.progress_bus import ProgressBus

STEPS = [s.substep_id for s in ROLE_SUBSTEPS["generation"]]


def _bus(**kwargs) -> ProgressBus:
    return ProgressBus(token_delay_s=0, **kwargs)


def _collect(bus: ProgressBus, doc: str = "doc", stage: str = "generate") -> list[PipelineEvent]:
    events: list[PipelineEvent] = []
    bus.subscribe(doc, stage, events.append)
    return events


class TestSessions:
    def test_create_session(self):
        bus = _bus()
        session = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        assert session.session_id == "doc-generate"
        assert [s.id for s in session.substeps] == STEPS
        assert all(s.status == "pending" for s in session.substeps)
        assert bus.get_session("doc", "generate") is session
        assert bus.active_sessions() == [session]

    def test_new_session_replaces_old(self):
        bus = _bus()
        old = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.cancel("doc", "generate")
        new = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        assert bus.get_session("doc", "generate") is new
        assert new is not old
        assert new.status == "active"

    def test_close_session(self):
        bus = _bus()
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        assert bus.close_session("doc", "generate")
        assert not bus.close_session("doc", "generate")

    def test_cleanup_after_retention(self):
        bus = _bus(retention=timedelta(hours=24))
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.create_session("doc", "review_a", ROLE_SUBSTEPS["review"])
        assert bus.cleanup() == 0
        later = datetime.now(timezone.utc) + timedelta(hours=25)
        assert bus.cleanup(now=later) == 2
        assert bus.get_session("doc", "generate") is None


class TestSubsteps:
    def test_full_lifecycle_events(self):
        bus = _bus()
        events = _collect(bus)
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        for step in STEPS:
            bus.start_substep("doc", "generate", step)
            bus.complete_substep("doc", "generate", step)
        bus.complete_stage("doc", "generate", "final text", data={"version": 1})

        types = [e.type for e in events]
        assert types == ["step_start", "step_complete"] * 3 + ["stage_complete"]
        assert [e.seq for e in events] == list(range(1, 8))
        assert events[-1].data == {"result": "final text", "version": 1}
        assert events[-1].percentage == 100

    def test_overall_percentage_is_monotonic(self):
        bus = _bus()
        events = _collect(bus)
        session = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        observed = []
        for step in STEPS:
            bus.start_substep("doc", "generate", step)
            bus.update_substep("doc", "generate", step, 50)
            observed.append(session.overall_percentage)
            bus.complete_substep("doc", "generate", step)
            observed.append(session.overall_percentage)
        assert observed == sorted(observed)
        assert observed[-1] == pytest.approx(100.0)
        assert session.overall_percentage == pytest.approx(100.0)
        assert len(events) == 9

    def test_update_never_lowers_substep_percentage(self):
        bus = _bus()
        session = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        bus.update_substep("doc", "generate", STEPS[0], 60)
        bus.update_substep("doc", "generate", STEPS[0], 30)
        assert session.substeps[0].percentage == 60

    def test_update_to_100_completes(self):
        bus = _bus()
        events = _collect(bus)
        session = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        bus.update_substep("doc", "generate", STEPS[0], 100)
        assert session.substeps[0].status == "completed"
        assert events[-1].type == "step_complete"

    def test_no_events_after_substep_terminal(self):
        bus = _bus()
        events = _collect(bus)
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        bus.error_substep("doc", "generate", STEPS[0], "boom")
        count = len(events)
        bus.update_substep("doc", "generate", STEPS[0], 40)
        bus.complete_substep("doc", "generate", STEPS[0])
        assert len(events) == count
        assert events[-1].type == "step_error"
        assert "boom" in events[-1].message

    def test_unknown_substep_ignored(self):
        bus = _bus()
        events = _collect(bus)
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", "nope")
        assert events == []

    def test_no_session_is_silent(self):
        bus = _bus()
        events = _collect(bus)
        bus.start_substep("doc", "generate", STEPS[0])
        bus.complete_stage("doc", "generate", "x")
        assert events == []


class TestStageTransitions:
    def test_error_stage(self):
        bus = _bus()
        events = _collect(bus)
        session = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.error_stage("doc", "generate", "timeout", code="AI_PROCESSING_FAILED")
        assert session.status == "error"
        assert events[-1].type == "stage_error"
        assert events[-1].data == {"can_retry": True, "code": "AI_PROCESSING_FAILED"}

    def test_cancel_silences_session(self):
        bus = _bus()
        events = _collect(bus)
        session = bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        assert bus.cancel("doc", "generate")
        bus.complete_substep("doc", "generate", STEPS[0])
        bus.complete_stage("doc", "generate", "x")
        assert [e.type for e in events] == ["step_start", "cancelled"]
        assert session.status == "cancelled"

    def test_cancel_without_session(self):
        assert not _bus().cancel("doc", "generate")

    def test_cancel_twice(self):
        bus = _bus()
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        assert bus.cancel("doc", "generate")
        assert not bus.cancel("doc", "generate")


class TestTokens:
    @pytest.mark.asyncio
    async def test_stream_text_chunks(self):
        bus = _bus(token_chunks=4)
        events = _collect(bus)
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        text = "abcdefghijklmnop"
        emitted = await bus.stream_text("doc", "generate", text)
        tokens = [e for e in events if e.type == "token"]
        assert emitted == 4 == len(tokens)
        assert "".join(e.data["token"] for e in tokens) == text
        assert tokens[-1].data["accumulated"] == text

    @pytest.mark.asyncio
    async def test_stream_text_short_text(self):
        bus = _bus(token_chunks=20)
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        assert await bus.stream_text("doc", "generate", "abc") == 3

    @pytest.mark.asyncio
    async def test_stream_text_stops_when_cancelled(self):
        bus = _bus(token_chunks=10)
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])

        def cancel_on_first_token(event: PipelineEvent) -> None:
            if event.type == "token":
                bus.cancel("doc", "generate")

        bus.subscribe("doc", "generate", cancel_on_first_token)
        assert await bus.stream_text("doc", "generate", "x" * 100) == 1

    @pytest.mark.asyncio
    async def test_empty_text(self):
        bus = _bus()
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        assert await bus.stream_text("doc", "generate", "") == 0


class TestSubscriptions:
    def test_unsubscribe(self):
        bus = _bus()
        events: list[PipelineEvent] = []
        unsubscribe = bus.subscribe("doc", "generate", events.append)
        assert bus.subscriber_count("doc", "generate") == 1
        unsubscribe()
        unsubscribe()
        assert bus.subscriber_count("doc", "generate") == 0
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        assert events == []

    def test_failing_subscriber_does_not_stop_others(self, caplog):
        bus = _bus()

        def broken(_: PipelineEvent) -> None:
            raise RuntimeError("observer crashed")

        bus.subscribe("doc", "generate", broken)
        events = _collect(bus)
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        assert len(events) == 1
        assert "Subscriber failed" in caplog.text

    def test_subscriptions_are_per_stage(self):
        bus = _bus()
        events = _collect(bus, stage="review_a")
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        assert events == []

    def test_snapshot_event(self):
        bus = _bus()
        assert bus.snapshot_event("doc", "generate") is None
        bus.create_session("doc", "generate", ROLE_SUBSTEPS["generation"])
        bus.start_substep("doc", "generate", STEPS[0])
        bus.complete_substep("doc", "generate", STEPS[0])
        event = bus.snapshot_event("doc", "generate")
        assert event.type == "progress"
        assert event.message == "Resuming at 33%"
        assert event.data["session"]["substeps"][0]["status"] == "completed"

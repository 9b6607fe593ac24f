# src/api/facade.py — v1
"""Public API facade — one object exposing every report operation.

Usage:
    service = ReportService(runtime)
    report = await service.create_report("Q3 audit", {"scope": "..."})
    report, result = await service.execute_stage(report.id, "generate")

HTTP routes and the CLI both go through this class; it owns no state
beyond the shared PipelineRuntime.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from typing import TYPE_CHECKING, Any

from reportflow.api.models import (
    CallLogView,
    DeleteStageResult,
    SessionStatusView,
    SessionSummary,
    SessionsView,
    SnapshotInfo,
    VersionsView,
)
from reportflow.config.stages import ADJUSTMENT_PREFIX, EDITOR_STAGE
from reportflow.core.errors import NotFoundError, ValidationError
from reportflow.core.models import (
    FeedbackInput,
    FilteredFeedback,
    RawStageFeedback,
    Report,
    Snapshot,
    StageResult,
)
from reportflow.logging.context import set_document_context
from reportflow.pipeline.orchestrator import PipelineOrchestrator

if TYPE_CHECKING:
    from reportflow.pipeline.runtime import PipelineRuntime

logger = logging.getLogger(__name__)


class ReportService:
    """Report operations over a shared runtime.

    Args:
        runtime: Process-wide pipeline runtime.
    """

    def __init__(self, runtime: PipelineRuntime) -> None:
        self.runtime = runtime
        self.graph = runtime.graph
        self.orchestrator = PipelineOrchestrator(runtime)

    # === REPORTS ===

    async def create_report(self, title: str = "", inputs: dict[str, Any] | None = None) -> Report:
        report = await self.runtime.store.create_report({"title": title, "inputs": inputs or {}})
        logger.info("Report %s created", report.id)
        return report

    async def get_report(self, report_id: str) -> Report:
        return await self.runtime.load_report(report_id)

    async def list_reports(self) -> list[Report]:
        return await self.runtime.store.list_reports()

    # === STAGES ===

    async def execute_stage(
        self,
        report_id: str,
        stage_id: str,
        custom_input: str | None = None,
    ) -> tuple[Report, StageResult]:
        """Execute one stage; concurrent identical calls share one execution.

        Args:
            report_id: Report to run against.
            stage_id: Catalogue stage id. The editor stage needs feedback
                and is reached through process_feedback() or adjust().
            custom_input: Optional prompt replacing the built one.

        Returns:
            (saved report, stage result).

        Raises:
            NotFoundError: Unknown report.
            ValidationError: Unknown stage, or the editor stage.
            StageExecutionError: AI call failed or timed out.
        """
        if stage_id not in self.graph:
            raise ValidationError(
                f"Unknown stage '{stage_id}'", document_id=report_id, stage_id=stage_id
            )
        if self.graph.role_of(stage_id) == "editor":
            raise ValidationError(
                "The editor stage requires accepted feedback; use process-feedback",
                document_id=report_id,
                stage_id=stage_id,
            )
        return await self.runtime.execute_stage(report_id, stage_id, custom_input=custom_input)

    async def delete_stage(self, report_id: str, stage_id: str) -> tuple[Report, DeleteStageResult]:
        """Remove a stage and everything after it in the stage order.

        Outputs, prompts and snapshots of the affected stages are dropped;
        earlier stages are left untouched. The latest pointer is
        recomputed when it pointed into the removed range.

        Raises:
            NotFoundError: Unknown report, or nothing recorded for stage_id.
        """
        set_document_context(report_id)
        async with self.runtime.ledger_lock(report_id):
            return await self._delete_stage(report_id, stage_id)

    async def _delete_stage(self, report_id: str, stage_id: str) -> tuple[Report, DeleteStageResult]:
        report = await self.runtime.load_report(report_id)
        recorded = (
            stage_id in report.stage_outputs
            or stage_id in report.ledger.snapshots
            or any(entry.stage_id == stage_id for entry in report.ledger.history)
        )
        if not self.graph.is_known(stage_id) or not recorded:
            raise NotFoundError(
                f"Nothing recorded for stage '{stage_id}'",
                document_id=report_id,
                stage_id=stage_id,
            )

        existing = sorted(set(report.stage_outputs) | set(report.stage_prompts))
        for key in self.graph.cascade_targets(stage_id, existing):
            report.stage_outputs.pop(key, None)
            report.stage_prompts.pop(key, None)
        removed = report.ledger.cascade_delete(stage_id, self.graph.order)

        report.current_stage = self._last_completed(report)
        if report.ledger.latest is None and report.status == "generated":
            report.status = "draft"
        report.touch()
        saved = await self.runtime.save_report(report)
        logger.info("Stage %s deleted for %s, snapshots removed: %s", stage_id, report_id, removed)
        return saved, DeleteStageResult(stage_id=stage_id, removed=removed, latest=saved.ledger.latest)

    async def cancel_stage(self, report_id: str, stage_id: str) -> bool:
        """Mark the running session cancelled; False when none is running."""
        return self.runtime.bus.cancel(report_id, stage_id)

    # === VERSIONS ===

    async def restore_version(
        self, report_id: str, stage_id: str, reason: str | None = None
    ) -> Report:
        """Point latest at an earlier snapshot. Nothing is deleted.

        Raises:
            NotFoundError: Unknown report, or no snapshot for stage_id.
        """
        async with self.runtime.ledger_lock(report_id):
            report = await self.runtime.load_report(report_id)
            try:
                report.ledger.promote(stage_id, reason)
            except NotFoundError as exc:
                exc.document_id = report_id
                raise
            report.status = "generated"
            report.touch()
            return await self.runtime.save_report(report)

    async def get_versions(self, report_id: str) -> VersionsView:
        report = await self.runtime.load_report(report_id)
        return self.versions_view(report)

    def versions_view(self, report: Report) -> VersionsView:
        ledger = report.ledger
        pointer = ledger.latest.pointer if ledger.latest else None
        snapshots = [
            SnapshotInfo(
                stage_id=key,
                version=snap.version,
                timestamp=snap.timestamp,
                source=snap.source,
                length=len(snap.content),
                is_latest=key == pointer,
            )
            for key, snap in sorted(ledger.snapshots.items(), key=lambda item: item[1].version)
        ]
        return VersionsView(
            document_id=report.id,
            latest=ledger.latest,
            latest_content=ledger.resolve_latest_content(),
            snapshots=snapshots,
            history=list(ledger.history),
        )

    # === CONCEPT EDITS ===

    async def process_feedback(
        self,
        report_id: str,
        review_stage: str,
        filtered_changes: list[dict[str, Any]] | None = None,
    ) -> tuple[Report, StageResult]:
        """Merge a review stage's feedback into the concept via the editor.

        With filtered_changes only those changes are merged; without them
        the stored raw output of review_stage is used. The new snapshot is
        stored under the review stage id.

        Raises:
            ValidationError: review_stage is not a review stage, or the
                selection is empty.
            NoConceptError: No concept exists yet.
        """
        if review_stage not in self.graph or self.graph.role_of(review_stage) != "review":
            raise ValidationError(
                f"'{review_stage}' is not a review stage",
                document_id=report_id,
                stage_id=review_stage,
            )
        feedback: FeedbackInput
        if filtered_changes is not None:
            feedback = FilteredFeedback(changes=filtered_changes, source_stage=review_stage)
        else:
            feedback = RawStageFeedback(stage_id=review_stage)
        return await self.runtime.execute_stage(
            report_id,
            EDITOR_STAGE,
            feedback=feedback,
            snapshot_key=review_stage,
            dedup_key=(report_id, f"{EDITOR_STAGE}:{review_stage}"),
        )

    async def update_concept(self, report_id: str, content: str) -> tuple[Report, str]:
        """Store user-edited concept content as a manual_edit_N snapshot.

        Returns:
            (saved report, snapshot key).

        Raises:
            ValidationError: Empty content.
            NoConceptError: No concept exists yet.
        """
        if not content or not content.strip():
            raise ValidationError("Concept content must not be empty", document_id=report_id)
        async with self.runtime.ledger_lock(report_id):
            report = await self.runtime.load_report(report_id)
            key = report.ledger.record_manual_edit(content)
            report.status = "generated"
            report.touch()
            saved = await self.runtime.save_report(report)
        logger.info("Manual edit stored for %s as %s", report_id, key)
        return saved, key

    async def adjust(self, report_id: str, instruction: str) -> tuple[Report, StageResult]:
        """Run the editor with a free-form instruction; stored as adjustment_N."""
        if not instruction or not instruction.strip():
            raise ValidationError("Adjustment instruction must not be empty", document_id=report_id)
        change = {
            "id": ADJUSTMENT_PREFIX,
            "type": "modify",
            "instruction": instruction,
            "rationale": "User requested adjustment",
        }
        return await self.runtime.execute_stage(
            report_id,
            EDITOR_STAGE,
            feedback=FilteredFeedback(changes=[change]),
            dedup_key=(report_id, f"{EDITOR_STAGE}:{ADJUSTMENT_PREFIX}"),
        )

    async def override_concept(
        self,
        report_id: str,
        stage_id: str,
        content: str,
        reason: str | None = None,
    ) -> tuple[Report, Snapshot]:
        """Store caller-supplied content as the snapshot of stage_id and make it latest.

        No AI call is made. The stage becomes the report's current stage.

        Raises:
            ValidationError: Empty content, unknown key, or an analysis stage.
        """
        if not content or not content.strip():
            raise ValidationError("Concept content must not be empty", document_id=report_id)
        if not self.graph.is_known(stage_id) or self.graph.role_of(stage_id) == "analysis":
            raise ValidationError(
                f"Stage '{stage_id}' cannot hold a concept snapshot",
                document_id=report_id,
                stage_id=stage_id,
            )
        async with self.runtime.ledger_lock(report_id):
            report = await self.runtime.load_report(report_id)
            snapshot = report.ledger.create_snapshot(
                stage_id, content, source="override", reason=reason
            )
            report.ledger.advance_latest(stage_id, snapshot.version)
            report.current_stage = stage_id
            report.status = "generated"
            report.touch()
            saved = await self.runtime.save_report(report)
        logger.info("Concept overridden for %s at %s (v%d)", report_id, stage_id, snapshot.version)
        return saved, snapshot

    async def record_manual_stage(
        self, report_id: str, stage_id: str, content: str
    ) -> tuple[Report, Snapshot | None]:
        """Record stage output produced outside the pipeline.

        For the generation stage the content also becomes a new latest
        concept snapshot.

        Raises:
            ValidationError: Empty content, unknown stage, or the editor stage.
        """
        if not content or not content.strip():
            raise ValidationError("Stage content must not be empty", document_id=report_id)
        if stage_id not in self.graph or self.graph.role_of(stage_id) == "editor":
            raise ValidationError(
                f"'{stage_id}' cannot be recorded manually",
                document_id=report_id,
                stage_id=stage_id,
            )
        snapshot = None
        async with self.runtime.ledger_lock(report_id):
            report = await self.runtime.load_report(report_id)
            report.stage_outputs[stage_id] = content
            if self.graph.role_of(stage_id) == "generation":
                snapshot = report.ledger.create_snapshot(stage_id, content, source="manual")
                report.ledger.advance_latest(stage_id, snapshot.version)
                report.status = "generated"
            report.current_stage = stage_id
            report.touch()
            saved = await self.runtime.save_report(report)
        logger.info("Manual output recorded for %s/%s", report_id, stage_id)
        return saved, snapshot

    # === PROMPTS ===

    async def stage_prompt(self, report_id: str, stage_id: str) -> str:
        """Build the prompt of a stage without running it and store it on the report.

        Raises:
            ValidationError: Unknown stage, or the editor stage.
        """
        if stage_id not in self.graph:
            raise ValidationError(
                f"Unknown stage '{stage_id}'", document_id=report_id, stage_id=stage_id
            )
        async with self.runtime.ledger_lock(report_id):
            report = await self.runtime.load_report(report_id)
            prompt = self.runtime.runner.build_prompt(report, stage_id)
            report.stage_prompts[stage_id] = prompt
            report.touch()
            await self.runtime.save_report(report)
        return prompt

    async def preview_feedback_prompt(
        self, report_id: str, review_stage: str, instruction: str | None = None
    ) -> str:
        """Editor prompt that process_feedback() would send for review_stage.

        Nothing is executed or stored.

        Raises:
            ValidationError: Not a review stage, or no feedback stored for it.
            NoConceptError: No concept exists yet.
        """
        if review_stage not in self.graph or self.graph.role_of(review_stage) != "review":
            raise ValidationError(
                f"'{review_stage}' is not a review stage",
                document_id=report_id,
                stage_id=review_stage,
            )
        report = await self.runtime.load_report(report_id)
        return self.runtime.runner.build_editor_prompt(
            report, RawStageFeedback(stage_id=review_stage), instruction
        )

    # === SESSIONS AND CALLS ===

    def session_status(self, report_id: str, stage_id: str) -> SessionStatusView:
        """Current progress session of a stage.

        Raises:
            NotFoundError: No session recorded for (report_id, stage_id).
        """
        session = self.runtime.bus.get_session(report_id, stage_id)
        if session is None:
            raise NotFoundError(
                f"No progress session for stage '{stage_id}'",
                document_id=report_id,
                stage_id=stage_id,
            )
        return SessionStatusView(
            session=session, in_flight=self.runtime.dedup.is_running((report_id, stage_id))
        )

    def list_sessions(self) -> SessionsView:
        active = self.runtime.bus.active_sessions()
        return SessionsView(
            active_sessions=len(active),
            sessions=[SessionSummary.from_session(s) for s in active],
            in_flight=[_key_label(key) for key in self.runtime.dedup.active_keys()],
        )

    def cleanup_sessions(self) -> int:
        """Drop progress sessions past their retention; returns how many."""
        removed = self.runtime.bus.cleanup()
        logger.info("Manual session cleanup removed %d sessions", removed)
        return removed

    def call_log(self, report_id: str) -> CallLogView:
        call_logger = self.runtime.call_logger
        return CallLogView(
            document_id=report_id,
            calls=call_logger.for_document(report_id),
            stages=list(call_logger.stage_stats(report_id).values()),
        )

    # --- Helpers ---

    def _last_completed(self, report: Report) -> str | None:
        for stage_id in reversed(self.graph.order):
            if stage_id in report.stage_outputs:
                return stage_id
        return None


def _key_label(key: Hashable) -> str:
    if isinstance(key, tuple):
        return ":".join(str(part) for part in key)
    return str(key)

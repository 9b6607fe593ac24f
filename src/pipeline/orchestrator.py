# src/pipeline/orchestrator.py — v1
"""Express mode — drive a sequence of stages end to end.

For each stage: stage_start, deduplicated execution, and for review
stages with auto-accept an immediate editor merge of the parsed
feedback, then stage_complete with a change summary. The first failure
emits stage_error and halts the sequence; snapshots committed by earlier
stages stay in place. The run ends with one express_summary followed by
express_complete or express_error.

Substep events of the underlying stage sessions are forwarded, re-
sequenced under the run.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from reportflow.config.stages import EDITOR_STAGE, GENERATION_STAGE
from reportflow.core.errors import NoConceptError, PipelineError, ValidationError
from reportflow.core.models import FeedbackSummary, FilteredFeedback, Report
from reportflow.logging.context import set_document_context
from reportflow.pipeline.feedback import parse_feedback_to_proposals, summarize_feedback
from reportflow.streaming.models import EventType, PipelineEvent

if TYPE_CHECKING:
    from reportflow.pipeline.runtime import PipelineRuntime

logger = logging.getLogger(__name__)

EmitFn = Callable[[PipelineEvent], None]

# Analysis stage whose output generation depends on.
GENERATION_PREREQUISITE = "complexity"

_FORWARDED = frozenset({"step_start", "step_progress", "step_complete", "step_error"})


class ExpressOptions(BaseModel):
    """Caller-supplied express run parameters."""

    stages: list[str] | None = None
    auto_accept: bool = True
    include_generation: bool = False


class StageSummary(BaseModel):
    stage_id: str
    stage_name: str
    changes_count: int = 0
    changes: list[dict[str, Any]] = Field(default_factory=list)
    processing_time_ms: int = 0
    version: int | None = None


class ExpressSummary(BaseModel):
    """Aggregate of one express run."""

    run_id: str
    stages: list[StageSummary] = Field(default_factory=list)
    total_changes: int = 0
    final_version: int | None = None
    final_content: str | None = None
    total_processing_time_ms: int = 0
    completed: bool = True
    failed_stage: str | None = None
    error: str | None = None


class PipelineOrchestrator:
    """Express mode driver over a PipelineRuntime.

    Args:
        runtime: Shared runtime (runner, dedup, bus, store).
    """

    def __init__(self, runtime: PipelineRuntime) -> None:
        self._runtime = runtime
        self._graph = runtime.graph

    def resolve_stages(self, options: ExpressOptions) -> list[str]:
        """Ordered stage list for a run, validated against the catalogue."""
        stages = list(options.stages or self._runtime.settings.express_default_stages_list)
        if options.include_generation and GENERATION_STAGE not in stages:
            stages.insert(0, GENERATION_STAGE)
        if not stages:
            raise ValidationError("Express run needs at least one stage")
        for stage_id in stages:
            if stage_id not in self._graph:
                raise ValidationError(f"Unknown stage '{stage_id}'", stage_id=stage_id)
            if self._graph.role_of(stage_id) == "editor":
                raise ValidationError(
                    "The editor stage runs as part of review stages", stage_id=stage_id
                )
        return stages

    def validate(self, report: Report, stages: list[str]) -> None:
        """Preflight checks before any event is emitted.

        Raises:
            ValidationError: Generation requested without its prerequisite output.
            NoConceptError: Review without generation and no concept exists yet.
        """
        if GENERATION_STAGE in stages:
            if not report.stage_outputs.get(GENERATION_PREREQUISITE):
                raise ValidationError(
                    f"Stage '{GENERATION_PREREQUISITE}' must complete before generation",
                    document_id=report.id,
                    stage_id=GENERATION_STAGE,
                )
        elif report.ledger.resolve_latest_content() is None:
            raise NoConceptError(
                "A concept must exist before running review stages",
                document_id=report.id,
            )

    async def prepare(self, report_id: str, options: ExpressOptions) -> list[str]:
        """Resolve and validate the run for a stored report; returns its stages."""
        report = await self._runtime.load_report(report_id)
        stages = self.resolve_stages(options)
        self.validate(report, stages)
        return stages

    async def run(
        self,
        report_id: str,
        options: ExpressOptions,
        emit: EmitFn,
        stages: list[str] | None = None,
    ) -> ExpressSummary:
        """Execute the run, delivering every event through emit.

        Preflight errors are raised before any event. Stage failures are
        reported as events and end the run; they are not raised.
        """
        if stages is None:
            stages = await self.prepare(report_id, options)
        run_id = uuid.uuid4().hex[:12]
        set_document_context(report_id, run_id)
        summary = ExpressSummary(run_id=run_id)
        seq = 0
        start = time.monotonic()

        def send(event_type: EventType, stage_id: str | None = None, **fields: Any) -> None:
            nonlocal seq
            seq += 1
            emit(
                PipelineEvent(
                    type=event_type,
                    document_id=report_id,
                    stage_id=stage_id,
                    seq=seq,
                    **fields,
                )
            )

        previous_status = await self._set_status(report_id, "processing")
        logger.info("Express run %s started for %s: %s", run_id, report_id, stages)
        try:
            for index, stage_id in enumerate(stages, start=1):
                progress = {"stage_number": index, "total_stages": len(stages)}
                send("stage_start", stage_id, message=f"Starting {stage_id}", data=progress)

                forwarders = [
                    self._runtime.bus.subscribe(
                        report_id, session_stage, self._forward(send, stage_id)
                    )
                    for session_stage in (stage_id, EDITOR_STAGE)
                ]
                try:
                    stage_summary = await self._run_stage(report_id, stage_id, options)
                except PipelineError as exc:
                    self._halt(summary, stage_id, exc.message)
                    send("stage_error", stage_id, message=exc.message, data={"code": exc.code, "can_retry": True})
                    break
                except Exception as exc:
                    logger.exception("Express run %s failed at %s", run_id, stage_id)
                    self._halt(summary, stage_id, str(exc) or type(exc).__name__)
                    send("stage_error", stage_id, message=summary.error, data={"can_retry": False})
                    break
                finally:
                    for unsubscribe in forwarders:
                        unsubscribe()

                summary.stages.append(stage_summary)
                summary.total_changes += stage_summary.changes_count
                send(
                    "stage_complete",
                    stage_id,
                    percentage=100,
                    message=f"{stage_id} completed",
                    data={**progress, **stage_summary.model_dump()},
                )
        finally:
            final = await self._finish(report_id, previous_status)

        summary.final_version = final.ledger.latest.version if final.ledger.latest else None
        summary.final_content = final.ledger.resolve_latest_content()
        summary.total_processing_time_ms = int((time.monotonic() - start) * 1000)

        send("express_summary", data=summary.model_dump())
        if summary.completed:
            send(
                "express_complete",
                message="Express mode completed",
                data={"total_changes": summary.total_changes, "final_version": summary.final_version},
            )
        else:
            send(
                "express_error",
                stage_id=summary.failed_stage,
                message=summary.error,
                data={"failed_stage": summary.failed_stage},
            )
        logger.info(
            "Express run %s finished: completed=%s changes=%d version=%s in %dms",
            run_id,
            summary.completed,
            summary.total_changes,
            summary.final_version,
            summary.total_processing_time_ms,
        )
        return summary

    async def _run_stage(
        self, report_id: str, stage_id: str, options: ExpressOptions
    ) -> StageSummary:
        stage_start = time.monotonic()
        report, result = await self._runtime.execute_stage(report_id, stage_id)
        feedback_summary = FeedbackSummary(stage_id=stage_id)
        version = result.snapshot.version if result.snapshot else None

        if self._graph.role_of(stage_id) == "review" and options.auto_accept:
            feedback_summary = summarize_feedback(stage_id, result.stage_output)
            proposals = parse_feedback_to_proposals(result.stage_output, stage_id)
            if proposals:
                report, merged = await self._runtime.execute_stage(
                    report_id,
                    EDITOR_STAGE,
                    feedback=FilteredFeedback(
                        changes=[p.model_dump() for p in proposals], source_stage=stage_id
                    ),
                    dedup_key=(report_id, f"{EDITOR_STAGE}:{stage_id}"),
                )
                version = merged.snapshot.version if merged.snapshot else version
            else:
                logger.info("No changes proposed by %s, merge skipped", stage_id)

        return StageSummary(
            stage_id=stage_id,
            stage_name=self._graph.name_of(stage_id),
            changes_count=feedback_summary.count,
            changes=feedback_summary.changes,
            processing_time_ms=int((time.monotonic() - stage_start) * 1000),
            version=version,
        )

    @staticmethod
    def _forward(send: Callable[..., None], express_stage: str) -> Callable[[PipelineEvent], None]:
        def forward(event: PipelineEvent) -> None:
            if event.type not in _FORWARDED:
                return
            send(
                event.type,
                express_stage,
                substep_id=event.substep_id,
                percentage=event.percentage,
                message=event.message,
                data={"session_stage": event.stage_id},
            )

        return forward

    @staticmethod
    def _halt(summary: ExpressSummary, stage_id: str, error: str) -> None:
        summary.completed = False
        summary.failed_stage = stage_id
        summary.error = error

    async def _set_status(self, report_id: str, status: str) -> str:
        report = await self._runtime.load_report(report_id)
        previous = report.status
        await self._runtime.store.update_report(report_id, {"status": status})
        return previous

    async def _finish(self, report_id: str, previous_status: str) -> Report:
        """Restore a settled status once the run is over; returns the final report."""
        report = await self._runtime.load_report(report_id)
        status = "generated" if report.ledger.latest is not None else previous_status
        return await self._runtime.store.update_report(report_id, {"status": status})

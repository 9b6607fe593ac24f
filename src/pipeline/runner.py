# src/pipeline/runner.py — v1
"""Stage runner — execute one stage for one report.

Interprets the AI output according to the stage role:
  - analysis / review: store the raw output only; the ledger is untouched
  - generation: store output, create a snapshot, advance latest
  - editor: merge accepted feedback into the latest concept, create a
    snapshot under the review stage id, an adjustment key, or an
    explicit key, and advance latest

The report is only mutated after the AI call succeeded, so a failure or
timeout leaves outputs and ledger exactly as they were. Every execution
reports substep progress through the ProgressBus.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING

from reportflow.config.stages import ADJUSTMENT_PREFIX, EDITOR_STAGE, ROLE_SUBSTEPS
from reportflow.core.errors import (
    NoConceptError,
    StageExecutionError,
    ValidationError,
)
from reportflow.core.models import (
    FeedbackInput,
    FilteredFeedback,
    RawStageFeedback,
    Report,
    StageResult,
)
from reportflow.llm.config import build_ai_config
from reportflow.llm.models import AIConfig, GenerateOptions, LLMResponse
from reportflow.logging.context import set_document_context, set_stage_context
from reportflow.pipeline.feedback import serialize_accepted
from reportflow.pipeline.json_parsing import try_parse_json
from reportflow.pipeline.prompts import PromptBuilder
from reportflow.pipeline.stage_graph import StageGraph

if TYPE_CHECKING:
    from reportflow.config.settings import Settings
    from reportflow.llm.base_client import BaseLLMClient
    from reportflow.streaming.progress_bus import ProgressBus
    from reportflow.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)

DEFAULT_STAGE_TIMEOUT_S = 300.0


class StageRunner:
    """Execute single stages against a report.

    Args:
        llm_client: AI collaborator.
        bus: Progress bus receiving substep events.
        settings: Application settings (AI routing, timeout, token streaming).
        graph: Stage catalogue; defaults to the built-in one.
        prompts: Prompt builder; defaults to one over the same graph.
        call_logger: Optional AI call tracking.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        bus: ProgressBus,
        settings: Settings,
        graph: StageGraph | None = None,
        prompts: PromptBuilder | None = None,
        call_logger: CallLogger | None = None,
    ) -> None:
        self._llm = llm_client
        self._bus = bus
        self._settings = settings
        self.graph = graph or StageGraph()
        self._prompts = prompts or PromptBuilder(self.graph)
        self._call_logger = call_logger
        self._timeout_s = settings.stage_timeout_s or DEFAULT_STAGE_TIMEOUT_S

    async def execute(
        self,
        report: Report,
        stage_id: str,
        custom_input: str | None = None,
        feedback: FeedbackInput | None = None,
        snapshot_key: str | None = None,
    ) -> StageResult:
        """Run one stage and apply its result to the report in place.

        Args:
            report: Loaded report; mutated only on success.
            stage_id: Catalogue stage id.
            custom_input: Replaces the built prompt (analysis, generation,
                review) or is appended as an instruction (editor).
            feedback: Accepted feedback, required for the editor role.
            snapshot_key: Explicit snapshot key for the editor role.

        Raises:
            ValidationError: Unknown stage or unusable feedback input.
            NoConceptError: Editor role without a latest concept.
            StageExecutionError: AI call failed or timed out.
        """
        if stage_id not in self.graph:
            raise ValidationError(
                f"Unknown stage '{stage_id}'", document_id=report.id, stage_id=stage_id
            )
        role = self.graph.role_of(stage_id)
        set_document_context(report.id)
        set_stage_context(stage_id)

        # Editor inputs are resolved before anything is reported.
        accepted_changes = ""
        current_content = ""
        editor_key = ""
        if role == "editor":
            current_content = report.ledger.resolve_latest_content() or ""
            if not current_content:
                raise NoConceptError(
                    "No concept available to merge feedback into",
                    document_id=report.id,
                    stage_id=stage_id,
                )
            accepted_changes = self._resolve_feedback(report, feedback)
            editor_key = self._editor_key(report, feedback, snapshot_key)

        steps = [s.substep_id for s in ROLE_SUBSTEPS[role]]
        self._bus.create_session(report.id, stage_id, ROLE_SUBSTEPS[role])
        start = time.monotonic()

        try:
            # --- Substep 1: prompt ---
            self._enter_substep(report.id, stage_id, steps[0])
            if role == "editor":
                prompt = self._prompts.build_editor(current_content, accepted_changes, custom_input)
            else:
                prompt = self.build_prompt(report, stage_id, custom_input)
            self._bus.complete_substep(report.id, stage_id, steps[0])

            # --- Substep 2: AI call ---
            self._enter_substep(report.id, stage_id, steps[1])
            config = build_ai_config(stage_id, role, self._settings)
            response = await self._call_ai(report.id, stage_id, prompt, config)
            content = response.content
            if self._settings.token_stream_enabled:
                await self._bus.stream_text(report.id, stage_id, content)
            self._bus.complete_substep(report.id, stage_id, steps[1])

            # --- Substep 3: commit ---
            self._enter_substep(report.id, stage_id, steps[2])
            result = StageResult(
                stage_id=stage_id, stage_output=content, concept_updated=False, prompt=prompt
            )
            if role in ("generation", "editor"):
                key = stage_id if role == "generation" else editor_key
                snapshot = report.ledger.create_snapshot(
                    key, content, source=EDITOR_STAGE if role == "editor" else stage_id
                )
                report.ledger.advance_latest(key, snapshot.version)
                report.status = "generated"
                result.concept_updated = True
                result.snapshot_key = key
                result.snapshot = snapshot
            report.stage_outputs[stage_id] = content
            report.stage_prompts[stage_id] = prompt
            report.current_stage = stage_id
            report.touch()
            result.processing_time_ms = int((time.monotonic() - start) * 1000)
            self._bus.complete_substep(report.id, stage_id, steps[2])
        except Exception as exc:
            self._fail_session(report.id, stage_id, exc)
            raise
        finally:
            set_stage_context(stage_id)

        self._bus.complete_stage(
            report.id,
            stage_id,
            content,
            data={
                "concept_updated": result.concept_updated,
                "snapshot_key": result.snapshot_key,
                "version": result.snapshot.version if result.snapshot else None,
            },
        )
        logger.info(
            "Stage %s (%s) completed for %s in %dms, concept_updated=%s",
            stage_id,
            role,
            report.id,
            result.processing_time_ms,
            result.concept_updated,
        )
        return result

    def build_prompt(
        self, report: Report, stage_id: str, custom_input: str | None = None
    ) -> str:
        """Prompt for an analysis, generation or review stage.

        A non-empty custom_input replaces the built prompt. The editor
        prompt depends on accepted feedback and is built by the editor
        path of execute() instead.

        Raises:
            ValidationError: Unknown stage or the editor stage.
        """
        role = self.graph.role_of(stage_id)
        if role == "editor":
            raise ValidationError(
                "The editor prompt requires accepted feedback",
                document_id=report.id,
                stage_id=stage_id,
            )
        if custom_input:
            return custom_input
        if role == "generation":
            return self._prompts.build_generation(report, stage_id)
        if role == "review":
            return self._prompts.build_review(report, stage_id)
        return self._prompts.build_analysis(report, stage_id)

    def build_editor_prompt(
        self,
        report: Report,
        feedback: FeedbackInput,
        instruction: str | None = None,
    ) -> str:
        """Editor prompt for the given feedback, without running anything.

        Raises:
            NoConceptError: No latest concept.
            ValidationError: Unusable feedback input.
        """
        current_content = report.ledger.resolve_latest_content()
        if not current_content:
            raise NoConceptError(
                "No concept available to merge feedback into",
                document_id=report.id,
                stage_id=EDITOR_STAGE,
            )
        accepted = self._resolve_feedback(report, feedback)
        return self._prompts.build_editor(current_content, accepted, instruction)

    # --- Session bookkeeping ---

    def _enter_substep(self, report_id: str, stage_id: str, substep_id: str) -> None:
        set_stage_context(stage_id, substep_id)
        self._bus.start_substep(report_id, stage_id, substep_id)

    def _fail_session(self, report_id: str, stage_id: str, exc: Exception) -> None:
        """Mark the running substep and the session as failed."""
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        session = self._bus.get_session(report_id, stage_id)
        if session is not None and session.current_substep:
            self._bus.error_substep(report_id, stage_id, session.current_substep, message)
        self._bus.error_stage(
            report_id, stage_id, message, code=getattr(exc, "code", "INTERNAL_ERROR")
        )

    # ------------------------------------------------------------------
    # Editor inputs
    # ------------------------------------------------------------------

    def _resolve_feedback(self, report: Report, feedback: FeedbackInput | None) -> str:
        """Turn the tagged feedback input into the accepted-changes prompt text."""
        if isinstance(feedback, FilteredFeedback):
            if not feedback.changes:
                raise ValidationError(
                    "No accepted changes selected", document_id=report.id, stage_id=EDITOR_STAGE
                )
            return serialize_accepted(feedback.changes)

        if isinstance(feedback, RawStageFeedback):
            raw = report.stage_outputs.get(feedback.stage_id)
            if not raw:
                raise ValidationError(
                    f"No feedback stored for stage '{feedback.stage_id}'",
                    document_id=report.id,
                    stage_id=feedback.stage_id,
                )
            parsed = try_parse_json(raw)
            if parsed is None:
                logger.debug("Feedback of %s is plain text, passing through", feedback.stage_id)
                return raw
            return json.dumps(parsed, indent=2, ensure_ascii=False)

        raise ValidationError(
            "Editor requires accepted feedback", document_id=report.id, stage_id=EDITOR_STAGE
        )

    def _editor_key(
        self, report: Report, feedback: FeedbackInput | None, snapshot_key: str | None
    ) -> str:
        key = snapshot_key
        if not key and isinstance(feedback, FilteredFeedback):
            key = feedback.source_stage
        if not key and isinstance(feedback, RawStageFeedback):
            key = feedback.stage_id
        if not key:
            return report.ledger.next_synthetic_key(ADJUSTMENT_PREFIX)
        if not self.graph.is_known(key):
            raise ValidationError(
                f"Unknown snapshot key '{key}'", document_id=report.id, stage_id=EDITOR_STAGE
            )
        return key

    # ------------------------------------------------------------------
    # AI collaborator
    # ------------------------------------------------------------------

    async def _call_ai(
        self, report_id: str, stage_id: str, prompt: str, config: AIConfig
    ) -> LLMResponse:
        """Call the collaborator under the stage timeout; failures become StageExecutionError."""
        options = GenerateOptions(timeout_s=self._timeout_s, stage_id=stage_id)
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._llm.generate(prompt, config, options), timeout=self._timeout_s
            )
        except asyncio.TimeoutError as exc:
            cause = TimeoutError(f"AI call timed out after {self._timeout_s:g}s")
            self._record_failure(report_id, stage_id, config, cause, start, timed_out=True)
            raise StageExecutionError(stage_id, cause, document_id=report_id) from exc
        except Exception as exc:
            self._record_failure(report_id, stage_id, config, exc, start)
            raise StageExecutionError(stage_id, exc, document_id=report_id) from exc

        if not response.content or not response.content.strip():
            cause = ValueError("AI returned an empty response")
            self._record_failure(report_id, stage_id, config, cause, start)
            raise StageExecutionError(stage_id, cause, document_id=report_id)

        if self._call_logger is not None:
            self._call_logger.record(report_id, stage_id, response)
        return response

    def _record_failure(
        self,
        report_id: str,
        stage_id: str,
        config: AIConfig,
        error: BaseException,
        start: float,
        timed_out: bool = False,
    ) -> None:
        logger.error("AI call for %s/%s failed: %s", report_id, stage_id, error)
        if self._call_logger is not None:
            self._call_logger.record_failure(
                report_id,
                stage_id,
                config,
                error,
                latency_ms=int((time.monotonic() - start) * 1000),
                timed_out=timed_out,
            )

# src/api/routes.py — v1
"""HTTP routes for documents, stages, versions and progress streams."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse

from reportflow.api.facade import ReportService
from reportflow.api.models import (
    AdjustRequest,
    ConceptContentRequest,
    CreateReportRequest,
    ExecuteStageRequest,
    ExpressModeRequest,
    ManualStageRequest,
    OverrideConceptRequest,
    ProcessFeedbackRequest,
    PromptPreviewRequest,
    RestoreVersionRequest,
    success_envelope,
)
from reportflow.core.models import Report, StageResult
from reportflow.pipeline.orchestrator import ExpressOptions
from reportflow.streaming.models import PipelineEvent
from reportflow.streaming.sse import EXPRESS_FINAL_EVENTS, SSE_HEADERS, frames_from_queue, session_event_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])
streaming_router = APIRouter(prefix="/streaming", tags=["streaming"])


def get_service(request: Request) -> ReportService:
    return request.app.state.service


def _stage_payload(report: Report, result: StageResult) -> dict[str, Any]:
    return {
        "document": report.model_dump(mode="json"),
        "result": result.model_dump(mode="json"),
    }


# === DOCUMENTS ===


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_document(
    body: CreateReportRequest, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    report = await service.create_report(body.title, body.inputs)
    return success_envelope(report, "Document created")


@router.get("")
async def list_documents(service: ReportService = Depends(get_service)) -> dict[str, Any]:
    reports = await service.list_reports()
    return success_envelope(
        [{"id": r.id, "title": r.title, "status": r.status, "current_stage": r.current_stage} for r in reports]
    )


@router.get("/{document_id}")
async def get_document(document_id: str, service: ReportService = Depends(get_service)) -> dict[str, Any]:
    return success_envelope(await service.get_report(document_id))


# === STAGES ===


@router.post("/{document_id}/stage/{stage_id}")
async def execute_stage(
    document_id: str,
    stage_id: str,
    body: ExecuteStageRequest | None = None,
    service: ReportService = Depends(get_service),
) -> dict[str, Any]:
    custom_input = body.custom_input if body else None
    report, result = await service.execute_stage(document_id, stage_id, custom_input)
    return success_envelope(_stage_payload(report, result), f"Stage {stage_id} completed")


@router.delete("/{document_id}/stage/{stage_id}")
async def delete_stage(
    document_id: str, stage_id: str, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    report, outcome = await service.delete_stage(document_id, stage_id)
    data = outcome.model_dump(mode="json")
    data["document"] = report.model_dump(mode="json")
    return success_envelope(data, f"Stage {stage_id} and later stages deleted")


@router.post("/{document_id}/stage/{stage_id}/process-feedback")
async def process_feedback(
    document_id: str,
    stage_id: str,
    body: ProcessFeedbackRequest | None = None,
    service: ReportService = Depends(get_service),
) -> dict[str, Any]:
    filtered = body.filtered_changes if body else None
    report, result = await service.process_feedback(document_id, stage_id, filtered)
    return success_envelope(_stage_payload(report, result), "Feedback merged into concept")


@router.post("/{document_id}/stage/{stage_id}/cancel")
async def cancel_stage(
    document_id: str, stage_id: str, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    cancelled = await service.cancel_stage(document_id, stage_id)
    message = "Stage cancelled" if cancelled else "No running session to cancel"
    return success_envelope({"cancelled": cancelled}, message)


@router.get("/{document_id}/stage/{stage_id}/status")
async def stage_status(
    document_id: str, stage_id: str, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    return success_envelope(service.session_status(document_id, stage_id))


@router.get("/{document_id}/stage/{stage_id}/prompt")
async def stage_prompt(
    document_id: str, stage_id: str, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    prompt = await service.stage_prompt(document_id, stage_id)
    return success_envelope({"stage_id": stage_id, "prompt": prompt})


@router.post("/{document_id}/stage/{stage_id}/prompt-preview")
async def prompt_preview(
    document_id: str,
    stage_id: str,
    body: PromptPreviewRequest | None = None,
    service: ReportService = Depends(get_service),
) -> dict[str, Any]:
    instruction = body.instruction if body else None
    prompt = await service.preview_feedback_prompt(document_id, stage_id, instruction)
    return success_envelope({"stage_id": stage_id, "prompt": prompt}, "Editor prompt preview")


@router.post("/{document_id}/manual-stage")
async def manual_stage(
    document_id: str, body: ManualStageRequest, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    report, snapshot = await service.record_manual_stage(document_id, body.stage_id, body.content)
    return success_envelope(
        {
            "document": report.model_dump(mode="json"),
            "snapshot": snapshot.model_dump(mode="json") if snapshot else None,
        },
        f"Stage {body.stage_id} recorded",
    )


@router.get("/{document_id}/calls")
async def call_log(document_id: str, service: ReportService = Depends(get_service)) -> dict[str, Any]:
    await service.get_report(document_id)
    return success_envelope(service.call_log(document_id))


@router.get("/{document_id}/stage/{stage_id}/stream", response_class=StreamingResponse)
async def stream_stage(
    document_id: str,
    stage_id: str,
    request: Request,
    service: ReportService = Depends(get_service),
) -> StreamingResponse:
    await service.get_report(document_id)
    return StreamingResponse(
        session_event_stream(
            service.runtime.bus,
            document_id,
            stage_id,
            keepalive_s=request.app.state.settings.sse_keepalive_s,
        ),
        status_code=status.HTTP_200_OK,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# === VERSIONS ===


@router.post("/{document_id}/restore-version")
async def restore_version(
    document_id: str, body: RestoreVersionRequest, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    report = await service.restore_version(document_id, body.stage_id, body.reason)
    return success_envelope(service.versions_view(report), f"Restored {body.stage_id} as latest")


@router.get("/{document_id}/versions")
async def get_versions(document_id: str, service: ReportService = Depends(get_service)) -> dict[str, Any]:
    return success_envelope(await service.get_versions(document_id))


@router.patch("/{document_id}/concept-content")
async def update_concept(
    document_id: str, body: ConceptContentRequest, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    report, key = await service.update_concept(document_id, body.content)
    data = service.versions_view(report).model_dump(mode="json")
    data["snapshot_key"] = key
    return success_envelope(data, "Concept updated")


@router.post("/{document_id}/adjust")
async def adjust_concept(
    document_id: str, body: AdjustRequest, service: ReportService = Depends(get_service)
) -> dict[str, Any]:
    report, result = await service.adjust(document_id, body.instruction)
    return success_envelope(_stage_payload(report, result), "Concept adjusted")


@router.post("/{document_id}/stage/{stage_id}/override-concept")
async def override_concept(
    document_id: str,
    stage_id: str,
    body: OverrideConceptRequest,
    service: ReportService = Depends(get_service),
) -> dict[str, Any]:
    report, snapshot = await service.override_concept(
        document_id, stage_id, body.content, body.reason
    )
    data = service.versions_view(report).model_dump(mode="json")
    data["version"] = snapshot.version
    return success_envelope(data, f"Concept for {stage_id} overridden")


# === EXPRESS MODE ===


@router.post("/{document_id}/express-mode", response_class=StreamingResponse)
async def express_mode(
    document_id: str,
    body: ExpressModeRequest,
    request: Request,
    service: ReportService = Depends(get_service),
) -> StreamingResponse:
    """Run a stage sequence and stream its events.

    Preflight failures (unknown document or stage, missing concept) are
    returned as a regular error response before streaming starts.
    """
    options = ExpressOptions(
        stages=body.stages,
        auto_accept=(
            body.auto_accept
            if body.auto_accept is not None
            else request.app.state.settings.express_auto_accept
        ),
        include_generation=body.include_generation,
    )
    stages = await service.orchestrator.prepare(document_id, options)
    return StreamingResponse(
        _express_frames(request, service, document_id, options, stages),
        status_code=status.HTTP_200_OK,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _express_frames(
    request: Request,
    service: ReportService,
    document_id: str,
    options: ExpressOptions,
    stages: list[str],
) -> AsyncIterator[str]:
    queue: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()

    async def drive() -> None:
        try:
            await service.orchestrator.run(document_id, options, queue.put_nowait, stages)
        except Exception:
            logger.exception("Express run for %s aborted", document_id)
        finally:
            queue.put_nowait(None)

    # The run outlives a disconnected client; keep a reference until it ends.
    tasks: set[asyncio.Task[None]] = request.app.state.express_tasks
    task = asyncio.create_task(drive())
    tasks.add(task)
    task.add_done_callback(tasks.discard)

    try:
        async for frame in frames_from_queue(
            queue,
            keepalive_s=request.app.state.settings.sse_keepalive_s,
            is_final=lambda e: e.type in EXPRESS_FINAL_EVENTS,
        ):
            yield frame
    finally:
        if not task.done():
            logger.info("Express stream for %s closed, run continues", document_id)


# === STREAMING SESSIONS ===


@streaming_router.get("/sessions")
async def list_sessions(service: ReportService = Depends(get_service)) -> dict[str, Any]:
    return success_envelope(service.list_sessions())


@streaming_router.post("/cleanup")
async def cleanup_sessions(service: ReportService = Depends(get_service)) -> dict[str, Any]:
    removed = service.cleanup_sessions()
    return success_envelope({"removed": removed}, f"Removed {removed} expired sessions")

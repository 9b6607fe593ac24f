# src/streaming/sse.py — v1
"""Server-sent-events framing for progress streams.

Frames are `data: <json>\\n\\n`, one per event, with a comment-only
`: ping\\n\\n` keep-alive whenever no event arrived within the keep-alive
interval. Subscriptions are released when the consumer stops iterating
(client disconnect cancels the generator).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from reportflow.streaming.models import PipelineEvent
from reportflow.streaming.progress_bus import ProgressBus

logger = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": ping\n\n"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

STAGE_FINAL_EVENTS = frozenset({"stage_complete", "stage_error", "cancelled"})
EXPRESS_FINAL_EVENTS = frozenset({"express_complete", "express_error"})


async def frames_from_queue(
    queue: asyncio.Queue[PipelineEvent | None],
    *,
    keepalive_s: float = 30.0,
    is_final: Callable[[PipelineEvent], bool] | None = None,
) -> AsyncIterator[str]:
    """Yield SSE frames from a queue until a None sentinel or a final event."""
    while True:
        try:
            event = await asyncio.wait_for(queue.get(), timeout=keepalive_s)
        except asyncio.TimeoutError:
            yield KEEPALIVE_FRAME
            continue
        if event is None:
            return
        yield event.to_sse()
        if is_final is not None and is_final(event):
            return


async def session_event_stream(
    bus: ProgressBus,
    document_id: str,
    stage_id: str,
    *,
    keepalive_s: float = 30.0,
    close_on_terminal: bool = True,
) -> AsyncIterator[str]:
    """Stream the events of one (document, stage) session.

    Sends a `progress` frame on connect and, when a session already
    exists, a second one with its current state so late joiners can
    resume. A session that already finished does not end the stream:
    the subscription stays open for the next run of the stage, and only a
    terminal event delivered live closes it (when close_on_terminal is set).
    """
    queue: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()
    unsubscribe = bus.subscribe(document_id, stage_id, queue.put_nowait)
    try:
        yield PipelineEvent(
            type="progress",
            document_id=document_id,
            stage_id=stage_id,
            percentage=0,
            message="Connected to progress stream",
        ).to_sse()

        resume = bus.snapshot_event(document_id, stage_id)
        if resume is not None:
            yield resume.to_sse()

        final = (lambda e: e.type in STAGE_FINAL_EVENTS) if close_on_terminal else None
        async for frame in frames_from_queue(queue, keepalive_s=keepalive_s, is_final=final):
            yield frame
    finally:
        unsubscribe()
        logger.debug("Stream closed for %s-%s", document_id, stage_id)

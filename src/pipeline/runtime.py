# src/pipeline/runtime.py — v1
"""Process-wide pipeline runtime.

Owns the progress sessions, the in-flight execution map, the report
store and the shared stage runner. Built once at startup and passed to
whatever needs it; a background task garbage-collects progress sessions
past their retention.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Hashable
from datetime import timedelta
from typing import TYPE_CHECKING

from reportflow.core.errors import NotFoundError
from reportflow.core.models import FeedbackInput, Report, StageResult
from reportflow.pipeline.dedup import Deduplicator
from reportflow.pipeline.runner import StageRunner
from reportflow.pipeline.stage_graph import StageGraph
from reportflow.streaming.progress_bus import ProgressBus
from reportflow.tracking.call_logger import CallLogger

if TYPE_CHECKING:
    from reportflow.config.settings import Settings
    from reportflow.llm.base_client import BaseLLMClient
    from reportflow.storage.base_store import BaseReportStore

logger = logging.getLogger(__name__)

# Fields the runner never changes; left out of write-backs.
_IMMUTABLE_FIELDS = {"id", "created_at"}

# Roles whose executions create snapshots and move the latest pointer.
LEDGER_ROLES = frozenset({"generation", "editor"})


class PipelineRuntime:
    """Holder of the per-process pipeline state.

    Args:
        settings: Application settings.
        llm_client: AI collaborator shared by every stage execution.
        store: Report persistence backend.
    """

    def __init__(
        self,
        settings: Settings,
        llm_client: BaseLLMClient,
        store: BaseReportStore,
    ) -> None:
        self.settings = settings
        self.store = store
        self.graph = StageGraph()
        self.bus = ProgressBus(
            token_chunks=settings.token_stream_chunks,
            token_delay_s=settings.token_stream_delay_s,
            retention=timedelta(hours=settings.session_retention_hours),
        )
        self.dedup = Deduplicator(default_timeout_s=settings.dedup_timeout_s)
        self.call_logger = CallLogger()
        self.runner = StageRunner(
            llm_client,
            self.bus,
            settings,
            graph=self.graph,
            call_logger=self.call_logger,
        )
        self._cleanup_task: asyncio.Task[None] | None = None
        self._ledger_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Report access
    # ------------------------------------------------------------------

    def ledger_lock(self, report_id: str) -> asyncio.Lock:
        """Lock held by every load -> mutate -> save of one report's ledger.

        Dedup keys differ per merge source, so two editor merges of one
        report can be in flight together; this lock orders their writes.
        """
        return self._ledger_locks[report_id]

    async def load_report(self, report_id: str) -> Report:
        report = await self.store.get_report(report_id)
        if report is None:
            raise NotFoundError(f"Report '{report_id}' not found", document_id=report_id)
        return report

    async def save_report(self, report: Report) -> Report:
        """Write the full report structure back to the store."""
        return await self.store.update_report(
            report.id, report.model_dump(exclude=_IMMUTABLE_FIELDS)
        )

    async def execute_stage(
        self,
        report_id: str,
        stage_id: str,
        *,
        custom_input: str | None = None,
        feedback: FeedbackInput | None = None,
        snapshot_key: str | None = None,
        dedup_key: Hashable | None = None,
    ) -> tuple[Report, StageResult]:
        """Load, execute and persist one stage, collapsing duplicate calls.

        Concurrent calls with the same dedup key (default
        (report_id, stage_id)) share one execution and receive the same
        saved report and result. Stages that write the ledger also run
        under the report's ledger lock.
        """

        async def _load_execute_save() -> tuple[Report, StageResult]:
            report = await self.load_report(report_id)
            result = await self.runner.execute(
                report,
                stage_id,
                custom_input=custom_input,
                feedback=feedback,
                snapshot_key=snapshot_key,
            )
            saved = await self.save_report(report)
            return saved, result

        async def _run() -> tuple[Report, StageResult]:
            if stage_id in self.graph and self.graph.role_of(stage_id) in LEDGER_ROLES:
                async with self.ledger_lock(report_id):
                    return await _load_execute_save()
            return await _load_execute_save()

        return await self.dedup.run_exclusive(
            dedup_key or (report_id, stage_id), _run, self.settings.dedup_timeout_s
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start periodic session cleanup."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info(
                "Pipeline runtime started (cleanup every %.0fs)",
                self.settings.session_cleanup_interval_s,
            )

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None
        self.dedup.clear()
        if self.settings.call_log_file is not None:
            self.call_logger.save(self.settings.call_log_file.expanduser())
        logger.info("Pipeline runtime stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.session_cleanup_interval_s)
            removed = self.bus.cleanup()
            if removed:
                logger.info("Removed %d expired progress sessions", removed)

# src/tracking/call_logger.py — v1
"""AI call logging — records every generate() call made by the stage runner.

Records are kept in memory for the lifetime of the runtime and can be
written out as JSON Lines for post-run analysis.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

from reportflow.llm.models import AIConfig, LLMResponse
from reportflow.tracking.models import LLMCallRecord, StageCallStats

logger = logging.getLogger(__name__)


class CallLogger:
    """Accumulates AI call records."""

    def __init__(self, max_records: int = 10_000) -> None:
        self._records: list[LLMCallRecord] = []
        self.max_records = max_records

    def record(
        self,
        document_id: str,
        stage_id: str,
        response: LLMResponse,
    ) -> LLMCallRecord:
        """Record a successful call.

        Args:
            document_id: Document the call was made for.
            stage_id: Stage id or snapshot key being produced.
            response: AI response with token usage.

        Returns:
            The recorded LLMCallRecord.
        """
        return self._append(
            LLMCallRecord(
                call_id=str(uuid.uuid4()),
                timestamp=datetime.now(timezone.utc),
                document_id=document_id,
                stage_id=stage_id,
                provider=response.provider,
                model=response.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                total_tokens=response.input_tokens + response.output_tokens,
                latency_ms=response.latency_ms,
                status="success",
            )
        )

    def record_failure(
        self,
        document_id: str,
        stage_id: str,
        config: AIConfig,
        error: BaseException,
        latency_ms: int,
        timed_out: bool = False,
    ) -> LLMCallRecord:
        """Record a failed or timed-out call."""
        return self._append(
            LLMCallRecord(
                call_id=str(uuid.uuid4()),
                timestamp=datetime.now(timezone.utc),
                document_id=document_id,
                stage_id=stage_id,
                provider=config.provider,
                model=config.model,
                latency_ms=latency_ms,
                status="timeout" if timed_out else "failed",
                error=str(error) or type(error).__name__,
            )
        )

    def _append(self, record: LLMCallRecord) -> LLMCallRecord:
        self._records.append(record)
        if len(self._records) > self.max_records:
            del self._records[: len(self._records) - self.max_records]
        return record

    @property
    def records(self) -> list[LLMCallRecord]:
        """All recorded calls."""
        return list(self._records)

    @property
    def total_tokens(self) -> int:
        """Total tokens consumed across all calls."""
        return sum(r.total_tokens for r in self._records)

    @property
    def total_calls(self) -> int:
        """Total number of AI calls."""
        return len(self._records)

    def for_document(self, document_id: str) -> list[LLMCallRecord]:
        return [r for r in self._records if r.document_id == document_id]

    def stage_stats(self, document_id: str | None = None) -> dict[str, StageCallStats]:
        """Aggregate recorded calls per stage id, optionally for one document."""
        selected = self.for_document(document_id) if document_id else self._records
        grouped: dict[str, list[LLMCallRecord]] = defaultdict(list)
        for record in selected:
            grouped[record.stage_id].append(record)
        return {
            stage_id: StageCallStats(
                stage_id=stage_id,
                total_calls=len(records),
                failure_count=sum(1 for r in records if r.status != "success"),
                total_tokens=sum(r.total_tokens for r in records),
                avg_latency_ms=sum(r.latency_ms for r in records) / len(records),
            )
            for stage_id, records in sorted(grouped.items())
        }

    def save(self, path: Path) -> None:
        """Save all records to a JSON Lines file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            for record in self._records:
                f.write(json.dumps(record.model_dump(), default=str) + "\n")
        logger.info("Saved %d call records to %s", len(self._records), path)

# src/storage/memory_store.py — v1
"""In-process report store (STORE_BACKEND=memory)."""

from __future__ import annotations

from typing import Any

from reportflow.core.errors import NotFoundError, ValidationError
from reportflow.core.models import Report
from reportflow.storage.base_store import BaseReportStore


class MemoryReportStore(BaseReportStore):
    """Dict-backed store holding deep copies of reports."""

    def __init__(self) -> None:
        self._reports: dict[str, Report] = {}

    async def get_report(self, report_id: str) -> Report | None:
        report = self._reports.get(report_id)
        return report.model_copy(deep=True) if report else None

    async def create_report(self, fields: dict[str, Any]) -> Report:
        report = Report.model_validate(fields)
        if report.id in self._reports:
            raise ValidationError(f"Report '{report.id}' already exists", document_id=report.id)
        self._reports[report.id] = report.model_copy(deep=True)
        return report

    async def update_report(self, report_id: str, patch: dict[str, Any]) -> Report:
        existing = self._reports.get(report_id)
        if existing is None:
            raise NotFoundError(f"Report '{report_id}' not found", document_id=report_id)
        merged = self._merge(existing, patch)
        self._reports[report_id] = merged
        return merged.model_copy(deep=True)

    async def list_reports(self) -> list[Report]:
        return sorted(
            (r.model_copy(deep=True) for r in self._reports.values()),
            key=lambda r: r.created_at,
        )

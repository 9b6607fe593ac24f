# src/storage/base_store.py — v1
"""Abstract report store interface (CRUD only)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from reportflow.core.models import Report


class BaseReportStore(ABC):
    """Unified interface for report persistence backends.

    Callers load a report, mutate it, then write back the full structure
    with update_report. Backends return copies; mutating a returned
    report never changes stored state.
    """

    @abstractmethod
    async def get_report(self, report_id: str) -> Report | None:
        """Load a report by id, or None if it does not exist."""

    @abstractmethod
    async def create_report(self, fields: dict[str, Any]) -> Report:
        """Create and persist a report from field values."""

    @abstractmethod
    async def update_report(self, report_id: str, patch: dict[str, Any]) -> Report:
        """Apply a field patch and persist. Raises NotFoundError for unknown ids."""

    @abstractmethod
    async def list_reports(self) -> list[Report]:
        """All stored reports, oldest first."""

    @staticmethod
    def _merge(existing: Report, patch: dict[str, Any]) -> Report:
        merged = Report.model_validate({**existing.model_dump(), **patch, "id": existing.id})
        merged.touch()
        return merged

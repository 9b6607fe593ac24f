# src/storage/json_store.py — v1
"""JSON file-based report store (STORE_BACKEND=json).

Stores each report as an individual JSON file under STORE_ROOT.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from reportflow.core.errors import NotFoundError, ValidationError
from reportflow.core.models import Report
from reportflow.storage.base_store import BaseReportStore

logger = logging.getLogger(__name__)


class JsonReportStore(BaseReportStore):
    """File-based report store using one JSON file per report."""

    def __init__(self, store_root: Path) -> None:
        self._root = Path(store_root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def get_report(self, report_id: str) -> Report | None:
        path = self._entry_path(report_id)
        if not path.exists():
            return None
        return Report.model_validate_json(path.read_text(encoding="utf-8"))

    async def create_report(self, fields: dict[str, Any]) -> Report:
        report = Report.model_validate(fields)
        if self._entry_path(report.id).exists():
            raise ValidationError(f"Report '{report.id}' already exists", document_id=report.id)
        self._write(report)
        logger.info("Created report %s", report.id)
        return report

    async def update_report(self, report_id: str, patch: dict[str, Any]) -> Report:
        existing = await self.get_report(report_id)
        if existing is None:
            raise NotFoundError(f"Report '{report_id}' not found", document_id=report_id)
        merged = self._merge(existing, patch)
        self._write(merged)
        return merged

    async def list_reports(self) -> list[Report]:
        reports: list[Report] = []
        if not self._root.is_dir():
            return reports

        for path in self._root.glob("*.json"):
            try:
                reports.append(Report.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable report file %s: %s", path.name, e)
        return sorted(reports, key=lambda r: r.created_at)

    def _write(self, report: Report) -> None:
        path = self._entry_path(report.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)

    def _entry_path(self, report_id: str) -> Path:
        """Return file path for a report id."""
        safe_key = report_id.replace("/", "_").replace("\\", "_")
        return self._root / f"{safe_key}.json"

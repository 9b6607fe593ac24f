# src/storage/store_factory.py — v1
"""Factory for report store instantiation."""

from __future__ import annotations

from reportflow.config.settings import Settings
from reportflow.storage.base_store import BaseReportStore


def create_report_store(settings: Settings | None = None) -> BaseReportStore:
    """Instantiate the configured store backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.
    """
    if settings is None or settings.store_backend == "memory":
        from reportflow.storage.memory_store import MemoryReportStore

        return MemoryReportStore()

    if settings.store_backend == "json":
        from reportflow.storage.json_store import JsonReportStore

        return JsonReportStore(store_root=settings.store_root)

    raise ValueError(f"Unsupported store backend: {settings.store_backend!r}")

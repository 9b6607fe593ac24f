# tests/unit/storage/test_unit_stores.py — v1
"""Tests for storage/ — memory and JSON report stores, factory."""

from __future__ import annotations

import pytest

from reportflow.config.settings import load_settings
from reportflow.core.errors import NotFoundError, ValidationError
from reportflow.storage.base_store import BaseReportStore
from reportflow.storage.json_store import JsonReportStore
from reportflow.storage.memory_store import MemoryReportStore
from reportflow.storage.store_factory import create_report_store


@pytest.fixture(params=["memory", "json"])
def store(request, memory_store, json_store) -> BaseReportStore:
    return memory_store if request.param == "memory" else json_store


class TestBaseReportStore:
    def test_cannot_instantiate(self):
        with pytest.raises(TypeError):
            BaseReportStore()  # type: ignore[abstract]


class TestReportStores:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        report = await store.create_report({"title": "Roof", "inputs": {"area_m2": 80}})
        loaded = await store.get_report(report.id)
        assert loaded == report
        assert loaded.status == "draft"

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get_report("nope") is None

    @pytest.mark.asyncio
    async def test_duplicate_id(self, store):
        await store.create_report({"id": "fixed", "title": "A"})
        with pytest.raises(ValidationError):
            await store.create_report({"id": "fixed", "title": "B"})

    @pytest.mark.asyncio
    async def test_update_patch(self, store):
        report = await store.create_report({"title": "Roof"})
        updated = await store.update_report(report.id, {"status": "processing", "id": "other"})
        assert updated.id == report.id
        assert updated.status == "processing"
        assert updated.updated_at >= report.updated_at
        assert (await store.get_report(report.id)).status == "processing"

    @pytest.mark.asyncio
    async def test_update_full_structure_with_ledger(self, store):
        report = await store.create_report({"title": "Roof"})
        snapshot = report.ledger.create_snapshot("generate", "concept")
        report.ledger.advance_latest("generate", snapshot.version)
        await store.update_report(report.id, report.model_dump(exclude={"id", "created_at"}))
        loaded = await store.get_report(report.id)
        assert loaded.ledger.resolve_latest_content() == "concept"
        assert loaded.ledger.history == report.ledger.history

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update_report("nope", {"status": "draft"})

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, store):
        report = await store.create_report({"title": "Roof"})
        loaded = await store.get_report(report.id)
        loaded.stage_outputs["check"] = "mutated"
        assert (await store.get_report(report.id)).stage_outputs == {}

    @pytest.mark.asyncio
    async def test_list_reports(self, store):
        first = await store.create_report({"title": "A"})
        second = await store.create_report({"title": "B"})
        ids = [r.id for r in await store.list_reports()]
        assert sorted(ids) == sorted([first.id, second.id])


class TestJsonReportStore:
    @pytest.mark.asyncio
    async def test_one_file_per_report(self, tmp_path):
        store = JsonReportStore(store_root=tmp_path)
        report = await store.create_report({"title": "Roof"})
        assert (tmp_path / f"{report.id}.json").exists()
        assert not list(tmp_path.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_skips_unreadable_files(self, tmp_path):
        store = JsonReportStore(store_root=tmp_path)
        await store.create_report({"title": "Roof"})
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        assert len(await store.list_reports()) == 1

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        report = await JsonReportStore(store_root=tmp_path).create_report({"title": "Roof"})
        reopened = JsonReportStore(store_root=tmp_path)
        assert (await reopened.get_report(report.id)).title == "Roof"


class TestStoreFactory:
    def test_default_is_memory(self):
        assert isinstance(create_report_store(), MemoryReportStore)

    def test_json_backend(self, tmp_path):
        settings = load_settings(_env_file=None, store_backend="json", store_root=tmp_path)
        assert isinstance(create_report_store(settings), JsonReportStore)

    def test_memory_backend_from_settings(self, settings):
        assert isinstance(create_report_store(settings), MemoryReportStore)

    def test_unsupported_backend(self, settings):
        unsupported = settings.model_copy(update={"store_backend": "sqlite"})
        with pytest.raises(ValueError, match="sqlite"):
            create_report_store(unsupported)

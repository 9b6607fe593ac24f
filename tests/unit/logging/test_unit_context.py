# tests/unit/logging/test_unit_context.py — v1
"""Tests for logging/context.py — contextvar-based log context."""

from __future__ import annotations

import asyncio

import pytest

from reportflow.logging.context import (
    LogContext,
    clear_context,
    get_context,
    set_document_context,
    set_stage_context,
)


class TestLogContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_empty(self):
        assert get_context().as_dict() == {}

    def test_document_and_stage(self):
        set_document_context("doc1", run_id="express-1")
        set_stage_context("review_c")
        ctx = get_context()
        assert ctx.document_id == "doc1"
        assert ctx.run_id == "express-1"
        assert ctx.stage_id == "review_c"
        assert ctx.substep is None

    def test_as_dict_drops_none(self):
        assert LogContext(document_id="d").as_dict() == {"document_id": "d"}

    def test_clear(self):
        set_document_context("doc1")
        clear_context()
        assert get_context().document_id is None

    @pytest.mark.asyncio
    async def test_tasks_get_isolated_copies(self):
        set_document_context("outer")

        async def inner() -> str | None:
            set_document_context("inner")
            return get_context().document_id

        assert await asyncio.create_task(inner()) == "inner"
        assert get_context().document_id == "outer"

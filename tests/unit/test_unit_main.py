# tests/unit/test_unit_main.py — v1
"""Tests for main.py — CLI parser and commands."""

from __future__ import annotations

import asyncio
import logging

import pytest

from reportflow.main import _build_parser, main
from reportflow.storage.json_store import JsonReportStore


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logging.getLogger("reportflow").handlers.clear()


class TestParser:
    def test_serve_defaults(self):
        args = _build_parser().parse_args(["serve"])
        assert args.command == "serve"
        assert args.host is None
        assert args.port is None

    def test_serve_port(self):
        args = _build_parser().parse_args(["serve", "--port", "9000"])
        assert args.port == 9000

    def test_versions_requires_report_id(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["versions"])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage: reportflow" in capsys.readouterr().out


class TestStagesCommand:
    def test_lists_catalogue(self, capsys, monkeypatch):
        monkeypatch.setenv("LLM_STAGE_REVIEW_A", "openai:gpt-4o")
        assert main(["stages"]) == 0
        out = capsys.readouterr().out
        assert "Stages (10)" in out
        assert "openai:gpt-4o (stage)" in out
        assert "editor" in out


class TestVersionsCommand:
    def test_prints_ledger(self, tmp_path, capsys):
        store = JsonReportStore(store_root=tmp_path)
        report = asyncio.run(store.create_report({"title": "Roof"}))
        snapshot = report.ledger.create_snapshot("generate", "concept text")
        report.ledger.advance_latest("generate", snapshot.version)
        report.ledger.promote("generate", "Checked")
        asyncio.run(store.update_report(report.id, {"ledger": report.ledger.model_dump()}))

        assert main(["versions", report.id, "--store-root", str(tmp_path)]) == 0

        out = capsys.readouterr().out
        assert "Latest:   generate v1" in out
        assert "Snapshots (1)" in out
        assert "promote" in out
        assert "Checked" in out

    def test_missing_report(self, tmp_path):
        assert main(["versions", "missing", "--store-root", str(tmp_path)]) == 1

# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides a scripted fake AI collaborator, settings with token streaming
delays disabled, report stores and a wired runtime. No network I/O.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from reportflow.api.facade import ReportService
from reportflow.config.settings import Settings, load_settings
from reportflow.llm.base_client import BaseLLMClient
from reportflow.llm.models import AIConfig, GenerateOptions, LLMResponse
from reportflow.pipeline.runtime import PipelineRuntime
from reportflow.storage.json_store import JsonReportStore
from reportflow.storage.memory_store import MemoryReportStore

CONCEPT_V1 = "# Concept\n\nThe client should replace the roof insulation before winter."
MERGED_CONCEPT = "# Concept\n\nThe client should replace the roof insulation before October."

REVIEW_FEEDBACK = json.dumps(
    {
        "proposals": [
            {
                "change_type": "modify",
                "severity": "important",
                "section": "Planning",
                "original_text": "before winter",
                "proposed_text": "before October, when prices rise",
                "reasoning": "Contractor availability drops in autumn",
            },
            {
                "change_type": "add",
                "severity": "suggestion",
                "section": "Costs",
                "proposed_text": "Add an indicative cost range per square metre",
                "reasoning": "Client asked for budget guidance",
            },
        ]
    }
)
NO_CHANGES_FEEDBACK = json.dumps({"status": "no_changes"})

Reply = str | BaseException | Callable[[str], str]


class FakeLLMClient(BaseLLMClient):
    """Scripted AI collaborator keyed by stage id.

    A reply may be a string, an exception to raise, a callable of the
    prompt, or a list of those consumed one per call (the last one
    repeats).
    """

    def __init__(self, replies: dict[str, Reply | list[Reply]] | None = None) -> None:
        self.replies: dict[str, Any] = {
            "check": "All required information is present.",
            "complexity": "Complexity: medium",
            "generate": CONCEPT_V1,
            "editor": MERGED_CONCEPT,
            **{f"review_{s}": REVIEW_FEEDBACK for s in "abcdef"},
        }
        self.replies.update(replies or {})
        self.calls: list[tuple[str | None, str, AIConfig]] = []
        self.delay_s = 0.0
        self.gate: asyncio.Event | None = None

    async def generate(
        self,
        prompt: str,
        config: AIConfig,
        options: GenerateOptions | None = None,
    ) -> LLMResponse:
        stage_id = options.stage_id if options else None
        self.calls.append((stage_id, prompt, config))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)

        reply = self.replies.get(stage_id or "", "Generic output")
        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(prompt)
        return LLMResponse(
            content=reply,
            input_tokens=len(prompt) // 4,
            output_tokens=len(reply) // 4,
            model=config.model,
            provider=config.provider,
            latency_ms=1,
        )

    @property
    def provider_name(self) -> str:
        return "fake"

    def calls_for(self, stage_id: str) -> int:
        return sum(1 for call in self.calls if call[0] == stage_id)


# === FIXTURES: Settings and collaborators ===


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env, with instant token streaming."""
    return load_settings(
        _env_file=None,
        token_stream_delay_ms=0,
        token_stream_chunks=4,
        log_format="text",
    )


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def memory_store() -> MemoryReportStore:
    return MemoryReportStore()


@pytest.fixture
def json_store(tmp_path: Path) -> JsonReportStore:
    return JsonReportStore(store_root=tmp_path / "reports")


# === FIXTURES: Runtime ===


@pytest.fixture
def runtime(settings: Settings, fake_llm: FakeLLMClient, memory_store: MemoryReportStore) -> PipelineRuntime:
    return PipelineRuntime(settings, fake_llm, memory_store)


@pytest.fixture
def service(runtime: PipelineRuntime) -> ReportService:
    return ReportService(runtime)

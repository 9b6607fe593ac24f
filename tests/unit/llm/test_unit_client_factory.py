# tests/unit/llm/test_unit_client_factory.py — v1
"""Tests for llm/client_factory.py and the Anthropic adapter."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from reportflow.config.settings import Settings
from reportflow.llm.adapters.anthropic_adapter import AnthropicAdapter
from reportflow.llm.client_factory import (
    UnsupportedProviderError,
    create_llm_client,
    register_provider,
    registered_providers,
)
from reportflow.llm.models import AIConfig, GenerateOptions


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestCreateLLMClient:
    def test_anthropic_default(self):
        client = create_llm_client(_settings(anthropic_api_key="sk-test"))
        assert isinstance(client, AnthropicAdapter)
        assert client.provider_name == "anthropic"

    def test_unsupported_provider(self):
        with pytest.raises(UnsupportedProviderError, match="Available"):
            create_llm_client(_settings(), provider="nonexistent")

    def test_registered_custom_provider(self):
        register_provider("fake", "tests.conftest.FakeLLMClient")
        try:
            client = create_llm_client(_settings(), provider="fake")
            assert client.provider_name == "fake"
            assert "fake" in registered_providers()
        finally:
            from reportflow.llm import client_factory

            client_factory._PROVIDER_REGISTRY.pop("fake", None)

    def test_rejects_non_client_class(self):
        register_provider("bogus", "collections.OrderedDict")
        try:
            with pytest.raises(UnsupportedProviderError, match="BaseLLMClient"):
                create_llm_client(_settings(), provider="bogus")
        finally:
            from reportflow.llm import client_factory

            client_factory._PROVIDER_REGISTRY.pop("bogus", None)


class _FakeMessages:
    def __init__(self) -> None:
        self.kwargs: dict = {}

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Hello "),
                SimpleNamespace(type="tool_use", text="ignored"),
                SimpleNamespace(type="text", text="world"),
            ],
            usage=SimpleNamespace(input_tokens=12, output_tokens=3),
            model="claude-test",
            stop_reason="end_turn",
        )


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_generate_maps_response(self):
        adapter = AnthropicAdapter(api_key="sk-test", system="Be brief.")
        messages = _FakeMessages()
        adapter._AnthropicAdapter__client = SimpleNamespace(messages=messages)

        response = await adapter.generate(
            "Write a concept",
            AIConfig(provider="anthropic", model="claude-test", max_output_tokens=256),
            GenerateOptions(timeout_s=30, stage_id="generate"),
        )

        assert response.content == "Hello world"
        assert response.input_tokens == 12
        assert response.metadata["stop_reason"] == "end_turn"
        assert messages.kwargs["system"] == "Be brief."
        assert messages.kwargs["timeout"] == 30
        assert messages.kwargs["max_tokens"] == 256

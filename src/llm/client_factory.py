# src/llm/client_factory.py — v1
"""Factory: instantiate the AI collaborator from its provider name.

One client serves the whole runtime; per-stage provider/model choices
travel with each call in the AIConfig (see llm/config.py cascade).
"""

from __future__ import annotations

import importlib
import logging

from reportflow.config.settings import Settings
from reportflow.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

# Registry of provider name → client class path (lazy import).
_PROVIDER_REGISTRY: dict[str, str] = {
    "anthropic": "reportflow.llm.adapters.anthropic_adapter.AnthropicAdapter",
}


class UnsupportedProviderError(ValueError):
    """Raised when a provider is not registered."""


def create_llm_client(
    settings: Settings,
    provider: str | None = None,
    **kwargs: object,
) -> BaseLLMClient:
    """Instantiate the registered client for a provider.

    Args:
        settings: Application settings (client provider and API keys).
        provider: Provider identifier; defaults to settings.llm_client_provider.
        **kwargs: Additional client constructor arguments.

    Returns:
        Configured BaseLLMClient instance.

    Raises:
        UnsupportedProviderError: If provider is not registered.
    """
    provider = provider or settings.llm_client_provider
    if provider not in _PROVIDER_REGISTRY:
        raise UnsupportedProviderError(
            f"Unsupported LLM provider: {provider!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_REGISTRY))}"
        )

    client_cls = _import_class(_PROVIDER_REGISTRY[provider])
    init_kwargs = dict(kwargs)
    if provider == "anthropic":
        init_kwargs.setdefault("api_key", settings.anthropic_api_key or None)

    logger.debug("Creating LLM client: provider=%s", provider)
    client = client_cls(**init_kwargs)
    if not isinstance(client, BaseLLMClient):
        raise UnsupportedProviderError(
            f"{_PROVIDER_REGISTRY[provider]} does not implement BaseLLMClient"
        )
    return client


def register_provider(name: str, class_path: str) -> None:
    """Register a custom client class.

    Args:
        name: Provider identifier.
        class_path: Fully qualified class path implementing BaseLLMClient.
    """
    _PROVIDER_REGISTRY[name] = class_path
    logger.info("Registered LLM provider: %s → %s", name, class_path)


def registered_providers() -> list[str]:
    return sorted(_PROVIDER_REGISTRY)


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    parts = class_path.rsplit(".", 1)
    if len(parts) != 2:
        raise UnsupportedProviderError(f"Invalid class path: {class_path}")
    module_path, class_name = parts
    module = importlib.import_module(module_path)
    return getattr(module, class_name)

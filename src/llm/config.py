# src/llm/config.py — v1
"""Per-stage AI routing with cascade resolution.

Resolution order:
  1. Per-stage env var (LLM_STAGE_REVIEW_A=openai:gpt-4o)
  2. Per-role env var (LLM_ROLE_REVIEW=anthropic:claude-sonnet-4-20250514)
  3. Default provider + model (LLM_DEFAULT_PROVIDER + LLM_DEFAULT_MODEL)
  4. Hardcoded fallback (anthropic:claude-sonnet-4-20250514)
"""

from __future__ import annotations

from dataclasses import dataclass

from reportflow.config.settings import Settings
from reportflow.config.stages import STAGE_CATALOGUE, StageRole
from reportflow.llm.models import AIConfig

_FALLBACK_PROVIDER = "anthropic"
_FALLBACK_MODEL = "claude-sonnet-4-20250514"


@dataclass(frozen=True)
class LLMAssignment:
    """Resolved provider:model for a stage."""

    provider: str
    model: str
    source: str  # "stage", "role", "default", or "fallback"

    @property
    def key(self) -> str:
        """Return 'provider:model' string."""
        return f"{self.provider}:{self.model}"


def _parse_assignment(value: str) -> tuple[str, str] | None:
    """Parse 'provider:model' string. Returns None if empty."""
    if not value or ":" not in value:
        return None
    provider, model = value.split(":", 1)
    return (provider.strip(), model.strip())


def resolve_llm(stage_id: str, role: StageRole, settings: Settings) -> LLMAssignment:
    """Resolve the provider/model for a stage using the cascade.

    Args:
        stage_id: Stage id, or a synthetic key (resolved via its role only).
        role: Role of the stage.
        settings: Application settings.
    """
    parsed = _parse_assignment(getattr(settings, f"llm_stage_{stage_id}", ""))
    if parsed:
        return LLMAssignment(provider=parsed[0], model=parsed[1], source="stage")

    parsed = _parse_assignment(getattr(settings, f"llm_role_{role}", ""))
    if parsed:
        return LLMAssignment(provider=parsed[0], model=parsed[1], source="role")

    if settings.llm_default_provider and settings.llm_default_model:
        return LLMAssignment(
            provider=settings.llm_default_provider,
            model=settings.llm_default_model,
            source="default",
        )

    return LLMAssignment(
        provider=_FALLBACK_PROVIDER,
        model=_FALLBACK_MODEL,
        source="fallback",
    )


def build_ai_config(stage_id: str, role: StageRole, settings: Settings) -> AIConfig:
    """Resolved assignment plus the generation parameters from settings."""
    assignment = resolve_llm(stage_id, role, settings)
    return AIConfig(
        provider=assignment.provider,
        model=assignment.model,
        temperature=settings.llm_default_temperature,
        max_output_tokens=settings.llm_max_output_tokens,
    )


def resolve_all(settings: Settings) -> dict[str, LLMAssignment]:
    """Resolve assignments for every catalogue stage."""
    return {
        stage.stage_id: resolve_llm(stage.stage_id, stage.role, settings)
        for stage in STAGE_CATALOGUE
    }

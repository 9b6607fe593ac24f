# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reportflow.config.stages import REVIEW_STAGES, STAGE_CATALOGUE


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === AI COLLABORATOR ===
    llm_default_provider: str = "anthropic"
    llm_default_model: str = "claude-sonnet-4-20250514"
    llm_default_temperature: float = 0.2
    llm_max_output_tokens: int = 8192

    # Client used for every call (see llm/client_factory.py)
    llm_client_provider: str = "anthropic"
    anthropic_api_key: str = ""

    # Per-role assignment (provider:model)
    llm_role_analysis: str = ""
    llm_role_generation: str = ""
    llm_role_review: str = ""
    llm_role_editor: str = ""

    # Per-stage assignment (highest priority)
    llm_stage_check: str = ""
    llm_stage_complexity: str = ""
    llm_stage_generate: str = ""
    llm_stage_review_a: str = ""
    llm_stage_review_b: str = ""
    llm_stage_review_c: str = ""
    llm_stage_review_d: str = ""
    llm_stage_review_e: str = ""
    llm_stage_review_f: str = ""
    llm_stage_editor: str = ""

    # === Stage execution ===
    stage_timeout_s: float = 300.0
    dedup_timeout_s: float = 300.0

    # === Progress sessions ===
    session_retention_hours: float = 24.0
    session_cleanup_interval_s: float = 3600.0
    sse_keepalive_s: float = 30.0
    token_stream_enabled: bool = True
    token_stream_chunks: int = 20
    token_stream_delay_ms: int = 50

    # === Express mode ===
    express_default_stages: str = ""
    express_auto_accept: bool = True

    # === Report store ===
    store_backend: Literal["memory", "json"] = "memory"
    store_root: Path = Path("~/.reportflow/reports")

    # === Call tracking ===
    # JSON Lines file the AI call records are written to on shutdown
    call_log_file: Path | None = None

    # === API server ===
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("stage_timeout_s", "dedup_timeout_s", "sse_keepalive_s")
    @classmethod
    def validate_positive(cls, v: float) -> float:  # noqa: N805
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("token_stream_chunks")
    @classmethod
    def validate_chunks(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("token_stream_chunks must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        known = {s.stage_id for s in STAGE_CATALOGUE}
        unknown = [s for s in self.express_default_stages_list if s not in known]
        if unknown:
            errors.append(f"EXPRESS_DEFAULT_STAGES has unknown stages: {', '.join(unknown)}")

        # Dedup entries must outlive the call they guard.
        if self.dedup_timeout_s < self.stage_timeout_s:
            errors.append("DEDUP_TIMEOUT_S must be >= STAGE_TIMEOUT_S")

        if self.session_retention_hours <= 0:
            errors.append("SESSION_RETENTION_HOURS must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def express_default_stages_list(self) -> list[str]:
        """Parse comma-separated express stages; empty means every review stage."""
        stages = [s.strip() for s in self.express_default_stages.split(",") if s.strip()]
        return stages or list(REVIEW_STAGES)

    @property
    def token_stream_delay_s(self) -> float:
        return self.token_stream_delay_ms / 1000


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-deployment config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]

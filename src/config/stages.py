# src/config/stages.py — v1
"""Declarative stage catalogue.

The order of STAGE_CATALOGUE is the processing order used for cascade
deletes and default sequencing. Synthetic snapshot keys created by user
edits (manual_edit_N, adjustment_N) are not listed here: they share the
slot of the editor stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

StageRole = Literal["analysis", "generation", "review", "editor"]

GENERATION_STAGE = "generate"
EDITOR_STAGE = "editor"
MANUAL_EDIT_PREFIX = "manual_edit"
ADJUSTMENT_PREFIX = "adjustment"
SYNTHETIC_PREFIXES: tuple[str, ...] = (MANUAL_EDIT_PREFIX, ADJUSTMENT_PREFIX)


@dataclass(frozen=True)
class SubstepDefinition:
    """One tracked sub-unit of a stage execution."""

    substep_id: str
    label: str


@dataclass(frozen=True)
class StageDefinition:
    """Static description of one stage."""

    stage_id: str
    name: str
    role: StageRole


STAGE_CATALOGUE: list[StageDefinition] = [
    StageDefinition("check", "Information check", "analysis"),
    StageDefinition("complexity", "Complexity check", "analysis"),
    StageDefinition(GENERATION_STAGE, "Concept generation", "generation"),
    StageDefinition("review_a", "Sources specialist", "review"),
    StageDefinition("review_b", "Technical specialist", "review"),
    StageDefinition("review_c", "Scenario and gap analyst", "review"),
    StageDefinition("review_d", "Plain-language translator", "review"),
    StageDefinition("review_e", "Advocate", "review"),
    StageDefinition("review_f", "Client communication", "review"),
    StageDefinition(EDITOR_STAGE, "Editor", "editor"),
]

# Substeps reported to observers for each role, in execution order.
ROLE_SUBSTEPS: dict[str, list[SubstepDefinition]] = {
    "analysis": [
        SubstepDefinition("prepare_prompt", "Prepare prompt"),
        SubstepDefinition("ai_generate", "Run analysis"),
        SubstepDefinition("store_output", "Store output"),
    ],
    "generation": [
        SubstepDefinition("prepare_prompt", "Prepare prompt"),
        SubstepDefinition("ai_generate", "Generate concept"),
        SubstepDefinition("store_snapshot", "Store concept snapshot"),
    ],
    "review": [
        SubstepDefinition("prepare_prompt", "Prepare prompt"),
        SubstepDefinition("ai_review", "Generate review feedback"),
        SubstepDefinition("store_feedback", "Store feedback"),
    ],
    "editor": [
        SubstepDefinition("resolve_feedback", "Resolve accepted feedback"),
        SubstepDefinition("ai_merge", "Merge feedback into concept"),
        SubstepDefinition("store_snapshot", "Store concept snapshot"),
    ],
}

REVIEW_STAGES: list[str] = [s.stage_id for s in STAGE_CATALOGUE if s.role == "review"]

# src/pipeline/stage_graph.py — v1
"""Stage graph — ordered catalogue of stages and their roles.

The catalogue is held as a directed path graph (each stage points to the
stage that follows it). Cascade operations use it to find every stage at
or after a given one; the express orchestrator uses it for default
sequencing.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import networkx as nx

from reportflow.config.stages import (
    EDITOR_STAGE,
    GENERATION_STAGE,
    STAGE_CATALOGUE,
    SYNTHETIC_PREFIXES,
    StageDefinition,
    StageRole,
)
from reportflow.core.errors import ValidationError

logger = logging.getLogger(__name__)


class StageGraphError(Exception):
    """Raised when the stage catalogue is not a single ordered path."""


def is_synthetic_key(key: str) -> bool:
    """True for user-edit snapshot keys such as manual_edit_3 or adjustment_1."""
    for prefix in SYNTHETIC_PREFIXES:
        head, sep, tail = key.rpartition("_")
        if sep and head == prefix and tail.isdigit():
            return True
    return False


def stage_slot(key: str, order: Sequence[str]) -> int | None:
    """Position of a stage or snapshot key in the processing order.

    Synthetic keys share the editor slot, or sit past the end of the
    order when it has no editor stage. Unknown keys have no slot.
    """
    if key in order:
        return list(order).index(key)
    if is_synthetic_key(key):
        if EDITOR_STAGE in order:
            return list(order).index(EDITOR_STAGE)
        return len(order)
    return None


class StageGraph:
    """Ordered, role-annotated stage catalogue."""

    def __init__(self, stages: Sequence[StageDefinition] | None = None) -> None:
        definitions = list(stages if stages is not None else STAGE_CATALOGUE)
        self._definitions = {d.stage_id: d for d in definitions}
        if len(self._definitions) != len(definitions):
            raise StageGraphError("Duplicate stage ids in catalogue")

        self._graph = nx.DiGraph()
        self._graph.add_nodes_from(d.stage_id for d in definitions)
        self._graph.add_edges_from(
            (a.stage_id, b.stage_id) for a, b in zip(definitions, definitions[1:])
        )
        if not nx.is_directed_acyclic_graph(self._graph):
            raise StageGraphError("Stage catalogue contains a cycle")

        self._order: list[str] = list(nx.topological_sort(self._graph))
        logger.debug("Stage graph built: %s", self._order)

    @property
    def order(self) -> list[str]:
        """Stage ids in processing order."""
        return list(self._order)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._definitions

    def definition(self, stage_id: str) -> StageDefinition:
        """Return the catalogue entry for a stage id."""
        try:
            return self._definitions[stage_id]
        except KeyError:
            raise ValidationError(f"Unknown stage '{stage_id}'", stage_id=stage_id) from None

    def role_of(self, key: str) -> StageRole:
        """Role of a stage id; synthetic snapshot keys have the editor role."""
        if is_synthetic_key(key):
            return "editor"
        return self.definition(key).role

    def is_known(self, key: str) -> bool:
        """True for catalogue stages and synthetic snapshot keys."""
        return key in self._definitions or is_synthetic_key(key)

    def stages_with_role(self, role: StageRole) -> list[str]:
        return [s for s in self._order if self._definitions[s].role == role]

    def cascade_targets(self, key: str, existing: Sequence[str]) -> list[str]:
        """Keys from `existing` that sit at or after `key` in the order.

        `key` itself is always included. Keys that are neither catalogue
        stages nor synthetic are only removed when named directly.
        """
        slot = stage_slot(key, self._order)
        targets = [key]
        if slot is None:
            return targets
        for other in existing:
            if other == key:
                continue
            other_slot = stage_slot(other, self._order)
            if other_slot is not None and other_slot >= slot:
                targets.append(other)
        return targets

    def default_sequence(self, include_generation: bool = False) -> list[str]:
        """Default express sequence: every review stage, optionally after generation."""
        stages = self.stages_with_role("review")
        if include_generation:
            return [GENERATION_STAGE, *stages]
        return stages

    def name_of(self, key: str) -> str:
        if key in self._definitions:
            return self._definitions[key].name
        return key.replace("_", " ").capitalize()

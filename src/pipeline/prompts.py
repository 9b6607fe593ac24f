# src/pipeline/prompts.py — v1
"""Prompt construction per stage role.

Domain templates are not part of this package; prompts carry the stage
name, the document inputs and whatever prior output the role needs, in a
fixed layout that deployments can replace by passing their own builder.
"""

from __future__ import annotations

import json
from typing import Any

from reportflow.config.stages import GENERATION_STAGE
from reportflow.core.models import Report
from reportflow.pipeline.stage_graph import StageGraph

NO_CONCEPT_PLACEHOLDER = "(no concept available)"

REVIEW_INSTRUCTIONS = """\
Return your feedback as JSON: {"proposals": [{"change_type": "add|modify|delete|restructure", \
"severity": "critical|important|suggestion", "section": "...", "original_text": "...", \
"proposed_text": "...", "reasoning": "..."}]}.
Return {"status": "no_changes"} if the concept needs no changes."""

EDITOR_INSTRUCTIONS = """\
Apply every accepted change below to the current concept. Keep all other
text unchanged. Return only the complete revised concept."""


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


class PromptBuilder:
    """Builds the prompt text sent to the AI collaborator for each role."""

    def __init__(self, graph: StageGraph) -> None:
        self.graph = graph

    def _prior_outputs(self, report: Report, stage_id: str) -> str:
        sections = []
        for prior in self.graph.order:
            if prior == stage_id:
                break
            if self.graph.role_of(prior) != "analysis":
                continue
            output = report.stage_outputs.get(prior)
            if output:
                sections.append(f"### {self.graph.name_of(prior)}\n{output}")
        return "\n\n".join(sections)

    def build_analysis(self, report: Report, stage_id: str) -> str:
        prior = self._prior_outputs(report, stage_id)
        parts = [
            f"## Task: {self.graph.name_of(stage_id)}",
            f"## Document\nTitle: {report.title}\n{_dump(report.inputs)}",
        ]
        if prior:
            parts.append(f"## Earlier analysis\n{prior}")
        return "\n\n".join(parts)

    def build_generation(self, report: Report, stage_id: str = GENERATION_STAGE) -> str:
        prior = self._prior_outputs(report, stage_id)
        parts = [
            f"## Task: {self.graph.name_of(stage_id)}",
            "Write the complete report concept for the document below.",
            f"## Document\nTitle: {report.title}\n{_dump(report.inputs)}",
        ]
        if prior:
            parts.append(f"## Earlier analysis\n{prior}")
        return "\n\n".join(parts)

    def build_review(self, report: Report, stage_id: str) -> str:
        concept = report.ledger.resolve_latest_content() or NO_CONCEPT_PLACEHOLDER
        return "\n\n".join(
            [
                f"## Review role: {self.graph.name_of(stage_id)}",
                f"## Document inputs\n{_dump(report.inputs)}",
                f"## Current concept\n{concept}",
                REVIEW_INSTRUCTIONS,
            ]
        )

    def build_editor(
        self,
        current_content: str,
        accepted_changes: str,
        instruction: str | None = None,
    ) -> str:
        parts = [
            "## Editor",
            EDITOR_INSTRUCTIONS,
            f"## Current concept\n{current_content}",
            f"## Accepted changes\n{accepted_changes}",
        ]
        if instruction:
            parts.append(f"## Additional instruction\n{instruction}")
        return "\n\n".join(parts)

# src/pipeline/feedback.py — v1
"""Reviewer feedback interpretation.

Turns the raw output of a review stage into normalised ChangeProposal
items, serialises accepted items for the editor prompt, and builds the
short summaries shown in express-mode progress.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from reportflow.core.models import ChangeProposal, FeedbackSummary
from reportflow.pipeline.json_parsing import try_parse_json

logger = logging.getLogger(__name__)

MIN_PROPOSED_CHARS = 10
NO_CHANGES_STATUSES = frozenset({"no_changes", "approved", "geen_wijzigingen"})
CONTAINER_KEYS = ("proposals", "findings", "changes", "bevindingen")
APPROVAL_PHRASES = (
    "no changes",
    "no corrections",
    "no issues found",
    "fully accurate",
    "approved without changes",
)

_CHANGE_TYPES = {
    "add": "add",
    "insert": "add",
    "delete": "delete",
    "remove": "delete",
    "restructure": "restructure",
    "reorder": "restructure",
}
_LINE_TYPE_RE = re.compile(r"^(add|modify|replace|delete|remove|restructure)\s*:\s*(.+)$", re.IGNORECASE)
_LINE_SEVERITY_RE = re.compile(r"^(critical|important|suggestion)\s*:\s*(.+)$", re.IGNORECASE)
_LINE_REASON_RE = re.compile(r"^(?:reason|rationale)\s*:\s*(.+)$", re.IGNORECASE)
_LINE_SECTION_RE = re.compile(r"^section\s*:\s*(.+)$", re.IGNORECASE)


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def _map_change_type(raw: Any) -> str:
    return _CHANGE_TYPES.get(str(raw or "").strip().lower(), "modify")


def _map_severity(raw: Any) -> str:
    value = str(raw or "").lower()
    if "critical" in value or "high" in value:
        return "critical"
    if "important" in value or "medium" in value or "major" in value:
        return "important"
    return "suggestion"


def normalize_proposal(data: Any, stage_id: str, index: int) -> ChangeProposal | None:
    """Normalise one structured item; None when it is not a usable proposal."""
    if not isinstance(data, Mapping):
        return None
    proposed = _first(data, "proposed_text", "proposed", "new", "suggestion", "instruction")
    identifier = _first(data, "change_type", "changeType", "type")
    if not identifier and not proposed:
        return None
    proposed = str(proposed or "")
    if len(proposed) < MIN_PROPOSED_CHARS:
        return None
    return ChangeProposal(
        id=str(_first(data, "id") or f"{stage_id}-{index}"),
        change_type=_map_change_type(identifier),  # type: ignore[arg-type]
        severity=_map_severity(_first(data, "severity", "priority")),  # type: ignore[arg-type]
        section=str(_first(data, "section", "location") or ""),
        description=str(_first(data, "description", "summary") or proposed),
        original_text=str(_first(data, "original_text", "original", "old") or ""),
        proposed_text=proposed,
        reasoning=str(_first(data, "reasoning", "reason", "rationale") or ""),
    )


def _items_from_parsed(parsed: Any) -> list[Any] | None:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, Mapping):
        for key in CONTAINER_KEYS:
            if isinstance(parsed.get(key), list):
                return parsed[key]
    return None


def _parse_lines(raw: str, stage_id: str) -> list[ChangeProposal]:
    """Plain-text fallback: 'Add: ...', 'Critical: ...', 'Reason: ...' lines."""
    proposals: list[ChangeProposal] = []
    current: dict[str, str] | None = None

    def flush() -> None:
        if current and current.get("proposed_text"):
            proposals.append(
                ChangeProposal(
                    id=f"{stage_id}-{len(proposals)}",
                    change_type=_map_change_type(current.get("change_type")),  # type: ignore[arg-type]
                    severity=_map_severity(current.get("severity")),  # type: ignore[arg-type]
                    section=current.get("section", ""),
                    description=current["proposed_text"],
                    proposed_text=current["proposed_text"],
                    reasoning=current.get("reasoning", "").strip(),
                )
            )

    for line in raw.splitlines():
        text = line.strip().lstrip("-*• ").strip()
        if not text:
            continue
        type_match = _LINE_TYPE_RE.match(text)
        severity_match = _LINE_SEVERITY_RE.match(text)
        if type_match:
            flush()
            current = {"change_type": type_match.group(1), "proposed_text": type_match.group(2)}
            continue
        if severity_match:
            if current is None:
                current = {"proposed_text": severity_match.group(2)}
            current["severity"] = severity_match.group(1)
            continue
        if current is None:
            continue
        reason_match = _LINE_REASON_RE.match(text)
        section_match = _LINE_SECTION_RE.match(text)
        if reason_match:
            current["reasoning"] = f"{current.get('reasoning', '')} {reason_match.group(1)}"
        elif section_match:
            current["section"] = section_match.group(1)
    flush()
    return proposals


def is_approval(raw: str) -> bool:
    lowered = raw.lower()
    return any(phrase in lowered for phrase in APPROVAL_PHRASES)


def parse_feedback_to_proposals(raw: str, stage_id: str) -> list[ChangeProposal]:
    """Extract change proposals from a review stage's raw output.

    Structured output (a list, or an object holding one under a known
    key) is normalised item by item. An explicit no-changes status yields
    an empty list. Unstructured text falls back to a line parser, then to
    a single generic proposal unless the text reads as an approval.
    """
    raw = raw.strip()
    if not raw:
        return []

    parsed = try_parse_json(raw)
    if isinstance(parsed, Mapping) and str(parsed.get("status", "")).lower() in NO_CHANGES_STATUSES:
        return []
    items = _items_from_parsed(parsed)
    if items is not None:
        normalized = (normalize_proposal(item, stage_id, idx) for idx, item in enumerate(items))
        proposals = [p for p in normalized if p is not None]
        logger.debug("Parsed %d of %d structured items from %s", len(proposals), len(items), stage_id)
        return proposals

    proposals = _parse_lines(raw, stage_id)
    if proposals or is_approval(raw):
        return proposals
    return [
        ChangeProposal(
            id=f"{stage_id}-0",
            description=_truncate(raw, 300),
            proposed_text=raw,
            reasoning="General reviewer feedback",
        )
    ]


def serialize_accepted(changes: Iterable[ChangeProposal | Mapping[str, Any]]) -> str:
    """JSON list of accepted changes in the shape the editor prompt expects."""
    items: list[dict[str, Any]] = []
    for change in changes:
        data = change.model_dump() if isinstance(change, ChangeProposal) else dict(change)
        items.append(
            {
                "id": data.get("id"),
                "type": data.get("change_type") or data.get("type") or "modify",
                "section": data.get("section") or "",
                "original_text": data.get("original_text") or data.get("original") or "",
                "proposed_text": (
                    data.get("proposed_text")
                    or data.get("proposed")
                    or data.get("instruction")
                    or data.get("description")
                    or ""
                ),
                "rationale": data.get("reasoning") or data.get("rationale") or "",
                "severity": data.get("severity") or "suggestion",
            }
        )
    return json.dumps(items, indent=2, ensure_ascii=False)


def summarize_feedback(stage_id: str, raw: str) -> FeedbackSummary:
    """Count and short descriptions of the changes a reviewer proposed."""
    proposals = parse_feedback_to_proposals(raw, stage_id)
    changes = [
        {
            "type": p.change_type,
            "severity": p.severity,
            "description": _truncate(p.proposed_text or p.reasoning, 300),
            "section": _truncate(p.section, 100) or None,
            "reasoning": _truncate(p.reasoning, 200) or None,
        }
        for p in proposals
    ]
    return FeedbackSummary(
        stage_id=stage_id,
        count=len(proposals),
        descriptions=[c["description"] for c in changes],
        changes=changes,
        approved=not proposals,
    )


def _truncate(text: str, max_length: int) -> str:
    if not text or len(text) <= max_length:
        return text or ""
    return text[: max_length - 3] + "..."

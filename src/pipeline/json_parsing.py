# src/pipeline/json_parsing.py — v1
"""Tolerant JSON extraction from AI output.

Tries, in order: the whole text, the first fenced code block, then the
span from the first `{` to the last `}`.
"""

from __future__ import annotations

import json
import re
from typing import Any

from reportflow.core.errors import ParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def parse_json_with_markdown(text: str, *, stage_id: str | None = None) -> Any:
    """Parse JSON that may be wrapped in a markdown fence or surrounded by prose.

    Raises:
        ParseError: None of the strategies produced valid JSON.
    """
    candidates = [text]
    fence = _FENCE_RE.search(text)
    if fence and fence.group(1):
        candidates.append(fence.group(1).strip())
    obj = _OBJECT_RE.search(text)
    if obj:
        candidates.append(obj.group(0))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ParseError("No valid JSON found in response", raw_text=text, stage_id=stage_id)


def try_parse_json(text: str) -> Any | None:
    """Like parse_json_with_markdown, but None instead of ParseError."""
    try:
        return parse_json_with_markdown(text)
    except ParseError:
        return None

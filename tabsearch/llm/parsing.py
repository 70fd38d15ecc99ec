from __future__ import annotations

"""Tolerant JSON parsing for language model output."""

import json
import logging
import re

from tabsearch.search.errors import ModelInvocationFailure

logger = logging.getLogger(__name__)


class LLMError(ModelInvocationFailure):
    """Raised when LLM requests fail or responses are invalid."""
    pass


_FENCED_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", flags=re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", flags=re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def parse_json_response(content: str) -> dict[str, object]:
    """Parse a JSON object from model output.

    Tries the raw text, then a fenced code block, then the outermost brace
    span, then a repaired version of a truncated object.
    """
    text = (content or "").strip()
    for candidate in _candidates(text):
        data = _loads_object(candidate)
        if data is not None:
            return data
        repaired = _repair_truncated(candidate)
        if repaired != candidate:
            data = _loads_object(repaired)
            if data is not None:
                logger.warning("llm_json_repaired", extra={"length": len(text)})
                return data
    raise LLMError("LLM response is not valid JSON")


def _candidates(text: str) -> list[str]:
    candidates = [text]
    fenced = _FENCED_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    match = _OBJECT_RE.search(text)
    if match:
        candidates.append(match.group(0))
    start = text.find("{")
    if start != -1:
        candidates.append(text[start:])
    return candidates


def _loads_object(text: str) -> dict[str, object] | None:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict):
        return data
    return None


def _repair_truncated(text: str) -> str:
    """Close unbalanced brackets and drop dangling commas."""
    repaired = text.rstrip()
    if not repaired.startswith("{"):
        return text
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in repaired:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()
    if in_string:
        repaired += '"'
    repaired = re.sub(r",\s*$", "", repaired)
    repaired += "".join(reversed(stack))
    return _TRAILING_COMMA_RE.sub(r"\1", repaired)

"""Tolerant parsing of freeform model output.

Model replies are expected to be a single JSON value, but in practice
they arrive wrapped in markdown fences, preceded by chatter, or with
trailing commas. Every JSON-from-model path goes through
parse_json_payload, which tries, in order:

  1. the whole reply (after stripping <think> blocks)
  2. the first fenced ``` / ```json block
  3. the outermost {...} or [...] span, repaired with json_repair
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from json_repair import repair_json

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```", re.IGNORECASE)


def _clean_llm_output(raw: str) -> str:
    """Strip thinking tags from LLM output."""
    cleaned = raw.strip()
    if "<think>" in cleaned:
        parts = cleaned.split("</think>")
        cleaned = parts[-1].strip() if len(parts) > 1 else cleaned
    return cleaned


def _outermost_span(text: str) -> Optional[str]:
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        # Truncated reply; let json_repair close it
        return text[start:]
    return text[start:end + 1]


def parse_json_payload(raw: str | None) -> Any:
    """Parse a JSON object or array out of a model reply.

    Returns the parsed dict/list, or None if nothing usable was found.
    """
    if not raw:
        return None
    cleaned = _clean_llm_output(raw)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    fenced = FENCE_RE.search(cleaned)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            cleaned = fenced.group(1).strip()

    span = _outermost_span(cleaned)
    if span is None:
        return None
    try:
        repaired = repair_json(span, return_objects=True)
    except Exception as exc:
        logger.debug("json_repair failed: %s", exc)
        return None
    if isinstance(repaired, (dict, list)) and repaired:
        return repaired
    return None


def parse_tool_call(raw: str | None) -> Optional[dict]:
    """Extract one {tool, args} call from a model reply.

    Returns {"tool": str, "args": dict} or None when the reply holds no
    call (free text).
    """
    payload = parse_json_payload(raw)
    if not isinstance(payload, dict):
        return None
    tool = payload.get("tool")
    if not isinstance(tool, str) or not tool.strip():
        return None
    args = payload.get("args")
    return {"tool": tool.strip(), "args": args if isinstance(args, dict) else {}}


def parse_selections(raw: Any) -> Optional[list]:
    """Parse submit_selections args into SignalSelection objects.

    Accepts snake_case and camelCase keys. Non-dict entries are
    skipped. Returns None for a non-list or when nothing survives.
    """
    from signal_desk.agent.models import SignalSelection

    if not isinstance(raw, list):
        return None

    selections = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            selections.append(SignalSelection.model_validate(item))
        except Exception as exc:
            logger.warning("Dropping unparseable selection %r: %s", item, exc)

    return selections or None

"""Recover JSON objects from free-text LLM output.

Models asked for "JSON only" still wrap it in markdown fences, prepend a
sentence of prose, or emit a draft object followed by a corrected one.
:func:`extract_json` tolerates all of these and never raises.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from enum import Enum
from typing import Any, Literal, Optional

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


class _ScanState(Enum):
    NORMAL = "normal"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang fence and a trailing ``` fence, if present."""
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text)).strip()


def iter_json_objects(text: str) -> Iterator[str]:
    """Yield every balanced top-level ``{...}`` substring of *text*.

    Braces inside string literals (including escaped quotes) are ignored.
    String state is only tracked inside an object, so a stray quote in the
    surrounding prose cannot hide the objects that follow it.
    """
    state = _ScanState.NORMAL
    depth = 0
    start = -1

    for i, ch in enumerate(text):
        if state is _ScanState.ESCAPED:
            state = _ScanState.IN_STRING
            continue
        if state is _ScanState.IN_STRING:
            if ch == "\\":
                state = _ScanState.ESCAPED
            elif ch == '"':
                state = _ScanState.NORMAL
            continue

        if ch == '"' and depth > 0:
            state = _ScanState.IN_STRING
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start:i + 1]


def _loads(candidate: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return False, None


def extract_json(
    text: Optional[str],
    prefer: Literal["last", "first"] = "last",
) -> Any:
    """Best-effort parse of the JSON payload in *text*.

    Args:
        text: Raw model output.
        prefer: Which object wins when several well-formed top-level objects
            are present. ``"last"`` (default) assumes later objects are the
            model's corrected final answer.

    Returns:
        The parsed value, or ``None`` if nothing parses.
    """
    if not text or not text.strip():
        return None

    ok, value = _loads(strip_code_fences(text))
    if ok:
        return value

    parsed = []
    for candidate in iter_json_objects(text):
        ok, value = _loads(candidate)
        if ok:
            parsed.append(value)
    if parsed:
        if len(parsed) > 1:
            logger.debug("Found %d JSON objects in model output; keeping the %s", len(parsed), prefer)
        return parsed[0] if prefer == "first" else parsed[-1]

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        ok, value = _loads(text[first:last + 1])
        if ok:
            return value

    return None

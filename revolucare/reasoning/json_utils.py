"""Helpers for pulling JSON objects out of model responses."""
import json
import re
from typing import Any, Dict

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _first_balanced_object(text: str) -> str:
    """Return the first balanced {...} span, honoring strings and escapes."""
    start = text.find("{")
    if start == -1:
        raise json.JSONDecodeError("No JSON object found", text, 0)

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
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
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    raise json.JSONDecodeError("Unterminated JSON object", text, start)


def extract_json_from_text(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from raw model output.

    Accepts bare JSON, fenced ```json blocks, or JSON embedded in prose.
    A top-level array is wrapped as ``{"items": [...]}``.

    Raises:
        json.JSONDecodeError: If no JSON object can be parsed
    """
    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        parsed = json.loads(_first_balanced_object(candidate))

    if isinstance(parsed, list):
        return {"items": parsed}
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("Expected a JSON object", candidate, 0)
    return parsed

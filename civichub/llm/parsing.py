"""Turn raw model text into a validated :class:`ModelOutput`."""

from __future__ import annotations

import json
import re

from pydantic import ValidationError

from ..errors import FormatError
from .schemas import ModelOutput

_DECODER = json.JSONDecoder()
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


def repair_truncated_json(text: str) -> str:
    """Close strings, arrays and objects left open by a truncated response."""

    result = text.strip()
    in_string = False
    escaped = False
    stack: list[str] = []
    for ch in result:
        if escaped:
            escaped = False
            continue
        if ch == "\\" and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()
    if in_string:
        result += '"'
    result = re.sub(r",\s*$", "", result)
    while stack:
        result += stack.pop()
    return result


def _extract_object(text: str) -> str:
    cleaned = _FENCE.sub("", text.strip())
    start = cleaned.find("{")
    if start < 0:
        raise FormatError("model output contains no JSON object")
    return cleaned[start:]


def parse_model_output(text: str) -> ModelOutput:
    """Parse ``text`` into :class:`ModelOutput`, repairing truncation once.

    Raises:
        FormatError: when no valid object can be recovered.
    """

    candidate = _extract_object(text)
    for attempt in (candidate, repair_truncated_json(candidate)):
        try:
            data, _ = _DECODER.raw_decode(attempt)
        except ValueError:
            continue
        if not isinstance(data, dict):
            break
        try:
            return ModelOutput.model_validate(data)
        except ValidationError as exc:
            raise FormatError(f"model output failed validation: {exc.error_count()} errors") from exc
    raise FormatError("model output is not valid JSON")

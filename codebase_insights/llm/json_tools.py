"""Helpers for turning LLM text replies into JSON values."""

from __future__ import annotations

import json
import re
from typing import Any

from codebase_insights.llm.errors import BadResponseContentLlmError

# ```json ... ``` fenced blocks
_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def convert_text_to_json(text: str) -> dict[str, Any] | list[Any]:
    """Extract the first JSON object or array from an LLM reply.

    Tolerates leading chatter and markdown code fences around the JSON.
    Raises BadResponseContentLlmError if nothing parseable is found.
    """
    if not isinstance(text, str):
        raise BadResponseContentLlmError("Generated content is not a string", text)

    candidates: list[str] = [m.group(1) for m in _FENCE_PATTERN.finditer(text)]
    candidates.append(text)

    decoder = json.JSONDecoder()
    for candidate in candidates:
        for idx, char in enumerate(candidate):
            if char not in "{[":
                continue
            try:
                value, _ = decoder.raw_decode(candidate, idx)
            except json.JSONDecodeError:
                continue
            if isinstance(value, (dict, list)):
                return value

    raise BadResponseContentLlmError("Generated content is not valid JSON", text[:200])

"""Tolerant JSON extraction from raw model output.

Model text is untrusted: it may wrap the payload in code fences or
surrounding prose. We locate the first balanced JSON object or array that
actually decodes and return it; schema validation happens in the caller.
"""

from __future__ import annotations

import json
import re
from typing import Any

# Regex to strip Markdown code fences wrapping JSON output
_CODE_FENCE_RE = re.compile(
    r"^\s*```(?:json)?\s*\n?(.*?)\n?\s*```\s*$",
    re.DOTALL,
)

_DECODER = json.JSONDecoder()


class JSONExtractionError(ValueError):
    """Raised when no JSON object or array can be decoded from model output."""


def extract_json(raw: str) -> Any:
    """Return the first decodable JSON object or array found in *raw*."""
    text = raw.strip()
    match = _CODE_FENCE_RE.match(text)
    if match:
        text = match.group(1).strip()

    for index, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            value, _ = _DECODER.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        return value
    raise JSONExtractionError("no JSON object or array found in model output")

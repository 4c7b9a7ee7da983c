"""Fallback decoder for JSON arrays in model output.

Models asked for "a JSON array only" still wrap the array in prose, code
fences or bullet lists. Decoding happens in two named stages:

1. ``strict``: drop everything before the first ``[`` and after the last
   ``]`` and parse what is left as JSON.
2. ``lines``: for string arrays only, treat each non-empty line as an
   item after stripping bullet and numbering markers. The recovered set
   is accepted only when it is small and every line looks like prose.

Anything else decodes to nothing; callers never see an exception.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import re
from typing import Any, Dict, List, Optional

METHOD_STRICT = "strict"
METHOD_LINES = "lines"
METHOD_FAILED = "failed"

# Bounds for line recovery
MAX_RECOVERED_LINES = 10
MIN_LINE_LENGTH = 4
MAX_LINE_LENGTH = 199

_LEADING_JUNK = re.compile(r"^[^\[]*", re.DOTALL)
_TRAILING_JUNK = re.compile(r"[^\]]*$", re.DOTALL)
_BULLET_PREFIX = re.compile(r"^[-*•\d.)\s]+")
_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*$")


@dataclass(slots=True)
class DecodeResult:
    """Items decoded from model output and the stage that produced them."""

    items: List[Any] = field(default_factory=list)
    method: str = METHOD_FAILED

    @property
    def ok(self) -> bool:
        return self.method != METHOD_FAILED


def extract_json_array(text: str) -> Optional[List[Any]]:
    """Strict stage: parse the outermost ``[...]`` span, or return None."""
    if not text:
        return None
    trimmed = _TRAILING_JUNK.sub("", _LEADING_JUNK.sub("", text, count=1), count=1)
    if not trimmed:
        return None
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None


def recover_lines(text: str) -> Optional[List[str]]:
    """Line stage: bullet/numbered lines as strings, or None when implausible."""
    if not text:
        return None
    lines = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or _CODE_FENCE.match(line):
            continue
        line = _BULLET_PREFIX.sub("", line).strip()
        if not (MIN_LINE_LENGTH <= len(line) <= MAX_LINE_LENGTH):
            continue
        if line.startswith("{") or line.startswith("["):
            continue
        lines.append(line)
    if not 1 <= len(lines) <= MAX_RECOVERED_LINES:
        return None
    return lines


def decode_string_array(text: str) -> DecodeResult:
    """Decode a list of non-empty strings using both stages."""
    parsed = extract_json_array(text)
    if parsed is not None:
        items = [item.strip() for item in parsed if isinstance(item, str) and item.strip()]
        return DecodeResult(items=items, method=METHOD_STRICT)

    recovered = recover_lines(text)
    if recovered is not None:
        return DecodeResult(items=recovered, method=METHOD_LINES)

    return DecodeResult()


def decode_object_array(text: str) -> DecodeResult:
    """Decode a list of JSON objects; non-object entries are dropped.

    Only the strict stage applies: line recovery cannot rebuild objects.
    """
    parsed = extract_json_array(text)
    if parsed is None:
        return DecodeResult()
    items: List[Dict[str, Any]] = [item for item in parsed if isinstance(item, dict)]
    return DecodeResult(items=items, method=METHOD_STRICT)

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Literal

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_EXCERPT_CHARS = 200

ExpectedShape = Literal["array", "object"]


@dataclass(slots=True, frozen=True)
class ParsedJson:
    value: Any
    ok: Literal[True] = True


@dataclass(slots=True, frozen=True)
class ParseFailure:
    reason: str
    raw_excerpt: str
    ok: Literal[False] = False


ParseResult = ParsedJson | ParseFailure


def parse_json_payload(text: str | None, *, expect: ExpectedShape = "array") -> ParseResult:
    """Pull the outermost JSON array/object out of free-form completion text."""
    if not isinstance(text, str) or not text.strip():
        return ParseFailure(reason="empty_response", raw_excerpt="")

    excerpt = text.strip()[:_EXCERPT_CHARS]
    pattern = _ARRAY_RE if expect == "array" else _OBJECT_RE
    match = pattern.search(text)
    candidate = match.group(0) if match else text.strip()

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return ParseFailure(reason="invalid_json", raw_excerpt=excerpt)

    if expect == "array" and not isinstance(value, list):
        return ParseFailure(reason="expected_array", raw_excerpt=excerpt)
    if expect == "object" and not isinstance(value, dict):
        return ParseFailure(reason="expected_object", raw_excerpt=excerpt)
    return ParsedJson(value=value)

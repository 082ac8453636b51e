"""Extract JSON and code from free-form model output.

Model output is unreliable: JSON arrives wrapped in prose, in fenced blocks,
or with trailing commas. Tolerance here is bounded and deterministic:

  1. pick one candidate substring (fenced json > any fence > [...] > {...} > text)
  2. strict parse, then exactly one repair (trailing commas) and one retry
  3. unwrap {"tools": [...]} or a bare {"name": ...} object
  4. anything else is reported as an error, never guessed at
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

_FENCE_RE = re.compile(r"```([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

_CODE_TAGS = ("python", "py", "python3")


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parse_tool_response: a list of raw records or an error."""
    data: list[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _fenced_blocks(text: str) -> list[tuple[str, str]]:
    """(tag, body) for every fenced block, in document order."""
    return [(m.group(1).lower(), m.group(2)) for m in _FENCE_RE.finditer(text)]


def extract_json_from_response(response: str) -> str:
    """Pick the candidate JSON text out of a model response."""
    blocks = _fenced_blocks(response)
    for tag, body in blocks:
        if tag == "json":
            return body.strip()
    if blocks:
        return blocks[0][1].strip()

    array_match = _ARRAY_RE.search(response)
    if array_match:
        return array_match.group(0)

    object_match = _OBJECT_RE.search(response)
    if object_match:
        return object_match.group(0)

    return response.strip()


def strip_trailing_commas(text: str) -> str:
    """The single repair heuristic: drop commas directly before ] or }."""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def parse_tool_response(response: str) -> ParseResult:
    """Parse a model response into a list of raw tool records. Never raises."""
    candidate = extract_json_from_response(response)

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as first_error:
        try:
            data = json.loads(strip_trailing_commas(candidate))
        except json.JSONDecodeError:
            return ParseResult(error=f"Failed to parse tool specifications: {first_error}")

    if isinstance(data, dict):
        if isinstance(data.get("tools"), list):
            data = data["tools"]
        elif "name" in data:
            data = [data]
        else:
            return ParseResult(
                error="Unexpected response format: expected array or object with 'name' property",
            )

    if not isinstance(data, list):
        return ParseResult(error=f"Expected list of tool specs, got: {type(data).__name__}")

    return ParseResult(data=data)


def extract_code_from_response(response: str) -> str:
    """Pull implementation code out of a model response. Never raises.

    Prefers a python-tagged fence, then any fence, then the trimmed text.
    """
    blocks = _fenced_blocks(response)
    for tag, body in blocks:
        if tag in _CODE_TAGS:
            return body.strip()
    if blocks:
        return blocks[0][1].strip()
    return response.strip()

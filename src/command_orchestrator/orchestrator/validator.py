"""Extraction of one structured record from noisy command output."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

NO_RECORD_FOUND = "no structured record found"


@dataclass(slots=True)
class ParsedResult:
    """Result of output parsing; failures are values, never exceptions."""

    success: bool
    record: dict[str, Any] | None
    error: str | None


def parse_output(raw_text: str | None) -> ParsedResult:
    """Decode the first balanced top-level ``{...}`` span in ``raw_text``.

    Backends may interleave log lines with exactly one JSON object record, so
    everything outside the first balanced brace pair is ignored.
    """

    if not isinstance(raw_text, str) or not raw_text.strip():
        return ParsedResult(success=False, record=None, error=NO_RECORD_FOUND)

    span = _first_balanced_object(raw_text)
    if span is None:
        return ParsedResult(success=False, record=None, error=NO_RECORD_FOUND)
    try:
        decoded = json.loads(span)
    except (json.JSONDecodeError, RecursionError) as error:
        return ParsedResult(success=False, record=None, error=f"decode error: {error}")
    if not isinstance(decoded, dict):
        return ParsedResult(
            success=False,
            record=None,
            error="decode error: record must be an object",
        )
    return ParsedResult(success=True, record=decoded, error=None)


def _first_balanced_object(text: str) -> str | None:
    """Single pass over ``text`` keeping a stack of open-brace offsets.

    Quotes only open strings inside a brace span. When the scan ends with
    braces still open, the earliest span that did close is returned.
    """

    stack: list[int] = []
    earliest: tuple[int, int] | None = None
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == "{":
            stack.append(index)
        elif not stack:
            continue
        elif char == '"':
            in_string = True
        elif char == "}":
            start = stack.pop()
            if not stack:
                return text[start : index + 1]
            if earliest is None or start < earliest[0]:
                earliest = (start, index)
    if earliest is None:
        return None
    return text[earliest[0] : earliest[1] + 1]

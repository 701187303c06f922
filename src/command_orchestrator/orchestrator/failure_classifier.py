"""Deterministic execution failure classification for the repair loop."""

from __future__ import annotations

import re

from command_orchestrator.orchestrator.models import ErrorClassification, ErrorKind

FAILURE_CLASSIFIER_VERSION = 1

_TIMEOUT_PATTERNS: tuple[str, ...] = ("timeout", "etimedout")
_FILE_NOT_FOUND_PATTERNS: tuple[str, ...] = ("enoent", "not found")
_PERMISSION_PATTERNS: tuple[str, ...] = ("permission", "eacces")
_NETWORK_PATTERNS: tuple[str, ...] = ("network", "connection")

_EXIT_CODE = re.compile(r"\bexit(?:ed)?(?:\s+(?:with\s+)?(?:code|status))?\s*:?\s*(-?\d+)")


def classify_error(error: BaseException | str) -> ErrorClassification:
    """Map an attempt failure to a symbolic kind; rule order matters."""

    message = str(error)
    haystack = message.lower()

    pattern = _first_match(haystack, _TIMEOUT_PATTERNS)
    if pattern is not None:
        return ErrorClassification(kind=ErrorKind.TIMEOUT, message=message, matched_pattern=pattern)

    exit_match = _EXIT_CODE.search(haystack)
    if exit_match is not None:
        return ErrorClassification(
            kind=ErrorKind.EXIT_CODE,
            message=message,
            exit_code=int(exit_match.group(1)),
            matched_pattern=exit_match.group(0),
        )

    pattern = _first_match(haystack, _FILE_NOT_FOUND_PATTERNS)
    if pattern is not None:
        return ErrorClassification(
            kind=ErrorKind.FILE_NOT_FOUND,
            message=message,
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _PERMISSION_PATTERNS)
    if pattern is not None:
        return ErrorClassification(
            kind=ErrorKind.PERMISSION,
            message=message,
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _NETWORK_PATTERNS)
    if pattern is not None:
        return ErrorClassification(kind=ErrorKind.NETWORK, message=message, matched_pattern=pattern)

    return ErrorClassification(kind=ErrorKind.UNKNOWN, message=message)


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None

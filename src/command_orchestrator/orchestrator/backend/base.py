"""Backend interface for plan execution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class CommandRunResult:
    """Raw outcome of one successful backend call."""

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: float


class CommandBackend(Protocol):
    """Protocol implemented by subprocess runners.

    Failed calls raise ``CommandExecutionError`` whose message carries the exit
    code, signal or stderr excerpt the classifier needs.
    """

    def run_command(
        self,
        command: str,
        args: tuple[str, ...] | list[str],
        *,
        timeout_ms: int | None = None,
    ) -> CommandRunResult:
        """Run ``command`` with ``args`` and return captured output."""

    def run_argv(
        self,
        run_args: list[str],
        *,
        timeout_ms: int | None = None,
    ) -> CommandRunResult:
        """Run an explicit argv, bypassing any configured command prefix."""

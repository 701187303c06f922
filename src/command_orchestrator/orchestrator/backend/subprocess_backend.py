"""Subprocess-based backend runner for symbolic commands."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import time
from typing import IO

from command_orchestrator.orchestrator.backend.base import CommandRunResult
from command_orchestrator.orchestrator.errors import CommandExecutionError

logger = logging.getLogger(__name__)

STDERR_EXCERPT_CHARS = 600
TIMEOUT_EXIT_CODE = 124


class SubprocessCommandBackend:
    """Run commands as child processes with a monotonic timeout."""

    def __init__(
        self,
        *,
        command_prefix: str = "",
        default_timeout_ms: int | None = None,
        poll_interval_seconds: float = 0.05,
        env: dict[str, str] | None = None,
    ) -> None:
        self.command_prefix = tuple(shlex.split(command_prefix)) if command_prefix else ()
        self.default_timeout_ms = default_timeout_ms
        self.poll_interval_seconds = poll_interval_seconds
        self.env = env

    def run_command(
        self,
        command: str,
        args: tuple[str, ...] | list[str],
        *,
        timeout_ms: int | None = None,
    ) -> CommandRunResult:
        run_args = [*self.command_prefix, command, *args]
        return self.run_argv(run_args, timeout_ms=timeout_ms)

    def run_argv(self, run_args: list[str], *, timeout_ms: int | None = None) -> CommandRunResult:
        """Run an explicit argv without the command prefix."""

        if not run_args:
            raise CommandExecutionError("Command rendered empty argv.")
        effective_timeout_ms = timeout_ms if timeout_ms is not None else self.default_timeout_ms
        command_head = run_args[0]
        env = os.environ.copy()
        if self.env:
            env.update(self.env)

        logger.debug("Running %s (timeout_ms=%s)", shlex.join(run_args), effective_timeout_ms)
        with (
            _capture_file() as stdout_handle,
            _capture_file() as stderr_handle,
        ):
            try:
                process = subprocess.Popen(  # noqa: S603
                    run_args,
                    env=env,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                    text=True,
                )
            except FileNotFoundError as error:
                raise CommandExecutionError(
                    f"Command not found: {command_head} (ENOENT)",
                ) from error
            except PermissionError as error:
                raise CommandExecutionError(
                    f"Permission denied starting {command_head} (EACCES)",
                ) from error
            except OSError as error:
                raise CommandExecutionError(
                    f"Command failed to start: {command_head}: {error}",
                ) from error

            started = time.monotonic()
            returncode, timed_out = self._wait(process, timeout_ms=effective_timeout_ms)
            duration_ms = (time.monotonic() - started) * 1000.0

            stdout = _read_all(stdout_handle)
            stderr = _read_all(stderr_handle)

        if timed_out:
            raise CommandExecutionError(
                f"Command '{command_head}' timed out after {effective_timeout_ms}ms (ETIMEDOUT)",
                exit_code=TIMEOUT_EXIT_CODE,
                stderr=stderr,
                timed_out=True,
            )
        if returncode != 0:
            raise CommandExecutionError(
                f"Exit {returncode}: {_excerpt(stderr) or _signal_hint(returncode)}",
                exit_code=returncode,
                stderr=stderr,
            )
        return CommandRunResult(
            stdout=stdout,
            stderr=stderr,
            exit_code=returncode,
            duration_ms=duration_ms,
        )

    def _wait(
        self,
        process: subprocess.Popen[str],
        *,
        timeout_ms: int | None,
    ) -> tuple[int, bool]:
        start_monotonic = time.monotonic()
        while True:
            returncode = process.poll()
            if returncode is not None:
                return returncode, False
            if timeout_ms is not None and (time.monotonic() - start_monotonic) * 1000 >= timeout_ms:
                _terminate_process(process)
                return TIMEOUT_EXIT_CODE, True
            time.sleep(self.poll_interval_seconds)


def _capture_file() -> IO[str]:
    # Child output is not guaranteed to be UTF-8; undecodable bytes become U+FFFD.
    return tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace")


def _read_all(handle) -> str:
    handle.flush()
    handle.seek(0)
    return handle.read()


def _excerpt(text: str) -> str:
    compact = " ".join(line.strip() for line in text.splitlines() if line.strip())
    if len(compact) <= STDERR_EXCERPT_CHARS:
        return compact
    return compact[: STDERR_EXCERPT_CHARS - 3] + "..."


def _signal_hint(returncode: int) -> str:
    if returncode < 0:
        return f"terminated by signal {-returncode}"
    return "no stderr output"


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)

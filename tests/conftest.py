"""Shared test fixtures."""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

from command_orchestrator.config import Settings
from command_orchestrator.orchestrator.backend.base import CommandRunResult
from command_orchestrator.orchestrator.errors import CommandExecutionError
from command_orchestrator.storage.state_store import StateStore

DEMO_AGENT_PREFIX = f"{sys.executable} -m command_orchestrator.orchestrator.backend.demo_agent"


class ScriptedBackend:
    """Backend replaying a fixed list of outcomes; the last one repeats."""

    def __init__(self, outcomes: Sequence[str | BaseException]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, tuple[str, ...], int | None]] = []

    def run_command(
        self,
        command: str,
        args: tuple[str, ...] | list[str],
        *,
        timeout_ms: int | None = None,
    ) -> CommandRunResult:
        self.calls.append((command, tuple(args), timeout_ms))
        return self._next()

    def run_argv(self, run_args: list[str], *, timeout_ms: int | None = None) -> CommandRunResult:
        self.calls.append((run_args[0], tuple(run_args[1:]), timeout_ms))
        return self._next()

    def _next(self) -> CommandRunResult:
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return CommandRunResult(stdout=outcome, stderr="", exit_code=0, duration_ms=1.0)


@pytest.fixture()
def record_output():
    """Build noisy stdout with one embedded JSON record."""

    def _build(command: str, **extra: object) -> str:
        payload = {"status": "success", "command": command, **extra}
        return f"[info] start\n{json.dumps(payload)}\n[info] done\n"

    return _build


@pytest.fixture()
def scripted_backend():
    def _build(*outcomes: str | BaseException) -> ScriptedBackend:
        return ScriptedBackend(outcomes)

    return _build


@pytest.fixture()
def exit_error():
    def _build(code: int, stderr: str = "bad flag") -> CommandExecutionError:
        return CommandExecutionError(f"Exit {code}: {stderr}", exit_code=code, stderr=stderr)

    return _build


@pytest.fixture()
def state_store(tmp_path: Path):
    store = StateStore(tmp_path / "state.db")
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture()
def demo_agent_env(monkeypatch, tmp_path: Path) -> Path:
    """Point the CLI at the demo agent and an isolated database."""

    db_path = tmp_path / "orchestrator.db"
    monkeypatch.setenv("COMMAND_ORCHESTRATOR_COMMAND_PREFIX", DEMO_AGENT_PREFIX)
    monkeypatch.setenv("COMMAND_ORCHESTRATOR_DB_PATH", str(db_path))
    return db_path


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=tmp_path / "orchestrator.db")


@pytest.fixture()
def demo_agent_prefix() -> str:
    return DEMO_AGENT_PREFIX

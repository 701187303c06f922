"""Controllers for command-orchestrator CLI invocations."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from command_orchestrator.config import Settings
from command_orchestrator.services import CommandOrchestrator, build_components
from command_orchestrator.storage.state_store import StateStore


@dataclass(slots=True)
class DispatchCommand:
    """CLI input for one orchestrated invocation."""

    db_path: Path | None
    command: str
    args: tuple[str, ...]


@dataclass(slots=True)
class DispatchOutcome:
    record: dict[str, Any]

    @property
    def success(self) -> bool:
        return self.record.get("status") == "success"

    @property
    def line(self) -> str:
        return json.dumps(self.record, ensure_ascii=False, default=str)


class OrchestratorCliController:
    """Builds the orchestrator from settings and runs one invocation."""

    def dispatch(self, command: DispatchCommand) -> DispatchOutcome:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _store(settings) as store:
            orchestrator = CommandOrchestrator(
                build_components(settings, store=store),
                top_commands=settings.observability.top_commands,
            )
            record = orchestrator.dispatch(command.command, command.args)
        return DispatchOutcome(record=record)


@contextmanager
def _store(settings: Settings) -> Iterator[StateStore]:
    store = StateStore(settings.db_path)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()

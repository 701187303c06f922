"""In-process action registry for plans that never leave the process."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable

from command_orchestrator.orchestrator.errors import CommandExecutionError

ActionHandler = Callable[[tuple[str, ...]], str]


class ActionRegistry:
    """Named in-process actions returning raw text output."""

    def __init__(self) -> None:
        self._actions: dict[str, ActionHandler] = {}
        self._lock = threading.Lock()

    def register(self, name: str, handler: ActionHandler) -> None:
        with self._lock:
            self._actions[name] = handler

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._actions)

    def run(self, name: str, params: tuple[str, ...]) -> str:
        """Invoke a registered action; unknown names fail like a missing binary."""

        with self._lock:
            handler = self._actions.get(name)
        if handler is None:
            raise CommandExecutionError(f"Action not found: {name}")
        return handler(params)


def smoke_action(params: tuple[str, ...]) -> str:
    """Built-in browser-test action: report the requested target as checked."""

    target = params[0] if params else "default"
    return json.dumps(
        {"status": "success", "action": "smoke", "target": target, "checks": ["reachable"]},
        sort_keys=True,
    )


def default_action_registry() -> ActionRegistry:
    registry = ActionRegistry()
    registry.register("smoke", smoke_action)
    return registry

"""Plan execution backends."""

from command_orchestrator.orchestrator.backend.actions import (
    ActionRegistry,
    default_action_registry,
)
from command_orchestrator.orchestrator.backend.base import CommandBackend, CommandRunResult
from command_orchestrator.orchestrator.backend.subprocess_backend import SubprocessCommandBackend

__all__ = [
    "ActionRegistry",
    "CommandBackend",
    "CommandRunResult",
    "SubprocessCommandBackend",
    "default_action_registry",
]

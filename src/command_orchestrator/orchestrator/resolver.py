"""Command resolution: static dispatch table plus runtime discovery fallback."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from command_orchestrator.orchestrator.backend.base import CommandBackend
from command_orchestrator.orchestrator.errors import CommandExecutionError
from command_orchestrator.orchestrator.models import Plan, PlanKind
from command_orchestrator.storage.common import to_iso, utc_now
from command_orchestrator.storage.state_store import StateStore, load_mapping

logger = logging.getLogger(__name__)

DISCOVERED_STATE_KEY = "resolver.discovered"
DISCOVERY_TIMEOUT_MS = 10_000

PlanFactory = Callable[[tuple[str, ...]], Plan]


def _subprocess(command: str, fixed_args: tuple[str, ...] | None = None) -> PlanFactory:
    def build(args: tuple[str, ...]) -> Plan:
        return Plan(
            kind=PlanKind.SUBPROCESS,
            command=command,
            args=fixed_args if fixed_args is not None else args,
        )

    return build


def _script(command: str, program: tuple[str, ...]) -> PlanFactory:
    def build(_: tuple[str, ...]) -> Plan:
        return Plan(kind=PlanKind.SCRIPT, command=command, program=program)

    return build


def _browser_action(args: tuple[str, ...]) -> Plan:
    action = args[0] if args else "smoke"
    return Plan(kind=PlanKind.ACTION, command="browser-test", action=action, args=args[1:])


DISPATCH_TABLE: dict[str, PlanFactory] = {
    "prepare": _subprocess("prepare"),
    "audit": _subprocess("audit", ()),
    "optimize": _subprocess("optimize", ()),
    "release": _subprocess("release", ()),
    "cleanup": _subprocess("cleanup"),
    "browser-test": _browser_action,
    "self-heal": _subprocess("audit", ("--auto-fix",)),
    "auto-fix": _subprocess("self-heal", ()),
    "rollback": _subprocess("rollback"),
    "deploy": _subprocess("deploy"),
    "db-backup": _subprocess("db-backup"),
    "db-restore": _subprocess("db-restore"),
    "agent-update": _script("agent-update", ("node", "scripts/auto-update-agent.js")),
    "docs-update": _script("docs-update", ("node", "scripts/auto-update-docs.js")),
    "status-update": _script("status-update", ("node", "scripts/auto-update-docs.js")),
    "system-check": _subprocess("audit", ("-p", "default")),
}


class CommandResolver(Protocol):
    """Capability interface turning a symbolic command into a plan."""

    def resolve(
        self,
        command: str,
        args: tuple[str, ...],
        *,
        allow_discovery: bool = True,
    ) -> Plan | None:
        """Return a plan, or ``None`` when the command is unresolvable.

        With ``allow_discovery`` false no backend process may be started.
        """


class StaticCommandResolver:
    """Registry-only resolver over the dispatch table."""

    def __init__(self, table: dict[str, PlanFactory] | None = None) -> None:
        self.table = dict(DISPATCH_TABLE if table is None else table)

    def known_commands(self) -> list[str]:
        return sorted(self.table)

    def resolve(
        self,
        command: str,
        args: tuple[str, ...],
        *,
        allow_discovery: bool = True,
    ) -> Plan | None:
        factory = self.table.get(command)
        if factory is None:
            return None
        return factory(args)


@dataclass(slots=True)
class DiscoveredCommand:
    """Help-text description recorded for a discovered command."""

    command: str
    description: str
    discovered_at: str


class DiscoveringCommandResolver:
    """Static resolver with a help-text scraping fallback.

    Unknown commands are run once with the help flag when allowed; a parseable usage text
    registers the command for reuse, persisted under its own state key.
    """

    def __init__(
        self,
        *,
        static: StaticCommandResolver,
        backend: CommandBackend,
        store: StateStore | None = None,
        help_flag: str = "--help",
        timeout_ms: int = DISCOVERY_TIMEOUT_MS,
    ) -> None:
        self.static = static
        self.backend = backend
        self.store = store
        self.help_flag = help_flag
        self.timeout_ms = timeout_ms
        self._lock = threading.Lock()
        self._discovered: dict[str, DiscoveredCommand] = {}
        for command, raw in load_mapping(store, DISCOVERED_STATE_KEY).items():
            if isinstance(raw, dict) and isinstance(raw.get("description"), str):
                self._discovered[command] = DiscoveredCommand(
                    command=command,
                    description=raw["description"],
                    discovered_at=str(raw.get("discovered_at", "")),
                )

    def discovered(self) -> list[DiscoveredCommand]:
        with self._lock:
            return sorted(self._discovered.values(), key=lambda item: item.command)

    def is_discovered(self, command: str) -> bool:
        with self._lock:
            return command in self._discovered

    def resolve(
        self,
        command: str,
        args: tuple[str, ...],
        *,
        allow_discovery: bool = True,
    ) -> Plan | None:
        plan = self.static.resolve(command, args)
        if plan is not None:
            return plan
        if self.is_discovered(command) or (allow_discovery and self._discover(command)):
            return Plan(kind=PlanKind.SUBPROCESS, command=command, args=args, discovered=True)
        return None

    def _discover(self, command: str) -> bool:
        try:
            result = self.backend.run_command(
                command,
                (self.help_flag,),
                timeout_ms=self.timeout_ms,
            )
        except CommandExecutionError as error:
            logger.warning("Command discovery failed for %s: %s", command, error)
            return False
        description = parse_help_description(result.stdout)
        if description is None:
            logger.info("Command discovery found no usage text for %s", command)
            return False
        with self._lock:
            self._discovered[command] = DiscoveredCommand(
                command=command,
                description=description,
                discovered_at=to_iso(utc_now()),
            )
            self._persist()
        logger.info("Discovered command %s: %s", command, description)
        return True

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save(
            DISCOVERED_STATE_KEY,
            {
                item.command: {
                    "description": item.description,
                    "discovered_at": item.discovered_at,
                }
                for item in self._discovered.values()
            },
        )


def parse_help_description(help_text: str) -> str | None:
    """Pick a one-line description out of help/usage output."""

    lines = [line.strip() for line in help_text.splitlines() if line.strip()]
    usage_index = next(
        (index for index, line in enumerate(lines) if line.lower().startswith("usage")),
        None,
    )
    if usage_index is None:
        return None
    for line in lines[usage_index + 1 :]:
        if not line.startswith(("{", "-")):
            return line
    return lines[usage_index]

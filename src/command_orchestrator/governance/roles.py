"""Static role policy table and per-role call quota tracking."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from command_orchestrator.storage.common import from_iso, to_iso, utc_now
from command_orchestrator.storage.state_store import StateStore, load_mapping

ADMIN_ROLE = "admin"
ALL_COMMANDS = "*"
QUOTA_STATE_KEY = "governance.quota_usage"

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RolePolicy:
    """Commands a role may issue and per-command call limits."""

    role: str
    allowed_commands: frozenset[str]
    call_limits: dict[str, int] = field(default_factory=dict)
    allow_discovered: bool = False

    def allows(self, command: str, *, discovered: bool = False) -> bool:
        if ALL_COMMANDS in self.allowed_commands:
            return True
        if discovered:
            return self.allow_discovered
        return command in self.allowed_commands

    def limit_for(self, command: str) -> int | None:
        return self.call_limits.get(command)


_DEVELOPER_COMMANDS = frozenset(
    {
        "prepare",
        "audit",
        "optimize",
        "release",
        "cleanup",
        "browser-test",
        "self-heal",
        "auto-fix",
        "rollback",
        "deploy",
        "db-backup",
        "db-restore",
        "agent-update",
        "docs-update",
        "status-update",
        "system-check",
    },
)

DEFAULT_ROLE_POLICIES: dict[str, RolePolicy] = {
    ADMIN_ROLE: RolePolicy(
        role=ADMIN_ROLE,
        allowed_commands=frozenset({ALL_COMMANDS}),
        allow_discovered=True,
    ),
    "developer": RolePolicy(
        role="developer",
        allowed_commands=_DEVELOPER_COMMANDS,
        call_limits={
            "release": 3,
            "deploy": 3,
            "optimize": 10,
            "self-heal": 5,
            "db-restore": 2,
        },
        allow_discovered=True,
    ),
    "viewer": RolePolicy(
        role="viewer",
        allowed_commands=frozenset({"audit", "system-check", "status-update"}),
        call_limits={"audit": 20},
    ),
}


class RolePolicyTable:
    """Pure role -> policy lookup; no side effects."""

    def __init__(self, policies: dict[str, RolePolicy] | None = None) -> None:
        self._policies = dict(DEFAULT_ROLE_POLICIES if policies is None else policies)

    def roles(self) -> list[str]:
        return sorted(self._policies)

    def has_role(self, role: str) -> bool:
        return role in self._policies

    def policy_for(self, role: str) -> RolePolicy | None:
        return self._policies.get(role)

    def is_allowed(self, role: str, command: str, *, discovered: bool = False) -> bool:
        policy = self._policies.get(role)
        return policy is not None and policy.allows(command, discovered=discovered)

    def call_limit(self, role: str, command: str) -> int | None:
        policy = self._policies.get(role)
        if policy is None:
            return None
        return policy.limit_for(command)


class QuotaTracker:
    """Sliding-window call counter per role and command."""

    def __init__(
        self,
        *,
        window: timedelta = timedelta(hours=24),
        store: StateStore | None = None,
    ) -> None:
        self.window = window
        self.store = store
        self._lock = threading.Lock()
        self._usage: dict[str, list[datetime]] = {}
        for usage_key, stamps in load_mapping(store, QUOTA_STATE_KEY).items():
            if not isinstance(stamps, list):
                logger.warning("Skipping corrupt quota entry for %s", usage_key)
                continue
            parsed: list[datetime] = []
            for stamp in stamps:
                try:
                    parsed.append(from_iso(stamp))
                except (TypeError, ValueError) as error:
                    logger.warning("Skipping corrupt quota stamp for %s: %s", usage_key, error)
            self._usage[usage_key] = parsed

    def used(self, role: str, command: str, *, now: datetime | None = None) -> int:
        with self._lock:
            return len(self._prune(_usage_key(role, command), now or utc_now()))

    def remaining(self, role: str, command: str, limit: int, *, now: datetime | None = None) -> int:
        return max(0, limit - self.used(role, command, now=now))

    def consume(self, role: str, command: str, *, now: datetime | None = None) -> int:
        """Record one call and return the in-window count including it."""

        current = now or utc_now()
        key = _usage_key(role, command)
        with self._lock:
            stamps = self._prune(key, current)
            stamps.append(current)
            self._persist()
            return len(stamps)

    def try_consume(
        self,
        role: str,
        command: str,
        limit: int,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Record one call only if the window still has room; check and record share one lock."""

        current = now or utc_now()
        key = _usage_key(role, command)
        with self._lock:
            stamps = self._prune(key, current)
            if len(stamps) >= limit:
                return False
            stamps.append(current)
            self._persist()
            return True

    def _prune(self, key: str, now: datetime) -> list[datetime]:
        cutoff = now - self.window
        stamps = [stamp for stamp in self._usage.get(key, []) if stamp > cutoff]
        self._usage[key] = stamps
        return stamps

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save(
            QUOTA_STATE_KEY,
            {key: [to_iso(stamp) for stamp in stamps] for key, stamps in self._usage.items()},
        )


def _usage_key(role: str, command: str) -> str:
    return f"{role}:{command}"

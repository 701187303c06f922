"""Active actor (role and user) persisted between CLI invocations."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from command_orchestrator.storage.state_store import StateStore, load_mapping

SESSION_STATE_KEY = "governance.session"


@dataclass(frozen=True, slots=True)
class Actor:
    role: str
    user: str


class ActorSession:
    """Holds the role set by ``set-role``; defaults apply until one is set."""

    def __init__(
        self,
        *,
        default_role: str,
        default_user: str,
        store: StateStore | None = None,
    ) -> None:
        self.store = store
        self._lock = threading.Lock()
        raw = load_mapping(store, SESSION_STATE_KEY)
        role = raw.get("role")
        user = raw.get("user")
        self._actor = Actor(
            role=role if isinstance(role, str) and role else default_role,
            user=user if isinstance(user, str) and user else default_user,
        )

    @property
    def actor(self) -> Actor:
        with self._lock:
            return self._actor

    def set_actor(self, role: str, user: str | None = None) -> Actor:
        with self._lock:
            self._actor = Actor(role=role, user=user or self._actor.user)
            if self.store is not None:
                self.store.save(
                    SESSION_STATE_KEY,
                    {"role": self._actor.role, "user": self._actor.user},
                )
            return self._actor

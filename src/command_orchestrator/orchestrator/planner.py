"""Command planner composing policy, governance and command resolution."""

from __future__ import annotations

import logging
from dataclasses import replace

from command_orchestrator.governance.approvals import GovernanceSystem
from command_orchestrator.governance.roles import QuotaTracker, RolePolicyTable
from command_orchestrator.orchestrator.errors import (
    AuthorizationError,
    GovernanceBlockedError,
    LimitExceededError,
    UnknownCommandError,
)
from command_orchestrator.orchestrator.models import Plan
from command_orchestrator.orchestrator.resolver import CommandResolver

logger = logging.getLogger(__name__)

GOVERNANCE_COMMANDS: frozenset[str] = frozenset(
    {"set-role", "approve", "reject", "pending-approvals"},
)
INSPECTION_COMMANDS: frozenset[str] = frozenset(
    {"metrics", "learning-stats", "retry-queue", "snapshots"},
)
CONTROL_COMMANDS = GOVERNANCE_COMMANDS | INSPECTION_COMMANDS


class CommandPlanner:
    """Turn ``(command, args, role)`` into an executable plan or refuse it.

    Checks run in order: role lookup, resolution (static table, then discovery
    when the role may run discovered commands), role authorization, call quota,
    governance approval. Quota is consumed atomically once every other check
    has passed.
    """

    def __init__(
        self,
        *,
        resolver: CommandResolver,
        policies: RolePolicyTable,
        governance: GovernanceSystem,
        quotas: QuotaTracker,
        default_timeout_ms: int | None = None,
    ) -> None:
        self.resolver = resolver
        self.policies = policies
        self.governance = governance
        self.quotas = quotas
        self.default_timeout_ms = default_timeout_ms

    @staticmethod
    def is_control_command(command: str) -> bool:
        return command in CONTROL_COMMANDS

    def build_plan(
        self,
        command: str,
        args: tuple[str, ...] | list[str],
        actor_role: str,
        actor_user: str = "local",
    ) -> Plan:
        """Resolve and authorize one invocation."""

        if self.is_control_command(command):
            raise ValueError(f"Control command {command!r} is not plannable.")
        call_args = tuple(args)

        policy = self.policies.policy_for(actor_role)
        if policy is None:
            raise AuthorizationError(
                f"Unknown role: {actor_role}",
                role=actor_role,
                command=command,
            )

        plan = self.resolver.resolve(
            command,
            call_args,
            allow_discovery=policy.allows(command, discovered=True),
        )
        if plan is None:
            raise UnknownCommandError(command)

        if not self.policies.is_allowed(actor_role, command, discovered=plan.discovered):
            raise AuthorizationError(
                f"Role {actor_role} is not allowed to run {command}",
                role=actor_role,
                command=command,
            )

        limit = self.policies.call_limit(actor_role, command)
        if limit is not None and self.quotas.used(actor_role, command) >= limit:
            raise _limit_exceeded(command, actor_role, limit)

        self._ensure_governance(command, call_args, actor_user, actor_role)

        if limit is not None and not self.quotas.try_consume(actor_role, command, limit):
            raise _limit_exceeded(command, actor_role, limit)
        if plan.timeout_ms is None and self.default_timeout_ms is not None:
            plan = replace(plan, timeout_ms=self.default_timeout_ms)
        logger.debug("Planned %s as %s for role %s", command, plan.kind.value, actor_role)
        return plan

    def _ensure_governance(
        self,
        command: str,
        args: tuple[str, ...],
        user: str,
        role: str,
    ) -> None:
        if not self.governance.requires_approval(command):
            return
        consumed = self.governance.consume_approval(command, args, user)
        if consumed is not None:
            logger.info("Using approval %s for %s", consumed.id, command)
            return
        decision = self.governance.can_proceed(command, args, user, role)
        if decision.allowed:
            return
        raise GovernanceBlockedError(
            f"{command} requires admin approval; pending request {decision.request_id}",
            request_id=decision.request_id or "",
            command=command,
        )


def _limit_exceeded(command: str, role: str, limit: int) -> LimitExceededError:
    return LimitExceededError(
        f"Call limit reached for {command} as {role} ({limit} per window)",
        role=role,
        command=command,
        limit=limit,
    )

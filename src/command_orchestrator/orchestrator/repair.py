"""Repair strategy table keyed by classified error kind."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from command_orchestrator.orchestrator.models import (
    ErrorClassification,
    ErrorKind,
    Plan,
    PlanKind,
    RepairPlan,
    RepairType,
)

DEFAULT_FALLBACK_COMMANDS: dict[str, str] = {
    "prepare": "audit",
    "optimize": "audit",
    "docs-update": "status-update",
}


@dataclass(slots=True)
class RepairPolicy:
    """Tunables for repair decisions."""

    max_attempts: int = 3
    extended_timeout_ms: int = 30_000
    short_timeout_ms: int = 10_000
    help_flag: str = "--help"
    force_flag: str = "--force"
    fallback_commands: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_FALLBACK_COMMANDS),
    )


class RepairStrategyEngine:
    """Propose an alternate plan for a failed one.

    The engine never touches ``retry_count``: the executor bumps it on the plan
    it actually runs, so repeated classification cannot bypass the ceiling.
    """

    def __init__(self, policy: RepairPolicy | None = None) -> None:
        self.policy = policy or RepairPolicy()

    def propose(  # noqa: PLR0911
        self,
        classification: ErrorClassification,
        plan: Plan,
    ) -> RepairPlan | None:
        """Return a repair candidate, or ``None`` when the failure is fatal."""

        if plan.retry_count >= self.policy.max_attempts:
            return None
        attempt_label = f"({plan.retry_count + 1}/{self.policy.max_attempts})"

        kind = classification.kind
        if kind == ErrorKind.TIMEOUT:
            extended_ms = max(self.policy.extended_timeout_ms, (plan.timeout_ms or 0) * 2)
            return RepairPlan(
                type=RepairType.RETRY,
                plan=replace(plan, timeout_ms=extended_ms),
                description=f"Timeout - retry with timeout {extended_ms}ms {attempt_label}",
            )

        if kind == ErrorKind.EXIT_CODE:
            if classification.exit_code != 1:
                return None
            # TODO: confirm exit code 1 means bad arguments for every wrapped command.
            return RepairPlan(
                type=RepairType.ALTERNATIVE,
                plan=replace(plan, args=(self.policy.help_flag,)),
                description=(
                    f"Exit code 1 - retry with {self.policy.help_flag} instead of original "
                    f"arguments {attempt_label}"
                ),
            )

        if kind == ErrorKind.FILE_NOT_FOUND:
            fallback = self.policy.fallback_commands.get(plan.command)
            if fallback is None:
                return None
            return RepairPlan(
                type=RepairType.FALLBACK,
                plan=replace(
                    plan,
                    kind=PlanKind.SUBPROCESS,
                    command=fallback,
                    args=(),
                    program=(),
                    action=None,
                ),
                description=(
                    f"File not found - fall back from {plan.command} to {fallback} "
                    f"{attempt_label}"
                ),
            )

        if kind == ErrorKind.PERMISSION:
            args = plan.args
            if self.policy.force_flag not in args:
                args = (*args, self.policy.force_flag)
            return RepairPlan(
                type=RepairType.RETRY,
                plan=replace(plan, args=args),
                description=(
                    f"Permission error - retry with {self.policy.force_flag} {attempt_label}"
                ),
            )

        if kind == ErrorKind.NETWORK:
            return RepairPlan(
                type=RepairType.RETRY,
                plan=replace(plan, timeout_ms=self.policy.short_timeout_ms),
                description=(
                    f"Network error - retry with shorter timeout "
                    f"{self.policy.short_timeout_ms}ms {attempt_label}"
                ),
            )

        return None

"""Use-case service wiring planner, executor, governance and observability."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from command_orchestrator.config import Settings
from command_orchestrator.governance.approvals import GovernanceSystem
from command_orchestrator.governance.roles import QuotaTracker, RolePolicyTable
from command_orchestrator.governance.session import ActorSession
from command_orchestrator.observability.learning import LearningEngine, LearningSettings
from command_orchestrator.observability.metrics import MetricsRecorder
from command_orchestrator.observability.observer import FanOutObserver
from command_orchestrator.orchestrator.backend import (
    ActionRegistry,
    CommandBackend,
    SubprocessCommandBackend,
    default_action_registry,
)
from command_orchestrator.orchestrator.errors import (
    GovernanceBlockedError,
    OrchestratorError,
    RepairFailedError,
)
from command_orchestrator.orchestrator.executor import CommandExecutor
from command_orchestrator.orchestrator.planner import CommandPlanner
from command_orchestrator.orchestrator.repair import RepairPolicy, RepairStrategyEngine
from command_orchestrator.orchestrator.resolver import (
    CommandResolver,
    DiscoveringCommandResolver,
    StaticCommandResolver,
)
from command_orchestrator.orchestrator.snapshots import SnapshotManager
from command_orchestrator.storage.common import to_iso
from command_orchestrator.storage.state_store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_REJECT_REASON = "rejected via CLI"


@dataclass(slots=True)
class OrchestratorComponents:
    """Everything one orchestrator instance needs, exposed for tests."""

    planner: CommandPlanner
    executor: CommandExecutor
    governance: GovernanceSystem
    policies: RolePolicyTable
    session: ActorSession
    metrics: MetricsRecorder
    learning: LearningEngine
    snapshots: SnapshotManager


def build_components(
    settings: Settings,
    *,
    store: StateStore | None = None,
    backend: CommandBackend | None = None,
    actions: ActionRegistry | None = None,
) -> OrchestratorComponents:
    """Assemble the default component graph from settings."""

    execution = settings.execution
    observability = settings.observability
    backend = backend or SubprocessCommandBackend(
        command_prefix=execution.command_prefix,
        default_timeout_ms=execution.default_timeout_ms,
    )
    static = StaticCommandResolver()
    resolver: CommandResolver = static
    if execution.discovery_enabled:
        resolver = DiscoveringCommandResolver(
            static=static,
            backend=backend,
            store=store,
            help_flag=execution.help_flag,
        )

    policies = RolePolicyTable()
    governance = GovernanceSystem(
        store=store,
        log_retention=settings.governance.approval_log_retention,
    )
    metrics = MetricsRecorder(
        store=store,
        retention=observability.metrics_retention,
        recent_error_window=timedelta(hours=observability.recent_error_window_hours),
    )
    learning = LearningEngine(
        store=store,
        settings=LearningSettings(
            retention=observability.learning_retention,
            min_samples=observability.min_learning_samples,
            promotion_threshold=observability.promotion_threshold,
            problematic_failure_rate=observability.problematic_failure_rate,
            problematic_min_samples=observability.problematic_min_samples,
        ),
    )
    snapshots = SnapshotManager(capacity=execution.snapshot_capacity)
    planner = CommandPlanner(
        resolver=resolver,
        policies=policies,
        governance=governance,
        quotas=QuotaTracker(
            window=timedelta(hours=settings.governance.quota_window_hours),
            store=store,
        ),
        default_timeout_ms=execution.default_timeout_ms,
    )
    executor = CommandExecutor(
        backend=backend,
        snapshots=snapshots,
        repair_engine=RepairStrategyEngine(
            RepairPolicy(
                max_attempts=execution.max_repair_attempts,
                extended_timeout_ms=execution.extended_timeout_ms,
                short_timeout_ms=execution.short_timeout_ms,
                help_flag=execution.help_flag,
                force_flag=execution.force_flag,
            ),
        ),
        actions=actions or default_action_registry(),
        observer=FanOutObserver(metrics, learning),
        max_attempts=execution.max_repair_attempts,
        default_timeout_ms=execution.default_timeout_ms,
    )
    session = ActorSession(
        default_role=settings.governance.default_role,
        default_user=settings.governance.default_user,
        store=store,
    )
    return OrchestratorComponents(
        planner=planner,
        executor=executor,
        governance=governance,
        policies=policies,
        session=session,
        metrics=metrics,
        learning=learning,
        snapshots=snapshots,
    )


class CommandOrchestrator:
    """Turns one ``command [args...]`` invocation into exactly one record."""

    def __init__(self, components: OrchestratorComponents, *, top_commands: int = 5) -> None:
        self.components = components
        self.top_commands = top_commands

    def dispatch(self, command: str, args: tuple[str, ...] | list[str] = ()) -> dict[str, Any]:
        call_args = tuple(args)
        if self.components.planner.is_control_command(command):
            return self._run_control(command, call_args)
        return self._run_command(command, call_args)

    def _run_command(self, command: str, args: tuple[str, ...]) -> dict[str, Any]:
        actor = self.components.session.actor
        try:
            plan = self.components.planner.build_plan(command, args, actor.role, actor.user)
            result = self.components.executor.run(
                plan,
                context={"role": actor.role, "user": actor.user},
            )
        except GovernanceBlockedError as error:
            record = _error_record(command, str(error))
            record["requestId"] = error.request_id
            return record
        except RepairFailedError as error:
            record = _error_record(command, str(error))
            record["attempts"] = error.attempts
            return record
        except OrchestratorError as error:
            return _error_record(command, str(error))

        record = result.to_record()
        if result.payload.get("data") is None:
            record["status"] = "error"
            record["message"] = f"Invalid command output: {result.payload.get('parseError')}"
        return record

    def _run_control(self, command: str, args: tuple[str, ...]) -> dict[str, Any]:
        handlers = {
            "set-role": self._set_role,
            "approve": self._approve,
            "reject": self._reject,
            "pending-approvals": self._pending_approvals,
            "metrics": self._metrics,
            "learning-stats": self._learning_stats,
            "retry-queue": self._retry_queue,
            "snapshots": self._snapshots,
        }
        return handlers[command](args)

    def _set_role(self, args: tuple[str, ...]) -> dict[str, Any]:
        if not args:
            return _error_record("set-role", "Usage: set-role <role> [user]")
        role = args[0]
        if not self.components.policies.has_role(role):
            known = ", ".join(self.components.policies.roles())
            return _error_record("set-role", f"Unknown role: {role} (known: {known})")
        actor = self.components.session.set_actor(role, args[1] if len(args) > 1 else None)
        logger.info("Active role set to %s for %s", actor.role, actor.user)
        return {"status": "success", "command": "set-role", "role": actor.role, "user": actor.user}

    def _approve(self, args: tuple[str, ...]) -> dict[str, Any]:
        if not args:
            return _error_record("approve", "Usage: approve <requestId>")
        request_id = args[0]
        actor = self.components.session.actor
        governance = self.components.governance
        if not governance.approve_command(request_id, actor.role, approver=actor.user):
            return _error_record(
                "approve",
                f"Cannot approve {request_id}: unknown request, not pending, "
                f"or role {actor.role} is not admin",
            )
        request = governance.get_request(request_id)
        return {
            "status": "success",
            "command": "approve",
            "requestId": request_id,
            "request": request.to_dict() if request is not None else None,
        }

    def _reject(self, args: tuple[str, ...]) -> dict[str, Any]:
        if not args:
            return _error_record("reject", "Usage: reject <requestId> [reason]")
        request_id = args[0]
        reason = " ".join(args[1:]).strip() or DEFAULT_REJECT_REASON
        actor = self.components.session.actor
        governance = self.components.governance
        if not governance.reject_command(request_id, actor.role, reason, approver=actor.user):
            return _error_record(
                "reject",
                f"Cannot reject {request_id}: unknown request, not pending, "
                f"or role {actor.role} is not admin",
            )
        request = governance.get_request(request_id)
        return {
            "status": "success",
            "command": "reject",
            "requestId": request_id,
            "request": request.to_dict() if request is not None else None,
        }

    def _pending_approvals(self, _: tuple[str, ...]) -> dict[str, Any]:
        pending = self.components.governance.list_pending()
        return {
            "status": "success",
            "command": "pending-approvals",
            "count": len(pending),
            "requests": [request.to_dict() for request in pending],
        }

    def _metrics(self, args: tuple[str, ...]) -> dict[str, Any]:
        metrics = self.components.metrics
        if args:
            return {
                "status": "success",
                "command": "metrics",
                "metrics": metrics.get_command_metrics(args[0]).to_dict(),
            }
        return {
            "status": "success",
            "command": "metrics",
            "metrics": metrics.get_overall_metrics(top_n=self.top_commands).to_dict(),
        }

    def _learning_stats(self, _: tuple[str, ...]) -> dict[str, Any]:
        learning = self.components.learning
        return {
            "status": "success",
            "command": "learning-stats",
            "stats": learning.get_learning_stats(),
            "patterns": learning.analyze_command_patterns().to_dict(),
        }

    def _retry_queue(self, _: tuple[str, ...]) -> dict[str, Any]:
        learning = self.components.learning
        return {
            "status": "success",
            "command": "retry-queue",
            "entries": [entry.to_dict() for entry in learning.retry_queue()],
            "due": [entry.command for entry in learning.due_retries()],
        }

    def _snapshots(self, _: tuple[str, ...]) -> dict[str, Any]:
        return {
            "status": "success",
            "command": "snapshots",
            "snapshots": [
                {
                    "id": snapshot.id,
                    "timestamp": to_iso(snapshot.timestamp),
                    "description": snapshot.description,
                }
                for snapshot in self.components.snapshots.list_snapshots()
            ],
        }


def _error_record(command: str, message: str) -> dict[str, Any]:
    return {"status": "error", "command": command, "message": message}

"""Plan executor with classification, bounded repair and snapshot rollback."""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from command_orchestrator.orchestrator.backend.actions import ActionRegistry
from command_orchestrator.orchestrator.backend.base import CommandBackend, CommandRunResult
from command_orchestrator.orchestrator.errors import (
    CommandExecutionError,
    RepairFailedError,
    SnapshotNotFoundError,
)
from command_orchestrator.orchestrator.failure_classifier import classify_error
from command_orchestrator.orchestrator.models import (
    ErrorClassification,
    ExecutionEvent,
    ExecutionResult,
    ExecutionStatus,
    Plan,
    PlanKind,
    RepairPlan,
)
from command_orchestrator.orchestrator.repair import RepairStrategyEngine
from command_orchestrator.orchestrator.snapshots import SnapshotManager
from command_orchestrator.orchestrator.validator import parse_output
from command_orchestrator.storage.common import utc_now

logger = logging.getLogger(__name__)

StateProvider = Callable[[], Any]
RestoreCallback = Callable[[Any], None]


class CommandExecutor:
    """Runs plans and repairs failed attempts up to ``max_attempts`` retries."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: CommandBackend,
        snapshots: SnapshotManager,
        repair_engine: RepairStrategyEngine,
        actions: ActionRegistry | None = None,
        observer: Any | None = None,
        max_attempts: int = 3,
        default_timeout_ms: int | None = None,
    ) -> None:
        self.backend = backend
        self.snapshots = snapshots
        self.repair_engine = repair_engine
        self.actions = actions or ActionRegistry()
        self.observer = observer
        self.max_attempts = max_attempts
        self.default_timeout_ms = default_timeout_ms

    def run(
        self,
        plan: Plan,
        *,
        state_provider: StateProvider | None = None,
        on_restore: RestoreCallback | None = None,
        context: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """Execute ``plan``; raise the original error when it is not repairable.

        Each attempt is preceded by a snapshot of the caller's state (the plan
        itself by default). A repair restores that snapshot, then runs the
        repaired plan with ``retry_count`` bumped by one.
        """

        current = plan
        last_repair: RepairPlan | None = None
        started_total = time.monotonic()

        for attempt in range(self.max_attempts + 1):
            state = state_provider() if state_provider is not None else current.to_dict()
            captured = copy.deepcopy(state)
            snapshot_id = self.snapshots.create_snapshot(
                state,
                description=f"before {current.command} attempt {attempt + 1}",
            )
            started = time.monotonic()
            try:
                run_result = self._run_plan(current)
            except CommandExecutionError as error:
                classification = classify_error(error)
                self._emit(
                    plan=plan,
                    current=current,
                    started=started,
                    success=False,
                    error=error,
                    classification=classification,
                    context=context,
                )
                repair = (
                    self.repair_engine.propose(classification, current)
                    if attempt < self.max_attempts
                    else None
                )
                if repair is None:
                    if last_repair is None:
                        raise
                    raise RepairFailedError(
                        f"Repair failed after {attempt} retr{'y' if attempt == 1 else 'ies'} "
                        f"({last_repair.description}): {error}",
                        attempts=attempt + 1,
                        last_error=error,
                    ) from error

                if on_restore is not None:
                    on_restore(self._restore(snapshot_id, captured))
                logger.info(
                    "Repairing %s after %s error: %s",
                    current.command,
                    classification.kind.value,
                    repair.description,
                )
                current = replace(repair.plan, retry_count=current.retry_count + 1)
                last_repair = repair
                continue

            parsed = parse_output(run_result.stdout)
            self._emit(
                plan=plan,
                current=current,
                started=started,
                success=True,
                output=parsed.record,
                context=context,
            )
            return ExecutionResult(
                status=ExecutionStatus.SUCCESS,
                command=plan.command,
                payload={
                    "output": run_result.stdout,
                    "data": parsed.record,
                    "parseError": parsed.error,
                    "attempts": attempt + 1,
                    "snapshotId": snapshot_id,
                    "durationMs": round((time.monotonic() - started_total) * 1000.0, 3),
                    "plan": current.to_dict(),
                },
                repaired=last_repair is not None,
                repair_description=last_repair.description if last_repair is not None else None,
            )

        raise AssertionError("repair loop exited without a result")

    def _restore(self, snapshot_id: str, captured: Any) -> Any:
        try:
            return self.snapshots.restore_snapshot(snapshot_id)
        except SnapshotNotFoundError:
            # Evicted by concurrent runs sharing the arena.
            logger.warning("Snapshot %s evicted; restoring local capture", snapshot_id)
            return captured

    def _run_plan(self, plan: Plan) -> CommandRunResult:
        timeout_ms = plan.timeout_ms if plan.timeout_ms is not None else self.default_timeout_ms
        if plan.kind == PlanKind.SUBPROCESS:
            return self.backend.run_command(plan.command, plan.args, timeout_ms=timeout_ms)
        if plan.kind == PlanKind.SCRIPT:
            return self.backend.run_argv([*plan.program, *plan.args], timeout_ms=timeout_ms)
        return self._run_action(plan)

    def _run_action(self, plan: Plan) -> CommandRunResult:
        started = time.monotonic()
        try:
            stdout = self.actions.run(plan.action or plan.command, plan.args)
        except CommandExecutionError:
            raise
        except Exception as error:
            raise CommandExecutionError(f"Action {plan.action} failed: {error}") from error
        return CommandRunResult(
            stdout=stdout,
            stderr="",
            exit_code=0,
            duration_ms=(time.monotonic() - started) * 1000.0,
        )

    def _emit(  # noqa: PLR0913
        self,
        *,
        plan: Plan,
        current: Plan,
        started: float,
        success: bool,
        error: BaseException | None = None,
        classification: ErrorClassification | None = None,
        output: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if self.observer is None:
            return
        try:
            self.observer.record_execution(
                ExecutionEvent(
                    command=plan.command,
                    execution_time_ms=round((time.monotonic() - started) * 1000.0, 3),
                    success=success,
                    retry_count=current.retry_count,
                    timestamp=utc_now(),
                    error_message=str(error) if error is not None else None,
                    error_kind=classification.kind if classification is not None else None,
                    args=current.args,
                    output=output,
                    context={
                        **(context or {}),
                        "executedCommand": current.command,
                        "kind": current.kind.value,
                        **(
                            {"error": classification.to_details()}
                            if classification is not None
                            else {}
                        ),
                    },
                ),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record execution metrics for %s", plan.command)

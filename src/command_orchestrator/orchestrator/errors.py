"""Error taxonomy for planning and execution."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    """Base class for orchestrator failures surfaced to callers."""


class PlanningError(OrchestratorError):
    """Planning-time refusal; never enters the repair loop."""


class AuthorizationError(PlanningError):
    """Role is not allowed to issue the command."""

    def __init__(self, message: str, *, role: str, command: str) -> None:
        super().__init__(message)
        self.role = role
        self.command = command


class LimitExceededError(PlanningError):
    """Per-role call quota for the command is exhausted."""

    def __init__(self, message: str, *, role: str, command: str, limit: int) -> None:
        super().__init__(message)
        self.role = role
        self.command = command
        self.limit = limit


class GovernanceBlockedError(PlanningError):
    """Command needs admin approval; a pending request was filed."""

    def __init__(self, message: str, *, request_id: str, command: str) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.command = command


class UnknownCommandError(PlanningError):
    """Command is neither in the dispatch table nor discoverable."""

    def __init__(self, command: str) -> None:
        super().__init__(f"Unknown command: {command}")
        self.command = command


class CommandExecutionError(OrchestratorError):
    """Backend attempt failed; the message carries classifier-relevant detail."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out


class RepairFailedError(OrchestratorError):
    """A repaired retry failed; embeds the most recent underlying failure."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class SnapshotNotFoundError(OrchestratorError):
    """Snapshot id is unknown or was evicted."""

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(f"Snapshot {snapshot_id} not found")
        self.snapshot_id = snapshot_id

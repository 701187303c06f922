"""Domain models for command plans, execution results and snapshots."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class PlanKind(str, Enum):
    """How a plan is carried out."""

    SUBPROCESS = "subprocess-command"
    ACTION = "in-process-action"
    SCRIPT = "script"


class ErrorKind(str, Enum):
    """Execution-time failure kinds produced by the classifier."""

    TIMEOUT = "timeout"
    EXIT_CODE = "exitCode"
    FILE_NOT_FOUND = "fileNotFound"
    PERMISSION = "permission"
    NETWORK = "network"
    UNKNOWN = "unknown"


class RepairType(str, Enum):
    """Kind of substitution proposed by the repair engine."""

    RETRY = "retry"
    ALTERNATIVE = "alternative"
    FALLBACK = "fallback"


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Plan:
    """Fully resolved, executable description of one command invocation.

    Plans are never mutated: the repair loop builds a new plan with
    ``dataclasses.replace`` and a bumped ``retry_count``.
    """

    kind: PlanKind
    command: str
    args: tuple[str, ...] = ()
    timeout_ms: int | None = None
    retry_count: int = 0
    program: tuple[str, ...] = ()
    action: str | None = None
    discovered: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize plan for snapshots and result payloads."""

        payload = asdict(self)
        payload["kind"] = self.kind.value
        payload["args"] = list(self.args)
        payload["program"] = list(self.program)
        return payload


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of running a plan."""

    status: ExecutionStatus
    command: str
    payload: dict[str, Any] = field(default_factory=dict)
    repaired: bool = False
    repair_description: str | None = None

    def to_record(self) -> dict[str, Any]:
        """Flatten into the single structured record emitted by the CLI."""

        record: dict[str, Any] = {
            "status": self.status.value,
            "command": self.command,
            "repaired": self.repaired,
        }
        if self.repair_description is not None:
            record["repairDescription"] = self.repair_description
        record.update(self.payload)
        return record


@dataclass(slots=True)
class ErrorClassification:
    """Classifier verdict for one failed attempt."""

    kind: ErrorKind
    message: str
    exit_code: int | None = None
    matched_pattern: str | None = None

    def to_details(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "exit_code": self.exit_code,
            "matched_pattern": self.matched_pattern,
        }


@dataclass(frozen=True, slots=True)
class RepairPlan:
    """Alternate plan candidate produced by one repair decision."""

    type: RepairType
    plan: Plan
    description: str


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Immutable capture of a state value."""

    id: str
    timestamp: datetime
    state: Any
    description: str | None = None
    sequence: int = 0


@dataclass(slots=True)
class ExecutionEvent:
    """One executor attempt, consumed by observation and learning layers."""

    command: str
    execution_time_ms: float
    success: bool
    retry_count: int
    timestamp: datetime
    error_message: str | None = None
    error_kind: ErrorKind | None = None
    args: tuple[str, ...] = ()
    output: dict[str, Any] | None = None
    context: dict[str, Any] = field(default_factory=dict)

"""Bounded ring of per-execution metrics with aggregate queries."""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from command_orchestrator.orchestrator.models import ExecutionEvent
from command_orchestrator.storage.common import from_iso, to_iso, utc_now
from command_orchestrator.storage.state_store import StateStore, load_list

logger = logging.getLogger(__name__)

METRICS_STATE_KEY = "observability.metrics"
DEFAULT_METRICS_RETENTION = 1000
RECENT_ERRORS_LIMIT = 10


@dataclass(slots=True)
class AgentMetrics:
    """One record per executor attempt."""

    command: str
    execution_time: float
    error_rate: float
    retry_count: int
    success: bool
    timestamp: datetime
    context: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "executionTime": self.execution_time,
            "errorRate": self.error_rate,
            "retryCount": self.retry_count,
            "success": self.success,
            "timestamp": to_iso(self.timestamp),
            "context": dict(self.context),
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AgentMetrics:
        context = raw.get("context")
        return cls(
            command=str(raw["command"]),
            execution_time=float(raw["executionTime"]),
            error_rate=float(raw["errorRate"]),
            retry_count=int(raw["retryCount"]),
            success=bool(raw["success"]),
            timestamp=from_iso(str(raw["timestamp"])),
            context=context if isinstance(context, dict) else {},
            error_message=raw.get("errorMessage"),
        )


@dataclass(slots=True)
class CommandMetrics:
    """Aggregate view for one command."""

    command: str
    total_calls: int
    successes: int
    failures: int
    average_execution_time: float
    error_rate: float
    average_retry_count: float
    last_execution: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "totalCalls": self.total_calls,
            "successes": self.successes,
            "failures": self.failures,
            "averageExecutionTime": round(self.average_execution_time, 3),
            "errorRate": round(self.error_rate, 3),
            "averageRetryCount": round(self.average_retry_count, 3),
            "lastExecution": to_iso(self.last_execution) if self.last_execution else None,
        }


@dataclass(slots=True)
class OverallMetrics:
    """Aggregate view across all commands."""

    total_calls: int
    average_execution_time: float
    error_rate: float
    top_commands: list[tuple[str, int]]
    recent_errors: list[AgentMetrics]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCalls": self.total_calls,
            "averageExecutionTime": round(self.average_execution_time, 3),
            "errorRate": round(self.error_rate, 3),
            "topCommands": [
                {"command": command, "count": count} for command, count in self.top_commands
            ],
            "recentErrors": [entry.to_dict() for entry in self.recent_errors],
        }


class MetricsRecorder:
    """Append-only ring of AgentMetrics, oldest evicted first."""

    def __init__(
        self,
        *,
        store: StateStore | None = None,
        retention: int = DEFAULT_METRICS_RETENTION,
        recent_error_window: timedelta = timedelta(hours=24),
    ) -> None:
        self.store = store
        self.recent_error_window = recent_error_window
        self._lock = threading.Lock()
        self._entries: deque[AgentMetrics] = deque(maxlen=retention)
        for raw in load_list(store, METRICS_STATE_KEY):
            if not isinstance(raw, dict):
                logger.warning("Skipping corrupt metrics entry: %r", raw)
                continue
            try:
                self._entries.append(AgentMetrics.from_dict(raw))
            except (KeyError, TypeError, ValueError) as error:
                logger.warning("Skipping corrupt metrics entry: %s", error)

    def record_execution(self, event: ExecutionEvent) -> AgentMetrics:
        entry = AgentMetrics(
            command=event.command,
            execution_time=event.execution_time_ms,
            error_rate=0.0 if event.success else 100.0,
            retry_count=event.retry_count,
            success=event.success,
            timestamp=event.timestamp,
            context=dict(event.context),
            error_message=event.error_message,
        )
        with self._lock:
            self._entries.append(entry)
            if self.store is not None:
                self.store.save(METRICS_STATE_KEY, [item.to_dict() for item in self._entries])
        return entry

    def entries(self, command: str | None = None) -> list[AgentMetrics]:
        with self._lock:
            entries = list(self._entries)
        if command is None:
            return entries
        return [entry for entry in entries if entry.command == command]

    def get_command_metrics(self, command: str) -> CommandMetrics:
        entries = self.entries(command)
        total = len(entries)
        successes = sum(1 for entry in entries if entry.success)
        return CommandMetrics(
            command=command,
            total_calls=total,
            successes=successes,
            failures=total - successes,
            average_execution_time=_mean([entry.execution_time for entry in entries]),
            error_rate=((total - successes) / total * 100.0) if total else 0.0,
            average_retry_count=_mean([float(entry.retry_count) for entry in entries]),
            last_execution=max((entry.timestamp for entry in entries), default=None),
        )

    def get_overall_metrics(
        self,
        *,
        top_n: int = 5,
        now: datetime | None = None,
    ) -> OverallMetrics:
        entries = self.entries()
        total = len(entries)
        failures = [entry for entry in entries if not entry.success]
        cutoff = (now or utc_now()) - self.recent_error_window
        recent_errors = [entry for entry in failures if entry.timestamp >= cutoff]
        usage = Counter(entry.command for entry in entries)
        return OverallMetrics(
            total_calls=total,
            average_execution_time=_mean([entry.execution_time for entry in entries]),
            error_rate=(len(failures) / total * 100.0) if total else 0.0,
            top_commands=usage.most_common(top_n),
            recent_errors=recent_errors[-RECENT_ERRORS_LIMIT:],
        )


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)

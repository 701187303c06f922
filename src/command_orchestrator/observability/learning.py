"""Per-command success-rate learning and adaptive retry backoff queue."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from command_orchestrator.orchestrator.models import ExecutionEvent
from command_orchestrator.storage.common import from_iso, to_iso, utc_now
from command_orchestrator.storage.state_store import StateStore, load_list, load_mapping

logger = logging.getLogger(__name__)

HISTORY_STATE_KEY = "learning.history"
RETRY_QUEUE_STATE_KEY = "learning.retry_queue"
PROMOTED_STATE_KEY = "learning.promoted"


@dataclass(slots=True)
class LearningSettings:
    """Thresholds for promotion and pattern analysis."""

    retention: int = 1000
    min_samples: int = 10
    promotion_threshold: float = 0.9
    problematic_failure_rate: float = 0.3
    problematic_min_samples: int = 3


@dataclass(slots=True)
class LearningEntry:
    """Execution sample with input and output payloads."""

    command: str
    execution_time: float
    success: bool
    retry_count: int
    timestamp: datetime
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "executionTime": self.execution_time,
            "success": self.success,
            "retryCount": self.retry_count,
            "timestamp": to_iso(self.timestamp),
            "input": dict(self.input),
            "output": self.output,
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LearningEntry:
        payload_in = raw.get("input")
        payload_out = raw.get("output")
        return cls(
            command=str(raw["command"]),
            execution_time=float(raw["executionTime"]),
            success=bool(raw["success"]),
            retry_count=int(raw["retryCount"]),
            timestamp=from_iso(str(raw["timestamp"])),
            input=payload_in if isinstance(payload_in, dict) else {},
            output=payload_out if isinstance(payload_out, dict) else None,
            error_message=raw.get("errorMessage"),
        )


@dataclass(slots=True)
class AdaptiveRetryEntry:
    """Backoff state for a command that keeps failing."""

    command: str
    retry_count: int
    next_retry_time: datetime
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "retryCount": self.retry_count,
            "nextRetryTime": to_iso(self.next_retry_time),
            "lastError": self.last_error,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AdaptiveRetryEntry:
        return cls(
            command=str(raw["command"]),
            retry_count=int(raw["retryCount"]),
            next_retry_time=from_iso(str(raw["nextRetryTime"])),
            last_error=raw.get("lastError"),
        )


@dataclass(slots=True)
class CommandLearningStats:
    command: str
    samples: int
    success_rate: float
    promoted: bool


@dataclass(slots=True)
class PatternAnalysis:
    """Historical success patterns."""

    hourly: dict[int, dict[str, float]]
    command_success_rates: dict[str, float]
    problematic_commands: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "hourly": {str(hour): bucket for hour, bucket in sorted(self.hourly.items())},
            "commandSuccessRates": dict(sorted(self.command_success_rates.items())),
            "problematicCommands": self.problematic_commands,
        }


def backoff_delay(retry_count: int) -> timedelta:
    """Exponential backoff: 2^retry_count minutes."""

    return timedelta(minutes=2**retry_count)


class LearningEngine:
    """Learns rolling per-command reliability from every execution."""

    def __init__(
        self,
        *,
        store: StateStore | None = None,
        settings: LearningSettings | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or LearningSettings()
        self._lock = threading.Lock()
        self._history: deque[LearningEntry] = deque(maxlen=self.settings.retention)
        self._retry_queue: dict[str, AdaptiveRetryEntry] = {}
        self._promoted: set[str] = set()
        self._load()

    def record_execution(self, event: ExecutionEvent) -> LearningEntry:
        entry = LearningEntry(
            command=event.command,
            execution_time=event.execution_time_ms,
            success=event.success,
            retry_count=event.retry_count,
            timestamp=event.timestamp,
            input={"args": list(event.args), **event.context},
            output=event.output,
            error_message=event.error_message,
        )
        with self._lock:
            self._history.append(entry)
            if event.success:
                self._retry_queue.pop(event.command, None)
            else:
                self._schedule_retry(event.command, event.error_message, now=event.timestamp)
            self._update_promotion(event.command)
            self._persist()
        return entry

    def success_rate(self, command: str) -> float | None:
        """Rolling success rate, or ``None`` below the minimum sample size."""

        with self._lock:
            return self._success_rate_locked(command)

    def is_promoted(self, command: str) -> bool:
        with self._lock:
            return command in self._promoted

    def retry_queue(self) -> list[AdaptiveRetryEntry]:
        with self._lock:
            entries = list(self._retry_queue.values())
        return sorted(entries, key=lambda entry: entry.next_retry_time)

    def due_retries(self, now: datetime | None = None) -> list[AdaptiveRetryEntry]:
        current = now or utc_now()
        return [entry for entry in self.retry_queue() if entry.next_retry_time <= current]

    def get_learning_stats(self) -> dict[str, Any]:
        with self._lock:
            commands = sorted({entry.command for entry in self._history})
            stats = []
            for command in commands:
                samples = self._samples(command)
                if len(samples) < self.settings.min_samples:
                    continue
                stats.append(
                    CommandLearningStats(
                        command=command,
                        samples=len(samples),
                        success_rate=_success_ratio(samples),
                        promoted=command in self._promoted,
                    ),
                )
            return {
                "totalEntries": len(self._history),
                "commands": [
                    {
                        "command": item.command,
                        "samples": item.samples,
                        "successRate": round(item.success_rate, 4),
                        "promoted": item.promoted,
                    }
                    for item in stats
                ],
                "promoted": sorted(self._promoted),
                "retryQueueSize": len(self._retry_queue),
            }

    def analyze_command_patterns(self) -> PatternAnalysis:
        with self._lock:
            history = list(self._history)

        by_hour: dict[int, list[bool]] = defaultdict(list)
        by_command: dict[str, list[bool]] = defaultdict(list)
        for entry in history:
            by_hour[entry.timestamp.hour].append(entry.success)
            by_command[entry.command].append(entry.success)

        hourly = {
            hour: {
                "total": float(len(outcomes)),
                "successes": float(sum(outcomes)),
                "successRate": sum(outcomes) / len(outcomes),
            }
            for hour, outcomes in by_hour.items()
        }
        success_rates = {
            command: sum(outcomes) / len(outcomes) for command, outcomes in by_command.items()
        }
        problematic = []
        for command, outcomes in sorted(by_command.items()):
            if len(outcomes) < self.settings.problematic_min_samples:
                continue
            failure_rate = 1.0 - sum(outcomes) / len(outcomes)
            if failure_rate >= self.settings.problematic_failure_rate:
                problematic.append(
                    {
                        "command": command,
                        "failureRate": round(failure_rate, 4),
                        "samples": len(outcomes),
                    },
                )
        return PatternAnalysis(
            hourly=hourly,
            command_success_rates=success_rates,
            problematic_commands=problematic,
        )

    def _schedule_retry(self, command: str, error: str | None, *, now: datetime) -> None:
        entry = self._retry_queue.get(command)
        retry_count = (entry.retry_count if entry is not None else 0) + 1
        self._retry_queue[command] = AdaptiveRetryEntry(
            command=command,
            retry_count=retry_count,
            next_retry_time=now + backoff_delay(retry_count),
            last_error=error,
        )
        logger.debug("Adaptive retry for %s scheduled (retry_count=%d)", command, retry_count)

    def _update_promotion(self, command: str) -> None:
        rate = self._success_rate_locked(command)
        if rate is None or command in self._promoted:
            return
        if rate >= self.settings.promotion_threshold:
            self._promoted.add(command)
            logger.info("Command %s promoted (success rate %.2f)", command, rate)

    def _success_rate_locked(self, command: str) -> float | None:
        samples = self._samples(command)
        if len(samples) < self.settings.min_samples:
            return None
        return _success_ratio(samples)

    def _samples(self, command: str) -> list[LearningEntry]:
        return [entry for entry in self._history if entry.command == command]

    def _load(self) -> None:
        for raw in load_list(self.store, HISTORY_STATE_KEY):
            if not isinstance(raw, dict):
                logger.warning("Skipping corrupt learning entry: %r", raw)
                continue
            try:
                self._history.append(LearningEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as error:
                logger.warning("Skipping corrupt learning entry: %s", error)
        for command, raw in load_mapping(self.store, RETRY_QUEUE_STATE_KEY).items():
            if not isinstance(raw, dict):
                logger.warning("Skipping corrupt retry entry %s", command)
                continue
            try:
                self._retry_queue[command] = AdaptiveRetryEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as error:
                logger.warning("Skipping corrupt retry entry %s: %s", command, error)
        self._promoted.update(
            item for item in load_list(self.store, PROMOTED_STATE_KEY) if isinstance(item, str)
        )

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save(HISTORY_STATE_KEY, [entry.to_dict() for entry in self._history])
        self.store.save(
            RETRY_QUEUE_STATE_KEY,
            {command: entry.to_dict() for command, entry in self._retry_queue.items()},
        )
        self.store.save(PROMOTED_STATE_KEY, sorted(self._promoted))


def _success_ratio(samples: list[LearningEntry]) -> float:
    return sum(1 for entry in samples if entry.success) / len(samples)

"""Runtime configuration for the command orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(slots=True)
class ExecutionSettings:
    """Backend, repair and snapshot settings."""

    command_prefix: str = ""
    default_timeout_ms: int = 120_000
    extended_timeout_ms: int = 30_000
    short_timeout_ms: int = 10_000
    max_repair_attempts: int = 3
    snapshot_capacity: int = 10
    discovery_enabled: bool = True
    help_flag: str = "--help"
    force_flag: str = "--force"


@dataclass(slots=True)
class GovernanceSettings:
    """Actor defaults and approval bookkeeping."""

    default_role: str = "developer"
    default_user: str = "local"
    approval_log_retention: int = 1_000
    quota_window_hours: int = 24


@dataclass(slots=True)
class ObservabilitySettings:
    """Metrics ring and learning thresholds."""

    metrics_retention: int = 1_000
    learning_retention: int = 1_000
    min_learning_samples: int = 10
    promotion_threshold: float = 0.9
    problematic_failure_rate: float = 0.3
    problematic_min_samples: int = 3
    recent_error_window_hours: int = 24
    top_commands: int = 5


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".command_orchestrator.db")
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    governance: GovernanceSettings = field(default_factory=GovernanceSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path
            or Path(os.getenv("COMMAND_ORCHESTRATOR_DB_PATH", ".command_orchestrator.db")),
            execution=ExecutionSettings(
                command_prefix=os.getenv("COMMAND_ORCHESTRATOR_COMMAND_PREFIX", "").strip(),
                default_timeout_ms=int(
                    os.getenv("COMMAND_ORCHESTRATOR_DEFAULT_TIMEOUT_MS", "120000"),
                ),
                extended_timeout_ms=int(
                    os.getenv("COMMAND_ORCHESTRATOR_EXTENDED_TIMEOUT_MS", "30000"),
                ),
                short_timeout_ms=int(os.getenv("COMMAND_ORCHESTRATOR_SHORT_TIMEOUT_MS", "10000")),
                max_repair_attempts=int(
                    os.getenv("COMMAND_ORCHESTRATOR_MAX_REPAIR_ATTEMPTS", "3"),
                ),
                snapshot_capacity=int(os.getenv("COMMAND_ORCHESTRATOR_SNAPSHOT_CAPACITY", "10")),
                discovery_enabled=_env_bool(
                    "COMMAND_ORCHESTRATOR_DISCOVERY_ENABLED",
                    default=True,
                ),
                help_flag=os.getenv("COMMAND_ORCHESTRATOR_HELP_FLAG", "--help"),
                force_flag=os.getenv("COMMAND_ORCHESTRATOR_FORCE_FLAG", "--force"),
            ),
            governance=GovernanceSettings(
                default_role=os.getenv("COMMAND_ORCHESTRATOR_DEFAULT_ROLE", "developer"),
                default_user=os.getenv("COMMAND_ORCHESTRATOR_DEFAULT_USER", "local"),
                approval_log_retention=int(
                    os.getenv("COMMAND_ORCHESTRATOR_APPROVAL_LOG_RETENTION", "1000"),
                ),
                quota_window_hours=int(
                    os.getenv("COMMAND_ORCHESTRATOR_QUOTA_WINDOW_HOURS", "24"),
                ),
            ),
            observability=ObservabilitySettings(
                metrics_retention=int(
                    os.getenv("COMMAND_ORCHESTRATOR_METRICS_RETENTION", "1000"),
                ),
                learning_retention=int(
                    os.getenv("COMMAND_ORCHESTRATOR_LEARNING_RETENTION", "1000"),
                ),
                min_learning_samples=int(
                    os.getenv("COMMAND_ORCHESTRATOR_MIN_LEARNING_SAMPLES", "10"),
                ),
                promotion_threshold=float(
                    os.getenv("COMMAND_ORCHESTRATOR_PROMOTION_THRESHOLD", "0.9"),
                ),
                problematic_failure_rate=float(
                    os.getenv("COMMAND_ORCHESTRATOR_PROBLEMATIC_FAILURE_RATE", "0.3"),
                ),
                problematic_min_samples=int(
                    os.getenv("COMMAND_ORCHESTRATOR_PROBLEMATIC_MIN_SAMPLES", "3"),
                ),
                recent_error_window_hours=int(
                    os.getenv("COMMAND_ORCHESTRATOR_RECENT_ERROR_WINDOW_HOURS", "24"),
                ),
                top_commands=int(os.getenv("COMMAND_ORCHESTRATOR_TOP_COMMANDS", "5")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        execution = self.execution
        if execution.default_timeout_ms <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_DEFAULT_TIMEOUT_MS must be > 0.")
        if execution.extended_timeout_ms <= 0 or execution.short_timeout_ms <= 0:
            raise ValueError("Repair timeouts must be positive.")
        if execution.max_repair_attempts < 0:
            raise ValueError("COMMAND_ORCHESTRATOR_MAX_REPAIR_ATTEMPTS must be >= 0.")
        if execution.snapshot_capacity <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_SNAPSHOT_CAPACITY must be > 0.")
        if not execution.help_flag or not execution.force_flag:
            raise ValueError("Help and force flags must be non-empty.")

        if not self.governance.default_role.strip():
            raise ValueError("COMMAND_ORCHESTRATOR_DEFAULT_ROLE must be non-empty.")
        if self.governance.approval_log_retention <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_APPROVAL_LOG_RETENTION must be > 0.")
        if self.governance.quota_window_hours <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_QUOTA_WINDOW_HOURS must be > 0.")

        observability = self.observability
        if observability.metrics_retention <= 0 or observability.learning_retention <= 0:
            raise ValueError("Metrics and learning retention must be > 0.")
        if observability.min_learning_samples <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_MIN_LEARNING_SAMPLES must be > 0.")
        for name, value in (
            ("COMMAND_ORCHESTRATOR_PROMOTION_THRESHOLD", observability.promotion_threshold),
            (
                "COMMAND_ORCHESTRATOR_PROBLEMATIC_FAILURE_RATE",
                observability.problematic_failure_rate,
            ),
        ):
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value!r}.")
        if observability.problematic_min_samples <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_PROBLEMATIC_MIN_SAMPLES must be > 0.")
        if observability.recent_error_window_hours <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_RECENT_ERROR_WINDOW_HOURS must be > 0.")
        if observability.top_commands <= 0:
            raise ValueError("COMMAND_ORCHESTRATOR_TOP_COMMANDS must be > 0.")


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {raw!r}")

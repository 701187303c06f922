from __future__ import annotations

from pathlib import Path

import allure
import pytest

from command_orchestrator.config import Settings

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Configuration"),
]


def test_defaults(monkeypatch) -> None:
    for name in ("COMMAND_ORCHESTRATOR_DB_PATH", "COMMAND_ORCHESTRATOR_COMMAND_PREFIX"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".command_orchestrator.db")
    assert settings.execution.max_repair_attempts == 3
    assert settings.execution.extended_timeout_ms == 30_000
    assert settings.execution.short_timeout_ms == 10_000
    assert settings.execution.snapshot_capacity == 10
    assert settings.governance.default_role == "developer"
    assert settings.observability.promotion_threshold == 0.9
    settings.validate()


def test_env_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("COMMAND_ORCHESTRATOR_COMMAND_PREFIX", " node cli.js ")
    monkeypatch.setenv("COMMAND_ORCHESTRATOR_DISCOVERY_ENABLED", "off")
    monkeypatch.setenv("COMMAND_ORCHESTRATOR_DEFAULT_ROLE", "viewer")
    monkeypatch.setenv("COMMAND_ORCHESTRATOR_MIN_LEARNING_SAMPLES", "5")

    settings = Settings.from_env(db_path=tmp_path / "x.db")

    assert settings.db_path == tmp_path / "x.db"
    assert settings.execution.command_prefix == "node cli.js"
    assert settings.execution.discovery_enabled is False
    assert settings.governance.default_role == "viewer"
    assert settings.observability.min_learning_samples == 5


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("COMMAND_ORCHESTRATOR_DISCOVERY_ENABLED", "sometimes")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


def test_validate_rejects_out_of_range_values() -> None:
    settings = Settings()
    settings.observability.promotion_threshold = 1.5
    with pytest.raises(ValueError, match="PROMOTION_THRESHOLD"):
        settings.validate()

    settings = Settings()
    settings.execution.snapshot_capacity = 0
    with pytest.raises(ValueError, match="SNAPSHOT_CAPACITY"):
        settings.validate()

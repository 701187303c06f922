from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from command_orchestrator.observability.learning import (
    LearningEngine,
    LearningSettings,
    backoff_delay,
)
from command_orchestrator.orchestrator.models import ExecutionEvent

pytestmark = [
    allure.epic("Observability"),
    allure.feature("Learning"),
]

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


def _event(command: str, success: bool, at: datetime = NOW) -> ExecutionEvent:
    return ExecutionEvent(
        command=command,
        execution_time_ms=5.0,
        success=success,
        retry_count=0,
        timestamp=at,
        error_message=None if success else "network down",
    )


def test_backoff_is_exponential_in_minutes() -> None:
    assert backoff_delay(1) == timedelta(minutes=2)
    assert backoff_delay(3) == timedelta(minutes=8)


def test_success_rate_needs_minimum_samples() -> None:
    engine = LearningEngine()
    for _ in range(9):
        engine.record_execution(_event("audit", True))

    assert engine.success_rate("audit") is None
    assert engine.is_promoted("audit") is False

    engine.record_execution(_event("audit", True))
    assert engine.success_rate("audit") == 1.0
    assert engine.is_promoted("audit") is True


def test_promotion_reflected_in_stats_at_ninety_percent() -> None:
    engine = LearningEngine()
    for index in range(10):
        engine.record_execution(_event("deploy", success=index != 0))

    stats = engine.get_learning_stats()
    assert stats["promoted"] == ["deploy"]
    assert stats["commands"] == [
        {"command": "deploy", "samples": 10, "successRate": 0.9, "promoted": True},
    ]
    assert engine.analyze_command_patterns().command_success_rates["deploy"] >= 0.9


def test_failures_schedule_backoff_and_success_clears_it() -> None:
    engine = LearningEngine()
    engine.record_execution(_event("cleanup", False))
    engine.record_execution(_event("cleanup", False))

    [entry] = engine.retry_queue()
    assert entry.retry_count == 2
    assert entry.next_retry_time == NOW + timedelta(minutes=4)
    assert engine.due_retries(NOW) == []
    assert [item.command for item in engine.due_retries(NOW + timedelta(minutes=5))] == ["cleanup"]

    engine.record_execution(_event("cleanup", True))
    assert engine.retry_queue() == []


def test_pattern_analysis_flags_problematic_commands() -> None:
    engine = LearningEngine(settings=LearningSettings(problematic_min_samples=3))
    for success in (False, True, False):
        engine.record_execution(_event("rollback", success))
    for success in (True, True):
        engine.record_execution(_event("audit", success))

    analysis = engine.analyze_command_patterns()
    assert [item["command"] for item in analysis.problematic_commands] == ["rollback"]
    assert analysis.hourly[9]["total"] == 5.0
    assert analysis.to_dict()["hourly"]["9"]["successes"] == 2.0


def test_learning_state_survives_restart(state_store) -> None:
    engine = LearningEngine(store=state_store)
    engine.record_execution(_event("audit", False))

    reloaded = LearningEngine(store=state_store)
    assert [entry.command for entry in reloaded.retry_queue()] == ["audit"]
    assert reloaded.get_learning_stats()["totalEntries"] == 1


def test_corrupt_learning_entries_are_skipped(state_store) -> None:
    LearningEngine(store=state_store).record_execution(_event("audit", False))
    history = state_store.load("learning.history")
    queue = state_store.load("learning.retry_queue")
    state_store.save("learning.history", ["x", None, *history])
    state_store.save("learning.retry_queue", {**queue, "deploy": "garbage", "cleanup": [1]})
    state_store.save("learning.promoted", ["audit", 3, None])

    reloaded = LearningEngine(store=state_store)

    assert [entry.command for entry in reloaded.retry_queue()] == ["audit"]
    assert reloaded.get_learning_stats()["totalEntries"] == 1
    assert reloaded.is_promoted("audit")

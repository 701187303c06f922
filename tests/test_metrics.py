from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from command_orchestrator.observability.metrics import MetricsRecorder
from command_orchestrator.observability.observer import FanOutObserver
from command_orchestrator.orchestrator.models import ExecutionEvent

pytestmark = [
    allure.epic("Observability"),
    allure.feature("Metrics"),
]

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _event(command: str, *, success: bool = True, at: datetime = NOW, **kwargs) -> ExecutionEvent:
    return ExecutionEvent(
        command=command,
        execution_time_ms=kwargs.pop("execution_time_ms", 10.0),
        success=success,
        retry_count=kwargs.pop("retry_count", 0),
        timestamp=at,
        error_message=None if success else "Exit 2: boom",
        **kwargs,
    )


def test_ring_keeps_latest_entries() -> None:
    recorder = MetricsRecorder(retention=3)
    for index in range(5):
        recorder.record_execution(_event(f"cmd-{index}"))

    assert [entry.command for entry in recorder.entries()] == ["cmd-2", "cmd-3", "cmd-4"]


def test_error_rate_is_zero_or_hundred_per_call() -> None:
    recorder = MetricsRecorder()

    assert recorder.record_execution(_event("audit")).error_rate == 0.0
    assert recorder.record_execution(_event("audit", success=False)).error_rate == 100.0


def test_command_metrics_aggregate() -> None:
    recorder = MetricsRecorder()
    recorder.record_execution(_event("audit", execution_time_ms=10.0))
    recorder.record_execution(_event("audit", success=False, execution_time_ms=30.0, retry_count=2))
    recorder.record_execution(_event("deploy"))

    metrics = recorder.get_command_metrics("audit")
    assert metrics.total_calls == 2
    assert metrics.failures == 1
    assert metrics.average_execution_time == 20.0
    assert metrics.error_rate == 50.0
    assert metrics.average_retry_count == 1.0
    assert metrics.to_dict()["lastExecution"] is not None
    assert recorder.get_command_metrics("missing").to_dict()["lastExecution"] is None


def test_overall_metrics_report_recent_errors_and_top_commands() -> None:
    recorder = MetricsRecorder(recent_error_window=timedelta(hours=24))
    recorder.record_execution(_event("audit", success=False, at=NOW - timedelta(hours=30)))
    recorder.record_execution(_event("audit", success=False, at=NOW - timedelta(hours=1)))
    recorder.record_execution(_event("audit"))
    recorder.record_execution(_event("deploy"))

    overall = recorder.get_overall_metrics(top_n=1, now=NOW)
    assert overall.total_calls == 4
    assert overall.error_rate == 50.0
    assert overall.top_commands == [("audit", 3)]
    assert len(overall.recent_errors) == 1
    assert overall.to_dict()["topCommands"] == [{"command": "audit", "count": 3}]


def test_metrics_survive_restart(state_store) -> None:
    MetricsRecorder(store=state_store).record_execution(_event("audit", context={"role": "dev"}))

    reloaded = MetricsRecorder(store=state_store)
    assert [entry.context for entry in reloaded.entries()] == [{"role": "dev"}]


def test_corrupt_metrics_entries_are_skipped(state_store) -> None:
    MetricsRecorder(store=state_store).record_execution(_event("audit"))
    stored = state_store.load("observability.metrics")
    state_store.save("observability.metrics", [None, "x", ["nested"], *stored, {"command": 1}])

    reloaded = MetricsRecorder(store=state_store)

    assert [entry.command for entry in reloaded.entries()] == ["audit"]


def test_fan_out_isolates_failing_sink() -> None:
    class Broken:
        def record_execution(self, event: ExecutionEvent) -> None:
            raise RuntimeError("sink down")

    recorder = MetricsRecorder()
    FanOutObserver(Broken(), recorder).record_execution(_event("audit"))

    assert len(recorder.entries()) == 1

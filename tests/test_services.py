from __future__ import annotations

import allure

from command_orchestrator.orchestrator.errors import CommandExecutionError
from command_orchestrator.services import CommandOrchestrator, build_components

pytestmark = [
    allure.epic("Orchestration"),
    allure.feature("Dispatch"),
]


def _orchestrator(settings, backend, store=None) -> CommandOrchestrator:
    settings.execution.discovery_enabled = False
    return CommandOrchestrator(build_components(settings, store=store, backend=backend))


def test_dispatch_success_returns_one_success_record(
    settings,
    scripted_backend,
    record_output,
) -> None:
    orchestrator = _orchestrator(settings, scripted_backend(record_output("audit", issues=2)))

    record = orchestrator.dispatch("audit", ())

    assert record["status"] == "success"
    assert record["command"] == "audit"
    assert record["data"]["issues"] == 2
    assert record["repaired"] is False


def test_release_approval_scenario(settings, scripted_backend, record_output) -> None:
    orchestrator = _orchestrator(settings, scripted_backend(record_output("release")))

    blocked = orchestrator.dispatch("release", ())
    assert blocked["status"] == "error"
    request_id = blocked["requestId"]

    pending = orchestrator.dispatch("pending-approvals", ())
    assert [request["id"] for request in pending["requests"]] == [request_id]

    denied = orchestrator.dispatch("approve", (request_id,))
    assert denied["status"] == "error"

    orchestrator.dispatch("set-role", ("admin",))
    approved = orchestrator.dispatch("approve", (request_id,))
    assert approved["status"] == "success"
    assert approved["request"]["status"] == "approved"
    assert orchestrator.dispatch("approve", (request_id,))["status"] == "error"

    orchestrator.dispatch("set-role", ("developer",))
    released = orchestrator.dispatch("release", ())
    assert released["status"] == "success"


def test_reject_defaults_reason(settings, scripted_backend, record_output) -> None:
    orchestrator = _orchestrator(settings, scripted_backend(record_output("deploy")))
    request_id = orchestrator.dispatch("deploy", ("prod",))["requestId"]

    orchestrator.dispatch("set-role", ("admin",))
    rejected = orchestrator.dispatch("reject", (request_id,))

    assert rejected["status"] == "success"
    assert rejected["request"]["reason"] == "rejected via CLI"


def test_planning_errors_become_error_records(settings, scripted_backend, record_output) -> None:
    orchestrator = _orchestrator(settings, scripted_backend(record_output("audit")))

    assert orchestrator.dispatch("lint", ())["message"] == "Unknown command: lint"
    assert orchestrator.dispatch("set-role", ("intern",))["status"] == "error"
    orchestrator.dispatch("set-role", ("viewer",))
    denied = orchestrator.dispatch("cleanup", ())
    assert denied["status"] == "error"
    assert "not allowed" in denied["message"]


def test_repair_exhaustion_reports_attempts(settings, scripted_backend) -> None:
    orchestrator = _orchestrator(
        settings,
        scripted_backend(CommandExecutionError("connection refused")),
    )

    record = orchestrator.dispatch("audit", ())

    assert record["status"] == "error"
    assert record["attempts"] == 4
    assert "connection refused" in record["message"]
    metrics = orchestrator.dispatch("metrics", ("audit",))["metrics"]
    assert metrics["totalCalls"] == 4
    assert metrics["failures"] == 4


def test_output_without_record_is_an_error(settings, scripted_backend) -> None:
    orchestrator = _orchestrator(settings, scripted_backend("only log lines\n"))

    record = orchestrator.dispatch("audit", ())

    assert record["status"] == "error"
    assert "no structured record found" in record["message"]


def test_inspection_commands(settings, scripted_backend, record_output) -> None:
    orchestrator = _orchestrator(
        settings,
        scripted_backend(CommandExecutionError("Exit 2: nope"), record_output("audit")),
    )
    orchestrator.dispatch("audit", ())

    overall = orchestrator.dispatch("metrics", ())
    assert overall["metrics"]["totalCalls"] == 1

    retry_queue = orchestrator.dispatch("retry-queue", ())
    assert [entry["command"] for entry in retry_queue["entries"]] == ["audit"]
    assert retry_queue["due"] == []

    stats = orchestrator.dispatch("learning-stats", ())
    assert stats["stats"]["retryQueueSize"] == 1

    snapshots = orchestrator.dispatch("snapshots", ())
    assert snapshots["snapshots"][0]["description"] == "before audit attempt 1"


def test_state_persists_across_instances(settings, scripted_backend, state_store) -> None:
    first = _orchestrator(settings, scripted_backend("unused"), store=state_store)
    first.dispatch("set-role", ("viewer", "alice"))

    second = _orchestrator(settings, scripted_backend("unused"), store=state_store)
    assert second.components.session.actor.role == "viewer"
    assert second.components.session.actor.user == "alice"


def test_timeout_repair_extends_configured_timeout(
    settings,
    scripted_backend,
    record_output,
) -> None:
    backend = scripted_backend(
        CommandExecutionError("audit timed out after 120000ms (ETIMEDOUT)", timed_out=True),
        record_output("audit"),
    )
    components = build_components(settings, backend=backend)

    plan = components.planner.build_plan("audit", (), "developer")
    result = components.executor.run(plan)

    assert result.repaired is True
    assert [call[2] for call in backend.calls] == [120_000, 240_000]


def test_viewer_unknown_command_starts_no_process(settings, scripted_backend) -> None:
    backend = scripted_backend("usage: cli lint [options]\n  lint: check sources\n")
    orchestrator = CommandOrchestrator(build_components(settings, backend=backend))
    orchestrator.dispatch("set-role", ("viewer",))

    record = orchestrator.dispatch("lint", ())

    assert record["status"] == "error"
    assert record["message"] == "Unknown command: lint"
    assert backend.calls == []

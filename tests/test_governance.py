from __future__ import annotations

import allure

from command_orchestrator.governance.approvals import (
    ApprovalAction,
    ApprovalStatus,
    GovernanceSystem,
)
from command_orchestrator.governance.session import ActorSession

pytestmark = [
    allure.epic("Governance"),
    allure.feature("Approvals"),
]


def test_unrestricted_and_admin_calls_proceed() -> None:
    governance = GovernanceSystem()

    assert governance.can_proceed("audit", (), "dev", "developer").allowed
    assert governance.can_proceed("release", (), "root", "admin").allowed
    assert governance.list_pending() == []


def test_restricted_call_files_one_pending_request_per_call() -> None:
    governance = GovernanceSystem()

    first = governance.can_proceed("release", ("v1",), "dev", "developer")
    second = governance.can_proceed("release", ("v1",), "dev", "developer")

    assert not first.allowed
    assert first.request_id is not None
    assert first.request_id != second.request_id
    pending = governance.list_pending()
    assert [request.id for request in pending] == [first.request_id, second.request_id]
    assert all(request.status == ApprovalStatus.PENDING for request in pending)


def test_approve_is_admin_only_and_idempotent() -> None:
    governance = GovernanceSystem()
    request_id = governance.can_proceed("release", (), "dev", "developer").request_id
    assert request_id is not None

    assert governance.approve_command(request_id, "developer") is False
    assert governance.get_request(request_id).status == ApprovalStatus.PENDING

    assert governance.approve_command(request_id, "admin") is True
    approved_at = governance.get_request(request_id).approved_at
    assert governance.approve_command(request_id, "admin") is False
    assert governance.get_request(request_id).approved_at == approved_at
    assert governance.reject_command(request_id, "admin", "too late") is False
    assert governance.approve_command("req_missing", "admin") is False


def test_reject_requires_reason() -> None:
    governance = GovernanceSystem()
    request_id = governance.can_proceed("deploy", (), "dev", "developer").request_id
    assert request_id is not None

    assert governance.reject_command(request_id, "admin", "   ") is False
    assert governance.reject_command(request_id, "admin", "freeze window") is True

    request = governance.get_request(request_id)
    assert request.status == ApprovalStatus.REJECTED
    assert request.reason == "freeze window"


def test_approval_is_consumed_once() -> None:
    governance = GovernanceSystem()
    request_id = governance.can_proceed("rollback", ("v2",), "dev", "developer").request_id
    governance.approve_command(request_id, "admin")

    assert governance.consume_approval("rollback", ("v3",), "dev") is None
    consumed = governance.consume_approval("rollback", ("v2",), "dev")
    assert consumed is not None
    assert consumed.id == request_id
    assert consumed.status == ApprovalStatus.APPROVED
    assert consumed.executed_at is not None
    assert governance.consume_approval("rollback", ("v2",), "dev") is None


def test_audit_log_is_append_only_and_bounded() -> None:
    governance = GovernanceSystem(log_retention=3)
    request_id = governance.can_proceed("release", (), "dev", "developer").request_id
    governance.approve_command(request_id, "admin")
    governance.can_proceed("deploy", (), "dev", "developer")
    governance.can_proceed("db-restore", (), "dev", "developer")

    log = governance.audit_log()
    assert len(log) == 3
    assert [entry.action for entry in log] == [
        ApprovalAction.APPROVE,
        ApprovalAction.REQUEST,
        ApprovalAction.REQUEST,
    ]
    assert [entry.command for entry in governance.audit_log(limit=1)] == ["db-restore"]


def test_requests_and_log_survive_restart(state_store) -> None:
    governance = GovernanceSystem(store=state_store)
    request_id = governance.can_proceed("db-backup", ("nightly",), "dev", "developer").request_id
    governance.approve_command(request_id, "admin", approver="ops")

    reloaded = GovernanceSystem(store=state_store)
    request = reloaded.get_request(request_id)
    assert request is not None
    assert request.status == ApprovalStatus.APPROVED
    assert request.approved_by == "ops"
    assert request.args == ("nightly",)
    assert len(reloaded.audit_log()) == 2


def test_corrupt_governance_state_starts_empty(state_store) -> None:
    state_store.save("governance.requests", ["not", "a", "mapping"])
    state_store.save("governance.audit_log", {"not": "a list"})

    governance = GovernanceSystem(store=state_store)

    assert governance.list_pending() == []
    assert governance.audit_log() == []


def test_corrupt_governance_entries_are_skipped(state_store) -> None:
    governance = GovernanceSystem(store=state_store)
    request_id = governance.can_proceed("deploy", (), "dev", "developer").request_id
    requests = state_store.load("governance.requests")
    requests["req_garbage"] = "garbage"
    requests["req_null"] = None
    state_store.save("governance.requests", requests)
    audit_log = state_store.load("governance.audit_log")
    state_store.save("governance.audit_log", [None, "x", 7, *audit_log])

    reloaded = GovernanceSystem(store=state_store)

    assert [request.id for request in reloaded.list_pending()] == [request_id]
    assert reloaded.get_request("req_garbage") is None
    assert [entry.command for entry in reloaded.audit_log()] == ["deploy"]


def test_actor_session_persists_role(state_store) -> None:
    session = ActorSession(default_role="developer", default_user="local", store=state_store)
    assert session.actor.role == "developer"

    session.set_actor("admin", "ops")

    reloaded = ActorSession(default_role="developer", default_user="local", store=state_store)
    assert reloaded.actor.role == "admin"
    assert reloaded.actor.user == "ops"

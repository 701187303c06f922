"""Approval state machine and audit log for restricted commands."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from command_orchestrator.governance.roles import ADMIN_ROLE
from command_orchestrator.storage.common import from_iso, to_iso, utc_now
from command_orchestrator.storage.state_store import StateStore, load_list, load_mapping

logger = logging.getLogger(__name__)

RESTRICTED_COMMANDS: frozenset[str] = frozenset(
    {"release", "deploy", "db-backup", "db-restore", "rollback"},
)
DEFAULT_LOG_RETENTION = 1000
REQUESTS_STATE_KEY = "governance.requests"
AUDIT_LOG_STATE_KEY = "governance.audit_log"


class ApprovalStatus(str, Enum):
    """Approval lifecycle; approved and rejected are terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalAction(str, Enum):
    REQUEST = "request"
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(slots=True)
class ApprovalRequest:
    """One request for admin sign-off."""

    id: str
    command: str
    args: tuple[str, ...]
    requester: str
    role: str
    timestamp: datetime
    status: ApprovalStatus = ApprovalStatus.PENDING
    approved_by: str | None = None
    approved_at: datetime | None = None
    reason: str | None = None
    executed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "args": list(self.args),
            "requester": self.requester,
            "role": self.role,
            "timestamp": to_iso(self.timestamp),
            "status": self.status.value,
            "approvedBy": self.approved_by,
            "approvedAt": to_iso(self.approved_at) if self.approved_at else None,
            "reason": self.reason,
            "executedAt": to_iso(self.executed_at) if self.executed_at else None,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ApprovalRequest:
        approved_at = raw.get("approvedAt")
        executed_at = raw.get("executedAt")
        return cls(
            id=str(raw["id"]),
            command=str(raw["command"]),
            args=tuple(str(item) for item in raw.get("args", [])),
            requester=str(raw["requester"]),
            role=str(raw["role"]),
            timestamp=from_iso(str(raw["timestamp"])),
            status=ApprovalStatus(raw.get("status", ApprovalStatus.PENDING.value)),
            approved_by=raw.get("approvedBy"),
            approved_at=from_iso(approved_at) if isinstance(approved_at, str) else None,
            reason=raw.get("reason"),
            executed_at=from_iso(executed_at) if isinstance(executed_at, str) else None,
        )


@dataclass(frozen=True, slots=True)
class ApprovalLogEntry:
    """Immutable audit record."""

    id: str
    action: ApprovalAction
    command: str
    user: str
    role: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "command": self.command,
            "user": self.user,
            "role": self.role,
            "timestamp": to_iso(self.timestamp),
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ApprovalLogEntry:
        details = raw.get("details")
        return cls(
            id=str(raw["id"]),
            action=ApprovalAction(raw["action"]),
            command=str(raw["command"]),
            user=str(raw["user"]),
            role=str(raw["role"]),
            timestamp=from_iso(str(raw["timestamp"])),
            details=details if isinstance(details, dict) else {},
        )


@dataclass(slots=True)
class ProceedDecision:
    """Outcome of a governance check."""

    allowed: bool
    request_id: str | None = None
    reason: str = ""


class GovernanceSystem:
    """Request/approve/reject workflow with an append-only bounded audit log.

    Requests are filed rather than awaited so approval can happen out-of-band,
    from another operator session at another time.
    """

    def __init__(
        self,
        *,
        store: StateStore | None = None,
        restricted_commands: frozenset[str] = RESTRICTED_COMMANDS,
        log_retention: int = DEFAULT_LOG_RETENTION,
    ) -> None:
        self.store = store
        self.restricted_commands = restricted_commands
        self._lock = threading.Lock()
        self._requests: dict[str, ApprovalRequest] = {}
        self._log: deque[ApprovalLogEntry] = deque(maxlen=log_retention)
        self._load()

    def requires_approval(self, command: str) -> bool:
        return command in self.restricted_commands

    def request_approval(
        self,
        command: str,
        args: tuple[str, ...] | list[str],
        requester: str,
        role: str,
    ) -> str:
        """File a pending request and return its id."""

        request = ApprovalRequest(
            id=f"req_{uuid4().hex[:12]}",
            command=command,
            args=tuple(args),
            requester=requester,
            role=role,
            timestamp=utc_now(),
        )
        with self._lock:
            self._requests[request.id] = request
            self._append_log(
                action=ApprovalAction.REQUEST,
                command=command,
                user=requester,
                role=role,
                details={"requestId": request.id, "args": list(request.args)},
            )
            self._persist()
        logger.info(
            "Approval requested for %s by %s (%s): %s", command, requester, role, request.id
        )
        return request.id

    def approve_command(
        self,
        request_id: str,
        approver_role: str,
        approver: str = ADMIN_ROLE,
    ) -> bool:
        """Move a pending request to approved; False without any state change otherwise."""

        with self._lock:
            request = self._transition_target(request_id, approver_role)
            if request is None:
                return False
            request.status = ApprovalStatus.APPROVED
            request.approved_by = approver
            request.approved_at = utc_now()
            self._append_log(
                action=ApprovalAction.APPROVE,
                command=request.command,
                user=approver,
                role=approver_role,
                details={"requestId": request_id, "requester": request.requester},
            )
            self._persist()
        logger.info("Approval granted for %s: %s", request.command, request_id)
        return True

    def reject_command(
        self,
        request_id: str,
        approver_role: str,
        reason: str,
        approver: str = ADMIN_ROLE,
    ) -> bool:
        """Move a pending request to rejected; a non-empty reason is required."""

        if not reason or not reason.strip():
            return False
        with self._lock:
            request = self._transition_target(request_id, approver_role)
            if request is None:
                return False
            request.status = ApprovalStatus.REJECTED
            request.approved_by = approver
            request.approved_at = utc_now()
            request.reason = reason.strip()
            self._append_log(
                action=ApprovalAction.REJECT,
                command=request.command,
                user=approver,
                role=approver_role,
                details={
                    "requestId": request_id,
                    "requester": request.requester,
                    "reason": request.reason,
                },
            )
            self._persist()
        logger.info("Approval rejected for %s: %s (%s)", request.command, request_id, reason)
        return True

    def can_proceed(
        self,
        command: str,
        args: tuple[str, ...] | list[str],
        user: str,
        role: str,
    ) -> ProceedDecision:
        """Let unrestricted commands and admins through; otherwise file a request."""

        if not self.requires_approval(command):
            return ProceedDecision(allowed=True, reason="not restricted")
        if role == ADMIN_ROLE:
            return ProceedDecision(allowed=True, reason="admin")
        request_id = self.request_approval(command, args, user, role)
        return ProceedDecision(
            allowed=False,
            request_id=request_id,
            reason=f"{command} requires admin approval",
        )

    def consume_approval(
        self,
        command: str,
        args: tuple[str, ...] | list[str],
        user: str,
    ) -> ApprovalRequest | None:
        """Claim the oldest approved, unexecuted request matching this call."""

        wanted_args = tuple(args)
        with self._lock:
            candidates = sorted(
                (
                    request
                    for request in self._requests.values()
                    if request.status == ApprovalStatus.APPROVED
                    and request.executed_at is None
                    and request.command == command
                    and request.args == wanted_args
                    and request.requester == user
                ),
                key=lambda request: request.timestamp,
            )
            if not candidates:
                return None
            request = candidates[0]
            request.executed_at = utc_now()
            self._persist()
            return request

    def get_request(self, request_id: str) -> ApprovalRequest | None:
        with self._lock:
            return self._requests.get(request_id)

    def list_pending(self) -> list[ApprovalRequest]:
        with self._lock:
            pending = [
                request
                for request in self._requests.values()
                if request.status == ApprovalStatus.PENDING
            ]
        return sorted(pending, key=lambda request: request.timestamp)

    def audit_log(self, limit: int | None = None) -> list[ApprovalLogEntry]:
        """Audit entries oldest first; ``limit`` keeps the newest ones."""

        with self._lock:
            entries = list(self._log)
        if limit is not None:
            return entries[-limit:] if limit > 0 else []
        return entries

    def _transition_target(self, request_id: str, approver_role: str) -> ApprovalRequest | None:
        request = self._requests.get(request_id)
        if request is None:
            return None
        if approver_role != ADMIN_ROLE:
            return None
        if request.status != ApprovalStatus.PENDING:
            return None
        return request

    def _append_log(
        self,
        *,
        action: ApprovalAction,
        command: str,
        user: str,
        role: str,
        details: dict[str, Any],
    ) -> None:
        self._log.append(
            ApprovalLogEntry(
                id=f"log_{uuid4().hex[:12]}",
                action=action,
                command=command,
                user=user,
                role=role,
                timestamp=utc_now(),
                details=details,
            ),
        )

    def _load(self) -> None:
        for request_id, raw in load_mapping(self.store, REQUESTS_STATE_KEY).items():
            if not isinstance(raw, dict):
                logger.warning("Skipping corrupt approval request %s", request_id)
                continue
            try:
                self._requests[request_id] = ApprovalRequest.from_dict(raw)
            except (KeyError, TypeError, ValueError) as error:
                logger.warning("Skipping corrupt approval request %s: %s", request_id, error)
        for raw in load_list(self.store, AUDIT_LOG_STATE_KEY):
            if not isinstance(raw, dict):
                logger.warning("Skipping corrupt approval log entry: %r", raw)
                continue
            try:
                self._log.append(ApprovalLogEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as error:
                logger.warning("Skipping corrupt approval log entry: %s", error)

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save(
            REQUESTS_STATE_KEY,
            {request_id: request.to_dict() for request_id, request in self._requests.items()},
        )
        self.store.save(AUDIT_LOG_STATE_KEY, [entry.to_dict() for entry in self._log])

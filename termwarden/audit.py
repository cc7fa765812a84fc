"""
Audit Log Entries
=================

Append-only records of every supervisory action. An entry is always
persisted in the same unit of work as, and ordered before, the side effect
it documents. There is no update or delete operation.
"""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from termwarden.errors import InvalidValueError


class AuditActionType(Enum):
    COMMAND_INJECTED = "command_injected"
    STATUS_CHANGED = "status_changed"
    INSIGHT_GENERATED = "insight_generated"
    SESSION_MONITORED = "session_monitored"
    SUPERVISOR_CREATED = "orchestrator_created"
    TASK_UPDATED = "task_updated"


class CheckResult(Enum):
    HEALTHY = "healthy"
    STALLED = "stalled"
    ERROR = "error"


@dataclass(frozen=True)
class AuditLogEntry:
    """A single immutable audit record."""
    id: str
    supervisor_id: str
    action_type: AuditActionType
    target_session_id: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.id:
            raise InvalidValueError("AuditLogEntry.id", self.id, "Must be a non-empty string")
        if not self.supervisor_id:
            raise InvalidValueError(
                "AuditLogEntry.supervisor_id", self.supervisor_id, "Must be a non-empty string"
            )
        if not isinstance(self.action_type, AuditActionType):
            raise InvalidValueError("AuditLogEntry.action_type", self.action_type, "Unknown action")
        # Freeze a private copy so callers cannot edit a logged record
        object.__setattr__(self, "details", MappingProxyType(copy.deepcopy(dict(self.details))))

    @classmethod
    def create(
        cls,
        supervisor_id: str,
        action_type: AuditActionType,
        target_session_id: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> "AuditLogEntry":
        return cls(
            id=str(uuid.uuid4()),
            supervisor_id=supervisor_id,
            action_type=action_type,
            target_session_id=target_session_id,
            details=details or {},
        )

    # =========================================================================
    # Factories for common actions
    # =========================================================================

    @classmethod
    def for_supervisor_created(cls, supervisor) -> "AuditLogEntry":
        return cls.create(
            supervisor.id,
            AuditActionType.SUPERVISOR_CREATED,
            details={
                "kind": supervisor.kind.value,
                "user_id": supervisor.user_id,
                "host_session_id": supervisor.session_id,
                "scope_id": supervisor.scope_id,
            },
        )

    @classmethod
    def for_status_changed(
        cls,
        supervisor_id: str,
        old_status: str,
        new_status: str,
    ) -> "AuditLogEntry":
        return cls.create(
            supervisor_id,
            AuditActionType.STATUS_CHANGED,
            details={"old_status": old_status, "new_status": new_status},
        )

    @classmethod
    def for_command_injected(
        cls,
        supervisor_id: str,
        session_id: str,
        command: str,
        reason: Optional[str] = None,
        dangerous: bool = False,
        press_enter: bool = True,
    ) -> "AuditLogEntry":
        return cls.create(
            supervisor_id,
            AuditActionType.COMMAND_INJECTED,
            target_session_id=session_id,
            details={
                "command": command,
                "reason": reason,
                "dangerous": dangerous,
                "press_enter": press_enter,
            },
        )

    @classmethod
    def for_session_monitored(
        cls,
        supervisor_id: str,
        session_id: str,
        check_result: CheckResult,
        confidence: Optional[float] = None,
    ) -> "AuditLogEntry":
        details: dict[str, Any] = {"check_result": check_result.value}
        if confidence is not None:
            details["confidence"] = round(confidence, 3)
        return cls.create(
            supervisor_id,
            AuditActionType.SESSION_MONITORED,
            target_session_id=session_id,
            details=details,
        )

    @classmethod
    def for_insight_generated(
        cls,
        supervisor_id: str,
        insight_id: str,
        session_id: Optional[str],
        insight_type: str,
        severity: str,
    ) -> "AuditLogEntry":
        return cls.create(
            supervisor_id,
            AuditActionType.INSIGHT_GENERATED,
            target_session_id=session_id,
            details={
                "insight_id": insight_id,
                "insight_type": insight_type,
                "severity": severity,
            },
        )

    @classmethod
    def for_task_updated(
        cls,
        supervisor_id: str,
        task_id: str,
        old_status: Optional[str],
        new_status: str,
        session_id: Optional[str] = None,
    ) -> "AuditLogEntry":
        return cls.create(
            supervisor_id,
            AuditActionType.TASK_UPDATED,
            target_session_id=session_id,
            details={"task_id": task_id, "old_status": old_status, "new_status": new_status},
        )

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def is_session_specific(self) -> bool:
        return self.target_session_id is not None

    def age_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return int((now - self.created_at).total_seconds())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supervisor_id": self.supervisor_id,
            "action_type": self.action_type.value,
            "target_session_id": self.target_session_id,
            "details": copy.deepcopy(dict(self.details)),
            "created_at": self.created_at.isoformat(),
        }

    def summary(self) -> str:
        """Return a one-line summary for logs and displays."""
        session_info = f" (session: {self.target_session_id})" if self.target_session_id else ""
        details = self.details
        extra = ""
        if self.action_type == AuditActionType.COMMAND_INJECTED and "command" in details:
            extra = f' - command: "{details["command"]}"'
        elif self.action_type == AuditActionType.INSIGHT_GENERATED and "insight_type" in details:
            extra = f" - {details['insight_type']} ({details.get('severity')})"
        elif self.action_type == AuditActionType.STATUS_CHANGED and "new_status" in details:
            extra = f" - {details.get('old_status')} -> {details['new_status']}"
        elif self.action_type == AuditActionType.TASK_UPDATED and "task_id" in details:
            extra = f" - task {details['task_id']}: {details.get('old_status')} -> {details.get('new_status')}"
        elif self.action_type == AuditActionType.SESSION_MONITORED and "check_result" in details:
            extra = f" - {details['check_result']}"
        return f"[{self.action_type.value}]{session_info}{extra}"

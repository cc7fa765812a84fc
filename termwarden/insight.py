"""
Insights
========

An insight is a human-reviewable record of a condition a supervisor
noticed in a session (a stall, an error in the output, a blocked task),
together with suggested remediation steps.

Insights are immutable: resolve(), add_suggested_action() and
update_message() return new instances. They are never deleted.

InsightGenerator turns detector verdicts into insights. Severity for stalls
escalates with the time the session has been unchanged:

    < 15 min   info
    15-30 min  warning
    30-60 min  error
    >= 60 min  critical

Each band includes its lower bound.
"""

import copy
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from termwarden.config import InsightThresholds
from termwarden.errors import InvalidValueError


class InsightType(Enum):
    STALL_DETECTED = "stall_detected"
    ERROR = "error"
    TASK_BLOCKED = "task_blocked"
    TASK_FAILED = "task_failed"


class InsightSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    InsightSeverity.INFO: 0,
    InsightSeverity.WARNING: 1,
    InsightSeverity.ERROR: 2,
    InsightSeverity.CRITICAL: 3,
}


@dataclass(frozen=True)
class SuggestedAction:
    """A remediation step attached to an insight."""
    label: str
    description: str
    command: Optional[str] = None
    dangerous: bool = False

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "description": self.description,
            "command": self.command,
            "dangerous": self.dangerous,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SuggestedAction":
        return cls(
            label=data["label"],
            description=data.get("description", ""),
            command=data.get("command"),
            dangerous=bool(data.get("dangerous", False)),
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Insight:
    id: str
    supervisor_id: str
    type: InsightType
    severity: InsightSeverity
    message: str
    session_id: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=dict)
    suggested_actions: tuple[SuggestedAction, ...] = ()
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        if not self.supervisor_id:
            raise InvalidValueError("Insight.supervisor_id", self.supervisor_id, "Must be a non-empty string")
        if not self.message or not self.message.strip():
            raise InvalidValueError("Insight.message", self.message, "Must be a non-empty string")
        object.__setattr__(self, "suggested_actions", tuple(self.suggested_actions))
        object.__setattr__(self, "context", MappingProxyType(copy.deepcopy(dict(self.context))))

    @classmethod
    def create(
        cls,
        supervisor_id: str,
        type: InsightType,
        severity: InsightSeverity,
        message: str,
        session_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        suggested_actions: Optional[list[SuggestedAction]] = None,
    ) -> "Insight":
        return cls(
            id=str(uuid.uuid4()),
            supervisor_id=supervisor_id,
            type=type,
            severity=severity,
            message=message,
            session_id=session_id,
            context=context or {},
            suggested_actions=tuple(suggested_actions or ()),
        )

    def resolve(self) -> "Insight":
        if self.resolved:
            return self
        return replace(self, resolved=True, resolved_at=_utc_now())

    def add_suggested_action(self, action: SuggestedAction) -> "Insight":
        return replace(self, suggested_actions=self.suggested_actions + (action,))

    def update_message(self, message: str) -> "Insight":
        return replace(self, message=message)

    @property
    def has_dangerous_actions(self) -> bool:
        return any(action.dangerous for action in self.suggested_actions)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supervisor_id": self.supervisor_id,
            "session_id": self.session_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": copy.deepcopy(dict(self.context)),
            "suggested_actions": [a.to_dict() for a in self.suggested_actions],
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# Generator
# =============================================================================

@dataclass(frozen=True)
class MonitoredSession:
    """Metadata about a session being supervised, as supplied by the caller."""
    session_id: str
    handle: str                          # Transport handle (tmux session name)
    name: str
    scope_id: Optional[str] = None


class InsightGenerator:
    """Builds insights from stall and error verdicts."""

    CHECK_OUTPUT = SuggestedAction(
        label="Check session output",
        description="Review the terminal to see if a command is waiting for input or has completed",
    )
    SEND_INTERRUPT = SuggestedAction(
        label="Send Ctrl-C",
        description="Interrupt any running process",
        command="C-c",
        dangerous=False,
    )

    def __init__(self, thresholds: Optional[InsightThresholds] = None):
        self.thresholds = thresholds or InsightThresholds()

    def severity_for(self, unchanged_seconds: float) -> InsightSeverity:
        minutes = unchanged_seconds / 60
        if minutes >= self.thresholds.critical_minutes:
            return InsightSeverity.CRITICAL
        if minutes >= self.thresholds.error_minutes:
            return InsightSeverity.ERROR
        if minutes >= self.thresholds.warning_minutes:
            return InsightSeverity.WARNING
        return InsightSeverity.INFO

    def stall_actions(self, confidence: float, reason: Optional[str]) -> list[SuggestedAction]:
        actions = [self.CHECK_OUTPUT, self.SEND_INTERRUPT]
        if reason:
            actions.append(SuggestedAction(label="Review stall reason", description=reason))
        if confidence < self.thresholds.low_confidence:
            actions.append(SuggestedAction(
                label="Manual review recommended",
                description="Stall detection confidence is low - please verify manually",
            ))
        return actions

    def stall_insight(
        self,
        supervisor_id: str,
        session: MonitoredSession,
        result,
        stall_threshold: int,
        previous_snapshot=None,
    ) -> Insight:
        """
        Build a stall insight.

        Args:
            supervisor_id: The supervisor raising the insight
            session: The stalled session
            result: StallResult from the detector
            stall_threshold: The supervisor's threshold, recorded for context
            previous_snapshot: Snapshot the verdict was computed against
        """
        minutes = int(result.unchanged_duration // 60)
        context = {
            "handle": session.handle,
            "unchanged_duration": result.unchanged_duration,
            "stall_threshold": stall_threshold,
            "last_activity": result.last_activity.isoformat() if result.last_activity else None,
            "confidence": result.confidence,
            "reason": result.reason,
            "previous_snapshot": previous_snapshot.to_dict() if previous_snapshot else None,
        }
        return Insight.create(
            supervisor_id=supervisor_id,
            type=InsightType.STALL_DETECTED,
            severity=self.severity_for(result.unchanged_duration),
            message=f'Session "{session.name}" has been inactive for {minutes} minutes',
            session_id=session.session_id,
            context=context,
            suggested_actions=self.stall_actions(result.confidence, result.reason),
        )

    def error_insight(
        self,
        supervisor_id: str,
        session: MonitoredSession,
        error_excerpt: str,
    ) -> Insight:
        excerpt = error_excerpt.strip()
        return Insight.create(
            supervisor_id=supervisor_id,
            type=InsightType.ERROR,
            severity=InsightSeverity.ERROR,
            message=f'Error detected in session "{session.name}": {excerpt[:100]}',
            session_id=session.session_id,
            context={"handle": session.handle, "error_excerpt": excerpt},
            suggested_actions=[
                self.CHECK_OUTPUT,
                SuggestedAction(
                    label="Search documentation",
                    description="Search documentation for the error message",
                ),
            ],
        )

    def task_insight(
        self,
        supervisor_id: str,
        session_id: Optional[str],
        task_id: str,
        status: str,
        reason: Optional[str],
        intervention: Optional[str],
    ) -> Insight:
        failed = status == "failed"
        actions = [self.CHECK_OUTPUT]
        if intervention:
            actions.append(SuggestedAction(label="Suggested intervention", description=intervention))
        return Insight.create(
            supervisor_id=supervisor_id,
            type=InsightType.TASK_FAILED if failed else InsightType.TASK_BLOCKED,
            severity=InsightSeverity.ERROR if failed else InsightSeverity.WARNING,
            message=f"Task {task_id} is {status}: {reason or 'no reason given'}",
            session_id=session_id,
            context={"task_id": task_id, "status": status, "reason": reason},
            suggested_actions=actions,
        )

"""
Tasks
=====

A task is a unit of work a supervisor plans and delegates to an agent
session. Like supervisors, tasks are immutable and every transition returns
a new instance.

Status flow:

    queued -> planning -> executing -> monitoring -> completed
                 |            |             |
                 +------------+-------------+--> failed
    any non-terminal state --> cancelled
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from termwarden.errors import InvalidStateTransitionError, InvalidValueError


class TaskType(Enum):
    FEATURE = "feature"
    BUG = "bug"
    REFACTOR = "refactor"
    TEST = "test"
    DOCUMENTATION = "documentation"
    RESEARCH = "research"
    REVIEW = "review"

    @property
    def recommended_agents(self) -> list[str]:
        return list(_RECOMMENDED_AGENTS[self])


_RECOMMENDED_AGENTS = {
    TaskType.FEATURE: ("claude", "codex"),
    TaskType.BUG: ("claude", "codex"),
    TaskType.REFACTOR: ("claude", "codex"),
    TaskType.TEST: ("claude",),
    TaskType.DOCUMENTATION: ("claude", "gemini"),
    TaskType.RESEARCH: ("gemini", "claude"),
    TaskType.REVIEW: ("claude",),
}


class TaskStatus(Enum):
    QUEUED = "queued"
    PLANNING = "planning"
    EXECUTING = "executing"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.PLANNING, TaskStatus.EXECUTING, TaskStatus.MONITORING)

    def can_transition_to(self, target: "TaskStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    TaskStatus.QUEUED: {TaskStatus.PLANNING, TaskStatus.CANCELLED},
    TaskStatus.PLANNING: {TaskStatus.EXECUTING, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.EXECUTING: {
        TaskStatus.MONITORING, TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED,
    },
    TaskStatus.MONITORING: {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class TaskResult:
    success: bool
    summary: str
    files_modified: tuple[str, ...] = ()
    learnings: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "summary": self.summary,
            "files_modified": list(self.files_modified),
            "learnings": list(self.learnings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TaskResult":
        return cls(
            success=bool(data.get("success", False)),
            summary=data.get("summary", ""),
            files_modified=tuple(data.get("files_modified", ())),
            learnings=tuple(data.get("learnings", ())),
        )


@dataclass(frozen=True)
class TaskError:
    code: str
    message: str
    recoverable: bool = False

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "recoverable": self.recoverable}

    @classmethod
    def from_dict(cls, data: dict) -> "TaskError":
        return cls(
            code=data.get("code", "UNKNOWN"),
            message=data.get("message", ""),
            recoverable=bool(data.get("recoverable", False)),
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Task:
    id: str
    supervisor_id: str
    user_id: str
    description: str
    type: TaskType
    status: TaskStatus = TaskStatus.QUEUED
    folder_id: Optional[str] = None
    confidence: float = 1.0
    estimated_duration: Optional[int] = None      # seconds
    assigned_agent: Optional[str] = None
    delegation_id: Optional[str] = None
    context_injected: Optional[str] = None
    result: Optional[TaskResult] = None
    error: Optional[TaskError] = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        for name in ("id", "supervisor_id", "user_id", "description"):
            value = getattr(self, name)
            if not value or not isinstance(value, str):
                raise InvalidValueError(f"Task.{name}", value, "Must be a non-empty string")
        if not 0 <= self.confidence <= 1:
            raise InvalidValueError("Task.confidence", self.confidence, "Must be between 0 and 1")

    @classmethod
    def create(
        cls,
        supervisor_id: str,
        user_id: str,
        description: str,
        type: TaskType,
        folder_id: Optional[str] = None,
        confidence: float = 1.0,
        estimated_duration: Optional[int] = None,
    ) -> "Task":
        return cls(
            id=str(uuid.uuid4()),
            supervisor_id=supervisor_id,
            user_id=user_id,
            description=description,
            type=type,
            folder_id=folder_id,
            confidence=confidence,
            estimated_duration=estimated_duration,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    # =========================================================================
    # Transitions
    # =========================================================================

    def start_planning(self) -> "Task":
        return self._moved_to(TaskStatus.PLANNING, "start planning")

    def start_execution(self, agent: str, context: str) -> "Task":
        return self._moved_to(
            TaskStatus.EXECUTING, "start execution",
            assigned_agent=agent, context_injected=context,
        )

    def attach_delegation(self, delegation_id: str) -> "Task":
        if self.status not in (TaskStatus.EXECUTING, TaskStatus.MONITORING):
            raise InvalidStateTransitionError("task", self.status.value, "attach delegation to")
        return replace(self, delegation_id=delegation_id, updated_at=_utc_now())

    def start_monitoring(self) -> "Task":
        return self._moved_to(TaskStatus.MONITORING, "start monitoring")

    def complete(self, result: TaskResult) -> "Task":
        return self._moved_to(TaskStatus.COMPLETED, "complete", result=result, completed_at=_utc_now())

    def fail(self, error: TaskError) -> "Task":
        return self._moved_to(TaskStatus.FAILED, "fail", error=error, completed_at=_utc_now())

    def cancel(self) -> "Task":
        return self._moved_to(TaskStatus.CANCELLED, "cancel", completed_at=_utc_now())

    def update_description(self, description: str) -> "Task":
        if not description or not description.strip():
            raise InvalidValueError("Task.description", description, "Must be a non-empty string")
        return replace(self, description=description.strip(), updated_at=_utc_now())

    def _moved_to(self, status: TaskStatus, action: str, **changes: Any) -> "Task":
        if not self.status.can_transition_to(status):
            raise InvalidStateTransitionError("task", self.status.value, action)
        return replace(self, status=status, updated_at=_utc_now(), **changes)


# =============================================================================
# Planning gateway records
# =============================================================================

@dataclass(frozen=True)
class ParsedTask:
    description: str
    type: TaskType
    confidence: float
    reasoning: str
    suggested_agents: tuple[str, ...] = ()
    estimated_duration: Optional[int] = None
    issue_reference: Optional[str] = None


@dataclass(frozen=True)
class ExecutionPlan:
    task_id: str
    selected_agent: str
    isolation_strategy: str              # worktree, branch, none
    context_to_inject: str
    reasoning: str
    branch_name: Optional[str] = None
    estimated_tokens: int = 50_000


@dataclass(frozen=True)
class TaskAnalysis:
    task_id: str
    success: bool
    summary: str
    files_modified: tuple[str, ...] = ()
    learnings: tuple[str, ...] = ()

    def to_result(self) -> TaskResult:
        return TaskResult(
            success=self.success,
            summary=self.summary,
            files_modified=self.files_modified,
            learnings=self.learnings,
        )


@dataclass(frozen=True)
class ProgressReport:
    status: str                          # working, blocked, completed, failed, idle
    progress: int                        # 0-100
    current_activity: str
    blocked_reason: Optional[str] = None
    suggested_intervention: Optional[str] = None

    @property
    def needs_attention(self) -> bool:
        return self.status in ("blocked", "failed")

"""
Ports
=====

Abstract interfaces the use cases depend on. SQL implementations live in
termwarden.db.repositories; tests substitute in-memory fakes.

Every repository method accepts an optional transaction context ``tx``.
With a context the call joins that unit of work; without one it runs and
commits on its own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

if TYPE_CHECKING:
    from datetime import datetime

    from termwarden.audit import AuditLogEntry
    from termwarden.injection import InjectionResult
    from termwarden.insight import Insight
    from termwarden.security import CommandValidation
    from termwarden.sessions import Folder, TerminalSession
    from termwarden.stall_detection import ScrollbackSnapshot, StallResult
    from termwarden.supervisor import Supervisor, SupervisorStatus
    from termwarden.tasks.task import ExecutionPlan, ParsedTask, ProgressReport, Task, TaskAnalysis

T = TypeVar("T")


class TransactionCoordinator(ABC):
    @abstractmethod
    async def execute(self, fn: Callable[[Any], Awaitable[T]]) -> T:
        """
        Run ``fn(tx)`` as one atomic unit of work and return its result.

        Raises UniqueConstraintViolation when storage rejects a write on a
        uniqueness constraint; other errors propagate unchanged.
        """


class SupervisorRepository(ABC):
    @abstractmethod
    async def find_by_id(self, supervisor_id: str, tx=None) -> Optional[Supervisor]: ...

    @abstractmethod
    async def find_by_scope(self, user_id: str, scope_id: str, tx=None) -> Optional[Supervisor]:
        """Return the non-retired scoped supervisor for (user, scope), if any."""

    @abstractmethod
    async def find_master(self, user_id: str, tx=None) -> Optional[Supervisor]: ...

    @abstractmethod
    async def find_by_user(self, user_id: str, tx=None) -> list[Supervisor]: ...

    @abstractmethod
    async def save(self, supervisor: Supervisor, tx=None) -> None: ...

    @abstractmethod
    async def update(self, supervisor: Supervisor, tx=None) -> None:
        """Write the whole row. Only for callers that own every column."""

    @abstractmethod
    async def update_status(
        self, supervisor: Supervisor, expected: SupervisorStatus, tx=None
    ) -> None:
        """
        Write status, last_activity_at and updated_at from ``supervisor``,
        but only while the stored status is still ``expected``.

        Raises ConcurrentUpdateError when the stored status has moved on.
        """

    @abstractmethod
    async def update_config(self, supervisor: Supervisor, tx=None) -> None:
        """Write only the configuration columns and updated_at."""

    @abstractmethod
    async def touch(self, supervisor_id: str, at: datetime, tx=None) -> None:
        """Record activity at ``at`` without writing status or configuration."""


class InsightRepository(ABC):
    @abstractmethod
    async def save(self, insight: Insight, tx=None) -> None: ...

    @abstractmethod
    async def update(self, insight: Insight, tx=None) -> None: ...

    @abstractmethod
    async def find_by_id(self, insight_id: str, tx=None) -> Optional[Insight]: ...

    @abstractmethod
    async def find_by_supervisor(
        self, supervisor_id: str, unresolved_only: bool = False, tx=None
    ) -> list[Insight]: ...


class AuditLogRepository(ABC):
    """Append-only: there is deliberately no update or delete."""

    @abstractmethod
    async def save(self, entry: AuditLogEntry, tx=None) -> None: ...

    @abstractmethod
    async def find_by_supervisor(
        self, supervisor_id: str, limit: int = 100, tx=None
    ) -> list[AuditLogEntry]: ...


class SessionRepository(ABC):
    @abstractmethod
    async def find_by_id(self, session_id: str, tx=None) -> Optional[TerminalSession]: ...


class FolderRepository(ABC):
    @abstractmethod
    async def find_by_id(self, folder_id: str, tx=None) -> Optional[Folder]: ...


class TaskRepository(ABC):
    @abstractmethod
    async def save(self, task: Task, tx=None) -> None: ...

    @abstractmethod
    async def update(self, task: Task, tx=None) -> None: ...

    @abstractmethod
    async def find_by_id(self, task_id: str, tx=None) -> Optional[Task]: ...

    @abstractmethod
    async def find_by_supervisor(self, supervisor_id: str, tx=None) -> list[Task]: ...


class CommandInjector(ABC):
    @abstractmethod
    def validate_command(self, command: str) -> CommandValidation: ...

    @abstractmethod
    async def inject_command(
        self,
        handle: str,
        command: str,
        press_enter: bool = True,
        correlation_id: Optional[str] = None,
    ) -> InjectionResult: ...

    @abstractmethod
    async def send_control_char(self, handle: str, char: str) -> bool: ...

    @abstractmethod
    async def is_session_ready(self, handle: str) -> bool: ...

    @abstractmethod
    async def get_current_pane_content(self, handle: str) -> Optional[str]: ...


class StallDetector(ABC):
    @abstractmethod
    async def detect_stall(
        self,
        handle: str,
        previous: Optional[ScrollbackSnapshot],
        threshold_seconds: int,
    ) -> StallResult: ...


class TaskPlanningGateway(ABC):
    """
    Natural-language task planning. The heuristic implementation is a
    placeholder; a language-model backend must fit behind the same methods.
    """

    @abstractmethod
    async def parse(self, text: str, context: Optional[dict] = None) -> ParsedTask: ...

    @abstractmethod
    async def plan(
        self,
        task: Task,
        available_agents: list[str],
        context: Optional[dict] = None,
    ) -> ExecutionPlan: ...

    @abstractmethod
    async def analyze_transcript(self, task: Task, transcript: list[dict]) -> TaskAnalysis: ...

    @abstractmethod
    async def generate_context_injection(
        self,
        task: Task,
        plan: ExecutionPlan,
        context: Optional[dict] = None,
    ) -> str: ...

    @abstractmethod
    async def analyze_progress(self, task: Task, pane_content: str) -> ProgressReport: ...

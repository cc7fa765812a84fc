"""
SQL Repositories
================

SQLAlchemy implementations of the persistence ports.

Every method takes an optional TransactionContext. With one, the call runs
on the transaction's session and only flushes; the coordinator commits.
Without one, the call opens its own session and commits before returning.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy import update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession

from termwarden.audit import AuditActionType, AuditLogEntry
from termwarden.db.connection import Database
from termwarden.db.models import (
    AuditLogModel,
    FolderModel,
    InsightModel,
    SupervisorModel,
    TaskModel,
    TerminalSessionModel,
)
from termwarden.db.transaction import TransactionContext
from termwarden.errors import ConcurrentUpdateError
from termwarden.insight import Insight, InsightSeverity, InsightType, SuggestedAction
from termwarden.ports import (
    AuditLogRepository,
    FolderRepository,
    InsightRepository,
    SessionRepository,
    SupervisorRepository,
    TaskRepository,
)
from termwarden.sessions import Folder, TerminalSession
from termwarden.supervisor import ScopeKind, Supervisor, SupervisorKind, SupervisorStatus
from termwarden.tasks.task import Task, TaskError, TaskResult, TaskStatus, TaskType

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlRepository:
    """Session handling shared by the SQL repositories."""

    def __init__(self, database: Database):
        self.database = database

    @asynccontextmanager
    async def _session(self, tx: Optional[TransactionContext]) -> AsyncIterator[AsyncSession]:
        if tx is not None:
            yield tx.session
            await tx.session.flush()
            return
        async with self.database.session() as session:
            yield session
            await session.commit()


# =============================================================================
# Supervisors
# =============================================================================

def supervisor_to_model(supervisor: Supervisor) -> SupervisorModel:
    return SupervisorModel(
        id=supervisor.id,
        kind=supervisor.kind.value,
        user_id=supervisor.user_id,
        session_id=supervisor.session_id,
        scope_kind=supervisor.scope_kind.value,
        scope_id=supervisor.scope_id,
        status=supervisor.status.value,
        monitoring_interval=supervisor.monitoring_interval,
        stall_threshold=supervisor.stall_threshold,
        auto_intervention=supervisor.auto_intervention,
        custom_instructions=supervisor.custom_instructions,
        last_activity_at=supervisor.last_activity_at,
        created_at=supervisor.created_at,
        updated_at=supervisor.updated_at,
        retired_at=supervisor.retired_at,
    )


def supervisor_from_model(row: SupervisorModel) -> Supervisor:
    return Supervisor(
        id=row.id,
        kind=SupervisorKind(row.kind),
        user_id=row.user_id,
        session_id=row.session_id,
        scope_kind=ScopeKind(row.scope_kind),
        scope_id=row.scope_id,
        status=SupervisorStatus(row.status),
        monitoring_interval=row.monitoring_interval,
        stall_threshold=row.stall_threshold,
        auto_intervention=row.auto_intervention,
        custom_instructions=row.custom_instructions,
        last_activity_at=_aware(row.last_activity_at),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        retired_at=_aware(row.retired_at),
    )


class SqlSupervisorRepository(SqlRepository, SupervisorRepository):
    async def find_by_id(self, supervisor_id: str, tx=None) -> Optional[Supervisor]:
        async with self._session(tx) as session:
            row = await session.get(SupervisorModel, supervisor_id)
            return supervisor_from_model(row) if row else None

    async def find_by_scope(self, user_id: str, scope_id: str, tx=None) -> Optional[Supervisor]:
        async with self._session(tx) as session:
            result = await session.execute(
                select(SupervisorModel)
                .where(SupervisorModel.user_id == user_id)
                .where(SupervisorModel.scope_id == scope_id)
                .where(SupervisorModel.kind == SupervisorKind.SCOPED.value)
                .where(SupervisorModel.retired_at.is_(None))
            )
            row = result.scalars().first()
            return supervisor_from_model(row) if row else None

    async def find_master(self, user_id: str, tx=None) -> Optional[Supervisor]:
        async with self._session(tx) as session:
            result = await session.execute(
                select(SupervisorModel)
                .where(SupervisorModel.user_id == user_id)
                .where(SupervisorModel.kind == SupervisorKind.MASTER.value)
                .where(SupervisorModel.retired_at.is_(None))
            )
            row = result.scalars().first()
            return supervisor_from_model(row) if row else None

    async def find_by_user(self, user_id: str, tx=None) -> list[Supervisor]:
        async with self._session(tx) as session:
            result = await session.execute(
                select(SupervisorModel)
                .where(SupervisorModel.user_id == user_id)
                .where(SupervisorModel.retired_at.is_(None))
                .order_by(SupervisorModel.created_at)
            )
            return [supervisor_from_model(row) for row in result.scalars().all()]

    async def save(self, supervisor: Supervisor, tx=None) -> None:
        async with self._session(tx) as session:
            session.add(supervisor_to_model(supervisor))
            await session.flush()

    async def update(self, supervisor: Supervisor, tx=None) -> None:
        async with self._session(tx) as session:
            await session.merge(supervisor_to_model(supervisor))

    async def update_status(self, supervisor: Supervisor, expected: SupervisorStatus, tx=None) -> None:
        async with self._session(tx) as session:
            result = await session.execute(
                sql_update(SupervisorModel)
                .where(SupervisorModel.id == supervisor.id)
                .where(SupervisorModel.status == expected.value)
                .values(
                    status=supervisor.status.value,
                    last_activity_at=supervisor.last_activity_at,
                    updated_at=supervisor.updated_at,
                )
            )
            if result.rowcount == 0:
                raise ConcurrentUpdateError("Supervisor", supervisor.id, expected.value)

    async def update_config(self, supervisor: Supervisor, tx=None) -> None:
        async with self._session(tx) as session:
            await session.execute(
                sql_update(SupervisorModel)
                .where(SupervisorModel.id == supervisor.id)
                .values(
                    monitoring_interval=supervisor.monitoring_interval,
                    stall_threshold=supervisor.stall_threshold,
                    auto_intervention=supervisor.auto_intervention,
                    custom_instructions=supervisor.custom_instructions,
                    updated_at=supervisor.updated_at,
                )
            )

    async def touch(self, supervisor_id: str, at: datetime, tx=None) -> None:
        async with self._session(tx) as session:
            await session.execute(
                sql_update(SupervisorModel)
                .where(SupervisorModel.id == supervisor_id)
                .values(last_activity_at=at, updated_at=at)
            )

    async def retire(self, supervisor: Supervisor, tx=None) -> Supervisor:
        """Persist the retired copy of ``supervisor``, freeing its scope slot."""
        retired = supervisor.retire()
        async with self._session(tx) as session:
            await session.execute(
                sql_update(SupervisorModel)
                .where(SupervisorModel.id == supervisor.id)
                .where(SupervisorModel.retired_at.is_(None))
                .values(retired_at=retired.retired_at, updated_at=retired.updated_at)
            )
        return retired


# =============================================================================
# Insights
# =============================================================================

def insight_to_model(insight: Insight) -> InsightModel:
    return InsightModel(
        id=insight.id,
        supervisor_id=insight.supervisor_id,
        session_id=insight.session_id,
        type=insight.type.value,
        severity=insight.severity.value,
        message=insight.message,
        context=dict(insight.context),
        suggested_actions=[a.to_dict() for a in insight.suggested_actions],
        resolved=insight.resolved,
        resolved_at=insight.resolved_at,
        created_at=insight.created_at,
    )


def insight_from_model(row: InsightModel) -> Insight:
    return Insight(
        id=row.id,
        supervisor_id=row.supervisor_id,
        session_id=row.session_id,
        type=InsightType(row.type),
        severity=InsightSeverity(row.severity),
        message=row.message,
        context=row.context or {},
        suggested_actions=tuple(SuggestedAction.from_dict(a) for a in row.suggested_actions or []),
        resolved=row.resolved,
        resolved_at=_aware(row.resolved_at),
        created_at=_aware(row.created_at),
    )


class SqlInsightRepository(SqlRepository, InsightRepository):
    async def save(self, insight: Insight, tx=None) -> None:
        async with self._session(tx) as session:
            session.add(insight_to_model(insight))
            await session.flush()

    async def update(self, insight: Insight, tx=None) -> None:
        async with self._session(tx) as session:
            await session.merge(insight_to_model(insight))

    async def find_by_id(self, insight_id: str, tx=None) -> Optional[Insight]:
        async with self._session(tx) as session:
            row = await session.get(InsightModel, insight_id)
            return insight_from_model(row) if row else None

    async def find_by_supervisor(
        self, supervisor_id: str, unresolved_only: bool = False, tx=None
    ) -> list[Insight]:
        async with self._session(tx) as session:
            query = select(InsightModel).where(InsightModel.supervisor_id == supervisor_id)
            if unresolved_only:
                query = query.where(InsightModel.resolved == False)  # noqa: E712
            result = await session.execute(query.order_by(InsightModel.created_at.desc()))
            return [insight_from_model(row) for row in result.scalars().all()]


# =============================================================================
# Audit log
# =============================================================================

def audit_to_model(entry: AuditLogEntry) -> AuditLogModel:
    return AuditLogModel(
        id=entry.id,
        supervisor_id=entry.supervisor_id,
        action_type=entry.action_type.value,
        target_session_id=entry.target_session_id,
        details=entry.to_dict()["details"],
        created_at=entry.created_at,
    )


def audit_from_model(row: AuditLogModel) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        supervisor_id=row.supervisor_id,
        action_type=AuditActionType(row.action_type),
        target_session_id=row.target_session_id,
        details=row.details or {},
        created_at=_aware(row.created_at),
    )


class SqlAuditLogRepository(SqlRepository, AuditLogRepository):
    async def save(self, entry: AuditLogEntry, tx=None) -> None:
        async with self._session(tx) as session:
            session.add(audit_to_model(entry))
            await session.flush()
        logger.debug("Audit: %s %s", entry.supervisor_id, entry.summary())

    async def find_by_supervisor(
        self, supervisor_id: str, limit: int = 100, tx=None
    ) -> list[AuditLogEntry]:
        async with self._session(tx) as session:
            result = await session.execute(
                select(AuditLogModel)
                .where(AuditLogModel.supervisor_id == supervisor_id)
                .order_by(AuditLogModel.created_at.desc())
                .limit(limit)
            )
            return [audit_from_model(row) for row in result.scalars().all()]


# =============================================================================
# Sessions and folders (read models)
# =============================================================================

class SqlSessionRepository(SqlRepository, SessionRepository):
    async def find_by_id(self, session_id: str, tx=None) -> Optional[TerminalSession]:
        async with self._session(tx) as session:
            row = await session.get(TerminalSessionModel, session_id)
            if row is None:
                return None
            return TerminalSession(
                id=row.id,
                user_id=row.user_id,
                name=row.name,
                handle=row.handle,
                folder_id=row.folder_id,
                status=row.status,
            )

    async def add(self, terminal: TerminalSession, tx=None) -> None:
        async with self._session(tx) as session:
            session.add(TerminalSessionModel(
                id=terminal.id,
                user_id=terminal.user_id,
                name=terminal.name,
                handle=terminal.handle,
                folder_id=terminal.folder_id,
                status=terminal.status,
            ))


class SqlFolderRepository(SqlRepository, FolderRepository):
    async def find_by_id(self, folder_id: str, tx=None) -> Optional[Folder]:
        async with self._session(tx) as session:
            row = await session.get(FolderModel, folder_id)
            if row is None:
                return None
            return Folder(id=row.id, user_id=row.user_id, name=row.name, path=row.path)

    async def add(self, folder: Folder, tx=None) -> None:
        async with self._session(tx) as session:
            session.add(FolderModel(id=folder.id, user_id=folder.user_id, name=folder.name, path=folder.path))


# =============================================================================
# Tasks
# =============================================================================

def task_to_model(task: Task) -> TaskModel:
    return TaskModel(
        id=task.id,
        supervisor_id=task.supervisor_id,
        user_id=task.user_id,
        folder_id=task.folder_id,
        description=task.description,
        type=task.type.value,
        status=task.status.value,
        confidence=task.confidence,
        estimated_duration=task.estimated_duration,
        assigned_agent=task.assigned_agent,
        delegation_id=task.delegation_id,
        context_injected=task.context_injected,
        result=task.result.to_dict() if task.result else None,
        error=task.error.to_dict() if task.error else None,
        created_at=task.created_at,
        updated_at=task.updated_at,
        completed_at=task.completed_at,
    )


def task_from_model(row: TaskModel) -> Task:
    return Task(
        id=row.id,
        supervisor_id=row.supervisor_id,
        user_id=row.user_id,
        folder_id=row.folder_id,
        description=row.description,
        type=TaskType(row.type),
        status=TaskStatus(row.status),
        confidence=row.confidence,
        estimated_duration=row.estimated_duration,
        assigned_agent=row.assigned_agent,
        delegation_id=row.delegation_id,
        context_injected=row.context_injected,
        result=TaskResult.from_dict(row.result) if row.result else None,
        error=TaskError.from_dict(row.error) if row.error else None,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        completed_at=_aware(row.completed_at),
    )


class SqlTaskRepository(SqlRepository, TaskRepository):
    async def save(self, task: Task, tx=None) -> None:
        async with self._session(tx) as session:
            session.add(task_to_model(task))
            await session.flush()

    async def update(self, task: Task, tx=None) -> None:
        async with self._session(tx) as session:
            await session.merge(task_to_model(task))

    async def find_by_id(self, task_id: str, tx=None) -> Optional[Task]:
        async with self._session(tx) as session:
            row = await session.get(TaskModel, task_id)
            return task_from_model(row) if row else None

    async def find_by_supervisor(self, supervisor_id: str, tx=None) -> list[Task]:
        async with self._session(tx) as session:
            result = await session.execute(
                select(TaskModel)
                .where(TaskModel.supervisor_id == supervisor_id)
                .order_by(TaskModel.created_at.desc())
            )
            return [task_from_model(row) for row in result.scalars().all()]

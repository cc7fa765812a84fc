"""
Task Use Cases
==============

Submit free text as a task, plan it for an agent, and watch the delegated
session. Blocked and failed tasks raise insights through the same
InsightGenerator and audit trail the stall sweep uses.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from termwarden.audit import AuditLogEntry
from termwarden.errors import TaskNotFoundError, TransportUnreadyError
from termwarden.insight import Insight, InsightGenerator, MonitoredSession
from termwarden.ports import (
    AuditLogRepository,
    CommandInjector,
    InsightRepository,
    SupervisorRepository,
    TaskPlanningGateway,
    TaskRepository,
    TransactionCoordinator,
)
from termwarden.tasks.task import ExecutionPlan, ProgressReport, Task, TaskError, TaskResult, TaskStatus
from termwarden.use_cases import load_owned_supervisor

logger = logging.getLogger(__name__)

DEFAULT_AGENTS = ("claude",)


async def load_owned_task(tasks: TaskRepository, task_id: str, user_id: str) -> Task:
    task = await tasks.find_by_id(task_id)
    if task is None or task.user_id != user_id:
        raise TaskNotFoundError(task_id)
    return task


@dataclass(frozen=True)
class SubmitTaskInput:
    supervisor_id: str
    user_id: str
    text: str
    folder_id: Optional[str] = None
    context: Optional[dict] = None


@dataclass(frozen=True)
class TaskOutput:
    task: Task
    audit_entries: list[AuditLogEntry] = field(default_factory=list)


class SubmitTask:
    def __init__(
        self,
        supervisors: SupervisorRepository,
        tasks: TaskRepository,
        audit_log: AuditLogRepository,
        planner: TaskPlanningGateway,
        coordinator: TransactionCoordinator,
    ):
        self.supervisors = supervisors
        self.tasks = tasks
        self.audit_log = audit_log
        self.planner = planner
        self.coordinator = coordinator

    async def execute(self, input: SubmitTaskInput) -> TaskOutput:
        supervisor = await load_owned_supervisor(self.supervisors, input.supervisor_id, input.user_id)
        parsed = await self.planner.parse(input.text, input.context)
        task = Task.create(
            supervisor_id=supervisor.id,
            user_id=input.user_id,
            description=parsed.description,
            type=parsed.type,
            folder_id=input.folder_id or supervisor.scope_id,
            confidence=parsed.confidence,
            estimated_duration=parsed.estimated_duration,
        )
        entry = AuditLogEntry.for_task_updated(supervisor.id, task.id, None, task.status.value)

        async def work(tx):
            await self.tasks.save(task, tx)
            await self.audit_log.save(entry, tx)

        await self.coordinator.execute(work)
        logger.info("Queued %s task %s for supervisor %s", task.type.value, task.id, supervisor.id)
        return TaskOutput(task=task, audit_entries=[entry])


@dataclass(frozen=True)
class PlanTaskInput:
    task_id: str
    user_id: str
    available_agents: tuple[str, ...] = DEFAULT_AGENTS
    context: Optional[dict] = None


@dataclass(frozen=True)
class PlanTaskOutput:
    task: Task
    plan: ExecutionPlan
    audit_entries: list[AuditLogEntry] = field(default_factory=list)


class PlanTask:
    """
    Move a queued task through planning into execution.

    A planner failure fails the task (recoverable) before the error
    propagates, so the task never stays stuck in ``planning``.
    """

    def __init__(
        self,
        tasks: TaskRepository,
        audit_log: AuditLogRepository,
        planner: TaskPlanningGateway,
        coordinator: TransactionCoordinator,
    ):
        self.tasks = tasks
        self.audit_log = audit_log
        self.planner = planner
        self.coordinator = coordinator

    async def execute(self, input: PlanTaskInput) -> PlanTaskOutput:
        task = await load_owned_task(self.tasks, input.task_id, input.user_id)
        planning = task.start_planning()

        try:
            plan = await self.planner.plan(planning, list(input.available_agents), input.context)
            injection = await self.planner.generate_context_injection(planning, plan, input.context)
        except Exception as e:
            failed = planning.fail(TaskError(code="PLANNING_FAILED", message=str(e), recoverable=True))
            await self._save(task, failed)
            raise

        executing = planning.start_execution(plan.selected_agent, injection)
        entries = await self._save(task, executing)
        logger.info("Planned task %s: %s (%s)", task.id, plan.selected_agent, plan.isolation_strategy)
        return PlanTaskOutput(task=executing, plan=plan, audit_entries=entries)

    async def _save(self, before: Task, after: Task) -> list[AuditLogEntry]:
        entry = AuditLogEntry.for_task_updated(
            after.supervisor_id, after.id, before.status.value, after.status.value
        )

        async def work(tx):
            await self.tasks.update(after, tx)
            await self.audit_log.save(entry, tx)

        await self.coordinator.execute(work)
        return [entry]


@dataclass(frozen=True)
class MonitorTaskProgressInput:
    task_id: str
    user_id: str
    session: MonitoredSession            # The session the task was delegated to


@dataclass(frozen=True)
class MonitorTaskProgressOutput:
    task: Task
    report: ProgressReport
    insight: Optional[Insight] = None
    audit_entries: list[AuditLogEntry] = field(default_factory=list)


class MonitorTaskProgress:
    def __init__(
        self,
        tasks: TaskRepository,
        insights: InsightRepository,
        audit_log: AuditLogRepository,
        injector: CommandInjector,
        planner: TaskPlanningGateway,
        coordinator: TransactionCoordinator,
        generator: Optional[InsightGenerator] = None,
    ):
        self.tasks = tasks
        self.insights = insights
        self.audit_log = audit_log
        self.injector = injector
        self.planner = planner
        self.coordinator = coordinator
        self.generator = generator or InsightGenerator()

    async def execute(self, input: MonitorTaskProgressInput) -> MonitorTaskProgressOutput:
        task = await load_owned_task(self.tasks, input.task_id, input.user_id)
        if not task.is_active:
            return MonitorTaskProgressOutput(
                task=task,
                report=ProgressReport(
                    status=task.status.value, progress=100 if task.is_terminal else 0,
                    current_activity=f"Task is {task.status.value}",
                ),
            )

        session = input.session
        content = await self.injector.get_current_pane_content(session.handle)
        if content is None:
            raise TransportUnreadyError(session.handle)

        report = await self.planner.analyze_progress(task, content)

        updated = task
        if updated.status == TaskStatus.EXECUTING:
            updated = updated.start_monitoring()
        if report.status == "completed":
            updated = updated.complete(TaskResult(success=True, summary=report.current_activity))
        elif report.status == "failed":
            updated = updated.fail(TaskError(
                code="AGENT_FAILED",
                message=report.blocked_reason or report.current_activity,
                recoverable=True,
            ))

        insight = None
        entries: list[AuditLogEntry] = []
        if updated.status != task.status:
            entries.append(AuditLogEntry.for_task_updated(
                task.supervisor_id, task.id, task.status.value, updated.status.value, session.session_id
            ))
        if report.needs_attention:
            insight = self.generator.task_insight(
                task.supervisor_id, session.session_id, task.id,
                report.status, report.blocked_reason, report.suggested_intervention,
            )
            entries.append(AuditLogEntry.for_insight_generated(
                task.supervisor_id, insight.id, session.session_id,
                insight.type.value, insight.severity.value,
            ))

        if updated is not task or insight is not None:
            async def work(tx):
                if updated is not task:
                    await self.tasks.update(updated, tx)
                if insight is not None:
                    await self.insights.save(insight, tx)
                for entry in entries:
                    await self.audit_log.save(entry, tx)

            await self.coordinator.execute(work)

        return MonitorTaskProgressOutput(task=updated, report=report, insight=insight, audit_entries=entries)

"""
Service Registry
================

Explicit wiring for a termwarden process. The entry point opens one
WardenServices, uses its use cases, and closes it on shutdown:

    async with await WardenServices.open(WardenConfig.load()) as services:
        output = await services.sweep(supervisor_id, user_id, sessions)

The registry also owns the caller-side snapshot cache the stall detector
needs between polling cycles.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from termwarden.config import WardenConfig
from termwarden.db.connection import Database, init_db
from termwarden.db.repositories import (
    SqlAuditLogRepository,
    SqlFolderRepository,
    SqlInsightRepository,
    SqlSessionRepository,
    SqlSupervisorRepository,
    SqlTaskRepository,
)
from termwarden.db.transaction import SqlTransactionCoordinator
from termwarden.injection import CommandInjectionGateway
from termwarden.insight import InsightGenerator, MonitoredSession
from termwarden.stall_detection import ScrollbackMonitor, ScrollbackSnapshot
from termwarden.tasks.planner import HeuristicTaskPlanner
from termwarden.tasks.use_cases import MonitorTaskProgress, PlanTask, SubmitTask
from termwarden.terminal import TerminalTransport, TmuxTransport
from termwarden.use_cases import (
    CreateMasterSupervisor,
    CreateScopedSupervisor,
    DetectStalledSessions,
    DetectStalledSessionsInput,
    InjectCommand,
    PauseSupervisor,
    ResumeSupervisor,
    SessionCheck,
    SweepOutput,
    UpdateSupervisorConfig,
)

logger = logging.getLogger(__name__)


class SnapshotCache:
    """Last snapshot per (supervisor, session), fed back into each sweep."""

    def __init__(self):
        self._snapshots: dict[tuple[str, str], ScrollbackSnapshot] = {}

    def get(self, supervisor_id: str, session_id: str) -> Optional[ScrollbackSnapshot]:
        return self._snapshots.get((supervisor_id, session_id))

    def put(self, supervisor_id: str, session_id: str, snapshot: ScrollbackSnapshot) -> None:
        self._snapshots[(supervisor_id, session_id)] = snapshot

    def checks_for(self, supervisor_id: str, sessions: Iterable[MonitoredSession]) -> list[SessionCheck]:
        return [
            SessionCheck(session=s, previous_snapshot=self.get(supervisor_id, s.session_id))
            for s in sessions
        ]

    def remember(self, output: SweepOutput, swept: Iterable[str]) -> None:
        """
        Store the snapshots a sweep produced and drop sessions no longer swept.

        A session that was swept but could not be captured keeps its last snapshot.
        """
        supervisor_id = output.supervisor.id
        keep = set(swept)
        for key in [k for k in self._snapshots if k[0] == supervisor_id and k[1] not in keep]:
            del self._snapshots[key]
        for session_id, result in output.results.items():
            self.put(supervisor_id, session_id, result.snapshot)

    def forget(self, supervisor_id: str, session_id: Optional[str] = None) -> None:
        """Drop one session's snapshot, or every snapshot of a supervisor."""
        if session_id is not None:
            self._snapshots.pop((supervisor_id, session_id), None)
            return
        for key in [k for k in self._snapshots if k[0] == supervisor_id]:
            del self._snapshots[key]

    def clear(self) -> None:
        self._snapshots.clear()

    def __len__(self) -> int:
        return len(self._snapshots)


@dataclass
class WardenServices:
    config: WardenConfig
    database: Database
    transport: TerminalTransport
    snapshots: SnapshotCache = field(default_factory=SnapshotCache)

    def __post_init__(self):
        db = self.database
        self.coordinator = SqlTransactionCoordinator(db)
        self.supervisors = SqlSupervisorRepository(db)
        self.insights = SqlInsightRepository(db)
        self.audit_log = SqlAuditLogRepository(db)
        self.sessions = SqlSessionRepository(db)
        self.folders = SqlFolderRepository(db)
        self.tasks = SqlTaskRepository(db)

        self.injector = CommandInjectionGateway(
            self.transport, self.config.max_command_length, self.config.capture_lines
        )
        self.detector = ScrollbackMonitor(self.transport, self.config.capture_lines)
        self.generator = InsightGenerator(self.config.thresholds)
        self.planner = HeuristicTaskPlanner(self.config.heuristic_confidence)

        self.create_scoped_supervisor = CreateScopedSupervisor(
            self.supervisors, self.audit_log, self.sessions, self.folders, self.coordinator, self.config
        )
        self.create_master_supervisor = CreateMasterSupervisor(
            self.supervisors, self.audit_log, self.sessions, self.coordinator, self.config
        )
        self.pause_supervisor = PauseSupervisor(self.supervisors, self.audit_log, self.coordinator)
        self.resume_supervisor = ResumeSupervisor(self.supervisors, self.audit_log, self.coordinator)
        self.update_supervisor_config = UpdateSupervisorConfig(self.supervisors, self.coordinator)
        self.inject_command = InjectCommand(
            self.supervisors, self.sessions, self.audit_log, self.injector, self.coordinator
        )
        self.detect_stalled_sessions = DetectStalledSessions(
            self.supervisors, self.insights, self.audit_log, self.detector, self.coordinator, self.generator
        )
        self.submit_task = SubmitTask(
            self.supervisors, self.tasks, self.audit_log, self.planner, self.coordinator
        )
        self.plan_task = PlanTask(self.tasks, self.audit_log, self.planner, self.coordinator)
        self.monitor_task_progress = MonitorTaskProgress(
            self.tasks, self.insights, self.audit_log, self.injector, self.planner,
            self.coordinator, self.generator,
        )

    @classmethod
    async def open(
        cls,
        config: Optional[WardenConfig] = None,
        transport: Optional[TerminalTransport] = None,
    ) -> "WardenServices":
        config = config or WardenConfig.load()
        database = await init_db(config.database_url)
        transport = transport or TmuxTransport(config.tmux_binary)
        logger.info("termwarden services ready")
        return cls(config=config, database=database, transport=transport)

    async def sweep(
        self,
        supervisor_id: str,
        user_id: str,
        sessions: Iterable[MonitoredSession],
    ) -> SweepOutput:
        """Run a stall sweep using and refreshing the cached snapshots."""
        checks = self.snapshots.checks_for(supervisor_id, sessions)
        output = await self.detect_stalled_sessions.execute(
            DetectStalledSessionsInput(supervisor_id=supervisor_id, user_id=user_id, sessions=checks)
        )
        self.snapshots.remember(output, [check.session.session_id for check in checks])
        return output

    async def close(self) -> None:
        self.snapshots.clear()
        await self.database.dispose()

    async def __aenter__(self) -> "WardenServices":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

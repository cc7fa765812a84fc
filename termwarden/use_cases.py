"""
Supervision Use Cases
=====================

Entry points for API handlers and schedulers. Each use case takes a plain
input record, composes the domain objects and ports, and returns the
updated supervisor together with the audit and insight records it wrote.

Ownership failures are reported exactly like absence, so a caller cannot
probe for other users' supervisors, sessions or folders.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from termwarden.audit import AuditLogEntry, CheckResult
from termwarden.config import WardenConfig
from termwarden.errors import (
    ConcurrentUpdateError,
    InvalidCommandError,
    ScopeNotFoundError,
    SessionNotFoundError,
    SessionNotInScopeError,
    SupervisorAlreadyExistsError,
    SupervisorNotFoundError,
    SupervisorPausedError,
    UniqueConstraintViolation,
)
from termwarden.injection import InjectionResult
from termwarden.insight import Insight, InsightGenerator, MonitoredSession
from termwarden.ports import (
    AuditLogRepository,
    CommandInjector,
    FolderRepository,
    InsightRepository,
    SessionRepository,
    StallDetector,
    SupervisorRepository,
    TransactionCoordinator,
)
from termwarden.sessions import TerminalSession
from termwarden.stall_detection import ScrollbackSnapshot, StallResult
from termwarden.supervisor import Supervisor, utc_now

logger = logging.getLogger(__name__)


async def load_owned_supervisor(
    supervisors: SupervisorRepository,
    supervisor_id: str,
    user_id: str,
) -> Supervisor:
    supervisor = await supervisors.find_by_id(supervisor_id)
    if supervisor is None or not supervisor.belongs_to(user_id) or supervisor.is_retired:
        raise SupervisorNotFoundError(supervisor_id)
    return supervisor


async def reload_supervisor(supervisors: SupervisorRepository, supervisor_id: str, tx) -> Supervisor:
    """Re-read a supervisor inside ``tx`` so writes start from its stored state."""
    supervisor = await supervisors.find_by_id(supervisor_id, tx)
    if supervisor is None or supervisor.is_retired:
        raise SupervisorNotFoundError(supervisor_id)
    return supervisor


async def load_owned_session(
    sessions: SessionRepository,
    session_id: str,
    user_id: str,
) -> TerminalSession:
    session = await sessions.find_by_id(session_id)
    if session is None or session.user_id != user_id:
        raise SessionNotFoundError(session_id)
    return session


# =============================================================================
# Creation
# =============================================================================

@dataclass(frozen=True)
class CreateScopedSupervisorInput:
    user_id: str
    session_id: str                      # Host terminal for the new supervisor
    folder_id: str
    monitoring_interval: Optional[int] = None
    stall_threshold: Optional[int] = None
    auto_intervention: bool = False
    custom_instructions: Optional[str] = None


@dataclass(frozen=True)
class CreateMasterSupervisorInput:
    user_id: str
    session_id: str
    monitoring_interval: Optional[int] = None
    stall_threshold: Optional[int] = None
    auto_intervention: bool = False
    custom_instructions: Optional[str] = None


@dataclass(frozen=True)
class CreateSupervisorOutput:
    supervisor: Supervisor
    audit_entry: AuditLogEntry


class _CreateSupervisor:
    """Shared check-in-transaction then insert flow for both supervisor kinds."""

    def __init__(
        self,
        supervisors: SupervisorRepository,
        audit_log: AuditLogRepository,
        sessions: SessionRepository,
        coordinator: TransactionCoordinator,
        config: Optional[WardenConfig] = None,
    ):
        self.supervisors = supervisors
        self.audit_log = audit_log
        self.sessions = sessions
        self.coordinator = coordinator
        self.config = config or WardenConfig()

    def _defaults(self, input) -> dict:
        return {
            "monitoring_interval": input.monitoring_interval or self.config.default_monitoring_interval,
            "stall_threshold": input.stall_threshold or self.config.default_stall_threshold,
            "auto_intervention": input.auto_intervention,
            "custom_instructions": input.custom_instructions,
        }

    async def _find_existing(self, supervisor: Supervisor, tx=None) -> Optional[Supervisor]:
        raise NotImplementedError

    async def _persist(self, supervisor: Supervisor) -> CreateSupervisorOutput:
        entry = AuditLogEntry.for_supervisor_created(supervisor)

        async def work(tx):
            existing = await self._find_existing(supervisor, tx)
            if existing is not None:
                raise SupervisorAlreadyExistsError(existing.id, supervisor.scope_id)
            await self.supervisors.save(supervisor, tx)
            await self.audit_log.save(entry, tx)

        try:
            await self.coordinator.execute(work)
        except UniqueConstraintViolation as e:
            # Lost a race that got past the in-transaction check
            winner = await self._find_existing(supervisor)
            if winner is None:
                raise
            logger.info(
                "Concurrent creation for user %s resolved in favour of %s",
                supervisor.user_id, winner.id,
            )
            raise SupervisorAlreadyExistsError(winner.id, supervisor.scope_id) from e

        logger.info("Created %s supervisor %s", supervisor.kind.value, supervisor.id)
        return CreateSupervisorOutput(supervisor=supervisor, audit_entry=entry)


class CreateScopedSupervisor(_CreateSupervisor):
    def __init__(
        self,
        supervisors: SupervisorRepository,
        audit_log: AuditLogRepository,
        sessions: SessionRepository,
        folders: FolderRepository,
        coordinator: TransactionCoordinator,
        config: Optional[WardenConfig] = None,
    ):
        super().__init__(supervisors, audit_log, sessions, coordinator, config)
        self.folders = folders

    async def execute(self, input: CreateScopedSupervisorInput) -> CreateSupervisorOutput:
        # Authorization only; the creation decision is made in the transaction
        await load_owned_session(self.sessions, input.session_id, input.user_id)
        folder = await self.folders.find_by_id(input.folder_id)
        if folder is None or folder.user_id != input.user_id:
            raise ScopeNotFoundError(input.folder_id)

        supervisor = Supervisor.create_scoped(
            input.user_id, input.session_id, input.folder_id, **self._defaults(input)
        )
        return await self._persist(supervisor)

    async def _find_existing(self, supervisor: Supervisor, tx=None) -> Optional[Supervisor]:
        return await self.supervisors.find_by_scope(supervisor.user_id, supervisor.scope_id, tx)


class CreateMasterSupervisor(_CreateSupervisor):
    async def execute(self, input: CreateMasterSupervisorInput) -> CreateSupervisorOutput:
        await load_owned_session(self.sessions, input.session_id, input.user_id)
        supervisor = Supervisor.create_master(input.user_id, input.session_id, **self._defaults(input))
        return await self._persist(supervisor)

    async def _find_existing(self, supervisor: Supervisor, tx=None) -> Optional[Supervisor]:
        return await self.supervisors.find_master(supervisor.user_id, tx)


# =============================================================================
# Pause / resume / configure
# =============================================================================

@dataclass(frozen=True)
class SupervisorRef:
    supervisor_id: str
    user_id: str


@dataclass(frozen=True)
class StatusChangeOutput:
    supervisor: Supervisor
    audit_entry: Optional[AuditLogEntry] = None   # None when nothing changed

    @property
    def changed(self) -> bool:
        return self.audit_entry is not None


class _ChangeStatus:
    """
    Status writes are decided on a copy re-read inside the transaction and
    land only while the stored status is still the one that copy saw. A
    write that loses to a concurrent change is retried from a fresh read.
    """

    max_attempts = 3

    def __init__(
        self,
        supervisors: SupervisorRepository,
        audit_log: AuditLogRepository,
        coordinator: TransactionCoordinator,
    ):
        self.supervisors = supervisors
        self.audit_log = audit_log
        self.coordinator = coordinator

    async def _apply(
        self,
        supervisor: Supervisor,
        transition: Callable[[Supervisor], Supervisor],
    ) -> StatusChangeOutput:
        if transition(supervisor) is supervisor:
            return StatusChangeOutput(supervisor=supervisor)

        async def work(tx):
            current = await reload_supervisor(self.supervisors, supervisor.id, tx)
            updated = transition(current)
            if updated is current:
                return current, None
            entry = AuditLogEntry.for_status_changed(
                current.id, current.status.value, updated.status.value
            )
            await self.supervisors.update_status(updated, current.status, tx)
            await self.audit_log.save(entry, tx)
            return updated, entry

        for attempt in range(1, self.max_attempts + 1):
            try:
                updated, entry = await self.coordinator.execute(work)
                break
            except ConcurrentUpdateError:
                if attempt == self.max_attempts:
                    raise
                logger.info("Supervisor %s changed during a status write, retrying", supervisor.id)

        if entry is None:
            return StatusChangeOutput(supervisor=updated)
        logger.info(
            "Supervisor %s: %s -> %s",
            supervisor.id, entry.details["old_status"], entry.details["new_status"],
        )
        return StatusChangeOutput(supervisor=updated, audit_entry=entry)


class PauseSupervisor(_ChangeStatus):
    """Pause a supervisor. Pausing a paused supervisor writes nothing."""

    async def execute(self, input: SupervisorRef) -> StatusChangeOutput:
        supervisor = await load_owned_supervisor(self.supervisors, input.supervisor_id, input.user_id)
        return await self._apply(supervisor, Supervisor.pause)


class ResumeSupervisor(_ChangeStatus):
    async def execute(self, input: SupervisorRef) -> StatusChangeOutput:
        supervisor = await load_owned_supervisor(self.supervisors, input.supervisor_id, input.user_id)
        return await self._apply(supervisor, Supervisor.resume)


@dataclass(frozen=True)
class UpdateSupervisorConfigInput:
    supervisor_id: str
    user_id: str
    monitoring_interval: Optional[int] = None
    stall_threshold: Optional[int] = None
    auto_intervention: Optional[bool] = None
    custom_instructions: Optional[str] = None
    clear_instructions: bool = False


class UpdateSupervisorConfig:
    """Change configuration only; status is never written from here."""

    def __init__(self, supervisors: SupervisorRepository, coordinator: TransactionCoordinator):
        self.supervisors = supervisors
        self.coordinator = coordinator

    async def execute(self, input: UpdateSupervisorConfigInput) -> Supervisor:
        await load_owned_supervisor(self.supervisors, input.supervisor_id, input.user_id)
        changes = {
            "monitoring_interval": input.monitoring_interval,
            "stall_threshold": input.stall_threshold,
            "auto_intervention": input.auto_intervention,
        }
        if input.clear_instructions:
            changes["custom_instructions"] = None
        elif input.custom_instructions is not None:
            changes["custom_instructions"] = input.custom_instructions

        async def work(tx):
            current = await reload_supervisor(self.supervisors, input.supervisor_id, tx)
            updated = current.update_config(**changes)
            await self.supervisors.update_config(updated, tx)
            return updated

        return await self.coordinator.execute(work)


# =============================================================================
# Command injection
# =============================================================================

@dataclass(frozen=True)
class InjectCommandInput:
    supervisor_id: str
    user_id: str
    session_id: str
    command: str
    reason: Optional[str] = None
    press_enter: bool = True


@dataclass(frozen=True)
class InjectCommandOutput:
    result: InjectionResult
    audit_entry: AuditLogEntry
    supervisor: Supervisor


class InjectCommand:
    """
    Inject a command into a session on a supervisor's behalf.

    The audit entry is committed before the terminal is touched, so every
    attempt leaves a record even if delivery fails or the process dies.
    """

    def __init__(
        self,
        supervisors: SupervisorRepository,
        sessions: SessionRepository,
        audit_log: AuditLogRepository,
        injector: CommandInjector,
        coordinator: TransactionCoordinator,
    ):
        self.supervisors = supervisors
        self.sessions = sessions
        self.audit_log = audit_log
        self.injector = injector
        self.coordinator = coordinator

    async def execute(self, input: InjectCommandInput) -> InjectCommandOutput:
        supervisor = await load_owned_supervisor(self.supervisors, input.supervisor_id, input.user_id)
        if supervisor.is_paused:
            raise SupervisorPausedError(supervisor.id)

        session = await load_owned_session(self.sessions, input.session_id, input.user_id)
        if not supervisor.is_in_scope(session.folder_id):
            raise SessionNotInScopeError(supervisor.id, session.id)

        validation = self.injector.validate_command(input.command)
        if not validation.valid:
            raise InvalidCommandError(validation.reason or "rejected", validation.dangerous)

        entry = AuditLogEntry.for_command_injected(
            supervisor.id,
            session.id,
            input.command,
            reason=input.reason,
            dangerous=validation.dangerous,
            press_enter=input.press_enter,
        )

        async def log(tx):
            await self.audit_log.save(entry, tx)

        await self.coordinator.execute(log)

        result = await self.injector.inject_command(
            session.handle, input.command, input.press_enter, correlation_id=entry.id
        )

        if result.success and supervisor.is_idle:
            supervisor = await self._mark_acting(supervisor)
        return InjectCommandOutput(result=result, audit_entry=entry, supervisor=supervisor)

    async def _mark_acting(self, supervisor: Supervisor) -> Supervisor:
        """
        Move the supervisor to acting if it is still idle in storage. A
        supervisor paused while the command was in flight stays paused.
        """
        async def work(tx):
            current = await reload_supervisor(self.supervisors, supervisor.id, tx)
            if not current.is_idle:
                return current
            acting = current.start_acting()
            await self.supervisors.update_status(acting, current.status, tx)
            await self.audit_log.save(
                AuditLogEntry.for_status_changed(current.id, current.status.value, acting.status.value),
                tx,
            )
            return acting

        try:
            return await self.coordinator.execute(work)
        except Exception as e:
            # The command is already delivered; a lost status write does not undo it
            logger.warning("Failed to record acting status for %s: %s", supervisor.id, e)
            return supervisor


# =============================================================================
# Stall sweep
# =============================================================================

@dataclass(frozen=True)
class SessionCheck:
    session: MonitoredSession
    previous_snapshot: Optional[ScrollbackSnapshot] = None


@dataclass(frozen=True)
class DetectStalledSessionsInput:
    supervisor_id: str
    user_id: str
    sessions: list[SessionCheck] = field(default_factory=list)


@dataclass(frozen=True)
class SessionError:
    session_id: str
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, session_id: str, error: BaseException) -> "SessionError":
        return cls(session_id=session_id, error_type=type(error).__name__, message=str(error))


@dataclass
class SweepOutput:
    supervisor: Supervisor
    insights: list[Insight] = field(default_factory=list)
    audit_entries: list[AuditLogEntry] = field(default_factory=list)
    results: dict[str, StallResult] = field(default_factory=dict)
    errors: list[SessionError] = field(default_factory=list)

    @property
    def stalled_session_ids(self) -> list[str]:
        return [sid for sid, result in self.results.items() if result.is_stalled]


class DetectStalledSessions:
    """
    Check a batch of sessions for stalls and errors.

    Sessions are probed one by one; a failing probe is recorded in
    ``errors`` and the sweep moves on. Everything generated is written in a
    single transaction at the end.
    """

    def __init__(
        self,
        supervisors: SupervisorRepository,
        insights: InsightRepository,
        audit_log: AuditLogRepository,
        detector: StallDetector,
        coordinator: TransactionCoordinator,
        generator: Optional[InsightGenerator] = None,
    ):
        self.supervisors = supervisors
        self.insights = insights
        self.audit_log = audit_log
        self.detector = detector
        self.coordinator = coordinator
        self.generator = generator or InsightGenerator()

    async def execute(self, input: DetectStalledSessionsInput) -> SweepOutput:
        supervisor = await load_owned_supervisor(self.supervisors, input.supervisor_id, input.user_id)
        if supervisor.is_paused:
            raise SupervisorPausedError(supervisor.id)

        output = SweepOutput(supervisor=supervisor)
        for check in input.sessions:
            session = check.session
            if not supervisor.is_in_scope(session.scope_id):
                output.errors.append(SessionError.from_exception(
                    session.session_id, SessionNotInScopeError(supervisor.id, session.session_id)
                ))
                continue
            try:
                result = await self.detector.detect_stall(
                    session.handle, check.previous_snapshot, supervisor.stall_threshold
                )
            except Exception as e:
                logger.warning("Stall check failed for session %s: %s", session.session_id, e)
                output.errors.append(SessionError.from_exception(session.session_id, e))
                continue

            output.results[session.session_id] = result
            insight = self._insight_for(supervisor, check, result)
            if insight is None:
                continue
            check_result = CheckResult.STALLED if result.is_stalled else CheckResult.ERROR
            output.insights.append(insight)
            output.audit_entries.append(AuditLogEntry.for_session_monitored(
                supervisor.id, session.session_id, check_result, result.confidence
            ))
            output.audit_entries.append(AuditLogEntry.for_insight_generated(
                supervisor.id, insight.id, session.session_id,
                insight.type.value, insight.severity.value,
            ))

        # Only the activity timestamp is written; status may have changed while sessions were checked
        now = utc_now()

        async def work(tx):
            await self.supervisors.touch(supervisor.id, now, tx)
            for insight in output.insights:
                await self.insights.save(insight, tx)
            for entry in output.audit_entries:
                await self.audit_log.save(entry, tx)

        await self.coordinator.execute(work)
        output.supervisor = await self.supervisors.find_by_id(supervisor.id) or supervisor
        logger.info(
            "Sweep by %s: %d checked, %d insights, %d errors",
            supervisor.id, len(output.results), len(output.insights), len(output.errors),
        )
        return output

    def _insight_for(
        self,
        supervisor: Supervisor,
        check: SessionCheck,
        result: StallResult,
    ) -> Optional[Insight]:
        if result.is_stalled:
            return self.generator.stall_insight(
                supervisor.id, check.session, result,
                supervisor.stall_threshold, check.previous_snapshot,
            )
        if result.error_excerpt:
            return self.generator.error_insight(supervisor.id, check.session, result.error_excerpt)
        return None

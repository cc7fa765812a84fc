"""
Supervisor Entity
=================

A supervisor is an autonomous monitor bound to its own terminal session. It
watches other terminal sessions, raises insights, and may inject commands.

Two kinds exist:
- master: one per user, every session is in scope
- scoped: bound to a single folder, only sessions in that folder are in scope

Status machine:

    idle --start_analyzing--> analyzing
    idle | analyzing --start_acting--> acting
    acting | analyzing --return_to_idle--> idle
    any --pause--> paused (idempotent)
    paused --resume--> idle

Supervisors are immutable. Every transition returns a new instance.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from termwarden.config import DEFAULT_MONITORING_INTERVAL, DEFAULT_STALL_THRESHOLD
from termwarden.errors import InvalidStateTransitionError, InvalidValueError


class SupervisorKind(Enum):
    MASTER = "master"
    SCOPED = "scoped"


class ScopeKind(Enum):
    NONE = "none"
    FOLDER = "folder"


class SupervisorStatus(Enum):
    IDLE = "idle"               # Waiting for the next cycle
    ANALYZING = "analyzing"     # Evaluating a session
    ACTING = "acting"           # Just issued an injection
    PAUSED = "paused"           # Administratively disabled


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_UNSET = object()


@dataclass(frozen=True)
class Supervisor:
    """Immutable supervisor value. Use the factories to create new ones."""
    id: str
    kind: SupervisorKind
    user_id: str
    session_id: str                       # Host terminal the supervisor runs in
    scope_kind: ScopeKind = ScopeKind.NONE
    scope_id: Optional[str] = None
    status: SupervisorStatus = SupervisorStatus.IDLE
    monitoring_interval: int = DEFAULT_MONITORING_INTERVAL  # seconds
    stall_threshold: int = DEFAULT_STALL_THRESHOLD          # seconds
    auto_intervention: bool = False
    custom_instructions: Optional[str] = None
    last_activity_at: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    retired_at: Optional[datetime] = None

    def __post_init__(self):
        for name in ("id", "user_id", "session_id"):
            value = getattr(self, name)
            if not value or not isinstance(value, str):
                raise InvalidValueError(f"Supervisor.{name}", value, "Must be a non-empty string")

        if self.kind == SupervisorKind.MASTER:
            if self.scope_kind != ScopeKind.NONE or self.scope_id is not None:
                raise InvalidValueError(
                    "Supervisor.scope", (self.scope_kind.value, self.scope_id),
                    "Master supervisors must not have a scope",
                )
        elif self.scope_kind != ScopeKind.FOLDER or not self.scope_id:
            raise InvalidValueError(
                "Supervisor.scope", (self.scope_kind.value, self.scope_id),
                "Scoped supervisors must have a folder scope",
            )

        _require_positive("monitoring_interval", self.monitoring_interval)
        _require_positive("stall_threshold", self.stall_threshold)

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def create_master(
        cls,
        user_id: str,
        session_id: str,
        *,
        monitoring_interval: int = DEFAULT_MONITORING_INTERVAL,
        stall_threshold: int = DEFAULT_STALL_THRESHOLD,
        auto_intervention: bool = False,
        custom_instructions: Optional[str] = None,
        supervisor_id: Optional[str] = None,
    ) -> "Supervisor":
        return cls(
            id=supervisor_id or str(uuid.uuid4()),
            kind=SupervisorKind.MASTER,
            user_id=user_id,
            session_id=session_id,
            monitoring_interval=monitoring_interval,
            stall_threshold=stall_threshold,
            auto_intervention=auto_intervention,
            custom_instructions=custom_instructions,
        )

    @classmethod
    def create_scoped(
        cls,
        user_id: str,
        session_id: str,
        scope_id: str,
        *,
        monitoring_interval: int = DEFAULT_MONITORING_INTERVAL,
        stall_threshold: int = DEFAULT_STALL_THRESHOLD,
        auto_intervention: bool = False,
        custom_instructions: Optional[str] = None,
        supervisor_id: Optional[str] = None,
    ) -> "Supervisor":
        return cls(
            id=supervisor_id or str(uuid.uuid4()),
            kind=SupervisorKind.SCOPED,
            user_id=user_id,
            session_id=session_id,
            scope_kind=ScopeKind.FOLDER,
            scope_id=scope_id,
            monitoring_interval=monitoring_interval,
            stall_threshold=stall_threshold,
            auto_intervention=auto_intervention,
            custom_instructions=custom_instructions,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def is_master(self) -> bool:
        return self.kind == SupervisorKind.MASTER

    @property
    def is_paused(self) -> bool:
        return self.status == SupervisorStatus.PAUSED

    @property
    def is_idle(self) -> bool:
        return self.status == SupervisorStatus.IDLE

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None

    def is_in_scope(self, target_scope_id: Optional[str]) -> bool:
        """Return True if a session in ``target_scope_id`` may be supervised."""
        if self.is_master:
            return True
        return target_scope_id is not None and target_scope_id == self.scope_id

    def belongs_to(self, user_id: str) -> bool:
        return self.user_id == user_id

    # =========================================================================
    # Transitions
    # =========================================================================

    def start_analyzing(self) -> "Supervisor":
        self._require_status("start analyzing", SupervisorStatus.IDLE)
        return self._moved_to(SupervisorStatus.ANALYZING, touch=True)

    def start_acting(self) -> "Supervisor":
        self._require_status("start acting", SupervisorStatus.IDLE, SupervisorStatus.ANALYZING)
        return self._moved_to(SupervisorStatus.ACTING, touch=True)

    def return_to_idle(self) -> "Supervisor":
        if self.status == SupervisorStatus.IDLE:
            return self
        self._require_status("return to idle", SupervisorStatus.ACTING, SupervisorStatus.ANALYZING)
        return self._moved_to(SupervisorStatus.IDLE)

    def pause(self) -> "Supervisor":
        if self.is_paused:
            return self
        return self._moved_to(SupervisorStatus.PAUSED)

    def resume(self) -> "Supervisor":
        if not self.is_paused:
            return self
        return self._moved_to(SupervisorStatus.IDLE)

    def touch(self) -> "Supervisor":
        now = utc_now()
        return replace(self, last_activity_at=now, updated_at=now)

    def retire(self) -> "Supervisor":
        if self.is_retired:
            return self
        now = utc_now()
        return replace(self, retired_at=now, updated_at=now)

    def update_config(
        self,
        *,
        monitoring_interval: Optional[int] = None,
        stall_threshold: Optional[int] = None,
        auto_intervention: Optional[bool] = None,
        custom_instructions=_UNSET,
    ) -> "Supervisor":
        """
        Return a copy with updated configuration.

        ``custom_instructions`` may be set to None to clear it; leave it out
        to keep the current value.
        """
        changes: dict = {"updated_at": utc_now()}
        if monitoring_interval is not None:
            changes["monitoring_interval"] = monitoring_interval
        if stall_threshold is not None:
            changes["stall_threshold"] = stall_threshold
        if auto_intervention is not None:
            changes["auto_intervention"] = auto_intervention
        if custom_instructions is not _UNSET:
            changes["custom_instructions"] = custom_instructions
        return replace(self, **changes)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_status(self, action: str, *allowed: SupervisorStatus) -> None:
        if self.status not in allowed:
            raise InvalidStateTransitionError("supervisor", self.status.value, action)

    def _moved_to(self, status: SupervisorStatus, touch: bool = False) -> "Supervisor":
        now = utc_now()
        if touch:
            return replace(self, status=status, last_activity_at=now, updated_at=now)
        return replace(self, status=status, updated_at=now)


def _require_positive(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise InvalidValueError(f"Supervisor.{name}", value, "Must be a positive number")

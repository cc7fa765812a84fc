"""
Error Taxonomy
==============

Every error raised by the supervision core derives from WardenError and
carries a stable ``code`` so API layers can map failures without matching
on message text.

Not-found errors deliberately use the same message whether a record is
absent or owned by someone else.
"""

from typing import Any, Optional


class WardenError(Exception):
    """Base class for all termwarden errors."""

    code = "WARDEN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ConfigurationError(WardenError):
    code = "CONFIGURATION_ERROR"


# =============================================================================
# Domain validation
# =============================================================================

class InvalidValueError(WardenError):
    """A field was given a value that violates an entity invariant."""

    code = "INVALID_VALUE"

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(f"Invalid value for {field}: {value!r} ({reason})")
        self.field = field
        self.value = value
        self.reason = reason


class InvalidStateTransitionError(WardenError):
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, entity: str, current: str, action: str):
        super().__init__(f"Cannot {action} {entity} in state '{current}'")
        self.entity = entity
        self.current = current
        self.action = action


# =============================================================================
# Use-case errors
# =============================================================================

class NotFoundError(WardenError):
    code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class SupervisorNotFoundError(NotFoundError):
    code = "SUPERVISOR_NOT_FOUND"

    def __init__(self, supervisor_id: str):
        super().__init__("Supervisor", supervisor_id)


class SessionNotFoundError(NotFoundError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__("Session", session_id)


class ScopeNotFoundError(NotFoundError):
    code = "SCOPE_NOT_FOUND"

    def __init__(self, scope_id: str):
        super().__init__("Scope", scope_id)


class TaskNotFoundError(NotFoundError):
    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        super().__init__("Task", task_id)


class SupervisorPausedError(WardenError):
    code = "SUPERVISOR_PAUSED"

    def __init__(self, supervisor_id: str):
        super().__init__(f"Supervisor {supervisor_id} is paused")
        self.supervisor_id = supervisor_id


class SessionNotInScopeError(WardenError):
    code = "SESSION_NOT_IN_SCOPE"

    def __init__(self, supervisor_id: str, session_id: str):
        super().__init__(
            f"Session {session_id} is outside the scope of supervisor {supervisor_id}"
        )
        self.supervisor_id = supervisor_id
        self.session_id = session_id


class InvalidCommandError(WardenError):
    code = "INVALID_COMMAND"

    def __init__(self, reason: str, dangerous: bool = False):
        super().__init__(f"Invalid command: {reason}")
        self.reason = reason
        self.dangerous = dangerous


class SupervisorAlreadyExistsError(WardenError):
    code = "SUPERVISOR_ALREADY_EXISTS"

    def __init__(self, existing_id: str, scope_id: Optional[str] = None):
        where = f" for scope {scope_id}" if scope_id else ""
        super().__init__(f"An active supervisor already exists{where}: {existing_id}")
        self.existing_id = existing_id
        self.scope_id = scope_id


class TransportUnreadyError(WardenError):
    """The target terminal is gone or cannot be reached."""

    code = "TRANSPORT_UNREADY"

    def __init__(self, handle: str, detail: str = ""):
        message = f"Terminal session {handle} is not ready"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.handle = handle


# =============================================================================
# Persistence
# =============================================================================

class UniqueConstraintViolation(WardenError):
    """The storage layer rejected a write because of a uniqueness constraint."""

    code = "UNIQUE_CONSTRAINT_VIOLATION"

    def __init__(self, detail: str):
        super().__init__(f"Unique constraint violated: {detail}")
        self.detail = detail


class ConcurrentUpdateError(WardenError):
    """A conditional write found the record changed since it was read."""

    code = "CONCURRENT_UPDATE"

    def __init__(self, kind: str, identifier: str, expected: str):
        super().__init__(f"{kind} {identifier} changed concurrently (expected '{expected}')")
        self.kind = kind
        self.identifier = identifier
        self.expected = expected

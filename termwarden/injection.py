"""
Command Injection Gateway
=========================

Sends synthetic input into live terminal sessions on a supervisor's behalf.

The gateway reports expected failures (dead session, unreachable terminal)
through InjectionResult instead of raising. Validation is exposed here but
is the caller's job to enforce before calling inject_command.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from termwarden.config import MAX_COMMAND_LENGTH
from termwarden.errors import TransportUnreadyError
from termwarden.ports import CommandInjector
from termwarden.security import CommandValidation, validate_command
from termwarden.terminal import CONTROL_KEYS, TerminalTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InjectionResult:
    success: bool
    session_id: str
    correlation_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


def normalize_handle(handle: str) -> str:
    """
    Reduce a handle to the bare session name.

    A leading "=" is dropped here because TmuxTransport builds exact-match
    targets itself.
    """
    handle = handle.strip()
    if handle.startswith("="):
        handle = handle[1:]
    return handle


class CommandInjectionGateway(CommandInjector):
    """CommandInjector implementation over a TerminalTransport."""

    def __init__(
        self,
        transport: TerminalTransport,
        max_command_length: int = MAX_COMMAND_LENGTH,
        capture_lines: int = 100,
    ):
        self.transport = transport
        self.max_command_length = max_command_length
        self.capture_lines = capture_lines

    def validate_command(self, command: str) -> CommandValidation:
        return validate_command(command, self.max_command_length)

    async def is_session_ready(self, handle: str) -> bool:
        try:
            return await self.transport.session_exists(normalize_handle(handle))
        except TransportUnreadyError:
            return False

    async def get_current_pane_content(self, handle: str) -> Optional[str]:
        try:
            return await self.transport.capture_pane(normalize_handle(handle), self.capture_lines)
        except TransportUnreadyError:
            return None

    async def inject_command(
        self,
        handle: str,
        command: str,
        press_enter: bool = True,
        correlation_id: Optional[str] = None,
    ) -> InjectionResult:
        """
        Type ``command`` into the terminal behind ``handle``.

        Args:
            handle: Transport handle of the target session
            command: Command text, already validated upstream
            press_enter: Send Enter after the command
            correlation_id: Audit entry id to correlate with; generated if absent
        """
        session_id = normalize_handle(handle)
        correlation_id = correlation_id or str(uuid.uuid4())

        if not await self.is_session_ready(session_id):
            logger.warning("Injection target %s is not ready", session_id)
            return InjectionResult(
                success=False,
                session_id=session_id,
                correlation_id=correlation_id,
                error=f"Session {session_id} does not exist or is not ready",
            )

        try:
            await self.transport.send_keys(session_id, command, enter=press_enter, literal=True)
        except TransportUnreadyError as e:
            logger.warning("Injection into %s failed: %s", session_id, e)
            return InjectionResult(
                success=False,
                session_id=session_id,
                correlation_id=correlation_id,
                error=str(e),
            )

        logger.info("Injected command into %s [%s]", session_id, correlation_id)
        return InjectionResult(success=True, session_id=session_id, correlation_id=correlation_id)

    async def send_control_char(self, handle: str, char: str) -> bool:
        """Send Ctrl-C, Ctrl-D or Ctrl-Z. Returns False on any failure."""
        key = CONTROL_KEYS.get(_normalize_control(char))
        if key is None:
            logger.warning("Refusing unsupported control character %r", char)
            return False

        session_id = normalize_handle(handle)
        if not await self.is_session_ready(session_id):
            return False
        try:
            await self.transport.send_keys(session_id, key, enter=False, literal=False)
        except TransportUnreadyError as e:
            logger.warning("Control character %s to %s failed: %s", key, session_id, e)
            return False
        return True


def _normalize_control(char: str) -> str:
    """Accept "C-c", "Ctrl-C", "ctrl+c" and "^C" spellings."""
    value = char.strip().lower().replace("+", "-")
    if value.startswith("^") and len(value) == 2:
        return f"C-{value[1]}"
    if value.startswith("ctrl-"):
        value = "c-" + value[len("ctrl-"):]
    if value.startswith("c-") and len(value) == 3:
        return f"C-{value[2]}"
    return char

"""
Terminal Transport
==================

The supervision core never spawns or renders terminals itself. It talks to
live sessions through a TerminalTransport, addressed by an opaque handle
(the tmux session name in the default adapter).

TmuxTransport shells out to the tmux binary:
- has-session            -> session_exists
- capture-pane -p -S -N  -> capture_pane
- send-keys -l / Enter   -> send_keys

Targets are always built with tmux's "=" prefix. Without it tmux falls back
to prefix matching, so "-t dev" would reach a "devops" session once "dev"
is gone.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from termwarden.errors import TransportUnreadyError

logger = logging.getLogger(__name__)

# Closed set of control characters a supervisor may send, mapped to tmux key names
CONTROL_KEYS = {
    "C-c": "C-c",
    "C-d": "C-d",
    "C-z": "C-z",
}


def exact_target(handle: str, pane: bool = False) -> str:
    """
    Build a tmux target that only matches the session named ``handle``.

    Pane commands (capture-pane, send-keys) need the trailing colon so tmux
    reads "=name" as a session rather than a pane id.
    """
    session, sep, rest = handle.lstrip("=").partition(":")
    if sep:
        return f"={session}:{rest}"
    return f"={session}:" if pane else f"={session}"


class TerminalTransport(ABC):
    @abstractmethod
    async def session_exists(self, handle: str) -> bool:
        """Return True if the terminal behind ``handle`` is alive."""

    @abstractmethod
    async def capture_pane(self, handle: str, lines: int = 100) -> str:
        """Return the visible pane content plus up to ``lines`` of scrollback."""

    @abstractmethod
    async def send_keys(self, handle: str, keys: str, *, enter: bool = False, literal: bool = True) -> None:
        """Type ``keys`` into the terminal, optionally followed by Enter."""


class TmuxTransport(TerminalTransport):
    """TerminalTransport backed by the tmux command line client."""

    def __init__(self, binary: str = "tmux", timeout: float = 10.0):
        self.binary = binary
        self.timeout = timeout

    async def _run(self, *args: str) -> tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise TransportUnreadyError("*", f"tmux binary not found: {self.binary}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TransportUnreadyError(args[-1] if args else "*", "tmux command timed out")

        return (
            process.returncode or 0,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def session_exists(self, handle: str) -> bool:
        code, _, _ = await self._run("has-session", "-t", exact_target(handle))
        return code == 0

    async def capture_pane(self, handle: str, lines: int = 100) -> str:
        code, stdout, stderr = await self._run(
            "capture-pane", "-p", "-t", exact_target(handle, pane=True), "-S", f"-{lines}"
        )
        if code != 0:
            raise TransportUnreadyError(handle, stderr.strip() or "capture-pane failed")
        return stdout

    async def send_keys(self, handle: str, keys: str, *, enter: bool = False, literal: bool = True) -> None:
        target = exact_target(handle, pane=True)
        args = ["send-keys", "-t", target]
        if literal:
            args.append("-l")
        args.append(keys)
        code, _, stderr = await self._run(*args)
        if code != 0:
            raise TransportUnreadyError(handle, stderr.strip() or "send-keys failed")

        # Enter is sent separately so literal mode does not swallow it
        if enter:
            code, _, stderr = await self._run("send-keys", "-t", target, "Enter")
            if code != 0:
                raise TransportUnreadyError(handle, stderr.strip() or "send-keys Enter failed")
        logger.debug("Sent %d chars to %s (enter=%s)", len(keys), handle, enter)

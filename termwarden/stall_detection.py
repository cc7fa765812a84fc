"""
Stall Detection
===============

Detects terminal sessions whose output has stopped changing.

The detector is stateless. The polling caller keeps the snapshot returned by
each cycle and passes it back on the next one:

    result = await monitor.detect_stall(handle, previous, threshold)
    previous = result.snapshot

Verdicts:
- no previous snapshot: not stalled, insufficient history
- content changed: not stalled, confidence 1.0
- content unchanged: stalled once unchanged_duration >= threshold

Confidence for unchanged content grows linearly with the unchanged duration,
reaching 0.5 at the threshold and 1.0 at twice the threshold.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from termwarden.ports import StallDetector
from termwarden.terminal import TerminalTransport

logger = logging.getLogger(__name__)

# Output signatures that indicate the session hit an error
ERROR_SIGNATURES = re.compile(
    r"(Traceback \(most recent call last\):"
    r"|^\s*(?:error|fatal|panic)(?:\[[^\]]*\])?:"
    r"|\bSegmentation fault\b"
    r"|\bUnhandled (?:exception|promise rejection)\b)",
    re.IGNORECASE | re.MULTILINE,
)
ERROR_TAIL_LINES = 20


@dataclass(frozen=True)
class ScrollbackSnapshot:
    """Caller-owned fingerprint of a session's pane at one point in time."""
    timestamp: datetime
    hash: str
    line_count: int

    @classmethod
    def of(cls, content: str, timestamp: datetime) -> "ScrollbackSnapshot":
        return cls(
            timestamp=timestamp,
            hash=hashlib.sha256(content.encode("utf-8")).hexdigest(),
            line_count=len(content.splitlines()),
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "hash": self.hash,
            "line_count": self.line_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScrollbackSnapshot":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            hash=data["hash"],
            line_count=int(data["line_count"]),
        )


@dataclass(frozen=True)
class StallResult:
    """Verdict of one stall check, plus the snapshot to keep for next time."""
    is_stalled: bool
    confidence: float
    unchanged_duration: float            # seconds
    snapshot: ScrollbackSnapshot
    last_activity: Optional[datetime] = None
    reason: Optional[str] = None
    error_excerpt: Optional[str] = None


def stall_confidence(unchanged_seconds: float, threshold_seconds: float) -> float:
    """Monotonic confidence that unchanged output means a stall, capped at 1.0."""
    if threshold_seconds <= 0:
        return 1.0
    return round(min(1.0, max(0.0, unchanged_seconds / (2 * threshold_seconds))), 4)


def find_error_excerpt(content: str, tail_lines: int = ERROR_TAIL_LINES) -> Optional[str]:
    """Return the tail lines from the first error signature onward, if any."""
    lines = content.splitlines()[-tail_lines:]
    for index, line in enumerate(lines):
        if ERROR_SIGNATURES.search(line):
            return "\n".join(lines[index:]).strip()
    return None


class ScrollbackMonitor(StallDetector):
    """Stall detector over a TerminalTransport."""

    def __init__(
        self,
        transport: TerminalTransport,
        capture_lines: int = 100,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.transport = transport
        self.capture_lines = capture_lines
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def capture_snapshot(self, handle: str) -> tuple[str, ScrollbackSnapshot]:
        content = await self.transport.capture_pane(handle, self.capture_lines)
        return content, ScrollbackSnapshot.of(content, self._clock())

    async def detect_stall(
        self,
        handle: str,
        previous: Optional[ScrollbackSnapshot],
        threshold_seconds: int,
    ) -> StallResult:
        """
        Compare the current pane of ``handle`` against ``previous``.

        Transport errors propagate; sweeps isolate them per session.
        """
        content, current = await self.capture_snapshot(handle)

        if previous is None:
            return StallResult(
                is_stalled=False,
                confidence=0.0,
                unchanged_duration=0.0,
                snapshot=current,
                last_activity=current.timestamp,
                reason="Insufficient history: no previous snapshot",
            )

        if current.hash != previous.hash:
            return StallResult(
                is_stalled=False,
                confidence=1.0,
                unchanged_duration=0.0,
                snapshot=current,
                last_activity=current.timestamp,
                error_excerpt=find_error_excerpt(content),
            )

        unchanged = max(0.0, (current.timestamp - previous.timestamp).total_seconds())
        is_stalled = unchanged >= threshold_seconds
        reason = None
        if is_stalled and content.strip() == "":
            reason = "Pane is empty"
        logger.debug(
            "Session %s unchanged for %.0fs (threshold %ss, stalled=%s)",
            handle, unchanged, threshold_seconds, is_stalled,
        )
        # Keep the original timestamp so the unchanged window keeps growing
        return StallResult(
            is_stalled=is_stalled,
            confidence=stall_confidence(unchanged, threshold_seconds),
            unchanged_duration=unchanged,
            snapshot=previous,
            last_activity=previous.timestamp,
            reason=reason,
        )

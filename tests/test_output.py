"""
Tests for Rich Output Utilities
===============================
"""

import logging
from datetime import datetime, timezone

import pytest
from rich.console import Console
from rich.logging import RichHandler

from termwarden import output
from termwarden.audit import AuditLogEntry
from termwarden.insight import Insight, InsightSeverity, InsightType
from termwarden.output import (
    format_audit_entry,
    print_audit_trail,
    print_insights,
    print_sweep_summary,
    setup_rich_logging,
    warden_theme,
)
from termwarden.stall_detection import ScrollbackSnapshot, StallResult
from termwarden.supervisor import Supervisor
from termwarden.use_cases import SessionError, SweepOutput

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def recorder():
    return Console(record=True, theme=warden_theme(), width=160)


def insight(severity, message, resolved=False):
    item = Insight.create("sup-1", InsightType.STALL_DETECTED, severity, message, session_id="sess-a")
    return item.resolve() if resolved else item


class TestAuditDisplay:
    def test_format_entry(self):
        entry = AuditLogEntry.for_command_injected("sup-1", "sess-a", "rm -rf ./build", dangerous=True)
        text = format_audit_entry(entry).plain

        assert text.startswith(entry.created_at.strftime("%Y-%m-%d %H:%M:%S"))
        assert '[command_injected] (session: sess-a) - command: "rm -rf ./build"' in text
        assert text.endswith("dangerous")

    def test_safe_command_is_not_flagged(self):
        entry = AuditLogEntry.for_command_injected("sup-1", "sess-a", "ls")
        assert "dangerous" not in format_audit_entry(entry).plain

    def test_audit_trail_table(self, recorder):
        entries = [
            AuditLogEntry.for_status_changed("sup-1", "idle", "paused"),
            AuditLogEntry.for_command_injected("sup-1", "sess-a", "ls"),
        ]
        print_audit_trail(entries, target=recorder)

        text = recorder.export_text()
        assert "Audit Trail" in text
        assert "status_changed" in text
        assert "new_status=paused" in text
        assert "sess-a" in text


class TestInsightDisplay:
    def test_most_severe_first(self, recorder):
        print_insights([
            insight(InsightSeverity.INFO, "minor thing"),
            insight(InsightSeverity.CRITICAL, "on fire"),
        ], target=recorder)

        text = recorder.export_text()
        assert text.index("CRITICAL") < text.index("INFO")
        assert text.index("on fire") < text.index("minor thing")

    def test_resolved_insights_still_listed(self, recorder):
        print_insights([insight(InsightSeverity.WARNING, "handled", resolved=True)], target=recorder)
        assert "handled" in recorder.export_text()


class TestSweepSummary:
    def _result(self, stalled):
        return StallResult(
            is_stalled=stalled,
            confidence=0.75 if stalled else 1.0,
            unchanged_duration=450 if stalled else 0,
            snapshot=ScrollbackSnapshot.of("$ ", NOW),
        )

    def test_summary_with_errors(self, recorder):
        summary = SweepOutput(
            supervisor=Supervisor.create_master("user-1", "sess-host", supervisor_id="sup-1"),
            insights=[insight(InsightSeverity.WARNING, "stalled for a while")],
            results={"sess-a": self._result(True), "sess-b": self._result(False)},
            errors=[SessionError("sess-c", "RuntimeError", "probe failed")],
        )

        print_sweep_summary(summary, target=recorder)

        text = recorder.export_text()
        assert "Sweep by sup-1" in text
        assert "stalled" in text
        assert "0.75" in text
        assert "450s" in text
        assert "RuntimeError" in text
        assert "1 session(s) could not be checked" in text

    def test_clean_summary(self, recorder):
        summary = SweepOutput(
            supervisor=Supervisor.create_master("user-1", "sess-host"),
            results={"sess-a": self._result(False)},
        )
        print_sweep_summary(summary, target=recorder)
        assert "1 session(s) checked" in recorder.export_text()


class TestLogging:
    def test_setup_rich_logging_installs_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_rich_logging(logging.DEBUG)
            handlers = [h for h in root.handlers if isinstance(h, RichHandler)]
            assert len(handlers) == 1
            assert handlers[0].console is output.console
            assert root.level == logging.DEBUG
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

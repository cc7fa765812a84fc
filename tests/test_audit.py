"""
Tests for Audit Log Entries
===========================
"""

from datetime import timedelta

import pytest

from termwarden.audit import AuditActionType, AuditLogEntry, CheckResult
from termwarden.errors import InvalidValueError
from termwarden.supervisor import Supervisor


class TestFactories:
    def test_supervisor_created(self):
        supervisor = Supervisor.create_scoped("user-1", "sess-host", "folder-a")
        entry = AuditLogEntry.for_supervisor_created(supervisor)

        assert entry.action_type == AuditActionType.SUPERVISOR_CREATED
        assert entry.action_type.value == "orchestrator_created"
        assert entry.supervisor_id == supervisor.id
        assert entry.details["scope_id"] == "folder-a"
        assert entry.is_session_specific is False

    def test_command_injected(self):
        entry = AuditLogEntry.for_command_injected("sup-1", "sess-a", "npm test", reason="stalled", dangerous=True)

        assert entry.action_type == AuditActionType.COMMAND_INJECTED
        assert entry.target_session_id == "sess-a"
        assert entry.details["command"] == "npm test"
        assert entry.details["dangerous"] is True
        assert entry.is_session_specific is True

    def test_session_monitored_rounds_confidence(self):
        entry = AuditLogEntry.for_session_monitored("sup-1", "sess-a", CheckResult.STALLED, 0.123456)
        assert entry.details == {"check_result": "stalled", "confidence": 0.123}

    def test_insight_generated(self):
        entry = AuditLogEntry.for_insight_generated("sup-1", "ins-1", "sess-a", "stall_detected", "warning")
        assert entry.details["insight_id"] == "ins-1"

    def test_status_changed(self):
        entry = AuditLogEntry.for_status_changed("sup-1", "idle", "paused")
        assert entry.details == {"old_status": "idle", "new_status": "paused"}

    def test_task_updated(self):
        entry = AuditLogEntry.for_task_updated("sup-1", "task-1", None, "queued")
        assert entry.action_type == AuditActionType.TASK_UPDATED
        assert entry.details["new_status"] == "queued"


class TestImmutability:
    def test_details_cannot_be_edited(self):
        entry = AuditLogEntry.for_status_changed("sup-1", "idle", "paused")
        with pytest.raises(TypeError):
            entry.details["new_status"] = "idle"

    def test_details_are_copied_from_caller(self):
        details = {"nested": {"a": 1}}
        entry = AuditLogEntry.create("sup-1", AuditActionType.STATUS_CHANGED, details=details)
        details["nested"]["a"] = 2
        assert entry.details["nested"]["a"] == 1

    def test_requires_supervisor(self):
        with pytest.raises(InvalidValueError):
            AuditLogEntry.create("", AuditActionType.STATUS_CHANGED)

    def test_rejects_unknown_action(self):
        with pytest.raises(InvalidValueError):
            AuditLogEntry(id="a", supervisor_id="sup-1", action_type="deleted")


class TestDisplay:
    def test_summary_for_command(self):
        entry = AuditLogEntry.for_command_injected("sup-1", "sess-a", "ls")
        assert entry.summary() == '[command_injected] (session: sess-a) - command: "ls"'

    def test_summary_for_status(self):
        entry = AuditLogEntry.for_status_changed("sup-1", "idle", "acting")
        assert entry.summary() == "[status_changed] - idle -> acting"

    def test_to_dict(self):
        entry = AuditLogEntry.for_status_changed("sup-1", "idle", "acting")
        data = entry.to_dict()
        assert data["action_type"] == "status_changed"
        assert data["details"]["new_status"] == "acting"

    def test_age_seconds(self):
        entry = AuditLogEntry.for_status_changed("sup-1", "idle", "acting")
        assert entry.age_seconds(entry.created_at + timedelta(seconds=42)) == 42

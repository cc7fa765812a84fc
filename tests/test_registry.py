"""
Tests for the Service Registry
==============================
"""

import pytest
import pytest_asyncio

from fakes import Clock, FakeTransport
from termwarden.config import WardenConfig
from termwarden.db import sqlite_url
from termwarden.insight import MonitoredSession
from termwarden.registry import SnapshotCache, WardenServices
from termwarden.sessions import Folder, TerminalSession
from termwarden.stall_detection import ScrollbackMonitor, ScrollbackSnapshot, StallResult
from termwarden.supervisor import Supervisor, SupervisorStatus
from termwarden.use_cases import (
    CreateMasterSupervisorInput,
    InjectCommandInput,
    PauseSupervisor,
    SupervisorRef,
    SweepOutput,
)

USER = "user-1"
SESSION_A = MonitoredSession(session_id="sess-a", handle="tw-a", name="api-dev", scope_id="folder-a")


class TestSnapshotCache:
    def test_put_get_forget(self):
        cache = SnapshotCache()
        snap = ScrollbackSnapshot.of("$ ", Clock().now)
        cache.put("sup-1", "sess-a", snap)
        cache.put("sup-1", "sess-b", snap)
        cache.put("sup-2", "sess-a", snap)

        assert cache.get("sup-1", "sess-a") == snap
        assert cache.get("sup-1", "sess-c") is None

        cache.forget("sup-1", "sess-a")
        assert len(cache) == 2
        cache.forget("sup-1")
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0

    def test_checks_for(self):
        cache = SnapshotCache()
        snap = ScrollbackSnapshot.of("$ ", Clock().now)
        cache.put("sup-1", "sess-a", snap)

        [check] = cache.checks_for("sup-1", [SESSION_A])
        assert check.session == SESSION_A
        assert check.previous_snapshot == snap

    def test_remember_drops_sessions_no_longer_swept(self):
        cache = SnapshotCache()
        old = ScrollbackSnapshot.of("$ old", Clock().now)
        new = ScrollbackSnapshot.of("$ new", Clock().now)
        for session_id in ("sess-a", "sess-b", "sess-c"):
            cache.put("sup-1", session_id, old)
        cache.put("sup-2", "sess-b", old)
        output = SweepOutput(
            supervisor=Supervisor.create_master(USER, "sess-host", supervisor_id="sup-1"),
            results={"sess-a": StallResult(is_stalled=False, confidence=1.0, unchanged_duration=0, snapshot=new)},
        )

        # sess-c was swept but could not be captured; sess-b left the sweep
        cache.remember(output, ["sess-a", "sess-c"])

        assert cache.get("sup-1", "sess-a") == new
        assert cache.get("sup-1", "sess-b") is None
        assert cache.get("sup-1", "sess-c") == old
        assert cache.get("sup-2", "sess-b") == old


@pytest_asyncio.fixture
async def services(tmp_path):
    transport = FakeTransport()
    transport.add_session("tw-host")
    transport.add_session("tw-a", "$ npm run dev")
    config = WardenConfig(database_url=sqlite_url(tmp_path / "warden.db"))
    services = await WardenServices.open(config, transport)
    await services.folders.add(Folder(id="folder-a", user_id=USER, name="api"))
    for session in (
        TerminalSession(id="sess-host", user_id=USER, name="supervisor", handle="tw-host", folder_id="folder-a"),
        TerminalSession(id="sess-a", user_id=USER, name="api-dev", handle="tw-a", folder_id="folder-a"),
    ):
        await services.sessions.add(session)
    yield services
    await services.close()


class TestWardenServices:
    @pytest.mark.asyncio
    async def test_end_to_end(self, services):
        created = await services.create_master_supervisor.execute(CreateMasterSupervisorInput(USER, "sess-host"))
        supervisor_id = created.supervisor.id

        injected = await services.inject_command.execute(InjectCommandInput(
            supervisor_id=supervisor_id, user_id=USER, session_id="sess-a", command="npm test",
        ))
        assert injected.result.success is True
        assert injected.supervisor.status == SupervisorStatus.ACTING

        trail = await services.audit_log.find_by_supervisor(supervisor_id)
        assert {e.action_type.value for e in trail} == {
            "orchestrator_created", "command_injected", "status_changed",
        }

        paused = await services.pause_supervisor.execute(SupervisorRef(supervisor_id, USER))
        assert paused.supervisor.is_paused
        assert (await services.supervisors.find_by_id(supervisor_id)).is_paused

    @pytest.mark.asyncio
    async def test_sweep_remembers_snapshots(self, services):
        clock = Clock()
        services.detect_stalled_sessions.detector = ScrollbackMonitor(services.transport, clock=clock)
        created = await services.create_master_supervisor.execute(CreateMasterSupervisorInput(USER, "sess-host"))
        supervisor_id = created.supervisor.id

        first = await services.sweep(supervisor_id, USER, [SESSION_A])
        assert first.stalled_session_ids == []
        assert services.snapshots.get(supervisor_id, "sess-a") is not None

        clock.advance(created.supervisor.stall_threshold)
        second = await services.sweep(supervisor_id, USER, [SESSION_A])

        assert second.stalled_session_ids == ["sess-a"]
        stored = await services.insights.find_by_supervisor(supervisor_id)
        assert [i.id for i in stored] == [i.id for i in second.insights]

    @pytest.mark.asyncio
    async def test_sweep_forgets_departed_sessions(self, services):
        created = await services.create_master_supervisor.execute(CreateMasterSupervisorInput(USER, "sess-host"))
        supervisor_id = created.supervisor.id

        await services.sweep(supervisor_id, USER, [SESSION_A])
        assert len(services.snapshots) == 1

        await services.sweep(supervisor_id, USER, [])
        assert len(services.snapshots) == 0

    @pytest.mark.asyncio
    async def test_use_cases_share_repositories(self, services):
        assert isinstance(services.pause_supervisor, PauseSupervisor)
        assert services.pause_supervisor.supervisors is services.supervisors
        assert services.inject_command.injector is services.injector

"""
Test database integration to ensure the repositories round-trip through SQLite.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from termwarden.audit import AuditLogEntry
from termwarden.db import (
    SqlAuditLogRepository,
    SqlFolderRepository,
    SqlInsightRepository,
    SqlSessionRepository,
    SqlSupervisorRepository,
    SqlTaskRepository,
    SqlTransactionCoordinator,
    init_db,
    sqlite_url,
)
from termwarden.errors import ConcurrentUpdateError, UniqueConstraintViolation
from termwarden.insight import Insight, InsightSeverity, InsightType, SuggestedAction
from termwarden.sessions import Folder, TerminalSession
from termwarden.supervisor import Supervisor, SupervisorStatus
from termwarden.tasks import Task, TaskResult, TaskType

USER = "user-1"


@pytest_asyncio.fixture
async def database(tmp_path):
    db = await init_db(sqlite_url(tmp_path / "nested" / "warden.db"))
    yield db
    await db.dispose()


@pytest.mark.asyncio
async def test_init_db_creates_parent_directory(tmp_path):
    """init_db creates the directory for a file-backed database."""
    path = tmp_path / "a" / "b" / "warden.db"
    async with await init_db(sqlite_url(path)):
        assert path.parent.is_dir()


@pytest.mark.asyncio
async def test_supervisor_round_trip(database):
    """A supervisor survives save, update and reload unchanged."""
    repo = SqlSupervisorRepository(database)
    supervisor = Supervisor.create_scoped(USER, "sess-host", "folder-a", custom_instructions="be brief")

    await repo.save(supervisor)
    loaded = await repo.find_by_id(supervisor.id)
    assert loaded == supervisor
    assert loaded.created_at.tzinfo is not None

    paused = supervisor.pause()
    await repo.update(paused)
    assert (await repo.find_by_id(supervisor.id)).status == SupervisorStatus.PAUSED
    assert (await repo.find_by_scope(USER, "folder-a")).id == supervisor.id
    assert await repo.find_by_scope(USER, "folder-b") is None
    assert await repo.find_by_id("missing") is None


@pytest.mark.asyncio
async def test_find_by_user_skips_retired(database):
    """Retired supervisors drop out of lookups."""
    repo = SqlSupervisorRepository(database)
    master = Supervisor.create_master(USER, "sess-host")
    scoped = Supervisor.create_scoped(USER, "sess-host", "folder-a")
    await repo.save(master)
    await repo.save(scoped)

    retired = await repo.retire(scoped)

    assert retired.is_retired
    assert [s.id for s in await repo.find_by_user(USER)] == [master.id]
    assert await repo.find_by_scope(USER, "folder-a") is None
    assert (await repo.find_master(USER)).id == master.id


@pytest.mark.asyncio
async def test_status_write_requires_expected_status(database):
    """A status write lands only while the stored status is the expected one."""
    repo = SqlSupervisorRepository(database)
    coordinator = SqlTransactionCoordinator(database)
    supervisor = Supervisor.create_master(USER, "sess-host")
    await repo.save(supervisor)

    # Someone else pauses the supervisor after our copy was read
    await repo.update_status(supervisor.pause(), SupervisorStatus.IDLE)

    async def act(tx):
        await repo.update_status(supervisor.start_acting(), SupervisorStatus.IDLE, tx)
        await SqlAuditLogRepository(database).save(
            AuditLogEntry.for_status_changed(supervisor.id, "idle", "acting"), tx
        )

    with pytest.raises(ConcurrentUpdateError):
        await coordinator.execute(act)

    assert (await repo.find_by_id(supervisor.id)).status == SupervisorStatus.PAUSED
    assert await SqlAuditLogRepository(database).find_by_supervisor(supervisor.id) == []


@pytest.mark.asyncio
async def test_touch_and_config_leave_status_alone(database):
    """Activity and configuration writes never overwrite a newer status."""
    repo = SqlSupervisorRepository(database)
    supervisor = Supervisor.create_master(USER, "sess-host")
    await repo.save(supervisor)
    await repo.update_status(supervisor.pause(), SupervisorStatus.IDLE)

    later = datetime(2030, 1, 1, tzinfo=timezone.utc)
    await repo.touch(supervisor.id, later)
    await repo.update_config(supervisor.update_config(stall_threshold=900, custom_instructions="terse"))

    loaded = await repo.find_by_id(supervisor.id)
    assert loaded.status == SupervisorStatus.PAUSED
    assert loaded.last_activity_at == later
    assert loaded.stall_threshold == 900
    assert loaded.custom_instructions == "terse"


@pytest.mark.asyncio
async def test_unique_violation_is_translated(database):
    """A second live master for a user is rejected by the partial index."""
    repo = SqlSupervisorRepository(database)
    coordinator = SqlTransactionCoordinator(database)
    await repo.save(Supervisor.create_master(USER, "sess-host"))

    async def work(tx):
        await repo.save(Supervisor.create_master(USER, "sess-other"), tx)

    with pytest.raises(UniqueConstraintViolation):
        await coordinator.execute(work)


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(database):
    """Nothing written inside a failing unit of work is kept."""
    supervisors = SqlSupervisorRepository(database)
    audit_log = SqlAuditLogRepository(database)
    coordinator = SqlTransactionCoordinator(database)
    supervisor = Supervisor.create_master(USER, "sess-host")

    async def work(tx):
        await supervisors.save(supervisor, tx)
        await audit_log.save(AuditLogEntry.for_supervisor_created(supervisor), tx)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await coordinator.execute(work)

    assert await supervisors.find_by_id(supervisor.id) is None
    assert await audit_log.find_by_supervisor(supervisor.id) == []


@pytest.mark.asyncio
async def test_transaction_returns_result(database):
    coordinator = SqlTransactionCoordinator(database)
    repo = SqlSupervisorRepository(database)
    supervisor = Supervisor.create_master(USER, "sess-host")

    async def work(tx):
        await repo.save(supervisor, tx)
        return await repo.find_master(USER, tx)

    assert (await coordinator.execute(work)).id == supervisor.id


@pytest.mark.asyncio
async def test_insight_round_trip(database):
    """Insights keep their context and suggested actions."""
    await SqlSupervisorRepository(database).save(Supervisor.create_master(USER, "sess-host", supervisor_id="sup-1"))
    repo = SqlInsightRepository(database)
    insight = Insight.create(
        "sup-1", InsightType.STALL_DETECTED, InsightSeverity.WARNING, "stalled",
        session_id="sess-a",
        context={"unchanged_duration": 900.0, "previous_snapshot": None},
        suggested_actions=[SuggestedAction("Send Ctrl-C", "Interrupt", command="C-c")],
    )

    await repo.save(insight)
    assert await repo.find_by_id(insight.id) == insight

    await repo.update(insight.resolve())
    assert (await repo.find_by_id(insight.id)).resolved is True
    assert await repo.find_by_supervisor("sup-1", unresolved_only=True) == []
    assert len(await repo.find_by_supervisor("sup-1")) == 1


@pytest.mark.asyncio
async def test_audit_trail_newest_first(database):
    """The audit trail reads back newest first and honours the limit."""
    repo = SqlAuditLogRepository(database)
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i in range(3):
        entry = AuditLogEntry.for_status_changed("sup-1", "idle", "acting")
        await repo.save(AuditLogEntry(
            id=entry.id,
            supervisor_id="sup-1",
            action_type=entry.action_type,
            details={"old_status": "idle", "new_status": "acting", "n": i},
            created_at=start + timedelta(minutes=i),
        ))

    entries = await repo.find_by_supervisor("sup-1")
    assert [e.details["n"] for e in entries] == [2, 1, 0]
    assert entries[0].created_at == start + timedelta(minutes=2)
    assert len(await repo.find_by_supervisor("sup-1", limit=2)) == 2


@pytest.mark.asyncio
async def test_sessions_and_folders(database):
    folders = SqlFolderRepository(database)
    sessions = SqlSessionRepository(database)
    await folders.add(Folder(id="folder-a", user_id=USER, name="api", path="/srv/api"))
    await sessions.add(TerminalSession(id="sess-a", user_id=USER, name="api-dev", handle="tw-a", folder_id="folder-a"))

    assert (await folders.find_by_id("folder-a")).path == "/srv/api"
    loaded = await sessions.find_by_id("sess-a")
    assert loaded.handle == "tw-a"
    assert loaded.is_active
    assert await sessions.find_by_id("sess-nope") is None


@pytest.mark.asyncio
async def test_task_round_trip(database):
    """Tasks keep their result payload through storage."""
    repo = SqlTaskRepository(database)
    task = Task.create("sup-1", USER, "Add login page", TaskType.FEATURE, folder_id="folder-a")
    await repo.save(task)

    done = (
        task.start_planning()
        .start_execution("claude", "# Task Assignment")
        .complete(TaskResult(True, "done", files_modified=("src/login.py",)))
    )
    await repo.update(done)

    loaded = await repo.find_by_id(task.id)
    assert loaded == done
    assert loaded.result.files_modified == ("src/login.py",)
    assert [t.id for t in await repo.find_by_supervisor("sup-1")] == [task.id]

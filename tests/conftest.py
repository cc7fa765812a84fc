"""Shared fixtures: an in-memory store seeded with one user's folders and sessions."""

import pytest

from fakes import (
    Clock,
    FakeAuditLogRepository,
    FakeCoordinator,
    FakeFolderRepository,
    FakeInsightRepository,
    FakeSessionRepository,
    FakeSupervisorRepository,
    FakeTaskRepository,
    FakeTransport,
    InMemoryStore,
)
from termwarden.injection import CommandInjectionGateway
from termwarden.sessions import Folder, TerminalSession
from termwarden.stall_detection import ScrollbackMonitor

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def store():
    store = InMemoryStore()
    store.folders["folder-a"] = Folder(id="folder-a", user_id=USER, name="api")
    store.folders["folder-b"] = Folder(id="folder-b", user_id=USER, name="web")
    store.folders["folder-x"] = Folder(id="folder-x", user_id=OTHER_USER, name="theirs")
    for session in (
        TerminalSession(id="sess-host", user_id=USER, name="supervisor", handle="tw-host", folder_id="folder-a"),
        TerminalSession(id="sess-a", user_id=USER, name="api-dev", handle="tw-a", folder_id="folder-a"),
        TerminalSession(id="sess-b", user_id=USER, name="web-dev", handle="tw-b", folder_id="folder-b"),
        TerminalSession(id="sess-loose", user_id=USER, name="scratch", handle="tw-loose"),
        TerminalSession(id="sess-x", user_id=OTHER_USER, name="theirs", handle="tw-x", folder_id="folder-x"),
    ):
        store.sessions[session.id] = session
    return store


@pytest.fixture
def transport(store):
    transport = FakeTransport(events=store.events)
    for handle in ("tw-host", "tw-a", "tw-b", "tw-loose", "tw-x"):
        transport.add_session(handle)
    return transport


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def coordinator(store):
    return FakeCoordinator(store)


@pytest.fixture
def supervisors(store):
    return FakeSupervisorRepository(store)


@pytest.fixture
def insights(store):
    return FakeInsightRepository(store)


@pytest.fixture
def audit_log(store):
    return FakeAuditLogRepository(store)


@pytest.fixture
def sessions(store):
    return FakeSessionRepository(store)


@pytest.fixture
def folders(store):
    return FakeFolderRepository(store)


@pytest.fixture
def tasks(store):
    return FakeTaskRepository(store)


@pytest.fixture
def gateway(transport):
    return CommandInjectionGateway(transport)


@pytest.fixture
def monitor(transport, clock):
    return ScrollbackMonitor(transport, clock=clock)

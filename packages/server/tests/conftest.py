"""
Shared fixtures: in-memory SQLite per test, a static user directory and a
recording notifier.
"""

from __future__ import annotations

import os

# The app builds its engine at import time; point it at SQLite before any app import.
os.environ.setdefault("EF_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EF_LOG_FORMAT", "text")

from typing import Any, Iterable

import pytest

from app.core.database import build_engine, build_session_factory, init_db
from app.core.identity import StaticUserDirectory, UserRef
from app.core.workflow import WorkflowRules
from app.services.enquiries import create_enquiry
from app.services.tasks import create_task
from eventflow_shared.schemas.tasks import TaskCreate

CREATOR_ID = 1
DESIGN_DEPT = 10
PRODUCTION_DEPT = 20


class RecordingNotifier:
    """Notifier that keeps every delivery in memory."""

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        self.sent: list[tuple[str, list[int], dict[str, Any]]] = []
        self._fail_on = set(fail_on)

    async def notify(self, event: str, recipients: Iterable[int], payload: dict[str, Any]) -> None:
        if event in self._fail_on:
            raise ConnectionError(f"delivery of {event} refused")
        self.sent.append((event, list(recipients), payload))

    def events(self) -> list[str]:
        return [event for event, _, _ in self.sent]


@pytest.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def rules() -> WorkflowRules:
    return WorkflowRules()


@pytest.fixture
def creator() -> UserRef:
    return UserRef(id=CREATOR_ID, department_id=DESIGN_DEPT)


@pytest.fixture
def directory(creator) -> StaticUserDirectory:
    return StaticUserDirectory(
        {
            creator.id: creator,
            5: UserRef(id=5, department_id=DESIGN_DEPT),
            7: UserRef(id=7, department_id=PRODUCTION_DEPT),
            8: UserRef(id=8, department_id=DESIGN_DEPT),
            9: UserRef(id=9, department_id=None),
        }
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_task(session, creator, rules):
    """Create a task through the task store."""

    async def _make(title: str = "Task", **fields):
        return await create_task(session, TaskCreate(title=title, **fields), creator, rules)

    return _make


@pytest.fixture
def make_enquiry(session, creator):
    async def _make(title: str = "Gala dinner staging"):
        return await create_enquiry(session, title, creator.id)

    return _make

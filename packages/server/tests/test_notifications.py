"""
Tests for the notification port: queueing, post-commit dispatch and delivery failures.
"""

from __future__ import annotations

import json

import pytest

from app.core import notifications
from app.core.notifications import (
    RedisNotifier,
    discard_notifications,
    dispatch_notifications,
    pending_notifications,
    queue_notification,
)
from app.models.task import Task

from conftest import RecordingNotifier


class FakeRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


class TestQueue:
    @pytest.mark.asyncio
    async def test_recipients_deduplicated_and_none_dropped(self, session):
        queue_notification(session, "task.assigned", [5, None, 5, 7], {"task_id": "t"})
        [note] = pending_notifications(session)
        assert note.recipients == (5, 7)

    @pytest.mark.asyncio
    async def test_discard(self, session):
        queue_notification(session, "task.assigned", [5], {})
        discard_notifications(session)
        assert pending_notifications(session) == []


class TestDispatch:
    @pytest.mark.asyncio
    async def test_delivers_in_order_and_empties_queue(self, session, notifier):
        queue_notification(session, "task.assigned", [5], {"n": 1})
        queue_notification(session, "task.completed", [7], {"n": 2})

        warnings = await dispatch_notifications(session, notifier)

        assert warnings == []
        assert notifier.events() == ["task.assigned", "task.completed"]
        assert pending_notifications(session) == []

    @pytest.mark.asyncio
    async def test_empty_recipients_skipped(self, session, notifier):
        queue_notification(session, "task.status_changed", [], {})
        await dispatch_notifications(session, notifier)
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_failure_becomes_warning(self, session):
        notifier = RecordingNotifier(fail_on={"task.completed"})
        queue_notification(session, "task.completed", [5], {})
        queue_notification(session, "task.assigned", [5], {})

        warnings = await dispatch_notifications(session, notifier)

        assert len(warnings) == 1
        assert "task.completed" in warnings[0]
        # Later notifications are still delivered.
        assert notifier.events() == ["task.assigned"]

    @pytest.mark.asyncio
    async def test_committed_work_survives_failed_delivery(self, make_task, session, session_factory):
        task = await make_task(assigned_user_id=5)
        await session.commit()

        warnings = await dispatch_notifications(session, RecordingNotifier(fail_on={"task.assigned"}))

        assert warnings
        async with session_factory() as other:
            assert await other.get(Task, task.id) is not None


class TestRedisNotifier:
    @pytest.mark.asyncio
    async def test_publishes_json_message(self, monkeypatch):
        fake = FakeRedis()

        async def _get_redis():
            return fake

        monkeypatch.setattr(notifications, "get_redis", _get_redis)

        await RedisNotifier("ef:test").notify("task.assigned", (5, 7), {"task_id": "abc"})

        [(channel, raw)] = fake.published
        message = json.loads(raw)
        assert channel == "ef:test"
        assert message["event"] == "task.assigned"
        assert message["recipients"] == [5, 7]
        assert message["payload"] == {"task_id": "abc"}
        assert "timestamp" in message

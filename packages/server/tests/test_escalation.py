"""
Tests for the periodic overdue, escalation and reminder jobs.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.notifications import discard_notifications, pending_notifications
from app.services.tasks import list_history, today
from app.tasks.escalation import (
    escalate_priorities,
    escalated_priority,
    mark_overdue,
    queue_due_soon_reminders,
)
from eventflow_shared.schemas.common import TaskPriority, TaskStatus


class TestEscalatedPriority:
    def test_thresholds(self):
        assert escalated_priority(TaskPriority.LOW, 1, 3, 7) is None
        assert escalated_priority(TaskPriority.LOW, 3, 3, 7) == TaskPriority.HIGH
        assert escalated_priority(TaskPriority.MEDIUM, 7, 3, 7) == TaskPriority.URGENT

    def test_never_lowers(self):
        assert escalated_priority(TaskPriority.CRITICAL, 4, 3, 7) is None
        assert escalated_priority("urgent", 30, 3, 7) is None


class TestMarkOverdue:
    @pytest.mark.asyncio
    async def test_marks_past_due_open_tasks(self, make_task, session, rules):
        late = await make_task("Late", due_date=today())
        future = await make_task("Future", due_date=today() + timedelta(days=20))
        done = await make_task("Done", due_date=today(), status=TaskStatus.COMPLETED)
        in_review = await make_task("In review", due_date=today(), status=TaskStatus.REVIEW)

        marked = await mark_overdue(session, rules, on=today() + timedelta(days=1))

        assert [t.id for t in marked] == [late.id]
        assert late.status == TaskStatus.OVERDUE.value
        assert future.status == TaskStatus.PENDING.value
        assert done.status == TaskStatus.COMPLETED.value
        assert in_review.status == TaskStatus.REVIEW.value

        changes = [h for h in await list_history(session, late.id) if h.action == "status_changed"]
        assert changes[0].user_id == rules.system_actor_id

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, make_task, session, rules):
        await make_task("Late", due_date=today())
        on = today() + timedelta(days=1)
        assert len(await mark_overdue(session, rules, on=on)) == 1
        assert await mark_overdue(session, rules, on=on) == []


class TestEscalatePriorities:
    @pytest.mark.asyncio
    async def test_raises_priority_and_notifies(self, make_task, session, rules):
        task = await make_task("Late", due_date=today(), priority=TaskPriority.LOW, assigned_user_id=5)
        discard_notifications(session)

        escalated = await escalate_priorities(session, rules, on=today() + timedelta(days=4), high_days=3, urgent_days=7)

        assert [t.id for t in escalated] == [task.id]
        assert task.priority == TaskPriority.HIGH.value
        entries = [h for h in await list_history(session, task.id) if h.action == "priority_escalated"]
        assert (entries[0].old_value, entries[0].new_value) == ("low", "high")
        notes = pending_notifications(session)
        assert [(n.event, n.recipients) for n in notes] == [("task.escalated", (5,))]

    @pytest.mark.asyncio
    async def test_urgent_after_long_delay(self, make_task, session, rules):
        task = await make_task("Very late", due_date=today(), priority=TaskPriority.HIGH)
        await escalate_priorities(session, rules, on=today() + timedelta(days=10), high_days=3, urgent_days=7)
        assert task.priority == TaskPriority.URGENT.value

    @pytest.mark.asyncio
    async def test_closed_tasks_are_skipped(self, make_task, session, rules):
        task = await make_task("Cancelled", due_date=today(), status=TaskStatus.CANCELLED)
        escalated = await escalate_priorities(session, rules, on=today() + timedelta(days=10), high_days=3, urgent_days=7)
        assert escalated == []
        assert task.priority == TaskPriority.MEDIUM.value


class TestDueSoonReminders:
    @pytest.mark.asyncio
    async def test_reminds_assignees_of_tasks_due_soon(self, make_task, session):
        soon = await make_task("Soon", due_date=today() + timedelta(days=1), assigned_user_id=5)
        await make_task("Later", due_date=today() + timedelta(days=10), assigned_user_id=5)
        discard_notifications(session)

        due = await queue_due_soon_reminders(session, on=today(), days=1)

        assert [t.id for t in due] == [soon.id]
        notes = pending_notifications(session)
        assert [(n.event, n.recipients) for n in notes] == [("task.due_soon", (5,))]

"""
ARQ background tasks: overdue marking, priority escalation and due-date reminders.

Scheduled to run periodically (e.g., every hour). Each job runs in its own
session, commits, then dispatches whatever notifications it queued.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

import structlog
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session_context
from app.core.notifications import dispatch_notifications, get_notifier, queue_notification
from app.core.workflow import WorkflowRules, get_workflow_rules
from app.models.task import Task
from app.services.tasks import active_assignee_ids, claim_version, record_history, today
from app.services.transitions import transition_task
from eventflow_shared.schemas.common import TASK_PRIORITY_ORDER, TERMINAL_STATUSES, TaskPriority, TaskStatus

log = structlog.get_logger()

_CLOSED = [s.value for s in TERMINAL_STATUSES]


async def _open_tasks(session: AsyncSession, *conditions) -> list[Task]:
    result = await session.execute(
        select(Task).where(Task.deleted_at.is_(None), Task.status.not_in(_CLOSED), *conditions)
    )
    return list(result.scalars().all())


def escalated_priority(
    current: TaskPriority | str, days_overdue: int, high_days: int, urgent_days: int
) -> Optional[TaskPriority]:
    """Priority a task should be raised to, or None. Never lowers a priority."""
    if days_overdue >= urgent_days:
        target = TaskPriority.URGENT
    elif days_overdue >= high_days:
        target = TaskPriority.HIGH
    else:
        return None
    if TASK_PRIORITY_ORDER.index(target) <= TASK_PRIORITY_ORDER.index(TaskPriority(current)):
        return None
    return target


# ---------------------------------------------------------------------------
# Session-level jobs
# ---------------------------------------------------------------------------


async def mark_overdue(
    session: AsyncSession, rules: Optional[WorkflowRules] = None, on: Optional[date] = None
) -> list[Task]:
    """Move open tasks past their due date to ``overdue`` as the system actor."""
    rules = rules or get_workflow_rules()
    on = on or today()
    marked = []
    for task in await _open_tasks(session, Task.due_date < on, Task.status != TaskStatus.OVERDUE.value):
        if not rules.transitions.can_transition(task.status, TaskStatus.OVERDUE):
            continue
        await transition_task(
            session,
            task,
            TaskStatus.OVERDUE,
            rules.system_actor_id,
            notes=f"Due date {task.due_date} passed",
            rules=rules,
        )
        marked.append(task)
    return marked


async def escalate_priorities(
    session: AsyncSession,
    rules: Optional[WorkflowRules] = None,
    on: Optional[date] = None,
    high_days: Optional[int] = None,
    urgent_days: Optional[int] = None,
) -> list[Task]:
    rules = rules or get_workflow_rules()
    settings = get_settings()
    on = on or today()
    high_days = settings.escalation_high_days if high_days is None else high_days
    urgent_days = settings.escalation_urgent_days if urgent_days is None else urgent_days

    escalated = []
    for task in await _open_tasks(session, Task.due_date < on):
        days_overdue = (on - task.due_date).days
        target = escalated_priority(task.priority, days_overdue, high_days, urgent_days)
        if target is None:
            continue
        old = task.priority
        await claim_version(session, task)
        task.priority = target.value
        session.add(task)
        await record_history(
            session,
            task.id,
            rules.system_actor_id,
            "priority_escalated",
            field_name="priority",
            old_value=old,
            new_value=target,
            description=f"Overdue by {days_overdue} days",
        )
        queue_notification(
            session,
            "task.escalated",
            await active_assignee_ids(session, task.id),
            {"task_id": str(task.id), "title": task.title, "priority": target.value, "days_overdue": days_overdue},
        )
        escalated.append(task)
    await session.flush()
    return escalated


async def queue_due_soon_reminders(
    session: AsyncSession, on: Optional[date] = None, days: Optional[int] = None
) -> list[Task]:
    on = on or today()
    days = get_settings().reminder_due_soon_days if days is None else days
    due = await _open_tasks(session, Task.due_date >= on, Task.due_date <= on + timedelta(days=days))
    for task in due:
        queue_notification(
            session,
            "task.due_soon",
            await active_assignee_ids(session, task.id),
            {"task_id": str(task.id), "title": task.title, "due_date": task.due_date.isoformat()},
        )
    return due


# ---------------------------------------------------------------------------
# ARQ entry points
# ---------------------------------------------------------------------------


async def mark_overdue_tasks(ctx: dict) -> int:
    """Returns the number of tasks marked overdue."""
    async with get_session_context() as session:
        marked = await mark_overdue(session)
        await session.commit()
        await dispatch_notifications(session, get_notifier())
    if marked:
        log.info("escalation.overdue_marked", count=len(marked))
    return len(marked)


async def escalate_overdue_priorities(ctx: dict) -> int:
    async with get_session_context() as session:
        escalated = await escalate_priorities(session)
        await session.commit()
        await dispatch_notifications(session, get_notifier())
    if escalated:
        log.info("escalation.priorities_raised", count=len(escalated))
    return len(escalated)


async def send_due_soon_reminders(ctx: dict) -> int:
    async with get_session_context() as session:
        due = await queue_due_soon_reminders(session)
        await session.commit()
        warnings = await dispatch_notifications(session, get_notifier())
    log.info("escalation.reminders_sent", count=len(due), failed=len(warnings))
    return len(due)


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration: `arq app.tasks.escalation.WorkerSettings`."""

    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    functions = [mark_overdue_tasks, escalate_overdue_priorities, send_due_soon_reminders]
    cron_jobs = [
        cron(mark_overdue_tasks, minute=0),
        cron(escalate_overdue_priorities, minute=5),
        cron(send_due_soon_reminders, hour=8, minute=0),
    ]

"""
Assignment service: who works on a task.

A task may have several assignees; exactly one active row is primary and is
mirrored into ``Task.assigned_user_id``. Users are resolved through the
identity port so their department can be checked and inherited.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Sequence

import structlog
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import InvalidReassignment, UnassignableUser
from app.core.identity import UserDirectory, UserRef
from app.core.notifications import queue_notification
from app.models.assignments import TaskAssignment, TaskAssignmentHistory
from app.models.base import utcnow
from app.models.task import Task
from app.services.tasks import record_history, validate_due_date

log = structlog.get_logger()


async def list_assignments(
    session: AsyncSession, task_id: uuid.UUID, include_expired: bool = False
) -> list[TaskAssignment]:
    result = await session.execute(
        select(TaskAssignment)
        .where(TaskAssignment.task_id == task_id)
        .order_by(TaskAssignment.is_primary.desc(), TaskAssignment.assigned_at)
    )
    rows = list(result.scalars().all())
    if include_expired:
        return rows
    now = utcnow()
    return [a for a in rows if a.is_active(now)]


async def _resolve_user(task: Task, user_id: int, directory: UserDirectory) -> UserRef:
    user = await directory.get_user(user_id)
    if user is None:
        raise UnassignableUser(task.id, user_id, "user not found")
    if user.department_id is None:
        raise UnassignableUser(task.id, user_id, "user has no department")
    return user


async def _set_primary(session: AsyncSession, task: Task, user_id: int) -> None:
    """Make ``user_id`` the only primary row for ``task``."""
    result = await session.execute(select(TaskAssignment).where(TaskAssignment.task_id == task.id))
    for row in result.scalars().all():
        should_be_primary = row.user_id == user_id
        if row.is_primary != should_be_primary:
            row.is_primary = should_be_primary
            session.add(row)
    await session.flush()


async def assign_task(
    session: AsyncSession,
    task: Task,
    user_ids: Sequence[int],
    assigner_id: int,
    directory: UserDirectory,
    role: Optional[str] = None,
    replace_existing: bool = False,
    due_date: Optional[date] = None,
    expires_at: Optional[datetime] = None,
) -> list[TaskAssignment]:
    """Assign one or more users; the first becomes primary."""
    user_ids = list(dict.fromkeys(user_ids))
    if not user_ids:
        raise UnassignableUser(task.id, None, "no users given")
    validate_due_date(due_date, task_id=task.id)

    users = [await _resolve_user(task, uid, directory) for uid in user_ids]
    for user in users:
        if task.department_id is not None and user.department_id != task.department_id:
            log.warning(
                "assignment.cross_department",
                task_id=str(task.id),
                user_id=user.id,
                user_department_id=user.department_id,
                task_department_id=task.department_id,
            )

    if replace_existing:
        existing = await session.execute(
            select(TaskAssignment).where(TaskAssignment.task_id == task.id)
        )
        for row in existing.scalars().all():
            await session.delete(row)
        await session.flush()

    now = utcnow()
    current = {
        row.user_id: row
        for row in (
            await session.execute(select(TaskAssignment).where(TaskAssignment.task_id == task.id))
        ).scalars().all()
    }
    assigned: list[TaskAssignment] = []
    for user in users:
        row = current.get(user.id)
        if row is None:
            row = TaskAssignment(task_id=task.id, user_id=user.id, assigned_by=assigner_id)
        row.assigned_by = assigner_id
        row.assigned_at = now
        row.role = role
        row.expires_at = expires_at
        session.add(row)
        assigned.append(row)
    await session.flush()

    primary = users[0]
    await _set_primary(session, task, primary.id)

    task.assigned_user_id = primary.id
    if task.department_id is None:
        task.department_id = primary.department_id
    if due_date is not None:
        task.due_date = due_date
    session.add(task)
    await session.flush()

    await record_history(
        session,
        task.id,
        assigner_id,
        "assigned",
        field_name="assigned_user_id",
        new_value=",".join(str(u.id) for u in users),
        description=f"Assigned to users {[u.id for u in users]}",
        meta={"user_ids": [u.id for u in users], "role": role, "replace_existing": replace_existing},
    )
    queue_notification(
        session,
        "task.assigned",
        [u.id for u in users],
        {"task_id": str(task.id), "title": task.title, "assigned_by": assigner_id},
    )
    log.info("task.assigned", task_id=str(task.id), user_ids=[u.id for u in users], assigner_id=assigner_id)
    return assigned


async def reassign_task(
    session: AsyncSession,
    task: Task,
    new_user_id: int,
    reassigner_id: int,
    directory: UserDirectory,
    reason: Optional[str] = None,
) -> TaskAssignment:
    """Hand the task to ``new_user_id``; prior assignees keep their rows."""
    active = await list_assignments(session, task.id)
    if not active and task.assigned_user_id is None:
        raise InvalidReassignment(task.id, new_user_id, "task has never been assigned")
    if [a.user_id for a in active] == [new_user_id]:
        raise InvalidReassignment(task.id, new_user_id, "user is already the sole assignee")

    user = await _resolve_user(task, new_user_id, directory)

    previous_user_id = task.assigned_user_id
    now = utcnow()
    result = await session.execute(
        select(TaskAssignment).where(
            TaskAssignment.task_id == task.id, TaskAssignment.user_id == new_user_id
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = TaskAssignment(task_id=task.id, user_id=new_user_id, assigned_by=reassigner_id)
    row.assigned_by = reassigner_id
    row.assigned_at = now
    row.expires_at = None
    session.add(row)
    await session.flush()
    await _set_primary(session, task, new_user_id)

    task.assigned_user_id = new_user_id
    task.department_id = user.department_id
    session.add(task)

    session.add(
        TaskAssignmentHistory(
            task_id=task.id,
            assigned_to=new_user_id,
            assigned_by=reassigner_id,
            assigned_at=now,
            notes=reason,
        )
    )
    await session.flush()

    await record_history(
        session,
        task.id,
        reassigner_id,
        "reassigned",
        field_name="assigned_user_id",
        old_value=previous_user_id,
        new_value=new_user_id,
        description=reason or f"Reassigned to user {new_user_id}",
    )
    queue_notification(
        session,
        "task.assigned",
        [new_user_id],
        {"task_id": str(task.id), "title": task.title, "assigned_by": reassigner_id, "reason": reason},
    )
    log.info(
        "task.reassigned",
        task_id=str(task.id),
        old_user_id=previous_user_id,
        new_user_id=new_user_id,
        reassigner_id=reassigner_id,
    )
    return row

"""
Task store: business logic for task records and their audit trail.

Handles:
- Task CRUD (soft delete keeps the row and its dependency edges)
- Optimistic concurrency through ``Task.version``
- Append-only history rows for every mutation
- Conversion of Task rows to API read models
"""

from __future__ import annotations

import json
import uuid
from datetime import date, timedelta
from typing import Any, Optional, Sequence

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import select

from app.core.errors import ConcurrentModification, InvalidDueDate, TaskNotFound
from app.core.identity import UserRef
from app.core.notifications import queue_notification
from app.core.workflow import Taskable, WorkflowRules, get_workflow_rules
from app.models.assignments import TaskAssignment
from app.models.base import utcnow
from app.models.history import TaskHistory
from app.models.task import Task
from eventflow_shared.schemas.common import TaskPriority, TaskStatus
from eventflow_shared.schemas.tasks import HistoryRead, TaskableRef, TaskCreate, TaskRead, TaskUpdate

log = structlog.get_logger()

# Fields update_task may change; everything else has a dedicated operation.
EDITABLE_FIELDS = (
    "title",
    "description",
    "task_type",
    "priority",
    "due_date",
    "estimated_hours",
    "blocked_reason",
    "tags",
    "metadata",
)
# Editable fields that cannot be cleared.
_NON_NULLABLE = {"title", "priority", "due_date", "tags", "metadata"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def today() -> date:
    return utcnow().date()


def taskable_of(task: Task) -> Optional[Taskable]:
    return Taskable.of(task.taskable_type, task.taskable_id)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


def validate_due_date(due_date: Optional[date], task_id: Optional[uuid.UUID] = None) -> None:
    if due_date is not None and due_date < today():
        raise InvalidDueDate(due_date, task_id=task_id)


async def get_task_or_raise(
    session: AsyncSession, task_id: uuid.UUID, include_deleted: bool = False
) -> Task:
    task = await session.get(Task, task_id)
    if not task or (task.deleted_at is not None and not include_deleted):
        raise TaskNotFound(task_id)
    return task


async def claim_version(
    session: AsyncSession, task: Task, expected_version: Optional[int] = None
) -> None:
    """Bump ``task.version`` with a guarded UPDATE.

    Call before mutating the task. Raises ConcurrentModification when the
    caller's expected version is stale or another transaction got there first.
    """
    if expected_version is not None and expected_version != task.version:
        raise ConcurrentModification(task.id, expected_version, task.version)

    current = task.version
    result = await session.execute(
        sa.update(Task)
        .where(Task.id == task.id, Task.version == current)
        .values(version=current + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModification(task.id, current)
    set_committed_value(task, "version", current + 1)


async def record_history(
    session: AsyncSession,
    task_id: uuid.UUID,
    user_id: int,
    action: str,
    field_name: Optional[str] = None,
    old_value: Any = None,
    new_value: Any = None,
    description: Optional[str] = None,
    meta: Optional[dict] = None,
) -> TaskHistory:
    entry = TaskHistory(
        task_id=task_id,
        user_id=user_id,
        action=action,
        field_name=field_name,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
        description=description,
        meta=meta or {},
    )
    session.add(entry)
    await session.flush()
    return entry


async def active_assignee_ids(session: AsyncSession, task_id: uuid.UUID) -> list[int]:
    """Active assignees, primary first."""
    now = utcnow()
    result = await session.execute(
        select(TaskAssignment)
        .where(TaskAssignment.task_id == task_id)
        .order_by(TaskAssignment.is_primary.desc(), TaskAssignment.assigned_at)
    )
    return [a.user_id for a in result.scalars().all() if a.is_active(now)]


async def to_read(session: AsyncSession, task: Task) -> TaskRead:
    """Convert a Task row to a TaskRead with its active assignees."""
    taskable = taskable_of(task)
    return TaskRead(
        id=task.id,
        title=task.title,
        description=task.description,
        task_type=task.task_type,
        status=task.status,
        priority=task.priority,
        parent_task_id=task.parent_task_id,
        taskable=TaskableRef(kind=taskable.kind, id=taskable.id) if taskable else None,
        department_id=task.department_id,
        created_by=task.created_by,
        assigned_user_id=task.assigned_user_id,
        assignee_ids=await active_assignee_ids(session, task.id),
        estimated_hours=task.estimated_hours,
        actual_hours=task.actual_hours,
        due_date=task.due_date,
        started_at=task.started_at,
        completed_at=task.completed_at,
        blocked_reason=task.blocked_reason,
        tags=task.tags or [],
        metadata=task.meta or {},
        completion_percentage=task.completion_percentage,
        version=task.version,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def history_to_read(entry: TaskHistory) -> HistoryRead:
    return HistoryRead(
        id=entry.id,
        task_id=entry.task_id,
        user_id=entry.user_id,
        action=entry.action,
        field_name=entry.field_name,
        old_value=entry.old_value,
        new_value=entry.new_value,
        description=entry.description,
        metadata=entry.meta or {},
        created_at=entry.created_at,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_tasks(
    session: AsyncSession,
    *,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    department_id: Optional[int] = None,
    assignee_id: Optional[int] = None,
    taskable: Optional[Taskable] = None,
    parent_task_id: Optional[uuid.UUID] = None,
    include_deleted: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> list[Task]:
    stmt = select(Task)
    if not include_deleted:
        stmt = stmt.where(Task.deleted_at.is_(None))
    if status is not None:
        stmt = stmt.where(Task.status == TaskStatus(status).value)
    if priority is not None:
        stmt = stmt.where(Task.priority == TaskPriority(priority).value)
    if department_id is not None:
        stmt = stmt.where(Task.department_id == department_id)
    if assignee_id is not None:
        assigned = select(TaskAssignment.task_id).where(TaskAssignment.user_id == assignee_id)
        stmt = stmt.where(Task.id.in_(assigned))
    if taskable is not None:
        stmt = stmt.where(
            Task.taskable_type == taskable.kind.value,
            Task.taskable_id == taskable.id,
        )
    if parent_task_id is not None:
        stmt = stmt.where(Task.parent_task_id == parent_task_id)
    stmt = stmt.order_by(Task.due_date, Task.created_at).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_children(
    session: AsyncSession, parent_id: uuid.UUID, include_deleted: bool = False
) -> list[Task]:
    stmt = select(Task).where(Task.parent_task_id == parent_id)
    if not include_deleted:
        stmt = stmt.where(Task.deleted_at.is_(None))
    result = await session.execute(stmt.order_by(Task.created_at))
    return list(result.scalars().all())


async def list_history(session: AsyncSession, task_id: uuid.UUID) -> list[TaskHistory]:
    result = await session.execute(
        select(TaskHistory)
        .where(TaskHistory.task_id == task_id)
        .order_by(TaskHistory.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_task(
    session: AsyncSession,
    task_in: TaskCreate,
    creator: UserRef,
    rules: Optional[WorkflowRules] = None,
) -> Task:
    from app.services.hierarchy import propagate_completion
    from app.services.projection import on_task_completed

    rules = rules or get_workflow_rules()
    validate_due_date(task_in.due_date)

    parent = None
    if task_in.parent_task_id is not None:
        parent = await get_task_or_raise(session, task_in.parent_task_id)

    status = TaskStatus(task_in.status)
    now = utcnow()
    task = Task(
        title=task_in.title,
        description=task_in.description,
        task_type=task_in.task_type,
        status=status.value,
        priority=TaskPriority(task_in.priority).value,
        parent_task_id=parent.id if parent else None,
        taskable_type=task_in.taskable.kind.value if task_in.taskable else None,
        taskable_id=task_in.taskable.id if task_in.taskable else None,
        department_id=task_in.department_id if task_in.department_id is not None else creator.department_id,
        created_by=creator.id,
        assigned_user_id=task_in.assigned_user_id,
        estimated_hours=task_in.estimated_hours,
        due_date=task_in.due_date or today() + timedelta(days=rules.default_due_days),
        started_at=now if status == TaskStatus.IN_PROGRESS else None,
        completed_at=now if status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED) else None,
        tags=list(task_in.tags),
        meta=dict(task_in.metadata),
    )
    session.add(task)
    await session.flush()

    if task_in.assigned_user_id is not None:
        session.add(
            TaskAssignment(
                task_id=task.id,
                user_id=task_in.assigned_user_id,
                assigned_by=creator.id,
                is_primary=True,
            )
        )
        queue_notification(
            session,
            "task.assigned",
            [task_in.assigned_user_id],
            {"task_id": str(task.id), "title": task.title, "assigned_by": creator.id},
        )

    await record_history(
        session, task.id, creator.id, "created", description=f"Task created: {task.title}"
    )
    log.info("task.created", task_id=str(task.id), parent_id=str(task.parent_task_id), created_by=creator.id)

    if parent is not None:
        await propagate_completion(session, parent, rules)
    if status == TaskStatus.COMPLETED and task.taskable_type:
        await on_task_completed(session, task, rules)
    return task


async def update_task(
    session: AsyncSession,
    task: Task,
    task_in: TaskUpdate,
    actor_id: int,
    rules: Optional[WorkflowRules] = None,
) -> Task:
    data = task_in.model_dump(exclude_unset=True)
    expected_version = data.pop("expected_version", None)

    if data.get("due_date") is not None:
        validate_due_date(data["due_date"], task_id=task.id)

    changes: dict[str, tuple[Any, Any]] = {}
    for key in EDITABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if value is None and key in _NON_NULLABLE:
            continue
        if key == "priority":
            value = TaskPriority(value).value
        attr = "meta" if key == "metadata" else key
        old = getattr(task, attr)
        if old != value:
            changes[key] = (old, value)

    if not changes:
        return task

    await claim_version(session, task, expected_version)
    for key, (old, new) in changes.items():
        setattr(task, "meta" if key == "metadata" else key, new)
        await record_history(
            session,
            task.id,
            actor_id,
            "updated",
            field_name=key,
            old_value=old,
            new_value=new,
            description=f"Updated {key}",
        )

    session.add(task)
    await session.flush()
    log.info("task.updated", task_id=str(task.id), fields=sorted(changes))

    # Completed task types feed the projection.
    taskable = taskable_of(task)
    if "task_type" in changes and taskable is not None:
        from app.services.projection import recompute_entity_status

        await recompute_entity_status(session, taskable, rules)
    return task


async def delete_task(
    session: AsyncSession,
    task: Task,
    actor_id: int,
    rules: Optional[WorkflowRules] = None,
) -> Task:
    """Tombstone a task, then recompute everything that counted it."""
    from app.services.hierarchy import propagate_completion
    from app.services.projection import recompute_entity_status

    rules = rules or get_workflow_rules()
    if task.deleted_at is not None:
        return task

    await claim_version(session, task)
    task.deleted_at = utcnow()
    session.add(task)
    await session.flush()
    await record_history(session, task.id, actor_id, "deleted", description=f"Task deleted: {task.title}")
    log.info("task.deleted", task_id=str(task.id), actor_id=actor_id)

    if task.parent_task_id is not None:
        parent = await session.get(Task, task.parent_task_id)
        if parent is not None and parent.deleted_at is None:
            await propagate_completion(session, parent, rules)

    taskable = taskable_of(task)
    if taskable is not None:
        await recompute_entity_status(session, taskable, rules)
    return task


async def tasks_for_read(session: AsyncSession, tasks: Sequence[Task]) -> list[TaskRead]:
    return [await to_read(session, t) for t in tasks]

"""
Hierarchy service: subtasks, moves, tree reads and completion propagation.

The hierarchy is a forest over ``Task.parent_task_id``. Completion
percentage is always recomputed from the direct children, never patched.
When every direct child is completed the parent is completed too, attributed
to the system actor.
"""

from __future__ import annotations

import uuid
from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import CircularReference
from app.core.identity import UserRef
from app.core.workflow import WorkflowRules, get_workflow_rules
from app.models.task import Task
from app.services.tasks import (
    claim_version,
    create_task,
    get_task_or_raise,
    list_children,
    record_history,
    taskable_of,
)
from eventflow_shared.schemas.common import TERMINAL_STATUSES, TaskStatus
from eventflow_shared.schemas.tasks import HierarchyNode, SubtaskCreate, TaskableRef, TaskCreate

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


async def get_ancestors(session: AsyncSession, task: Task) -> list[Task]:
    """Ancestors nearest first."""
    ancestors: list[Task] = []
    seen = {task.id}
    parent_id = task.parent_task_id
    while parent_id is not None and parent_id not in seen:
        parent = await session.get(Task, parent_id)
        if parent is None or parent.deleted_at is not None:
            break
        ancestors.append(parent)
        seen.add(parent.id)
        parent_id = parent.parent_task_id
    return ancestors


async def _descendant_ids(
    session: AsyncSession, task_id: uuid.UUID, include_deleted: bool
) -> set[uuid.UUID]:
    found: set[uuid.UUID] = set()
    frontier = [task_id]
    while frontier:
        stmt = select(Task.id).where(Task.parent_task_id.in_(frontier))
        if not include_deleted:
            stmt = stmt.where(Task.deleted_at.is_(None))
        result = await session.execute(stmt)
        frontier = [row[0] for row in result.all() if row[0] not in found and row[0] != task_id]
        found.update(frontier)
    return found


async def get_descendants(session: AsyncSession, task: Task) -> list[Task]:
    """All live tasks below ``task``. Tombstoned subtrees are hidden."""
    ids = await _descendant_ids(session, task.id, include_deleted=False)
    if not ids:
        return []
    result = await session.execute(select(Task).where(Task.id.in_(ids)).order_by(Task.created_at))
    return list(result.scalars().all())


async def get_hierarchy_tree(session: AsyncSession, task: Task) -> HierarchyNode:
    children = await list_children(session, task.id)
    return HierarchyNode(
        id=task.id,
        title=task.title,
        status=task.status,
        priority=task.priority,
        completion_percentage=task.completion_percentage,
        assignee=task.assigned_user_id,
        due_date=task.due_date,
        children=[await get_hierarchy_tree(session, child) for child in children],
    )


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


def completion_percentage(children: Sequence[Task]) -> float:
    if not children:
        return 0.0
    done = sum(1 for c in children if c.status == TaskStatus.COMPLETED.value)
    return round(done / len(children) * 100, 2)


async def propagate_completion(
    session: AsyncSession, parent: Task, rules: Optional[WorkflowRules] = None
) -> None:
    """Recompute ``parent`` and its ancestors after a child changed."""
    from app.services.transitions import transition_task

    rules = rules or get_workflow_rules()
    current: Optional[Task] = parent
    seen: set[uuid.UUID] = set()
    while current is not None and current.id not in seen and current.deleted_at is None:
        seen.add(current.id)
        children = await list_children(session, current.id)
        percentage = completion_percentage(children)
        if current.completion_percentage != percentage:
            current.completion_percentage = percentage
            session.add(current)
            await session.flush()

        all_done = bool(children) and all(c.status == TaskStatus.COMPLETED.value for c in children)
        # Applies to any open parent, bypassing the transition table.
        if all_done and TaskStatus(current.status) not in TERMINAL_STATUSES:
            log.info("task.auto_completed", task_id=str(current.id))
            # transition_task carries propagation to the next level itself.
            await transition_task(
                session,
                current,
                TaskStatus.COMPLETED,
                rules.system_actor_id,
                notes="All subtasks completed",
                rules=rules,
                enforce_table=False,
            )
            return

        if current.parent_task_id is None:
            return
        current = await session.get(Task, current.parent_task_id)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def create_subtask(
    session: AsyncSession,
    parent: Task,
    subtask_in: SubtaskCreate,
    creator: UserRef,
    rules: Optional[WorkflowRules] = None,
) -> Task:
    """Create a child task inheriting department, taskable and priority from ``parent``."""
    parent = await get_task_or_raise(session, parent.id)
    parent_taskable = taskable_of(parent)
    taskable = subtask_in.taskable
    if taskable is None and parent_taskable is not None:
        taskable = TaskableRef(kind=parent_taskable.kind, id=parent_taskable.id)

    task_in = TaskCreate(
        title=subtask_in.title,
        description=subtask_in.description,
        task_type=subtask_in.task_type,
        priority=subtask_in.priority or parent.priority,
        due_date=subtask_in.due_date,
        estimated_hours=subtask_in.estimated_hours,
        tags=subtask_in.tags,
        metadata=subtask_in.metadata,
        parent_task_id=parent.id,
        taskable=taskable,
        department_id=subtask_in.department_id if subtask_in.department_id is not None else parent.department_id,
        assigned_user_id=subtask_in.assigned_user_id,
    )
    return await create_task(session, task_in, creator, rules)


async def move_subtask(
    session: AsyncSession,
    task: Task,
    new_parent_id: Optional[uuid.UUID],
    actor_id: int,
    rules: Optional[WorkflowRules] = None,
    expected_version: Optional[int] = None,
) -> Task:
    """Re-parent ``task``; ``None`` makes it a root."""
    rules = rules or get_workflow_rules()

    new_parent = None
    if new_parent_id is not None:
        if new_parent_id == task.id:
            raise CircularReference(task.id, new_parent_id)
        new_parent = await get_task_or_raise(session, new_parent_id)
        if new_parent.id in await _descendant_ids(session, task.id, include_deleted=True):
            raise CircularReference(task.id, new_parent_id)

    old_parent_id = task.parent_task_id
    if old_parent_id == new_parent_id:
        return task

    await claim_version(session, task, expected_version)
    task.parent_task_id = new_parent_id
    session.add(task)
    await session.flush()
    await record_history(
        session,
        task.id,
        actor_id,
        "moved",
        field_name="parent_task_id",
        old_value=old_parent_id,
        new_value=new_parent_id,
        description="Task moved in hierarchy",
    )
    log.info(
        "task.moved",
        task_id=str(task.id),
        old_parent_id=str(old_parent_id),
        new_parent_id=str(new_parent_id),
    )

    if old_parent_id is not None:
        old_parent = await session.get(Task, old_parent_id)
        if old_parent is not None:
            await propagate_completion(session, old_parent, rules)
    if new_parent is not None:
        await propagate_completion(session, new_parent, rules)
    return task

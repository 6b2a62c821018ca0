"""
Dependency graph service.

Edges are ``task_id -> depends_on_task_id`` and the relation is kept acyclic:
an insert is rejected when ``depends_on_task_id`` can already reach
``task_id``. Status changes never cascade along edges automatically;
``get_affected_tasks`` only reports the fan-out.
"""

from __future__ import annotations

import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import CircularDependency, DependencyNotFound, DuplicateDependency
from app.models.dependency import TaskDependency
from app.models.task import Task
from app.services.tasks import get_task_or_raise, list_children, record_history
from eventflow_shared.schemas.common import TERMINAL_STATUSES, DependencyType, TaskStatus

log = structlog.get_logger()


@dataclass
class AffectedTasks:
    dependents: list[Task] = field(default_factory=list)
    parents: list[Task] = field(default_factory=list)
    subtasks: list[Task] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Graph helpers
# ---------------------------------------------------------------------------


async def _prerequisite_levels(session: AsyncSession, task_id: uuid.UUID):
    """Yield each breadth-first level of prerequisites reachable from ``task_id``.

    One ``WHERE task_id IN (...)`` query per level; every id is yielded once.
    """
    seen = {task_id}
    frontier = [task_id]
    while frontier:
        result = await session.execute(
            select(TaskDependency.task_id, TaskDependency.depends_on_task_id)
            .where(TaskDependency.task_id.in_(frontier))
            .order_by(TaskDependency.created_at)
        )
        by_source: dict[uuid.UUID, list[uuid.UUID]] = defaultdict(list)
        for source, target in result.all():
            by_source[source].append(target)
        level: list[uuid.UUID] = []
        for source in frontier:
            for target in by_source[source]:
                if target not in seen:
                    seen.add(target)
                    level.append(target)
        if level:
            yield level
        frontier = level


async def _reaches(session: AsyncSession, from_id: uuid.UUID, to_id: uuid.UUID) -> bool:
    async for level in _prerequisite_levels(session, from_id):
        if to_id in level:
            return True
    return False


def has_path(
    adj: dict[uuid.UUID, list[uuid.UUID]] | dict[str, list[str]], from_id, to_id
) -> bool:
    """BFS: is ``to_id`` reachable from ``from_id`` following dependency edges."""
    visited = set()
    queue = deque([from_id])
    while queue:
        current = queue.popleft()
        if current == to_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        queue.extend(adj.get(current, []))
    return False


def find_cycle_edge(edges: Iterable[tuple[str, str]]) -> Optional[tuple[str, str]]:
    """First edge that closes a cycle when edges are added in order, else None."""
    adj: dict[str, list[str]] = defaultdict(list)
    for task_ref, depends_on_ref in edges:
        if task_ref == depends_on_ref or has_path(adj, depends_on_ref, task_ref):
            return task_ref, depends_on_ref
        adj[task_ref].append(depends_on_ref)
    return None


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def add_dependency(
    session: AsyncSession,
    task_id: uuid.UUID,
    depends_on_id: uuid.UUID,
    dependency_type: DependencyType = DependencyType.BLOCKS,
    actor_id: Optional[int] = None,
) -> TaskDependency:
    if task_id == depends_on_id:
        raise CircularDependency(task_id, depends_on_id)

    task = await get_task_or_raise(session, task_id)
    await get_task_or_raise(session, depends_on_id)

    existing = await session.execute(
        select(TaskDependency).where(
            TaskDependency.task_id == task_id,
            TaskDependency.depends_on_task_id == depends_on_id,
        )
    )
    if existing.scalar_one_or_none():
        raise DuplicateDependency(task_id, depends_on_id)

    # Circular if depends_on already (transitively) depends on task.
    if await _reaches(session, depends_on_id, task_id):
        raise CircularDependency(task_id, depends_on_id)

    dep = TaskDependency(
        task_id=task_id,
        depends_on_task_id=depends_on_id,
        dependency_type=DependencyType(dependency_type).value,
    )
    session.add(dep)
    await session.flush()

    if actor_id is not None:
        await record_history(
            session,
            task.id,
            actor_id,
            "dependency_added",
            field_name="depends_on_task_id",
            new_value=depends_on_id,
        )
    log.info("dependency.added", task_id=str(task_id), depends_on_task_id=str(depends_on_id))
    return dep


async def remove_dependency(
    session: AsyncSession,
    task_id: uuid.UUID,
    depends_on_id: uuid.UUID,
    actor_id: Optional[int] = None,
) -> None:
    result = await session.execute(
        select(TaskDependency).where(
            TaskDependency.task_id == task_id,
            TaskDependency.depends_on_task_id == depends_on_id,
        )
    )
    dep = result.scalar_one_or_none()
    if not dep:
        raise DependencyNotFound(task_id, depends_on_id)
    await session.delete(dep)
    await session.flush()

    if actor_id is not None:
        await record_history(
            session,
            task_id,
            actor_id,
            "dependency_removed",
            field_name="depends_on_task_id",
            old_value=depends_on_id,
        )
    log.info("dependency.removed", task_id=str(task_id), depends_on_task_id=str(depends_on_id))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_dependencies(session: AsyncSession, task_id: uuid.UUID) -> list[TaskDependency]:
    result = await session.execute(
        select(TaskDependency)
        .where(TaskDependency.task_id == task_id)
        .order_by(TaskDependency.created_at)
    )
    return list(result.scalars().all())


async def _live_tasks(session: AsyncSession, ids: Iterable[uuid.UUID]) -> list[Task]:
    ids = list(ids)
    if not ids:
        return []
    result = await session.execute(
        select(Task).where(Task.id.in_(ids), Task.deleted_at.is_(None)).order_by(Task.created_at)
    )
    return list(result.scalars().all())


async def get_affected_tasks(
    session: AsyncSession, task: Task, new_status: TaskStatus | str
) -> AffectedTasks:
    """Tasks a status change to ``new_status`` would touch. Read-only."""
    new_status = TaskStatus(new_status)
    affected = AffectedTasks()

    if new_status == TaskStatus.COMPLETED:
        result = await session.execute(
            select(TaskDependency.task_id).where(TaskDependency.depends_on_task_id == task.id)
        )
        affected.dependents = await _live_tasks(session, [row[0] for row in result.all()])

    if task.parent_task_id is not None:
        affected.parents = await _live_tasks(session, [task.parent_task_id])

    if new_status in TERMINAL_STATUSES:
        affected.subtasks = await list_children(session, task.id)

    return affected


async def get_blockers(session: AsyncSession, task: Task) -> list[Task]:
    """Direct prerequisites that are neither completed nor cancelled."""
    deps = await list_dependencies(session, task.id)
    prerequisites = await _live_tasks(session, [d.depends_on_task_id for d in deps])
    return [t for t in prerequisites if TaskStatus(t.status) not in TERMINAL_STATUSES]


async def get_dependency_chain(session: AsyncSession, task: Task) -> list[Task]:
    """Transitive prerequisites, breadth-first, each task once."""
    order: list[uuid.UUID] = []
    async for level in _prerequisite_levels(session, task.id):
        order.extend(level)
    tasks = {t.id: t for t in await _live_tasks(session, order)}
    return [tasks[i] for i in order if i in tasks]

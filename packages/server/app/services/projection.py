"""
Business-status projection.

An entity's status (e.g. an enquiry's lifecycle stage) is derived from the
set of task types completed against it. ``derive_status`` is the pure rule;
the ``on_task_*`` hooks apply it incrementally as tasks complete or reopen.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.workflow import ProjectionTable, Taskable, TaskableBinding, WorkflowRules, get_workflow_rules
from app.models.task import Task
from eventflow_shared.schemas.common import TaskStatus

log = structlog.get_logger()


def derive_status(table: ProjectionTable, completed_types: Iterable[str]) -> str:
    """Highest stage whose prerequisites are all completed, else the initial status."""
    done = set(completed_types)
    for stage in reversed(table.stages):
        if stage.prerequisites <= done:
            return stage.status
    return table.initial_status


async def completed_task_types(session: AsyncSession, taskable: Taskable) -> set[str]:
    result = await session.execute(
        select(Task.task_type)
        .where(
            Task.taskable_type == taskable.kind.value,
            Task.taskable_id == taskable.id,
            Task.status == TaskStatus.COMPLETED.value,
            Task.deleted_at.is_(None),
            Task.task_type.is_not(None),
        )
        .distinct()
    )
    return {row[0] for row in result.all()}


def _projected_binding(rules: WorkflowRules, taskable: Optional[Taskable]) -> Optional[TaskableBinding]:
    if taskable is None:
        return None
    binding = rules.registry.resolve(taskable.kind)
    if binding is None or binding.projection is None or binding.status_target is None:
        return None
    return binding


async def on_task_completed(
    session: AsyncSession, task: Task, rules: Optional[WorkflowRules] = None
) -> Optional[str]:
    """Advance the entity status if this task type unlocks a higher stage.

    Returns the new status, or None when nothing changed.
    """
    rules = rules or get_workflow_rules()
    taskable = Taskable.of(task.taskable_type, task.taskable_id)
    binding = _projected_binding(rules, taskable)
    if binding is None:
        return None

    table = binding.projection
    stage = table.stage_for_type(task.task_type)
    if stage is None:
        return None

    done = await completed_task_types(session, taskable)
    if not stage.prerequisites <= done:
        log.info(
            "projection.deferred",
            taskable=taskable.kind.value,
            taskable_id=taskable.id,
            status=stage.status,
            missing=sorted(stage.prerequisites - done),
        )
        return None

    current = await binding.status_target.get_status(session, taskable.id)
    if current is None or table.rank(stage.status) <= table.rank(current):
        return None

    await binding.status_target.set_status(session, taskable.id, stage.status)
    log.info(
        "projection.status_changed",
        taskable=taskable.kind.value,
        taskable_id=taskable.id,
        old_status=current,
        new_status=stage.status,
    )
    return stage.status


async def recompute_entity_status(
    session: AsyncSession, taskable: Taskable, rules: Optional[WorkflowRules] = None
) -> Optional[str]:
    """Recompute from scratch. Returns the derived status, or None if not projected."""
    rules = rules or get_workflow_rules()
    binding = _projected_binding(rules, taskable)
    if binding is None:
        return None

    current = await binding.status_target.get_status(session, taskable.id)
    if current is None:
        return None

    status = derive_status(binding.projection, await completed_task_types(session, taskable))
    if status != current:
        await binding.status_target.set_status(session, taskable.id, status)
        log.info(
            "projection.status_reverted" if binding.projection.rank(status) < binding.projection.rank(current)
            else "projection.status_changed",
            taskable=taskable.kind.value,
            taskable_id=taskable.id,
            old_status=current,
            new_status=status,
        )
    return status


async def on_task_reopened(
    session: AsyncSession, task: Task, rules: Optional[WorkflowRules] = None
) -> Optional[str]:
    taskable = Taskable.of(task.taskable_type, task.taskable_id)
    if taskable is None:
        return None
    return await recompute_entity_status(session, taskable, rules)

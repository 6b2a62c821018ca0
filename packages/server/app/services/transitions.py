"""
Status state machine.

Every status change goes through ``transition_task``: the injected
TransitionTable decides validity, and the side effects (timestamps, history,
notifications, parent propagation, business-status projection) all happen
inside the caller's transaction.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidTransition
from app.core.notifications import queue_notification
from app.core.workflow import WorkflowRules, get_workflow_rules
from app.models.base import utcnow
from app.models.task import Task
from app.services.dependencies import get_blockers
from app.services.hierarchy import propagate_completion
from app.services.projection import on_task_completed, on_task_reopened
from app.services.tasks import active_assignee_ids, claim_version, record_history, taskable_of
from eventflow_shared.schemas.common import TERMINAL_STATUSES, TaskStatus

log = structlog.get_logger()


async def transition_task(
    session: AsyncSession,
    task: Task,
    new_status: TaskStatus | str,
    actor_id: int,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
    rules: Optional[WorkflowRules] = None,
    enforce_table: bool = True,
) -> Task:
    """Move ``task`` to ``new_status``.

    ``enforce_table=False`` is reserved for structural rules applied by the
    system actor (parent auto-completion); callers acting for a user always
    go through the table.
    """
    rules = rules or get_workflow_rules()
    current = TaskStatus(task.status)
    target = TaskStatus(new_status)

    if current == target or (enforce_table and not rules.transitions.can_transition(current, target)):
        raise InvalidTransition(task.id, current, target, rules.transitions.allowed_from(current))

    if target == TaskStatus.IN_PROGRESS:
        blockers = await get_blockers(session, task)
        if blockers:
            raise InvalidTransition(
                task.id,
                current,
                target,
                rules.transitions.allowed_from(current),
                blocked_by=[b.id for b in blockers],
            )

    await claim_version(session, task, expected_version)

    now = utcnow()
    if target == TaskStatus.IN_PROGRESS and task.started_at is None:
        task.started_at = now
    if target in TERMINAL_STATUSES and task.completed_at is None:
        task.completed_at = now
    if target == TaskStatus.BLOCKED:
        task.blocked_reason = notes
    elif current == TaskStatus.BLOCKED:
        task.blocked_reason = None

    task.status = target.value
    session.add(task)
    await session.flush()

    await record_history(
        session,
        task.id,
        actor_id,
        "status_changed",
        field_name="status",
        old_value=current,
        new_value=target,
        description=notes,
    )

    recipients = [uid for uid in await active_assignee_ids(session, task.id) + [task.created_by] if uid != actor_id]
    payload = {
        "task_id": str(task.id),
        "title": task.title,
        "old_status": current.value,
        "new_status": target.value,
        "changed_by": actor_id,
    }
    queue_notification(session, "task.status_changed", recipients, payload)
    if target == TaskStatus.COMPLETED:
        queue_notification(session, "task.completed", recipients, payload)

    log.info(
        "task.transitioned",
        task_id=str(task.id),
        old_status=current.value,
        new_status=target.value,
        actor_id=actor_id,
    )

    if task.parent_task_id is not None:
        parent = await session.get(Task, task.parent_task_id)
        if parent is not None and parent.deleted_at is None:
            await propagate_completion(session, parent, rules)

    if taskable_of(task) is not None:
        if target == TaskStatus.COMPLETED:
            await on_task_completed(session, task, rules)
        elif current == TaskStatus.COMPLETED:
            await on_task_reopened(session, task, rules)

    return task

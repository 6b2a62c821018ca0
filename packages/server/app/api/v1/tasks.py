"""
Task endpoints: CRUD, transitions, hierarchy, assignment, dependencies.

Thin layer over the services: parse, resolve the acting user, call the
service, commit, dispatch notifications, return ``{data, warnings}``.
Domain errors are rendered by the app-level TaskEngineError handler.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.common import commit_and_notify, respond
from app.core.database import get_session
from app.core.identity import UserDirectory, UserRef, current_user, get_user_directory
from app.core.notifications import Notifier, get_notifier
from app.core.workflow import Taskable, WorkflowRules, get_workflow_rules
from app.services.assignments import assign_task, list_assignments, reassign_task
from app.services.dependencies import (
    add_dependency,
    get_affected_tasks,
    get_blockers,
    get_dependency_chain,
    list_dependencies,
    remove_dependency,
)
from app.services.hierarchy import create_subtask, get_hierarchy_tree, move_subtask
from app.services.tasks import (
    create_task,
    delete_task,
    get_task_or_raise,
    history_to_read,
    list_history,
    list_tasks,
    tasks_for_read,
    to_read,
    update_task,
)
from app.services.transitions import transition_task
from eventflow_shared.schemas.common import APIResponse, TaskableKind, TaskPriority, TaskStatus
from eventflow_shared.schemas.tasks import (
    AffectedTasksRead,
    AssignmentRead,
    AssignmentRequest,
    DependencyAdd,
    DependencyRead,
    ReassignRequest,
    SubtaskCreate,
    SubtaskMove,
    TaskCreate,
    TaskTransition,
    TaskUpdate,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------


@router.get("/", response_model=APIResponse)
async def list_tasks_endpoint(
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    department_id: Optional[int] = None,
    assignee_id: Optional[int] = None,
    taskable_type: Optional[TaskableKind] = None,
    taskable_id: Optional[int] = None,
    parent_task_id: Optional[uuid.UUID] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    """List live tasks with optional filters."""
    tasks = await list_tasks(
        session,
        status=status,
        priority=priority,
        department_id=department_id,
        assignee_id=assignee_id,
        taskable=Taskable.of(taskable_type, taskable_id),
        parent_task_id=parent_task_id,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return respond(await tasks_for_read(session, tasks))


@router.post("/", response_model=APIResponse, status_code=201)
async def create_task_endpoint(
    task_in: TaskCreate,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Create a new task."""
    task = await create_task(session, task_in, user, rules)
    warnings = await commit_and_notify(session, notifier)
    return respond(await to_read(session, task), warnings)


@router.get("/{task_id}", response_model=APIResponse)
async def get_task_endpoint(
    task_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    task = await get_task_or_raise(session, task_id)
    return respond(await to_read(session, task))


@router.patch("/{task_id}", response_model=APIResponse)
async def update_task_endpoint(
    task_id: uuid.UUID,
    task_in: TaskUpdate,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Update plain task attributes. Status and hierarchy have their own endpoints."""
    task = await get_task_or_raise(session, task_id)
    task = await update_task(session, task, task_in, user.id, rules)
    warnings = await commit_and_notify(session, notifier)
    return respond(await to_read(session, task), warnings)


@router.delete("/{task_id}", response_model=APIResponse)
async def delete_task_endpoint(
    task_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Soft-delete a task."""
    task = await get_task_or_raise(session, task_id)
    await delete_task(session, task, user.id, rules)
    warnings = await commit_and_notify(session, notifier)
    return respond({"id": str(task_id), "deleted": True}, warnings)


@router.get("/{task_id}/history", response_model=APIResponse)
async def task_history_endpoint(
    task_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    await get_task_or_raise(session, task_id, include_deleted=True)
    return respond([history_to_read(h) for h in await list_history(session, task_id)])


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/{task_id}/transition", response_model=APIResponse)
async def transition_task_endpoint(
    task_id: uuid.UUID,
    body: TaskTransition,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Transition a task to a new status."""
    task = await get_task_or_raise(session, task_id)
    task = await transition_task(
        session,
        task,
        body.to_status,
        user.id,
        notes=body.notes,
        expected_version=body.expected_version,
        rules=rules,
    )
    warnings = await commit_and_notify(session, notifier)
    return respond(await to_read(session, task), warnings)


@router.get("/{task_id}/affected", response_model=APIResponse)
async def affected_tasks_endpoint(
    task_id: uuid.UUID,
    status: TaskStatus,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    """Tasks a move to ``status`` would touch. Nothing is changed."""
    task = await get_task_or_raise(session, task_id)
    affected = await get_affected_tasks(session, task, status)
    return respond(
        AffectedTasksRead(
            dependents=[t.id for t in affected.dependents],
            parents=[t.id for t in affected.parents],
            subtasks=[t.id for t in affected.subtasks],
        )
    )


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------


@router.post("/{task_id}/subtasks", response_model=APIResponse, status_code=201)
async def create_subtask_endpoint(
    task_id: uuid.UUID,
    body: SubtaskCreate,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    parent = await get_task_or_raise(session, task_id)
    task = await create_subtask(session, parent, body, user, rules)
    warnings = await commit_and_notify(session, notifier)
    return respond(await to_read(session, task), warnings)


@router.post("/{task_id}/move", response_model=APIResponse)
async def move_subtask_endpoint(
    task_id: uuid.UUID,
    body: SubtaskMove,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Re-parent a task; a null parent makes it a root task."""
    task = await get_task_or_raise(session, task_id)
    task = await move_subtask(session, task, body.new_parent_id, user.id, rules)
    warnings = await commit_and_notify(session, notifier)
    return respond(await to_read(session, task), warnings)


@router.get("/{task_id}/tree", response_model=APIResponse)
async def hierarchy_tree_endpoint(
    task_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    task = await get_task_or_raise(session, task_id)
    return respond(await get_hierarchy_tree(session, task))


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


@router.get("/{task_id}/assignments", response_model=APIResponse)
async def list_assignments_endpoint(
    task_id: uuid.UUID,
    include_expired: bool = False,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    await get_task_or_raise(session, task_id)
    rows = await list_assignments(session, task_id, include_expired=include_expired)
    return respond([AssignmentRead.model_validate(a) for a in rows])


@router.post("/{task_id}/assign", response_model=APIResponse)
async def assign_task_endpoint(
    task_id: uuid.UUID,
    body: AssignmentRequest,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    directory: UserDirectory = Depends(get_user_directory),
):
    task = await get_task_or_raise(session, task_id)
    await assign_task(
        session,
        task,
        body.user_ids,
        user.id,
        directory,
        role=body.role,
        replace_existing=body.replace_existing,
        due_date=body.due_date,
        expires_at=body.expires_at,
    )
    warnings = await commit_and_notify(session, notifier)
    return respond(await to_read(session, task), warnings)


@router.post("/{task_id}/reassign", response_model=APIResponse)
async def reassign_task_endpoint(
    task_id: uuid.UUID,
    body: ReassignRequest,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    directory: UserDirectory = Depends(get_user_directory),
):
    task = await get_task_or_raise(session, task_id)
    await reassign_task(session, task, body.user_id, user.id, directory, reason=body.reason)
    warnings = await commit_and_notify(session, notifier)
    return respond(await to_read(session, task), warnings)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


@router.get("/{task_id}/dependencies", response_model=APIResponse)
async def list_dependencies_endpoint(
    task_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    await get_task_or_raise(session, task_id)
    return respond([DependencyRead.model_validate(d) for d in await list_dependencies(session, task_id)])


@router.post("/{task_id}/dependencies", response_model=APIResponse, status_code=201)
async def add_dependency_endpoint(
    task_id: uuid.UUID,
    body: DependencyAdd,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """Add a dependency. Rejects self, duplicate and cycle-closing edges."""
    dep = await add_dependency(session, task_id, body.depends_on_task_id, body.dependency_type, user.id)
    warnings = await commit_and_notify(session, notifier)
    return respond(DependencyRead.model_validate(dep), warnings)


@router.delete("/{task_id}/dependencies/{depends_on_id}", response_model=APIResponse)
async def remove_dependency_endpoint(
    task_id: uuid.UUID,
    depends_on_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    await remove_dependency(session, task_id, depends_on_id, user.id)
    warnings = await commit_and_notify(session, notifier)
    return respond({"task_id": str(task_id), "depends_on_task_id": str(depends_on_id)}, warnings)


@router.get("/{task_id}/blockers", response_model=APIResponse)
async def blockers_endpoint(
    task_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    """Prerequisites that are not yet completed or cancelled."""
    task = await get_task_or_raise(session, task_id)
    return respond(await tasks_for_read(session, await get_blockers(session, task)))


@router.get("/{task_id}/dependency-chain", response_model=APIResponse)
async def dependency_chain_endpoint(
    task_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    """Every transitive prerequisite, nearest first."""
    task = await get_task_or_raise(session, task_id)
    return respond(await tasks_for_read(session, await get_dependency_chain(session, task)))

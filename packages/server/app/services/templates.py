"""
Template service: versioned task bundles and their instantiation.

Instantiation validates and prepares every task definition (variables, due
dates, parent links, dependency cycles) before the first write, then creates
tasks, parent links and dependency edges in three passes inside the caller's
transaction. Dependency definitions whose endpoints are not both defined in
the template are skipped and counted, never raised.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Mapping, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import (
    CircularDependency,
    CircularReference,
    DependencyEndpointUnresolved,
    InactiveTemplate,
    InvalidDueDate,
    InvalidTemplate,
    MissingVariable,
    TemplateNotFound,
    TemplateTooLarge,
)
from app.core.notifications import queue_notification
from app.core.workflow import WorkflowRules, get_workflow_rules
from app.models.assignments import TaskAssignment
from app.models.base import utcnow
from app.models.dependency import TaskDependency
from app.models.task import Task
from app.models.template import TaskTemplate
from app.services.dependencies import find_cycle_edge
from app.services.hierarchy import propagate_completion
from app.services.projection import on_task_completed
from app.services.tasks import record_history, today
from eventflow_shared.schemas.common import TaskStatus
from eventflow_shared.schemas.templates import (
    InstantiationContext,
    TemplateCreate,
    TemplateData,
    TemplateTaskDefinition,
    TemplateVariable,
    TemplateVersionCreate,
)

log = structlog.get_logger()

DEFAULT_CATEGORY = "general"


@dataclass
class InstantiationResult:
    tasks: list[Task] = field(default_factory=list)
    dependencies: list[TaskDependency] = field(default_factory=list)
    task_id_map: dict[str, uuid.UUID] = field(default_factory=dict)
    skipped_dependencies: int = 0


@dataclass
class _PlannedTask:
    ref: str
    definition: TemplateTaskDefinition
    title: str
    description: Optional[str]
    due_date: date
    parent_ref: Optional[str]


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------


def substitute_variables(text: Optional[str], values: Mapping[str, Any]) -> Optional[str]:
    """Literal ``{{name}}`` then ``{name}`` replacement; unknown placeholders stay."""
    if not text:
        return text
    for name, value in values.items():
        text = text.replace("{{" + name + "}}", str(value))
        text = text.replace("{" + name + "}", str(value))
    return text


def resolve_variables(template: TaskTemplate, supplied: Mapping[str, Any]) -> dict[str, Any]:
    """Supplied values plus declared defaults; raises on the first missing required name."""
    values: dict[str, Any] = {k: v for k, v in supplied.items() if v is not None}
    for name, raw in (template.variables or {}).items():
        declared = TemplateVariable.model_validate(raw or {})
        if name in values:
            continue
        if declared.required:
            raise MissingVariable(template.id, name)
        if declared.default is not None:
            values[name] = declared.default
    return values


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def parse_template_data(template_id: Optional[uuid.UUID], raw: Any) -> TemplateData:
    try:
        return TemplateData.model_validate(raw)
    except ValidationError as exc:
        raise InvalidTemplate(template_id, str(exc)) from exc


def _refs(template_id: Optional[uuid.UUID], data: TemplateData) -> list[str]:
    """In-template id per definition; definitions without one get a private ref."""
    refs: list[str] = []
    seen: set[str] = set()
    for index, definition in enumerate(data.tasks):
        if definition.id is None:
            refs.append(f"#{index}")
            continue
        if definition.id in seen:
            raise InvalidTemplate(template_id, f"duplicate task id '{definition.id}'", task_ref=definition.id)
        seen.add(definition.id)
        refs.append(definition.id)
    return refs


def validate_structure(
    template_id: Optional[uuid.UUID], data: TemplateData, limit: int
) -> list[str]:
    """Size, unique ids, acyclic parent links and acyclic dependency edges."""
    if len(data.tasks) > limit:
        raise TemplateTooLarge(template_id, len(data.tasks), limit)

    refs = _refs(template_id, data)
    parents = {
        ref: d.parent_id for ref, d in zip(refs, data.tasks) if d.parent_id is not None and d.parent_id in refs
    }
    for ref in parents:
        seen = {ref}
        current = parents.get(ref)
        while current is not None:
            if current in seen:
                raise CircularReference(
                    ref, current, message=f"Template task '{ref}' is its own ancestor"
                )
            seen.add(current)
            current = parents.get(current)

    known = set(refs)
    edges = [
        (dep.task_id, dep.depends_on_task_id)
        for dep in data.dependencies
        if dep.task_id in known and dep.depends_on_task_id in known
    ]
    cycle = find_cycle_edge(edges)
    if cycle is not None:
        raise CircularDependency(*cycle)
    return refs


def _plan_tasks(
    data: TemplateData,
    refs: list[str],
    values: Mapping[str, Any],
    rules: WorkflowRules,
) -> list[_PlannedTask]:
    start = today()
    default_due = start + timedelta(days=rules.default_due_days)
    planned = []
    for ref, definition in zip(refs, data.tasks):
        if definition.due_date_offset_days is not None:
            due = start + timedelta(days=definition.due_date_offset_days)
        elif definition.due_date is not None:
            if definition.due_date < start:
                raise InvalidDueDate(definition.due_date)
            due = definition.due_date
        else:
            due = default_due
        planned.append(
            _PlannedTask(
                ref=ref,
                definition=definition,
                title=substitute_variables(definition.title, values),
                description=substitute_variables(definition.description, values),
                due_date=due,
                parent_ref=definition.parent_id if definition.parent_id in refs else None,
            )
        )
    return planned


# ---------------------------------------------------------------------------
# Template CRUD
# ---------------------------------------------------------------------------


async def get_template_or_raise(session: AsyncSession, template_id: uuid.UUID) -> TaskTemplate:
    template = await session.get(TaskTemplate, template_id)
    if not template or template.deleted_at is not None:
        raise TemplateNotFound(template_id)
    return template


async def list_templates(
    session: AsyncSession, category: Optional[str] = None, active_only: bool = True
) -> list[TaskTemplate]:
    stmt = select(TaskTemplate).where(TaskTemplate.deleted_at.is_(None))
    if active_only:
        stmt = stmt.where(TaskTemplate.is_active.is_(True))
    if category is not None:
        stmt = stmt.where(TaskTemplate.category == category)
    result = await session.execute(stmt.order_by(TaskTemplate.name, TaskTemplate.version))
    return list(result.scalars().all())


def _dump_variables(variables: Mapping[str, TemplateVariable]) -> dict[str, Any]:
    return {name: declared.model_dump() for name, declared in variables.items()}


async def create_template(
    session: AsyncSession,
    template_in: TemplateCreate,
    creator_id: int,
    rules: Optional[WorkflowRules] = None,
) -> TaskTemplate:
    rules = rules or get_workflow_rules()
    validate_structure(None, template_in.template_data, rules.max_template_tasks)

    template = TaskTemplate(
        name=template_in.name,
        description=template_in.description,
        category=template_in.category or DEFAULT_CATEGORY,
        template_data=template_in.template_data.model_dump(mode="json"),
        variables=_dump_variables(template_in.variables),
        tags=list(template_in.tags),
        created_by=creator_id,
    )
    session.add(template)
    await session.flush()
    log.info("template.created", template_id=str(template.id), name=template.name)
    return template


async def create_template_version(
    session: AsyncSession,
    template: TaskTemplate,
    version_in: TemplateVersionCreate,
    actor_id: int,
    rules: Optional[WorkflowRules] = None,
) -> TaskTemplate:
    """Publish ``template`` as a new version; unset fields are carried over."""
    rules = rules or get_workflow_rules()
    if version_in.template_data is not None:
        data = version_in.template_data
    else:
        data = parse_template_data(template.id, template.template_data)
    validate_structure(template.id, data, rules.max_template_tasks)

    new_version = TaskTemplate(
        name=version_in.name or template.name,
        description=version_in.description if version_in.description is not None else template.description,
        category=version_in.category or template.category,
        version=template.version + 1,
        previous_version_id=template.id,
        template_data=data.model_dump(mode="json"),
        variables=(
            _dump_variables(version_in.variables) if version_in.variables is not None else dict(template.variables)
        ),
        tags=list(version_in.tags) if version_in.tags is not None else list(template.tags),
        created_by=template.created_by,
        updated_by=actor_id,
    )
    session.add(new_version)
    if version_in.deactivate_previous and template.is_active:
        template.is_active = False
        template.updated_by = actor_id
        session.add(template)
    await session.flush()
    log.info(
        "template.versioned",
        template_id=str(new_version.id),
        previous_version_id=str(template.id),
        version=new_version.version,
    )
    return new_version


# ---------------------------------------------------------------------------
# Instantiation
# ---------------------------------------------------------------------------


async def instantiate_template(
    session: AsyncSession,
    template: TaskTemplate,
    variables: Mapping[str, Any],
    context: InstantiationContext,
    rules: Optional[WorkflowRules] = None,
) -> InstantiationResult:
    rules = rules or get_workflow_rules()

    if not template.is_active or template.deleted_at is not None:
        raise InactiveTemplate(template.id, template.version)
    values = resolve_variables(template, variables)
    data = parse_template_data(template.id, template.template_data)
    refs = validate_structure(template.id, data, rules.max_template_tasks)
    planned = _plan_tasks(data, refs, values, rules)

    # Nothing has been written yet; every failure above leaves zero rows.
    result = InstantiationResult()
    now = utcnow()
    taskable_type = context.taskable.kind.value if context.taskable else None
    taskable_id = context.taskable.id if context.taskable else None

    # Pass 1: tasks
    by_ref: dict[str, Task] = {}
    for plan in planned:
        definition = plan.definition
        status = TaskStatus(definition.status)
        task = Task(
            title=plan.title,
            description=plan.description,
            task_type=definition.task_type,
            status=status.value,
            priority=definition.priority.value,
            taskable_type=taskable_type,
            taskable_id=taskable_id,
            department_id=context.department_id,
            created_by=context.created_by,
            assigned_user_id=definition.assigned_user_id or context.assigned_user_id,
            estimated_hours=definition.estimated_hours,
            due_date=plan.due_date,
            started_at=now if status == TaskStatus.IN_PROGRESS else None,
            completed_at=now if status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED) else None,
            tags=list(definition.tags),
            meta={
                **definition.metadata,
                "created_from_template": True,
                "template_id": str(template.id),
                "template_version": template.version,
                "template_task_id": definition.id,
            },
        )
        session.add(task)
        by_ref[plan.ref] = task
        result.tasks.append(task)
    await session.flush()
    result.task_id_map = {ref: task.id for ref, task in by_ref.items() if not ref.startswith("#")}

    for task in result.tasks:
        if task.assigned_user_id is not None:
            session.add(
                TaskAssignment(
                    task_id=task.id,
                    user_id=task.assigned_user_id,
                    assigned_by=context.created_by,
                    is_primary=True,
                )
            )
            queue_notification(
                session,
                "task.assigned",
                [task.assigned_user_id],
                {"task_id": str(task.id), "title": task.title, "assigned_by": context.created_by},
            )
        await record_history(
            session,
            task.id,
            context.created_by,
            "created",
            description=f"Task created from template: {template.name}",
            meta={"template_id": str(template.id), "template_version": template.version},
        )

    # Pass 2: parent links
    for plan in planned:
        if plan.parent_ref is not None:
            by_ref[plan.ref].parent_task_id = by_ref[plan.parent_ref].id
            session.add(by_ref[plan.ref])
    await session.flush()

    # Pass 3: dependency edges
    seen_edges: set[tuple[uuid.UUID, uuid.UUID]] = set()
    for dep in data.dependencies:
        task = by_ref.get(dep.task_id) if dep.task_id else None
        depends_on = by_ref.get(dep.depends_on_task_id) if dep.depends_on_task_id else None
        if task is None or depends_on is None:
            skipped = DependencyEndpointUnresolved(dep.task_id, dep.depends_on_task_id)
            log.warning("template.dependency_skipped", template_id=str(template.id), **skipped.context)
            result.skipped_dependencies += 1
            continue
        if (task.id, depends_on.id) in seen_edges:
            result.skipped_dependencies += 1
            continue
        seen_edges.add((task.id, depends_on.id))
        edge = TaskDependency(
            task_id=task.id,
            depends_on_task_id=depends_on.id,
            dependency_type=dep.dependency_type.value,
        )
        session.add(edge)
        result.dependencies.append(edge)
    await session.flush()

    # Derived state
    parent_ids = {t.parent_task_id for t in result.tasks if t.parent_task_id is not None}
    for task in result.tasks:
        if task.id in parent_ids:
            await propagate_completion(session, task, rules)
    for task in result.tasks:
        if task.status == TaskStatus.COMPLETED.value and task.taskable_type:
            await on_task_completed(session, task, rules)

    log.info(
        "template.instantiated",
        template_id=str(template.id),
        template_version=template.version,
        tasks=len(result.tasks),
        dependencies=len(result.dependencies),
        skipped_dependencies=result.skipped_dependencies,
    )
    return result

"""
Enquiry workflow: the default task list every new enquiry starts with, and
the projected enquiry status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import EnquiryNotFound
from app.core.identity import UserRef
from app.core.workflow import Taskable, WorkflowRules, get_workflow_rules
from app.models.enquiry import Enquiry
from app.models.task import Task
from app.services.projection import completed_task_types
from app.services.tasks import create_task, list_tasks
from eventflow_shared.schemas.common import EnquiryStatus, TaskableKind, TaskPriority
from eventflow_shared.schemas.enquiries import EnquiryStatusRead
from eventflow_shared.schemas.tasks import TaskableRef, TaskCreate

log = structlog.get_logger()

# (title, task_type, description), in workflow order
ENQUIRY_WORKFLOW_TASKS: tuple[tuple[str, str, str], ...] = (
    ("Site Survey", "site-survey", "Conduct site survey for the enquiry"),
    ("Design & Concept Development", "design", "Create design concepts and mockups"),
    ("Material & Cost Listing", "materials", "Specify and source materials for the project"),
    ("Budget Creation", "budget", "Create budget for the project"),
    ("Quote Preparation", "quote", "Prepare final quote for the project"),
    ("Quote Approval", "quote_approval", "Approve the prepared quote"),
    ("Procurement & Inventory Management", "procurement", "Manage procurement and inventory"),
    ("Production", "production", "Handle production activities"),
    ("Logistics", "logistics", "Manage logistics and transportation"),
    ("Event Setup & Execution", "setup", "Set up event and execute"),
    ("Client Handover", "handover", "Hand over to client"),
    ("Set Down & Return", "setdown", "Set down and return equipment"),
    ("Archival & Reporting", "report", "Archive and generate reports"),
    ("Teams", "teams", "Manage project teams"),
)


@dataclass
class WorkflowSeedResult:
    enquiry_id: int
    created: bool
    tasks: list[Task] = field(default_factory=list)


async def get_enquiry_or_raise(session: AsyncSession, enquiry_id: int) -> Enquiry:
    enquiry = await session.get(Enquiry, enquiry_id)
    if enquiry is None:
        raise EnquiryNotFound(enquiry_id)
    return enquiry


async def create_enquiry(session: AsyncSession, title: str, creator_id: int) -> Enquiry:
    enquiry = Enquiry(title=title, status=EnquiryStatus.ENQUIRY_LOGGED.value, created_by=creator_id)
    session.add(enquiry)
    await session.flush()
    log.info("enquiry.created", enquiry_id=enquiry.id, created_by=creator_id)
    return enquiry


async def create_enquiry_workflow_tasks(
    session: AsyncSession,
    enquiry_id: int,
    creator: UserRef,
    rules: Optional[WorkflowRules] = None,
) -> WorkflowSeedResult:
    """Create the default workflow tasks once; later calls are no-ops."""
    await get_enquiry_or_raise(session, enquiry_id)
    taskable = Taskable(TaskableKind.ENQUIRY, enquiry_id)

    existing = await list_tasks(session, taskable=taskable, limit=len(ENQUIRY_WORKFLOW_TASKS) * 4)
    workflow_types = {task_type for _, task_type, _ in ENQUIRY_WORKFLOW_TASKS}
    if any(t.task_type in workflow_types for t in existing):
        log.info("enquiry.workflow_exists", enquiry_id=enquiry_id)
        return WorkflowSeedResult(enquiry_id=enquiry_id, created=False)

    result = WorkflowSeedResult(enquiry_id=enquiry_id, created=True)
    for title, task_type, description in ENQUIRY_WORKFLOW_TASKS:
        task_in = TaskCreate(
            title=title,
            description=description,
            task_type=task_type,
            priority=TaskPriority.MEDIUM,
            taskable=TaskableRef(kind=TaskableKind.ENQUIRY, id=enquiry_id),
        )
        result.tasks.append(await create_task(session, task_in, creator, rules))
    log.info("enquiry.workflow_created", enquiry_id=enquiry_id, tasks=len(result.tasks))
    return result


async def get_enquiry_status(
    session: AsyncSession, enquiry_id: int, rules: Optional[WorkflowRules] = None
) -> EnquiryStatusRead:
    rules = rules or get_workflow_rules()
    enquiry = await get_enquiry_or_raise(session, enquiry_id)
    done = await completed_task_types(session, Taskable(TaskableKind.ENQUIRY, enquiry_id))
    binding = rules.registry.resolve(TaskableKind.ENQUIRY)
    tracked = binding.projection.task_types if binding and binding.projection else frozenset()
    return EnquiryStatusRead(
        enquiry_id=enquiry.id,
        status=enquiry.status,
        completed_task_types=sorted(done & tracked),
    )

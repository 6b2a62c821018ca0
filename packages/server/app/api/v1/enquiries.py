"""
Enquiry endpoints: record creation, workflow seeding and projected status.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.common import commit_and_notify, respond
from app.core.database import get_session
from app.core.identity import UserRef, current_user
from app.core.notifications import Notifier, get_notifier
from app.core.workflow import WorkflowRules, get_workflow_rules
from app.services.enquiries import create_enquiry, create_enquiry_workflow_tasks, get_enquiry_status
from eventflow_shared.schemas.common import APIResponse
from eventflow_shared.schemas.enquiries import EnquiryCreate, EnquiryRead, WorkflowSeedRead

router = APIRouter()


@router.post("/", response_model=APIResponse, status_code=201)
async def create_enquiry_endpoint(
    body: EnquiryCreate,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Log an enquiry and, by default, seed its workflow tasks."""
    enquiry = await create_enquiry(session, body.title, user.id)
    if body.seed_workflow:
        await create_enquiry_workflow_tasks(session, enquiry.id, user, rules)
    warnings = await commit_and_notify(session, notifier)
    return respond(EnquiryRead.model_validate(enquiry), warnings)


@router.post("/{enquiry_id}/workflow", response_model=APIResponse)
async def seed_workflow_endpoint(
    enquiry_id: int,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Create the default workflow tasks. Safe to call repeatedly."""
    result = await create_enquiry_workflow_tasks(session, enquiry_id, user, rules)
    warnings = await commit_and_notify(session, notifier)
    return respond(
        WorkflowSeedRead(
            enquiry_id=result.enquiry_id,
            created=result.created,
            task_ids=[t.id for t in result.tasks],
        ),
        warnings,
    )


@router.get("/{enquiry_id}/status", response_model=APIResponse)
async def enquiry_status_endpoint(
    enquiry_id: int,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    return respond(await get_enquiry_status(session, enquiry_id, rules))

"""
Template endpoints: create, version, list and instantiate task templates.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.common import commit_and_notify, respond
from app.core.database import get_session
from app.core.identity import UserRef, current_user
from app.core.notifications import Notifier, get_notifier
from app.core.workflow import WorkflowRules, get_workflow_rules
from app.services.templates import (
    create_template,
    create_template_version,
    get_template_or_raise,
    instantiate_template,
    list_templates,
)
from eventflow_shared.schemas.common import APIResponse
from eventflow_shared.schemas.templates import (
    InstantiateRequest,
    InstantiationContext,
    InstantiationRead,
    TemplateCreate,
    TemplateRead,
    TemplateVersionCreate,
)

router = APIRouter()


@router.get("/", response_model=APIResponse)
async def list_templates_endpoint(
    category: Optional[str] = None,
    include_inactive: bool = False,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    templates = await list_templates(session, category=category, active_only=not include_inactive)
    return respond([TemplateRead.model_validate(t) for t in templates])


@router.post("/", response_model=APIResponse, status_code=201)
async def create_template_endpoint(
    template_in: TemplateCreate,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    template = await create_template(session, template_in, user.id, rules)
    await session.commit()
    return respond(TemplateRead.model_validate(template))


@router.get("/{template_id}", response_model=APIResponse)
async def get_template_endpoint(
    template_id: uuid.UUID,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    template = await get_template_or_raise(session, template_id)
    return respond(TemplateRead.model_validate(template))


@router.post("/{template_id}/versions", response_model=APIResponse, status_code=201)
async def create_template_version_endpoint(
    template_id: uuid.UUID,
    body: TemplateVersionCreate,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Publish a new version; the previous one is deactivated unless asked otherwise."""
    template = await get_template_or_raise(session, template_id)
    new_version = await create_template_version(session, template, body, user.id, rules)
    await session.commit()
    return respond(TemplateRead.model_validate(new_version))


@router.post("/{template_id}/instantiate", response_model=APIResponse, status_code=201)
async def instantiate_template_endpoint(
    template_id: uuid.UUID,
    body: InstantiateRequest,
    user: UserRef = Depends(current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
    rules: WorkflowRules = Depends(get_workflow_rules),
):
    """Create every task, parent link and dependency edge the template defines."""
    template = await get_template_or_raise(session, template_id)
    context = InstantiationContext(
        created_by=user.id,
        taskable=body.taskable,
        department_id=body.department_id if body.department_id is not None else user.department_id,
        assigned_user_id=body.assigned_user_id,
    )
    result = await instantiate_template(session, template, body.variables, context, rules)
    warnings = await commit_and_notify(session, notifier)
    if result.skipped_dependencies:
        warnings.append(f"{result.skipped_dependencies} template dependencies were skipped")
    return respond(
        InstantiationRead(
            task_ids=[t.id for t in result.tasks],
            dependency_ids=[d.id for d in result.dependencies],
            task_id_map=result.task_id_map,
            skipped_dependencies=result.skipped_dependencies,
        ),
        warnings,
    )

"""
Tests for business-status projection and the enquiry workflow.
"""

from __future__ import annotations

import itertools

import pytest

from app.core.errors import EnquiryNotFound
from app.core.workflow import (
    ENQUIRY_PROJECTION,
    DEFAULT_REGISTRY,
    ProjectionTable,
    Taskable,
    TaskableBinding,
    WorkflowRules,
)
from app.models.enquiry import Enquiry
from app.services.enquiries import (
    ENQUIRY_WORKFLOW_TASKS,
    create_enquiry_workflow_tasks,
    get_enquiry_status,
)
from app.services.projection import derive_status, recompute_entity_status
from app.services.tasks import delete_task, update_task
from app.services.transitions import transition_task
from eventflow_shared.schemas.common import EnquiryStatus, TaskableKind, TaskStatus
from eventflow_shared.schemas.tasks import TaskableRef, TaskUpdate


def _on(enquiry) -> TaskableRef:
    return TaskableRef(kind=TaskableKind.ENQUIRY, id=enquiry.id)


async def _status(session, enquiry) -> str:
    await session.refresh(enquiry)
    return enquiry.status


# ---------------------------------------------------------------------------
# Unit tests: derive_status
# ---------------------------------------------------------------------------


class TestDeriveStatus:
    def test_nothing_completed_is_initial(self):
        assert derive_status(ENQUIRY_PROJECTION, []) == EnquiryStatus.ENQUIRY_LOGGED.value

    def test_stage_needs_every_earlier_type(self):
        assert derive_status(ENQUIRY_PROJECTION, ["design"]) == EnquiryStatus.ENQUIRY_LOGGED.value
        assert derive_status(ENQUIRY_PROJECTION, ["site-survey", "design"]) == EnquiryStatus.DESIGN_COMPLETED.value
        assert (
            derive_status(ENQUIRY_PROJECTION, ["site-survey", "design", "budget"])
            == EnquiryStatus.DESIGN_COMPLETED.value
        )

    def test_unrelated_types_are_ignored(self):
        assert derive_status(ENQUIRY_PROJECTION, ["site-survey", "logistics"]) == (
            EnquiryStatus.SITE_SURVEY_COMPLETED.value
        )

    def test_order_of_completion_does_not_matter(self):
        types = ["site-survey", "design", "materials", "budget"]
        results = {derive_status(ENQUIRY_PROJECTION, p) for p in itertools.permutations(types)}
        assert results == {EnquiryStatus.BUDGET_CREATED.value}

    def test_custom_table(self):
        table = ProjectionTable.cumulative("new", [("brief", "briefed"), ("pitch", "pitched")])
        assert derive_status(table, ["pitch"]) == "new"
        assert derive_status(table, ["brief", "pitch"]) == "pitched"
        assert table.rank("new") == -1
        assert table.rank("pitched") == 1


# ---------------------------------------------------------------------------
# Integration tests
# ---------------------------------------------------------------------------


class TestEnquiryProjection:
    @pytest.mark.asyncio
    async def test_status_follows_completed_task_types(self, make_task, make_enquiry, session, creator):
        """Survey then design completes the design stage; reopening the survey reverts it."""
        enquiry = await make_enquiry()
        survey = await make_task("Survey", task_type="site-survey", taskable=_on(enquiry))
        design = await make_task("Design", task_type="design", taskable=_on(enquiry))

        await transition_task(session, survey, TaskStatus.COMPLETED, creator.id)
        assert await _status(session, enquiry) != EnquiryStatus.DESIGN_COMPLETED.value

        await transition_task(session, design, TaskStatus.COMPLETED, creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.DESIGN_COMPLETED.value

        await transition_task(session, survey, TaskStatus.IN_PROGRESS, creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.ENQUIRY_LOGGED.value

    @pytest.mark.asyncio
    async def test_design_alone_does_not_advance(self, make_task, make_enquiry, session, creator):
        enquiry = await make_enquiry()
        design = await make_task("Design", task_type="design", taskable=_on(enquiry))
        await transition_task(session, design, TaskStatus.COMPLETED, creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.ENQUIRY_LOGGED.value

    @pytest.mark.asyncio
    async def test_completing_lower_stage_never_lowers_status(self, make_task, make_enquiry, session, creator):
        enquiry = await make_enquiry()
        survey = await make_task("Survey", task_type="site-survey", taskable=_on(enquiry))
        design = await make_task("Design", task_type="design", taskable=_on(enquiry))
        second_survey = await make_task("Second survey", task_type="site-survey", taskable=_on(enquiry))
        await transition_task(session, survey, TaskStatus.COMPLETED, creator.id)
        await transition_task(session, design, TaskStatus.COMPLETED, creator.id)

        await transition_task(session, second_survey, TaskStatus.COMPLETED, creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.DESIGN_COMPLETED.value

    @pytest.mark.asyncio
    async def test_deleting_completed_task_recomputes(self, make_task, make_enquiry, session, creator):
        enquiry = await make_enquiry()
        survey = await make_task("Survey", task_type="site-survey", taskable=_on(enquiry))
        await transition_task(session, survey, TaskStatus.COMPLETED, creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.SITE_SURVEY_COMPLETED.value

        await delete_task(session, survey, creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.ENQUIRY_LOGGED.value

    @pytest.mark.asyncio
    async def test_retyping_completed_task_recomputes(self, make_task, make_enquiry, session, creator):
        enquiry = await make_enquiry()
        survey = await make_task("Survey", task_type="site-survey", taskable=_on(enquiry))
        await transition_task(session, survey, TaskStatus.COMPLETED, creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.SITE_SURVEY_COMPLETED.value

        await update_task(session, survey, TaskUpdate(task_type="misc"), creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.ENQUIRY_LOGGED.value

        await update_task(session, survey, TaskUpdate(task_type="site-survey"), creator.id)
        assert await _status(session, enquiry) == EnquiryStatus.SITE_SURVEY_COMPLETED.value

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, make_task, make_enquiry, session, creator):
        enquiry = await make_enquiry()
        survey = await make_task("Survey", task_type="site-survey", taskable=_on(enquiry))
        await transition_task(session, survey, TaskStatus.COMPLETED, creator.id)

        taskable = Taskable(TaskableKind.ENQUIRY, enquiry.id)
        first = await recompute_entity_status(session, taskable)
        second = await recompute_entity_status(session, taskable)
        assert first == second == EnquiryStatus.SITE_SURVEY_COMPLETED.value

    @pytest.mark.asyncio
    async def test_unprojected_kind_is_untouched(self, make_task, session, creator):
        task = await make_task("Rig", task_type="site-survey", taskable=TaskableRef(kind=TaskableKind.EVENT, id=1))
        await transition_task(session, task, TaskStatus.COMPLETED, creator.id)
        assert await recompute_entity_status(session, Taskable(TaskableKind.EVENT, 1)) is None

    @pytest.mark.asyncio
    async def test_registry_binding_can_be_swapped(self, make_task, make_enquiry, session, creator):
        """A registry without the enquiry projection leaves enquiry status alone."""
        rules = WorkflowRules(registry=DEFAULT_REGISTRY.with_binding(TaskableBinding(TaskableKind.ENQUIRY)))
        enquiry = await make_enquiry()
        survey = await make_task("Survey", task_type="site-survey", taskable=_on(enquiry))
        await transition_task(session, survey, TaskStatus.COMPLETED, creator.id, rules=rules)
        assert await _status(session, enquiry) == EnquiryStatus.ENQUIRY_LOGGED.value


class TestEnquiryWorkflow:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, make_enquiry, session, creator):
        enquiry = await make_enquiry()

        first = await create_enquiry_workflow_tasks(session, enquiry.id, creator)
        second = await create_enquiry_workflow_tasks(session, enquiry.id, creator)

        assert first.created is True
        assert [t.task_type for t in first.tasks] == [task_type for _, task_type, _ in ENQUIRY_WORKFLOW_TASKS]
        assert all((t.taskable_type, t.taskable_id) == ("enquiry", enquiry.id) for t in first.tasks)
        assert second.created is False
        assert second.tasks == []

    @pytest.mark.asyncio
    async def test_unknown_enquiry(self, session, creator):
        with pytest.raises(EnquiryNotFound):
            await create_enquiry_workflow_tasks(session, 999, creator)
        with pytest.raises(EnquiryNotFound):
            await get_enquiry_status(session, 999)

    @pytest.mark.asyncio
    async def test_status_read(self, make_enquiry, session, creator):
        enquiry = await make_enquiry()
        seeded = await create_enquiry_workflow_tasks(session, enquiry.id, creator)
        by_type = {t.task_type: t for t in seeded.tasks}
        await transition_task(session, by_type["site-survey"], TaskStatus.COMPLETED, creator.id)
        await transition_task(session, by_type["logistics"], TaskStatus.COMPLETED, creator.id)

        status = await get_enquiry_status(session, enquiry.id)
        assert status.status == EnquiryStatus.SITE_SURVEY_COMPLETED.value
        assert status.completed_task_types == ["site-survey"]

    @pytest.mark.asyncio
    async def test_enquiry_row_defaults(self, make_enquiry, session):
        enquiry = await make_enquiry("Product launch")
        stored = await session.get(Enquiry, enquiry.id)
        assert stored.status == EnquiryStatus.ENQUIRY_LOGGED.value

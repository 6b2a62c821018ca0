"""
Workflow rules: immutable configuration injected into the engine.

- ``TransitionTable``: which status changes a task may make.
- ``ProjectionTable``: ordered task-type -> business-status progression with
  prerequisite sets, used to derive an entity's status from its tasks.
- ``TaskableRegistry``: the known entity kinds a task can attach to, and how
  to read/write each kind's projected status.

Alternate departments or entity kinds supply their own tables by building a
new ``WorkflowRules``; nothing here is mutated at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.enquiry import Enquiry
from eventflow_shared.schemas.common import (
    TASK_TRANSITIONS,
    EnquiryStatus,
    TaskableKind,
    TaskStatus,
)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionTable:
    allowed: Mapping[TaskStatus, frozenset[TaskStatus]]

    def __post_init__(self) -> None:
        frozen = {TaskStatus(k): frozenset(TaskStatus(s) for s in v) for k, v in self.allowed.items()}
        object.__setattr__(self, "allowed", MappingProxyType(frozen))

    def allowed_from(self, status: TaskStatus | str) -> frozenset[TaskStatus]:
        return self.allowed.get(TaskStatus(status), frozenset())

    def can_transition(self, current: TaskStatus | str, target: TaskStatus | str) -> bool:
        current, target = TaskStatus(current), TaskStatus(target)
        return current != target and target in self.allowed_from(current)


DEFAULT_TRANSITIONS = TransitionTable(TASK_TRANSITIONS)


# ---------------------------------------------------------------------------
# Status projection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProjectionStage:
    task_type: str
    status: str
    prerequisites: frozenset[str]


@dataclass(frozen=True)
class ProjectionTable:
    """Stages ordered from lowest to highest status."""

    initial_status: str
    stages: tuple[ProjectionStage, ...]

    @classmethod
    def cumulative(cls, initial_status: str, progression: Iterable[tuple[str, str]]) -> "ProjectionTable":
        """Build a table where each stage requires every earlier task type too."""
        stages = []
        seen: list[str] = []
        for task_type, status in progression:
            seen.append(task_type)
            stages.append(ProjectionStage(task_type, status, frozenset(seen)))
        return cls(initial_status=initial_status, stages=tuple(stages))

    @property
    def task_types(self) -> frozenset[str]:
        return frozenset(s.task_type for s in self.stages)

    def stage_for_type(self, task_type: Optional[str]) -> Optional[ProjectionStage]:
        for stage in self.stages:
            if stage.task_type == task_type:
                return stage
        return None

    def rank(self, status: Optional[str]) -> int:
        """Position of ``status`` in the progression; -1 for the initial or unknown status."""
        for index, stage in enumerate(self.stages):
            if stage.status == status:
                return index
        return -1


ENQUIRY_PROJECTION = ProjectionTable.cumulative(
    EnquiryStatus.ENQUIRY_LOGGED.value,
    [
        ("site-survey", EnquiryStatus.SITE_SURVEY_COMPLETED.value),
        ("design", EnquiryStatus.DESIGN_COMPLETED.value),
        ("materials", EnquiryStatus.MATERIALS_SPECIFIED.value),
        ("budget", EnquiryStatus.BUDGET_CREATED.value),
        ("quote", EnquiryStatus.QUOTE_PREPARED.value),
        ("quote_approval", EnquiryStatus.QUOTE_APPROVED.value),
    ],
)


# ---------------------------------------------------------------------------
# Taskable registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Taskable:
    kind: TaskableKind
    id: int

    @classmethod
    def of(cls, kind: Optional[str], entity_id: Optional[int]) -> Optional["Taskable"]:
        if kind is None or entity_id is None:
            return None
        return cls(TaskableKind(kind), int(entity_id))


class StatusTarget(Protocol):
    async def get_status(self, session: AsyncSession, entity_id: int) -> Optional[str]: ...

    async def set_status(self, session: AsyncSession, entity_id: int, status: str) -> None: ...


class EnquiryStatusTarget:
    """Reads and writes ``project_enquiries.status``."""

    async def get_status(self, session: AsyncSession, entity_id: int) -> Optional[str]:
        enquiry = await session.get(Enquiry, entity_id)
        return enquiry.status if enquiry else None

    async def set_status(self, session: AsyncSession, entity_id: int, status: str) -> None:
        enquiry = await session.get(Enquiry, entity_id)
        if enquiry is None:
            return
        enquiry.status = status
        session.add(enquiry)
        await session.flush()


@dataclass(frozen=True)
class TaskableBinding:
    kind: TaskableKind
    status_target: Optional[StatusTarget] = None
    projection: Optional[ProjectionTable] = None


@dataclass(frozen=True)
class TaskableRegistry:
    bindings: Mapping[TaskableKind, TaskableBinding] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "bindings", MappingProxyType(dict(self.bindings)))

    def resolve(self, kind: TaskableKind | str) -> Optional[TaskableBinding]:
        return self.bindings.get(TaskableKind(kind))

    def with_binding(self, binding: TaskableBinding) -> "TaskableRegistry":
        return TaskableRegistry({**self.bindings, binding.kind: binding})


DEFAULT_REGISTRY = TaskableRegistry(
    {
        TaskableKind.ENQUIRY: TaskableBinding(
            TaskableKind.ENQUIRY, EnquiryStatusTarget(), ENQUIRY_PROJECTION
        ),
        TaskableKind.PROJECT: TaskableBinding(TaskableKind.PROJECT),
        TaskableKind.DEPARTMENT: TaskableBinding(TaskableKind.DEPARTMENT),
        TaskableKind.EVENT: TaskableBinding(TaskableKind.EVENT),
    }
)


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowRules:
    transitions: TransitionTable = DEFAULT_TRANSITIONS
    registry: TaskableRegistry = DEFAULT_REGISTRY
    system_actor_id: int = 0
    default_due_days: int = 7
    max_template_tasks: int = 200

    def evolve(self, **changes) -> "WorkflowRules":
        return replace(self, **changes)


@lru_cache
def get_workflow_rules() -> WorkflowRules:
    settings = get_settings()
    return WorkflowRules(
        system_actor_id=settings.system_actor_id,
        default_due_days=settings.default_due_days,
        max_template_tasks=settings.max_template_tasks,
    )

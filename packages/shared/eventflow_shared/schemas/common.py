from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    URGENT = "urgent"


# Ordered lowest to highest, used by escalation so a priority is never lowered.
TASK_PRIORITY_ORDER: list["TaskPriority"] = [
    TaskPriority.LOW,
    TaskPriority.MEDIUM,
    TaskPriority.HIGH,
    TaskPriority.CRITICAL,
    TaskPriority.URGENT,
]


class DependencyType(str, Enum):
    BLOCKS = "blocks"
    BLOCKED_BY = "blocked_by"


class TaskableKind(str, Enum):
    """Business entities a task can be attached to."""
    ENQUIRY = "enquiry"
    PROJECT = "project"
    DEPARTMENT = "department"
    EVENT = "event"


class EnquiryStatus(str, Enum):
    ENQUIRY_LOGGED = "enquiry_logged"
    SITE_SURVEY_COMPLETED = "site_survey_completed"
    DESIGN_COMPLETED = "design_completed"
    MATERIALS_SPECIFIED = "materials_specified"
    BUDGET_CREATED = "budget_created"
    QUOTE_PREPARED = "quote_prepared"
    QUOTE_APPROVED = "quote_approved"


TERMINAL_STATUSES: frozenset["TaskStatus"] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED}
)

_REOPEN = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})

# Default allowed transitions. Terminal statuses can only be reopened.
TASK_TRANSITIONS: dict["TaskStatus", frozenset["TaskStatus"]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED, TaskStatus.REVIEW,
        TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.OVERDUE,
    }),
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.PENDING, TaskStatus.BLOCKED, TaskStatus.REVIEW,
        TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.OVERDUE,
    }),
    TaskStatus.BLOCKED: frozenset({
        TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED,
        TaskStatus.OVERDUE,
    }),
    TaskStatus.REVIEW: frozenset({
        TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED,
        TaskStatus.COMPLETED, TaskStatus.CANCELLED,
    }),
    TaskStatus.OVERDUE: frozenset({
        TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED,
        TaskStatus.REVIEW, TaskStatus.COMPLETED, TaskStatus.CANCELLED,
    }),
    TaskStatus.COMPLETED: _REOPEN,
    TaskStatus.CANCELLED: _REOPEN,
}


class APIResponse(BaseModel):
    data: Optional[Any] = None
    warnings: List[str] = Field(default_factory=list)

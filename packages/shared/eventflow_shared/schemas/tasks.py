"""Task-related Pydantic schemas for shared use across server and client code."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import UUID4, BaseModel, Field

from .common import DependencyType, TaskableKind, TaskPriority, TaskStatus


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskableRef(BaseModel):
    """Reference to the business entity a task belongs to."""
    kind: TaskableKind
    id: int


class TaskBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    task_type: Optional[str] = Field(default=None, max_length=50)
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[date] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TaskCreate(TaskBase):
    status: TaskStatus = TaskStatus.PENDING
    parent_task_id: Optional[UUID4] = None
    taskable: Optional[TaskableRef] = None
    department_id: Optional[int] = None
    assigned_user_id: Optional[int] = None


class SubtaskCreate(BaseModel):
    """Subtask body: department, taskable and priority default to the parent's."""
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    task_type: Optional[str] = Field(default=None, max_length=50)
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    taskable: Optional[TaskableRef] = None
    department_id: Optional[int] = None
    assigned_user_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    task_type: Optional[str] = Field(default=None, max_length=50)
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    blocked_reason: Optional[str] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    expected_version: Optional[int] = None


class TaskRead(BaseModel):
    id: UUID4
    title: str
    description: Optional[str] = None
    task_type: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    parent_task_id: Optional[UUID4] = None
    taskable: Optional[TaskableRef] = None
    department_id: Optional[int] = None
    created_by: int
    assigned_user_id: Optional[int] = None
    assignee_ids: List[int] = Field(default_factory=list)
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    due_date: Optional[date] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    blocked_reason: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    completion_percentage: float = 0.0
    version: int
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Transition / hierarchy
# ---------------------------------------------------------------------------

class TaskTransition(BaseModel):
    """Request body for POST /tasks/{taskId}/transition."""
    to_status: TaskStatus
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class SubtaskMove(BaseModel):
    """Request body for POST /tasks/{taskId}/move. ``None`` moves to the root."""
    new_parent_id: Optional[UUID4] = None


class HierarchyNode(BaseModel):
    id: UUID4
    title: str
    status: TaskStatus
    priority: TaskPriority
    completion_percentage: float
    assignee: Optional[int] = None
    due_date: Optional[date] = None
    children: List["HierarchyNode"] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

class AssignmentRequest(BaseModel):
    user_ids: List[int] = Field(min_length=1)
    role: Optional[str] = None
    replace_existing: bool = False
    due_date: Optional[date] = None
    expires_at: Optional[datetime] = None


class ReassignRequest(BaseModel):
    user_id: int
    reason: Optional[str] = None


class AssignmentRead(BaseModel):
    task_id: UUID4
    user_id: int
    assigned_by: int
    assigned_at: datetime
    role: Optional[str] = None
    is_primary: bool
    expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HistoryRead(BaseModel):
    id: UUID4
    task_id: UUID4
    user_id: int
    action: str
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

class DependencyAdd(BaseModel):
    """Request body for POST /tasks/{taskId}/dependencies."""
    depends_on_task_id: UUID4
    dependency_type: DependencyType = DependencyType.BLOCKS


class DependencyRead(BaseModel):
    id: UUID4
    task_id: UUID4
    depends_on_task_id: UUID4
    dependency_type: DependencyType

    model_config = {"from_attributes": True}


class AffectedTasksRead(BaseModel):
    dependents: List[UUID4] = Field(default_factory=list)
    parents: List[UUID4] = Field(default_factory=list)
    subtasks: List[UUID4] = Field(default_factory=list)

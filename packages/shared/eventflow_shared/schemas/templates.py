"""Task template schemas: the fixed JSON shape of ``template_data`` and ``variables``."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import UUID4, BaseModel, Field

from .common import DependencyType, TaskPriority, TaskStatus
from .tasks import TaskableRef


class TemplateTaskDefinition(BaseModel):
    """One task inside a template. ``id`` is local to the template."""
    id: Optional[str] = None
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    task_type: Optional[str] = Field(default=None, max_length=50)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    parent_id: Optional[str] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[date] = None
    due_date_offset_days: Optional[int] = Field(default=None, ge=0)
    assigned_user_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TemplateDependencyDefinition(BaseModel):
    task_id: Optional[str] = None
    depends_on_task_id: Optional[str] = None
    dependency_type: DependencyType = DependencyType.BLOCKS


class TemplateData(BaseModel):
    tasks: List[TemplateTaskDefinition] = Field(min_length=1)
    dependencies: List[TemplateDependencyDefinition] = Field(default_factory=list)


class TemplateVariable(BaseModel):
    required: bool = False
    description: Optional[str] = None
    default: Optional[str] = None


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    template_data: TemplateData
    variables: Dict[str, TemplateVariable] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)


class TemplateVersionCreate(BaseModel):
    """Fields left unset are carried over from the previous version."""
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    template_data: Optional[TemplateData] = None
    variables: Optional[Dict[str, TemplateVariable]] = None
    tags: Optional[List[str]] = None
    deactivate_previous: bool = True


class TemplateRead(BaseModel):
    id: UUID4
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    version: int
    previous_version_id: Optional[UUID4] = None
    is_active: bool
    template_data: Dict[str, Any]
    variables: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    created_by: int

    model_config = {"from_attributes": True}


class InstantiationContext(BaseModel):
    """Values merged into every created task."""
    created_by: int
    taskable: Optional[TaskableRef] = None
    department_id: Optional[int] = None
    assigned_user_id: Optional[int] = None


class InstantiateRequest(BaseModel):
    variables: Dict[str, Any] = Field(default_factory=dict)
    taskable: Optional[TaskableRef] = None
    department_id: Optional[int] = None
    assigned_user_id: Optional[int] = None


class InstantiationRead(BaseModel):
    task_ids: List[UUID4]
    dependency_ids: List[UUID4]
    task_id_map: Dict[str, UUID4]
    skipped_dependencies: int = 0

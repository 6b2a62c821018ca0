"""Task model."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Task(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (sa.Index("ix_tasks_taskable", "taskable_type", "taskable_id"),)

    title: str = Field(nullable=False, max_length=255)
    description: Optional[str] = Field(default=None, sa_type=sa.Text)
    task_type: Optional[str] = Field(default=None, max_length=50, index=True)
    status: str = Field(default="pending", nullable=False, index=True)  # see TaskStatus
    priority: str = Field(default="medium", nullable=False, index=True)  # see TaskPriority
    parent_task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tasks.id", index=True)

    # Polymorphic owner: (enquiry | project | department | event, id)
    taskable_type: Optional[str] = Field(default=None, max_length=50)
    taskable_id: Optional[int] = None

    department_id: Optional[int] = Field(default=None, index=True)
    created_by: int = Field(nullable=False)
    assigned_user_id: Optional[int] = Field(default=None, index=True)  # mirrors the primary assignment

    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    due_date: date = Field(nullable=False, index=True)
    started_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    completed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())
    blocked_reason: Optional[str] = Field(default=None, sa_type=sa.Text)

    tags: List[str] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)
    meta: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=sa.Column("metadata", sa.JSON, nullable=False),
    )

    completion_percentage: float = Field(default=0.0, nullable=False)
    version: int = Field(default=1, nullable=False)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

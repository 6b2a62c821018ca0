"""Task dependency model."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class TaskDependency(UUIDMixin, SQLModel, table=True):
    """``task_id`` cannot proceed until ``depends_on_task_id`` does."""

    __tablename__ = "task_dependencies"
    __table_args__ = (
        CheckConstraint("task_id != depends_on_task_id", name="no_self_dependency"),
        sa.UniqueConstraint("task_id", "depends_on_task_id", name="uq_task_dependency"),
    )

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    depends_on_task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    dependency_type: str = Field(default="blocks", nullable=False)  # blocks | blocked_by
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())

"""Task assignment tables."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class TaskAssignment(UUIDMixin, SQLModel, table=True):
    __tablename__ = "task_assignments"
    __table_args__ = (sa.UniqueConstraint("task_id", "user_id", name="uq_task_assignment_user"),)

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    user_id: int = Field(nullable=False, index=True)
    assigned_by: int = Field(nullable=False)
    assigned_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
    role: Optional[str] = Field(default=None, max_length=50)
    is_primary: bool = Field(default=False, nullable=False)
    expires_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime())

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


class TaskAssignmentHistory(UUIDMixin, SQLModel, table=True):
    """Append-only record of reassignments."""

    __tablename__ = "task_assignment_history"

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    assigned_to: int = Field(nullable=False)
    assigned_by: int = Field(nullable=False)
    assigned_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())
    notes: Optional[str] = Field(default=None, sa_type=sa.Text)

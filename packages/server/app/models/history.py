"""Append-only task audit log."""

from datetime import datetime
from typing import Any, Dict, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class TaskHistory(UUIDMixin, SQLModel, table=True):
    __tablename__ = "task_history"

    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    user_id: int = Field(nullable=False)
    action: str = Field(nullable=False, max_length=50)  # created | updated | status_changed | assigned | ...
    field_name: Optional[str] = Field(default=None, max_length=50)
    old_value: Optional[str] = Field(default=None, sa_type=sa.Text)
    new_value: Optional[str] = Field(default=None, sa_type=sa.Text)
    description: Optional[str] = Field(default=None, sa_type=sa.Text)
    meta: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=sa.Column("metadata", sa.JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=utcnow, nullable=False, sa_type=sa.DateTime())

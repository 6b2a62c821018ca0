"""Task template model."""

from typing import Any, Dict, List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class TaskTemplate(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "task_templates"

    name: str = Field(nullable=False, max_length=255)
    description: Optional[str] = Field(default=None, sa_type=sa.Text)
    category: str = Field(nullable=False, max_length=100, index=True)
    version: int = Field(default=1, nullable=False)
    previous_version_id: Optional[uuid.UUID] = Field(default=None, foreign_key="task_templates.id")
    is_active: bool = Field(default=True, nullable=False, index=True)
    # {"tasks": [...], "dependencies": [...]}, validated by TemplateData
    template_data: Dict[str, Any] = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
    # name -> {"required": bool, "description": str, "default": any}
    variables: Dict[str, Any] = Field(default_factory=dict, sa_type=sa.JSON, nullable=False)
    tags: List[str] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)
    created_by: int = Field(nullable=False)
    updated_by: Optional[int] = None

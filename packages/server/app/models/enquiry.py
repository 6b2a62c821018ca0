"""Project enquiry: the business entity whose status is projected from its tasks."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class Enquiry(TimestampMixin, SQLModel, table=True):
    __tablename__ = "project_enquiries"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(nullable=False, max_length=255)
    status: str = Field(default="enquiry_logged", nullable=False, max_length=50)
    created_by: int = Field(nullable=False)

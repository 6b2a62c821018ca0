"""Enquiry projection schemas."""

from __future__ import annotations

from typing import List

from pydantic import UUID4, BaseModel, Field


class EnquiryStatusRead(BaseModel):
    enquiry_id: int
    status: str
    completed_task_types: List[str] = Field(default_factory=list)


class WorkflowSeedRead(BaseModel):
    enquiry_id: int
    created: bool
    task_ids: List[UUID4] = Field(default_factory=list)


class EnquiryCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    seed_workflow: bool = True


class EnquiryRead(BaseModel):
    id: int
    title: str
    status: str
    created_by: int

    model_config = {"from_attributes": True}

import uuid
from datetime import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"


class JobBase(BaseModel):
    title: str
    description: str
    location: str
    budget: float = Field(default=0, ge=0)
    assigned_to: Optional[uuid.UUID] = None
    due_date: Optional[datetime] = None

    @field_validator("title", "description", "location")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class JobCreate(JobBase):
    pass


class JobUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    budget: Optional[float] = Field(default=None, ge=0)
    status: Optional[JobStatus] = None
    assigned_to: Optional[uuid.UUID] = None
    due_date: Optional[datetime] = None


class JobStatusUpdate(BaseModel):
    status: JobStatus


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str
    location: str
    budget: float
    status: JobStatus
    assigned_to: Optional[uuid.UUID] = None
    due_date: Optional[datetime] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

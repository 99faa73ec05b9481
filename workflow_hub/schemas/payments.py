import uuid
from datetime import datetime
from typing import Optional, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PaymentStatus(str, Enum):
    pending = "pending"
    flagged = "flagged"
    completed = "completed"
    failed = "failed"


class PaymentRequestCreate(BaseModel):
    job_id: Optional[uuid.UUID] = None
    title: str = ""
    # Costs accept numbers or raw form strings; parsed like parseFloat
    food_cost: Any = 0
    labor_cost: Any = 0
    vehicle_cost: Any = 0
    fuel_cost: Any = 0
    mileage: Any = 0
    notes: str = ""


class PaymentReview(BaseModel):
    note: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class PaymentRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    job_id: Optional[uuid.UUID] = None
    amount: float
    food_cost: float
    labor_cost: float
    vehicle_cost: float
    fuel_cost: float
    mileage: float
    status: PaymentStatus
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
    created_by: uuid.UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    version: int


class PaymentSummary(BaseModel):
    pending: int
    flagged: int
    completed: int
    failed: int

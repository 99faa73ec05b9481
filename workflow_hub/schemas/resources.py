import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class VehicleAssignmentCreate(BaseModel):
    # Blank values are rejected by the service, not here, so the caller
    # gets the same notice the dashboards show
    vehicle_plate: str = ""
    vehicle_type: str = ""
    driver_name: str = ""
    driver_license: str = ""


class ResourceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    type: str
    quantity: int
    unit: str
    cost_per_unit: float
    available: bool
    status: str
    assigned_to: Optional[uuid.UUID] = None
    driver_name: Optional[str] = None
    driver_license: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import CheckInStatus


class CheckInCreate(BaseModel):
    patient_id: str = Field(..., min_length=1, max_length=64)
    appointment_id: Optional[str] = Field(None, max_length=64)
    # When set, the arrival goes straight into this department's waiting lane
    department: Optional[str] = Field(None, min_length=2, max_length=100)
    priority: Optional[int] = None

    @field_validator("patient_id")
    def clean_patient_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("patient_id cannot be blank.")
        return v

    model_config = ConfigDict(json_schema_extra={"example": {"patient_id": "P-000123", "department": "OPD"}})


class CheckInStatusUpdate(BaseModel):
    status: str = Field(..., description="Arrived | With Nurse | In Room | Complete | Cancelled")


class CheckInResponse(BaseModel):
    id: int
    patient_id: str
    appointment_id: Optional[str] = None
    status: CheckInStatus
    department: Optional[str] = None
    receptionist_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    queue_entry_id: Optional[int] = None
    model_config = ConfigDict(from_attributes=True)

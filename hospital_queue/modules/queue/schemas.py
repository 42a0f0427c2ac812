from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import QueueStatus


class QueueEntryCreate(BaseModel):
    checkin_id: int = Field(..., gt=0)
    department: str = Field(..., min_length=2, max_length=100)
    priority: Optional[int] = None

    @field_validator("department")
    def clean_department(cls, v):
        return v.strip()

    model_config = ConfigDict(json_schema_extra={"example": {"checkin_id": 12, "department": "OPD", "priority": 0}})


class TransitionRequest(BaseModel):
    action: str = Field(..., description="advance | start | done | cancel | waiting")

    model_config = ConfigDict(json_schema_extra={"example": {"action": "start"}})


class PriorityUpdate(BaseModel):
    priority: int


class ReorderRequest(BaseModel):
    """Exactly one of move_to_top, target_id (+ place) or append_to_end."""
    move_to_top: bool = False
    target_id: Optional[int] = None
    place: Optional[str] = Field(None, description="before | after")
    append_to_end: bool = False
    department: Optional[str] = None
    status: str = "waiting"

    model_config = ConfigDict(json_schema_extra={"example": {"target_id": 7, "place": "before", "department": "OPD"}})


class QueueEntryResponse(BaseModel):
    id: int
    department: str
    checkin_id: int
    status: QueueStatus
    priority: int
    position: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class LaneRow(BaseModel):
    id: int
    department: str
    status: QueueStatus
    priority: int
    position: Optional[int] = None
    updated_at: datetime
    checkin_id: int
    checkin_status: str
    checkin_time: datetime
    patient_id: str
    patient_name: Optional[str] = None
    patient_number: Optional[str] = None
    waiting_minutes: Optional[float] = None
    in_service_minutes: Optional[float] = None
    sla: Optional[str] = None


class LaneResponse(BaseModel):
    department: Optional[str] = None
    status: QueueStatus
    queue: List[LaneRow]


class QueueEventResponse(BaseModel):
    id: int
    queue_entry_id: int
    department: str
    from_status: Optional[QueueStatus] = None
    to_status: QueueStatus
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class OkResponse(BaseModel):
    success: bool = True

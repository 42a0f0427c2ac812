from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from ..queue.schemas import QueueEventResponse


class LaneMetrics(BaseModel):
    department: Optional[str] = None
    start: datetime
    end: datetime
    arrivals: int
    serviced: int
    completed: int
    avg_wait_minutes: Optional[float] = None
    avg_service_minutes: Optional[float] = None


class DepartmentOverview(BaseModel):
    department: str
    waiting: int
    in_service: int
    done: int
    avg_wait_minutes: Optional[float] = None
    avg_service_minutes: Optional[float] = None


class EventPage(BaseModel):
    items: List[QueueEventResponse]
    next_cursor: Optional[str] = None

from datetime import datetime, time, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db, utcnow
from ..queue.models import QueueStatus
from ..queue.schemas import QueueEventResponse
from . import schemas as analytics_schemas
from .services import MAX_PAGE_SIZE, QueueAnalytics

router = APIRouter()


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _range(start: Optional[datetime], end: Optional[datetime]):
    """Without bounds: from midnight UTC today until now."""
    end = _naive(end) or utcnow()
    start = _naive(start) or datetime.combine(end.date(), time.min)
    return start, end


@router.get("/lane-metrics", response_model=analytics_schemas.LaneMetrics)
def lane_metrics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    department: Optional[str] = None,
    db: Session = Depends(get_db),
):
    start, end = _range(start, end)
    return QueueAnalytics(db).lane_metrics(start, end, department)


@router.get("/departments", response_model=List[analytics_schemas.DepartmentOverview])
def department_overview(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    start, end = _range(start, end)
    return QueueAnalytics(db).department_overview(start, end)


@router.get("/events", response_model=analytics_schemas.EventPage)
def list_events(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    department: Optional[str] = None,
    to_status: Optional[QueueStatus] = None,
    cursor: Optional[str] = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    page = QueueAnalytics(db).list_events(_naive(start), _naive(end), department, to_status, cursor, limit)
    items = [QueueEventResponse.model_validate(event) for event in page["items"]]
    return {"items": items, "next_cursor": page["next_cursor"]}

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status

from ...identity import Caller, get_caller
from ..queue.routers import get_orchestrator
from ..queue.services import QueueOrchestrator
from . import schemas as checkin_schemas
from .services import CheckInService

router = APIRouter()


def get_checkin_service(orchestrator: QueueOrchestrator = Depends(get_orchestrator)) -> CheckInService:
    return CheckInService(orchestrator.db, queue=orchestrator)


def _response(checkin, entry=None) -> checkin_schemas.CheckInResponse:
    row = checkin_schemas.CheckInResponse.model_validate(checkin)
    row.queue_entry_id = entry.id if entry is not None else None
    return row


# --- ENDPOINT 1: PATIENT ARRIVES AT RECEPTION ---
@router.post("", response_model=checkin_schemas.CheckInResponse, status_code=status.HTTP_201_CREATED)
def create_checkin(
    payload: checkin_schemas.CheckInCreate,
    service: CheckInService = Depends(get_checkin_service),
    caller: Caller = Depends(get_caller),
):
    checkin, entry = service.create(
        payload.patient_id, payload.appointment_id, payload.department, caller, payload.priority
    )
    return _response(checkin, entry)


# --- ENDPOINT 2: TODAY'S (OR A GIVEN DAY'S) ARRIVALS ---
@router.get("", response_model=List[checkin_schemas.CheckInResponse])
def list_checkins(
    day: Optional[date] = None,
    department: Optional[str] = None,
    service: CheckInService = Depends(get_checkin_service),
):
    return [_response(c, service.active_entry(c.id)) for c in service.list_for_day(day, department)]


@router.get("/{checkin_id}", response_model=checkin_schemas.CheckInResponse)
def get_checkin(checkin_id: int, service: CheckInService = Depends(get_checkin_service)):
    checkin = service.get(checkin_id)
    return _response(checkin, service.active_entry(checkin_id))


# --- ENDPOINT 3: VISIT PROGRESS ---
@router.patch("/{checkin_id}", response_model=checkin_schemas.CheckInResponse)
def update_checkin_status(
    checkin_id: int,
    payload: checkin_schemas.CheckInStatusUpdate,
    service: CheckInService = Depends(get_checkin_service),
    caller: Caller = Depends(get_caller),
):
    checkin = service.update_status(checkin_id, payload.status, caller)
    return _response(checkin, service.active_entry(checkin_id))

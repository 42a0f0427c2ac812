from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from ...collaborators import (
    LaneNotifier, PatientDirectory, StaffDirectory,
    get_notifier, get_patient_directory, get_staff_directory, publish,
)
from ...database import get_db
from ...errors import NotFoundError
from ...identity import Caller, get_caller
from . import schemas as queue_schemas
from .events import QueueEventLog
from .services import QueueOrchestrator

router = APIRouter()


def get_orchestrator(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: LaneNotifier = Depends(get_notifier),
    patients: PatientDirectory = Depends(get_patient_directory),
) -> QueueOrchestrator:
    """Orchestrator whose lane notifications run after the response is sent."""
    def notify(change):
        background_tasks.add_task(publish, notifier, change)

    return QueueOrchestrator(db, notify=notify, patients=patients)


# --- ENDPOINT 1: PUT A CHECK-IN INTO A DEPARTMENT LANE ---
@router.post("", response_model=queue_schemas.QueueEntryResponse, status_code=status.HTTP_201_CREATED)
def create_queue_entry(
    payload: queue_schemas.QueueEntryCreate,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
    caller: Caller = Depends(get_caller),
):
    entry = orchestrator.create_entry(payload.checkin_id, payload.department, payload.priority, caller)
    return queue_schemas.QueueEntryResponse.model_validate(entry)


# --- ENDPOINT 2: ONE LANE IN SERVING ORDER ---
@router.get("", response_model=queue_schemas.LaneResponse)
def list_lane(
    department: Optional[str] = None,
    status: str = "waiting",
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    rows = orchestrator.list_lane(department, status)
    return {"department": department, "status": status, "queue": rows}


# --- ENDPOINT 3: STATUS CHANGES (advance/start/done/cancel/waiting) ---
@router.post("/{entry_id}/transition", response_model=queue_schemas.QueueEntryResponse)
def transition(
    entry_id: int,
    payload: queue_schemas.TransitionRequest,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
    caller: Caller = Depends(get_caller),
):
    entry = orchestrator.transition(entry_id, payload.action, caller)
    return queue_schemas.QueueEntryResponse.model_validate(entry)


@router.put("/{entry_id}/priority", response_model=queue_schemas.QueueEntryResponse)
def set_priority(
    entry_id: int,
    payload: queue_schemas.PriorityUpdate,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
    caller: Caller = Depends(get_caller),
):
    entry = orchestrator.set_priority(entry_id, payload.priority, caller)
    return queue_schemas.QueueEntryResponse.model_validate(entry)


# --- ENDPOINT 4: MANUAL ORDERING INSIDE A LANE ---
@router.post("/{entry_id}/reorder", response_model=queue_schemas.LaneResponse)
def reorder(
    entry_id: int,
    payload: queue_schemas.ReorderRequest,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
    caller: Caller = Depends(get_caller),
):
    rows = orchestrator.reorder(
        entry_id,
        move_to_top=payload.move_to_top,
        target_id=payload.target_id,
        place=payload.place,
        append_to_end=payload.append_to_end,
        department=payload.department,
        status=payload.status,
        caller=caller,
    )
    department = rows[0].department if rows else payload.department
    return {"department": department, "status": payload.status, "queue": rows}


@router.delete("/{entry_id}", response_model=queue_schemas.OkResponse)
def delete_queue_entry(
    entry_id: int,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
    caller: Caller = Depends(get_caller),
):
    orchestrator.delete_entry(entry_id, caller)
    return {"success": True}


# --- ENDPOINT 5: AUDIT TRAIL OF ONE ENTRY ---
@router.get("/{entry_id}/events", response_model=List[queue_schemas.QueueEventResponse])
def entry_events(
    entry_id: int,
    db: Session = Depends(get_db),
    staff: StaffDirectory = Depends(get_staff_directory),
):
    events = QueueEventLog(db).for_entry(entry_id)
    if not events:
        raise NotFoundError(f"No events for queue entry {entry_id}.", field="id")
    results = []
    for event in events:
        row = queue_schemas.QueueEventResponse.model_validate(event)
        card = staff.lookup(event.actor_id) if event.actor_id else None
        if card is not None:
            row.actor_name = card.display_name
        results.append(row)
    return results

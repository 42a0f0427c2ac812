from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...collaborators import PatientDirectory, get_patient_directory
from ...database import get_db
from ...identity import Caller, get_caller
from . import schemas as triage_schemas
from .classifier import explain
from .services import TriageService

router = APIRouter()


def get_triage_service(
    db: Session = Depends(get_db),
    patients: PatientDirectory = Depends(get_patient_directory),
) -> TriageService:
    return TriageService(db, patients=patients)


# --- ENDPOINT 1: CLASSIFY WITHOUT SAVING (live preview while typing vitals) ---
@router.post("/classify", response_model=triage_schemas.ClassificationResponse)
def classify_triage(payload: triage_schemas.TriageInput):
    category, reason = explain(payload)
    return {"category": category, "reason": reason}


# --- ENDPOINT 2: RECORD AN ASSESSMENT ---
@router.post("", response_model=triage_schemas.TriageRecorded, status_code=status.HTTP_201_CREATED)
def record_triage(
    payload: triage_schemas.TriageCreate,
    service: TriageService = Depends(get_triage_service),
    caller: Caller = Depends(get_caller),
):
    assessment, reason = service.record(payload, caller)
    return {
        "id": assessment.id,
        "patient_id": assessment.patient_id,
        "category": assessment.category,
        "reason": reason,
        "recorded_at": assessment.recorded_at,
    }


# --- ENDPOINT 3: OPD BOARD ---
@router.get("/board", response_model=List[triage_schemas.TriageBoardRow])
def triage_board(
    days: int = Query(7, ge=1, le=90),
    service: TriageService = Depends(get_triage_service),
):
    return service.board(days)


@router.patch("/{assessment_id}/status", response_model=triage_schemas.OpdStatusChanged)
def update_opd_status(
    assessment_id: int,
    payload: triage_schemas.OpdStatusUpdate,
    service: TriageService = Depends(get_triage_service),
    caller: Caller = Depends(get_caller),
):
    state = service.update_opd_status(assessment_id, payload.status, caller)
    return {"success": True, "patient_id": state.patient_id, "status": state.current_status}

"""Recording triage assessments and the OPD board built on them."""
from datetime import datetime, time, timedelta
from typing import Callable, List, Tuple, Union

from sqlalchemy.orm import Session

from ...collaborators import PatientDirectory, patient_directory
from ...database import atomic, utcnow
from ...errors import NotFoundError, ValidationError
from ...identity import SYSTEM, Caller
from ...logger import get_logger
from .classifier import explain
from .models import CATEGORY_RANK, OpdStatus, PatientTriageState, TriageAssessment
from .schemas import TriageBoardRow, TriageCreate

logger = get_logger(__name__)

BOARD_MAX_DAYS = 90


class TriageService:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        patients: PatientDirectory = patient_directory,
    ):
        self.db = db
        self.clock = clock
        self.patients = patients

    def _state(self, patient_id: str, now: datetime) -> PatientTriageState:
        state = self.db.get(PatientTriageState, patient_id)
        if state is None:
            state = PatientTriageState(patient_id=patient_id, current_status=OpdStatus.TRIAGE, updated_at=now)
            self.db.add(state)
        return state

    def record(self, payload: TriageCreate, caller: Caller = SYSTEM) -> Tuple[TriageAssessment, str]:
        """Classify and store a new assessment; the category is never taken from the caller."""
        category, reason = explain(payload)
        now = self.clock()
        with atomic(self.db):
            assessment = TriageAssessment(
                patient_id=payload.patient_id,
                recorded_by=caller.staff_id,
                mode=payload.mode.value,
                systolic=payload.systolic,
                diastolic=payload.diastolic,
                heart_rate=payload.heart_rate,
                respiratory_rate=payload.respiratory_rate,
                temperature=payload.temperature,
                spo2=payload.spo2,
                avpu=payload.avpu,
                mobility=payload.mobility,
                chief_complaint=payload.chief_complaint,
                discriminators=list(payload.discriminators),
                clinical_context=payload.context(),
                category=category,
                recorded_at=now,
            )
            self.db.add(assessment)
            state = self._state(payload.patient_id, now)
            state.triage_category = category
            state.updated_at = now

        logger.info(
            "triage patient=%s category=%s (%s) by %s",
            payload.patient_id, category.value, reason, caller,
        )
        return assessment, reason

    def board(self, days: int = 7) -> List[TriageBoardRow]:
        """Latest assessment per patient in the window, most severe first."""
        if not 1 <= days <= BOARD_MAX_DAYS:
            raise ValidationError(f"days must be between 1 and {BOARD_MAX_DAYS}.", field="days")
        cutoff = datetime.combine(self.clock().date() - timedelta(days=days), time.min)
        rows = (
            self.db.query(TriageAssessment, PatientTriageState.current_status)
            .outerjoin(PatientTriageState, PatientTriageState.patient_id == TriageAssessment.patient_id)
            .filter(TriageAssessment.recorded_at >= cutoff)
            .order_by(TriageAssessment.recorded_at.desc(), TriageAssessment.id.desc())
            .all()
        )
        latest = {}
        for assessment, status in rows:
            latest.setdefault(assessment.patient_id, (assessment, status))

        board = []
        for assessment, status in latest.values():
            card = self.patients.lookup(assessment.patient_id)
            context = assessment.clinical_context or {}
            board.append(TriageBoardRow(
                assessment_id=assessment.id,
                patient_id=assessment.patient_id,
                patient_name=card.display_name if card else None,
                patient_number=card.patient_number if card else None,
                triage_category=assessment.category,
                chief_complaint=assessment.chief_complaint,
                recorded_at=assessment.recorded_at,
                avpu=assessment.avpu,
                temperature=assessment.temperature,
                heart_rate=assessment.heart_rate,
                systolic=assessment.systolic,
                diastolic=assessment.diastolic,
                spo2=assessment.spo2,
                pain_level=context.get("pain_level") or 0,
                status=status or OpdStatus.TRIAGE,
            ))
        board.sort(key=lambda r: (CATEGORY_RANK[r.triage_category], r.recorded_at, r.assessment_id))
        return board

    def update_opd_status(
        self, assessment_id: int, status: Union[str, OpdStatus], caller: Caller = SYSTEM
    ) -> PatientTriageState:
        try:
            status = OpdStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown OPD status '{status}'.", field="status") from exc
        assessment = self.db.get(TriageAssessment, assessment_id)
        if assessment is None:
            raise NotFoundError(f"Triage assessment {assessment_id} not found.", field="id")

        now = self.clock()
        with atomic(self.db):
            state = self._state(assessment.patient_id, now)
            previous = state.current_status
            state.current_status = status
            state.updated_at = now

        logger.info(
            "opd patient=%s %s -> %s by %s",
            state.patient_id, previous.value if previous else None, status.value, caller,
        )
        return state

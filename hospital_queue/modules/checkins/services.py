"""Arrivals: creating check-ins and walking them through the visit."""
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ...database import atomic
from ...errors import ConflictError, NotFoundError, ValidationError
from ...identity import SYSTEM, Caller
from ...logger import get_logger
from ..queue.models import QueueEntry, QueueStatus
from ..queue.services import QueueOrchestrator, check_priority, clean_department
from .models import CHECKIN_FLOW, CHECKIN_TERMINAL, CheckIn, CheckInStatus

logger = get_logger(__name__)


class CheckInService:
    def __init__(
        self,
        db: Session,
        queue: Optional[QueueOrchestrator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.queue = queue or QueueOrchestrator(db)
        self.clock = clock or self.queue.clock

    def create(
        self,
        patient_id: str,
        appointment_id: Optional[str] = None,
        department: Optional[str] = None,
        caller: Caller = SYSTEM,
        priority: Optional[int] = None,
    ) -> Tuple[CheckIn, Optional[QueueEntry]]:
        """Record an arrival; with a department it is queued in the same transaction."""
        patient_id = (patient_id or "").strip()
        if not patient_id:
            raise ValidationError("patient_id is required.", field="patient_id")
        lanes = []
        if department is not None:
            department = clean_department(department)
            lanes.append((department, QueueStatus.WAITING.value))
        if priority is not None:
            if department is None:
                raise ValidationError("priority needs a department to queue into.", field="priority")
            check_priority(priority)

        with self.queue.locks.hold(*lanes), atomic(self.db):
            now = self.clock()
            checkin = CheckIn(
                patient_id=patient_id,
                appointment_id=appointment_id,
                status=CheckInStatus.ARRIVED,
                department=department,
                receptionist_id=caller.staff_id,
                created_at=now,
                updated_at=now,
            )
            self.db.add(checkin)
            self.db.flush()
            entry = None
            if department is not None:
                entry = self.queue.add_to_lane(checkin.id, department, priority, caller, now)

        logger.info(
            "checkin=%s patient=%s dept=%s entry=%s by %s",
            checkin.id, patient_id, department, entry.id if entry else None, caller,
        )
        if entry is not None:
            self.queue.announce(entry, QueueStatus.WAITING, "created", caller)
        return checkin, entry

    def get(self, checkin_id: int) -> CheckIn:
        checkin = self.db.get(CheckIn, checkin_id)
        if checkin is None:
            raise NotFoundError(f"Check-in {checkin_id} not found.", field="id")
        return checkin

    def active_entry(self, checkin_id: int) -> Optional[QueueEntry]:
        return (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.checkin_id == checkin_id,
                QueueEntry.status.in_([QueueStatus.WAITING, QueueStatus.IN_SERVICE]),
            )
            .first()
        )

    def list_for_day(self, day: Optional[date] = None, department: Optional[str] = None) -> List[CheckIn]:
        day = day or self.clock().date()
        start = datetime.combine(day, time.min)
        query = self.db.query(CheckIn).filter(
            CheckIn.created_at >= start, CheckIn.created_at < start + timedelta(days=1)
        )
        if department is not None:
            query = query.filter(CheckIn.department == department)
        return query.order_by(CheckIn.created_at.desc(), CheckIn.id.desc()).all()

    def update_status(
        self, checkin_id: int, status: Union[str, CheckInStatus], caller: Caller = SYSTEM
    ) -> CheckIn:
        try:
            new_status = CheckInStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown check-in status '{status}'.", field="status") from exc

        checkin = self.get(checkin_id)
        current = checkin.status
        if current in CHECKIN_TERMINAL:
            raise ConflictError(
                f"Check-in {checkin_id} is already {current.value}.", current_status=current.value
            )
        # Cancelled is allowed from anywhere open; everything else only moves forward
        if new_status != CheckInStatus.CANCELLED and CHECKIN_FLOW.index(new_status) <= CHECKIN_FLOW.index(current):
            raise ConflictError(
                f"Check-in {checkin_id} cannot go from {current.value} to {new_status.value}.",
                field="status",
                current_status=current.value,
            )

        with atomic(self.db):
            checkin.status = new_status
            checkin.updated_at = self.clock()

        logger.info("checkin=%s %s -> %s by %s", checkin_id, current.value, new_status.value, caller)
        return checkin

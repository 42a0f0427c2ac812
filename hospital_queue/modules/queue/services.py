"""
Queue orchestrator: the service-facing side of the department lanes.

Every write takes the in-process lane lock(s) it touches, opens one
transaction, locks the lane row(s), and only then reads positions. Status
changes and their events commit together; lane-change notifications go out
after commit.
"""
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...collaborators import LaneChange, PatientDirectory, patient_directory
from ...database import atomic, utcnow
from ...errors import ConcurrencyError, ConflictError, NotFoundError, ValidationError
from ...identity import SYSTEM, Caller
from ...locks import LaneLocks, lane_locks
from ...logger import get_logger
from ..analytics.services import minutes_between, sla_level
from ..checkins.models import CheckIn
from ..triage.models import PatientTriageState
from .models import ACTIVE_STATUSES, QueueEntry, QueueStatus
from .schemas import LaneRow
from .store import LaneStore

logger = get_logger(__name__)

# Staff-facing action names and the status each one moves to
ACTIONS: Dict[str, QueueStatus] = {
    "advance": QueueStatus.IN_SERVICE,
    "start": QueueStatus.IN_SERVICE,
    "done": QueueStatus.DONE,
    "cancel": QueueStatus.CANCELLED,
    "waiting": QueueStatus.WAITING,
}

# Legal moves; terminal statuses have none
ALLOWED: Dict[QueueStatus, tuple] = {
    QueueStatus.WAITING: (QueueStatus.IN_SERVICE, QueueStatus.DONE, QueueStatus.CANCELLED),
    QueueStatus.IN_SERVICE: (QueueStatus.DONE, QueueStatus.CANCELLED, QueueStatus.WAITING),
    QueueStatus.DONE: (),
    QueueStatus.CANCELLED: (),
}

PLACES = ("before", "after")


def _key(department: str, status: QueueStatus):
    return (department, status.value)


def clean_department(value: Optional[str]) -> str:
    department = (value or "").strip()
    if not 2 <= len(department) <= 100:
        raise ValidationError("Department must be 2 to 100 characters.", field="department")
    return department


def check_priority(priority) -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError("Priority must be an integer.", field="priority")
    if not 0 <= priority <= config.PRIORITY_MAX:
        raise ValidationError(
            f"Priority must be between 0 and {config.PRIORITY_MAX}.", field="priority"
        )
    return priority


def _no_notify(change: LaneChange) -> None:
    return None


class PriorityPolicy:
    """Maps a patient's latest triage category to a starting queue priority."""

    def __init__(self, enabled: bool = False, bands: Optional[Dict[str, int]] = None):
        self.enabled = enabled
        self.bands = dict(bands or {})

    @classmethod
    def from_config(cls) -> "PriorityPolicy":
        return cls(config.TRIAGE_DRIVES_PRIORITY, config.TRIAGE_PRIORITY_BANDS)

    def derive(self, db: Session, patient_id: str) -> int:
        if not self.enabled:
            return 0
        state = db.get(PatientTriageState, patient_id)
        if state is None or state.triage_category is None:
            return 0
        return int(self.bands.get(state.triage_category.value, 0))


class QueueOrchestrator:
    def __init__(
        self,
        db: Session,
        locks: LaneLocks = lane_locks,
        clock: Callable[[], datetime] = utcnow,
        policy: Optional[PriorityPolicy] = None,
        notify: Callable[[LaneChange], None] = _no_notify,
        patients: PatientDirectory = patient_directory,
    ):
        self.db = db
        self.store = LaneStore(db)
        self.locks = locks
        self.clock = clock
        self.policy = policy or PriorityPolicy.from_config()
        self.notify = notify
        self.patients = patients

    # --- validation helpers ---

    @staticmethod
    def _status(value: Union[str, QueueStatus], field: str = "status") -> QueueStatus:
        try:
            return QueueStatus(value)
        except ValueError as exc:
            raise ValidationError(f"Unknown queue status '{value}'.", field=field) from exc

    def announce(self, entry: QueueEntry, status: QueueStatus, action: str, caller: Caller) -> None:
        self.notify(LaneChange(entry.department, status.value, entry.id, action, caller.staff_id))

    # --- origination ---

    def create_entry(
        self,
        checkin_id: int,
        department: str,
        priority: Optional[int] = None,
        caller: Caller = SYSTEM,
    ) -> QueueEntry:
        department = clean_department(department)
        if priority is not None:
            check_priority(priority)
        try:
            with self.locks.hold(_key(department, QueueStatus.WAITING)), atomic(self.db):
                entry = self.add_to_lane(checkin_id, department, priority, caller, self.clock())
        except IntegrityError as exc:
            # Lost the race on the one-active-entry index
            raise ConflictError(
                f"Check-in {checkin_id} is already queued.", field="checkin_id"
            ) from exc
        logger.info(
            "queued checkin=%s as entry=%s in %s pos=%s prio=%s by %s",
            checkin_id, entry.id, department, entry.position, entry.priority, caller,
        )
        self.announce(entry, QueueStatus.WAITING, "created", caller)
        return entry

    def add_to_lane(
        self,
        checkin_id: int,
        department: str,
        priority: Optional[int],
        caller: Caller,
        now: datetime,
    ) -> QueueEntry:
        """Insert into the waiting lane.

        The caller holds the waiting-lane lock for ``department`` and an open
        transaction; nothing is committed here.
        """
        checkin = self.db.get(CheckIn, checkin_id)
        if checkin is None:
            raise NotFoundError(f"Check-in {checkin_id} not found.", field="checkin_id")
        active = (
            self.db.query(QueueEntry)
            .filter(QueueEntry.checkin_id == checkin_id, QueueEntry.status.in_(ACTIVE_STATUSES))
            .first()
        )
        if active is not None:
            raise ConflictError(
                f"Check-in {checkin_id} is already queued in {active.department}.",
                field="checkin_id",
                current_status=active.status.value,
            )
        if priority is None:
            priority = self.policy.derive(self.db, checkin.patient_id)
        self.store.lock_lane(department, QueueStatus.WAITING)
        return self.store.insert(department, checkin_id, priority, now, caller.staff_id)

    # --- reads ---

    def list_lane(
        self, department: Optional[str] = None, status: Union[str, QueueStatus] = QueueStatus.WAITING
    ) -> List[LaneRow]:
        """Entries of one lane in serving order, with live wait figures."""
        status = self._status(status)
        entries = self.store.lane(department, status)
        now = self.clock()
        started = {}
        if status == QueueStatus.IN_SERVICE:
            started = self.store.events.latest_service_starts(e.id for e in entries)

        rows = []
        for entry in entries:
            checkin = entry.checkin
            card = self.patients.lookup(checkin.patient_id)
            waiting = in_service = sla = None
            if status == QueueStatus.WAITING:
                waiting = minutes_between(checkin.created_at, now)
                sla = sla_level(waiting, config.QUEUE_WAIT_WARN, config.QUEUE_WAIT_CRIT)
            elif status == QueueStatus.IN_SERVICE:
                in_service = minutes_between(started.get(entry.id), now)
                sla = sla_level(in_service, config.SERVICE_WARN, config.SERVICE_CRIT)
            rows.append(LaneRow(
                id=entry.id,
                department=entry.department,
                status=entry.status,
                priority=entry.priority,
                position=entry.position,
                updated_at=entry.updated_at,
                checkin_id=checkin.id,
                checkin_status=checkin.status.value,
                checkin_time=checkin.created_at,
                patient_id=checkin.patient_id,
                patient_name=card.display_name if card else None,
                patient_number=card.patient_number if card else None,
                waiting_minutes=waiting,
                in_service_minutes=in_service,
                sla=sla,
            ))
        return rows

    # --- writes ---

    def transition(self, entry_id: int, action: str, caller: Caller = SYSTEM) -> QueueEntry:
        to_status = ACTIONS.get((action or "").strip().lower())
        if to_status is None:
            raise ValidationError(
                f"Unknown action '{action}'. Use one of: {', '.join(ACTIONS)}.", field="action"
            )
        entry = self.store.get(entry_id)
        from_status = entry.status
        department = entry.department

        with self.locks.hold(_key(department, from_status), _key(department, to_status)):
            with atomic(self.db):
                entry = self.store.get(entry_id, for_update=True)
                if entry.status != from_status:
                    raise ConcurrencyError(
                        f"Queue entry {entry_id} changed while waiting for its lane, please retry.",
                        current_status=entry.status.value,
                    )
                if to_status not in ALLOWED[from_status]:
                    raise ConflictError(
                        f"Cannot {action} an entry that is {from_status.value}.",
                        field="action",
                        current_status=from_status.value,
                    )
                for status in sorted({from_status, to_status}, key=lambda s: s.value):
                    self.store.lock_lane(department, status)
                position = None
                if to_status == QueueStatus.WAITING:
                    # Recalled entries rejoin at the back
                    position = self.store.next_position(department, QueueStatus.WAITING)
                self.store.set_status(entry, to_status, self.clock(), caller.staff_id, position)

        logger.info(
            "entry=%s %s -> %s (%s) in %s by %s",
            entry_id, from_status.value, to_status.value, action, department, caller,
        )
        self.announce(entry, to_status, action, caller)
        return entry

    def set_priority(self, entry_id: int, priority: int, caller: Caller = SYSTEM) -> QueueEntry:
        check_priority(priority)
        entry = self.store.get(entry_id)
        # Plain overwrite in any status; terminal entries keep their frozen status and position
        status, department = entry.status, entry.department

        with self.locks.hold(_key(department, status)), atomic(self.db):
            entry = self.store.get(entry_id, for_update=True)
            if entry.status != status:
                raise ConcurrencyError(
                    f"Queue entry {entry_id} changed while waiting for its lane, please retry.",
                    current_status=entry.status.value,
                )
            self.store.lock_lane(department, status)
            previous = entry.priority
            self.store.set_priority(entry, priority, self.clock())

        logger.info("entry=%s priority %s -> %s by %s", entry_id, previous, priority, caller)
        self.announce(entry, status, "priority", caller)
        return entry

    def reorder(
        self,
        entry_id: int,
        move_to_top: bool = False,
        target_id: Optional[int] = None,
        place: Optional[str] = None,
        append_to_end: bool = False,
        department: Optional[str] = None,
        status: Union[str, QueueStatus] = QueueStatus.WAITING,
        caller: Caller = SYSTEM,
    ) -> List[LaneRow]:
        """Move one entry inside its lane and return the lane in its new order.

        Exactly one of ``move_to_top``, ``target_id`` (with ``place``) or
        ``append_to_end`` must be given.
        """
        modes = sum([bool(move_to_top), target_id is not None, bool(append_to_end)])
        if modes != 1:
            raise ValidationError(
                "Give exactly one of move_to_top, target_id or append_to_end.", field="target_id"
            )
        if target_id is not None:
            if place not in PLACES:
                raise ValidationError("place must be 'before' or 'after'.", field="place")
            if target_id == entry_id:
                raise ValidationError("An entry cannot be placed relative to itself.", field="target_id")
        elif place is not None:
            raise ValidationError("place is only used together with target_id.", field="place")
        status = self._status(status)
        if status not in ACTIVE_STATUSES:
            raise ValidationError("Only waiting and in_service lanes can be reordered.", field="status")

        entry = self.store.get(entry_id)
        department = clean_department(department) if department is not None else entry.department

        with self.locks.hold(_key(department, status)):
            with atomic(self.db):
                self.store.lock_lane(department, status)
                entry = self.store.get(entry_id, for_update=True)
                if entry.department != department or entry.status != status:
                    raise NotFoundError(
                        f"Queue entry {entry_id} is not in the {department} {status.value} lane.",
                        field="id",
                        current_status=entry.status.value,
                    )
                now = self.clock()
                if move_to_top:
                    self.store.move_to_top(entry, now)
                    mode = "top"
                elif target_id is not None:
                    target = self.store.get(target_id, for_update=True)
                    if target.department != department or target.status != status:
                        raise NotFoundError(
                            f"Target entry {target_id} is not in the {department} {status.value} lane.",
                            field="target_id",
                        )
                    self.store.move_relative(entry, target, place, now)
                    mode = f"{place} {target_id}"
                else:
                    self.store.append(entry, now)
                    mode = "end"

            logger.info(
                "entry=%s moved %s in %s/%s by %s", entry_id, mode, department, status.value, caller
            )
            lane = self.list_lane(department, status)
        self.announce(entry, status, "reorder", caller)
        return lane

    def delete_entry(self, entry_id: int, caller: Caller = SYSTEM) -> None:
        entry = self.store.get(entry_id)
        if entry.status != QueueStatus.DONE:
            raise ConflictError(
                "Only completed entries can be removed.", current_status=entry.status.value
            )
        department = entry.department
        with atomic(self.db):
            self.store.delete(entry)
        logger.info("entry=%s deleted from %s by %s", entry_id, department, caller)
        self.notify(LaneChange(department, QueueStatus.DONE.value, entry_id, "deleted", caller.staff_id))

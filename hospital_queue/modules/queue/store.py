"""
Queue lane store.

A lane is every entry sharing one (department, status) pair. Lanes are
served in effective order: priority DESC, position ASC, updated_at ASC.

Methods that rewrite positions expect the caller to hold the lane lock
(``hospital_queue.locks``) and an open transaction; ``lock_lane`` adds the
row-level lock for databases that support ``SELECT ... FOR UPDATE``.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ...errors import ConcurrencyError, NotFoundError
from .events import QueueEventLog
from .models import QueueEntry, QueueLane, QueueStatus


class LaneStore:
    def __init__(self, db: Session):
        self.db = db
        self.events = QueueEventLog(db)

    # --- reads ---

    def get(self, entry_id: int, for_update: bool = False) -> QueueEntry:
        query = self.db.query(QueueEntry).filter(QueueEntry.id == entry_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        entry = query.one_or_none()
        if entry is None:
            raise NotFoundError(f"Queue entry {entry_id} not found.", field="id")
        return entry

    def lane(self, department: Optional[str], status: QueueStatus) -> List[QueueEntry]:
        query = (
            self.db.query(QueueEntry)
            .options(joinedload(QueueEntry.checkin))
            .filter(QueueEntry.status == status)
        )
        if department is not None:
            query = query.filter(QueueEntry.department == department)
        return query.order_by(
            QueueEntry.priority.desc(),
            QueueEntry.position.is_(None),
            QueueEntry.position.asc(),
            QueueEntry.updated_at.asc(),
            QueueEntry.id.asc(),
        ).all()

    def next_position(self, department: str, status: QueueStatus) -> int:
        current = (
            self.db.query(func.max(QueueEntry.position))
            .filter(QueueEntry.department == department, QueueEntry.status == status)
            .scalar()
        )
        return (current or 0) + 1

    # --- locking ---

    def lock_lane(self, department: str, status: QueueStatus) -> QueueLane:
        lane = (
            self.db.query(QueueLane)
            .filter(QueueLane.department == department, QueueLane.status == status)
            .with_for_update()
            .one_or_none()
        )
        if lane is None:
            lane = QueueLane(department=department, status=status, version=0)
            self.db.add(lane)
        lane.version = (lane.version or 0) + 1
        try:
            self.db.flush()
        except IntegrityError as exc:
            # Another process created the lane row first
            raise ConcurrencyError(
                f"Lane '{department}' ({status.value}) is busy, please retry."
            ) from exc
        return lane

    # --- writes ---

    def insert(
        self,
        department: str,
        checkin_id: int,
        priority: int,
        now: datetime,
        actor_id: Optional[str] = None,
    ) -> QueueEntry:
        entry = QueueEntry(
            department=department,
            checkin_id=checkin_id,
            status=QueueStatus.WAITING,
            priority=priority,
            position=self.next_position(department, QueueStatus.WAITING),
            created_at=now,
            updated_at=now,
        )
        self.db.add(entry)
        self.db.flush()
        self.events.append(entry, None, QueueStatus.WAITING, now, actor_id)
        self.db.flush()
        return entry

    def set_status(
        self,
        entry: QueueEntry,
        to_status: QueueStatus,
        now: datetime,
        actor_id: Optional[str] = None,
        position: Optional[int] = None,
    ) -> QueueEntry:
        """Write the new status and its event together."""
        from_status = entry.status
        entry.status = to_status
        entry.updated_at = now
        if position is not None:
            entry.position = position
        self.events.append(entry, from_status, to_status, now, actor_id)
        self.db.flush()
        return entry

    def set_priority(self, entry: QueueEntry, priority: int, now: datetime) -> QueueEntry:
        entry.priority = priority
        entry.updated_at = now
        self.db.flush()
        return entry

    def move_to_top(self, entry: QueueEntry, now: datetime) -> QueueEntry:
        """Shift the rest of the lane down one place and put ``entry`` at 1."""
        (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.department == entry.department,
                QueueEntry.status == entry.status,
                QueueEntry.id != entry.id,
                QueueEntry.position.isnot(None),
            )
            .update({QueueEntry.position: QueueEntry.position + 1}, synchronize_session="fetch")
        )
        entry.position = 1
        entry.updated_at = now
        self.db.flush()
        return entry

    def move_relative(
        self, entry: QueueEntry, target: QueueEntry, place: str, now: datetime
    ) -> List[QueueEntry]:
        """Splice ``entry`` before/after ``target`` and renumber the lane 1..N."""
        ordered = [e for e in self.lane(entry.department, entry.status) if e.id != entry.id]
        index = next(i for i, e in enumerate(ordered) if e.id == target.id)
        insert_at = index if place == "before" else index + 1
        ordered.insert(insert_at, entry)
        for position, row in enumerate(ordered, start=1):
            row.position = position
            row.updated_at = now
        self.db.flush()
        return ordered

    def append(self, entry: QueueEntry, now: datetime) -> QueueEntry:
        """Send to the back of the lane without touching anyone else."""
        entry.position = self.next_position(entry.department, entry.status)
        entry.updated_at = now
        self.db.flush()
        return entry

    def delete(self, entry: QueueEntry) -> None:
        self.db.delete(entry)
        self.db.flush()

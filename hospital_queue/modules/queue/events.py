"""Append-only queue event log."""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import QueueEntry, QueueEvent, QueueStatus


class QueueEventLog:
    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        entry: QueueEntry,
        from_status: Optional[QueueStatus],
        to_status: QueueStatus,
        at: datetime,
        actor_id: Optional[str] = None,
    ) -> QueueEvent:
        event = QueueEvent(
            queue_entry_id=entry.id,
            department=entry.department,
            checkin_id=entry.checkin_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            created_at=at,
        )
        self.db.add(event)
        return event

    def for_entry(self, entry_id: int) -> List[QueueEvent]:
        return (
            self.db.query(QueueEvent)
            .filter(QueueEvent.queue_entry_id == entry_id)
            .order_by(QueueEvent.created_at.asc(), QueueEvent.id.asc())
            .all()
        )

    def latest_service_starts(self, entry_ids: Iterable[int]) -> Dict[int, datetime]:
        """Most recent move into in_service for each entry."""
        ids = list(entry_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(QueueEvent.queue_entry_id, func.max(QueueEvent.created_at))
            .filter(
                QueueEvent.queue_entry_id.in_(ids),
                QueueEvent.to_status == QueueStatus.IN_SERVICE,
            )
            .group_by(QueueEvent.queue_entry_id)
            .all()
        )
        return {entry_id: started_at for entry_id, started_at in rows}

import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship

from ...database import Base, utcnow
from ..checkins import models as _checkin_models  # noqa: F401  (registers "CheckIn")


class QueueStatus(str, enum.Enum):
    WAITING = "waiting"
    IN_SERVICE = "in_service"
    DONE = "done"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (QueueStatus.DONE, QueueStatus.CANCELLED)
ACTIVE_STATUSES = (QueueStatus.WAITING, QueueStatus.IN_SERVICE)


def _status_enum():
    return Enum(QueueStatus, values_callable=lambda e: [m.value for m in e], native_enum=False)


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, index=True)
    department = Column(String(100), nullable=False)
    checkin_id = Column(Integer, ForeignKey("checkins.id"), nullable=False, index=True)
    status = Column(_status_enum(), default=QueueStatus.WAITING, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    position = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    checkin = relationship("CheckIn", back_populates="queue_entries")

    __table_args__ = (
        Index("ix_queue_entries_lane", "department", "status", "position"),
        # One active entry per check-in; MySQL has no partial indexes, the service check covers it there
        Index(
            "uq_queue_entries_active_checkin",
            "checkin_id",
            unique=True,
            sqlite_where=text("status IN ('waiting', 'in_service')"),
            postgresql_where=text("status IN ('waiting', 'in_service')"),
        ).ddl_if(dialect=("sqlite", "postgresql")),
        # Event rows outlive deleted entries, so ids must never be reused
        {"sqlite_autoincrement": True},
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class QueueEvent(Base):
    """One row per status change. Rows are never updated or deleted.

    ``department`` and ``checkin_id`` are copied from the entry so the log
    still answers duration queries after a finished entry is removed.
    """
    __tablename__ = "queue_events"

    id = Column(Integer, primary_key=True, index=True)
    queue_entry_id = Column(Integer, nullable=False)
    department = Column(String(100), nullable=False)
    checkin_id = Column(Integer, ForeignKey("checkins.id"), nullable=False)
    from_status = Column(_status_enum(), nullable=True)
    to_status = Column(_status_enum(), nullable=False)
    actor_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_queue_events_entry", "queue_entry_id", "created_at"),
        Index("ix_queue_events_to_status", "to_status", "created_at"),
        Index("ix_queue_events_created", "created_at"),
    )


class QueueLane(Base):
    """Lock target for a (department, status) lane."""
    __tablename__ = "queue_lanes"

    department = Column(String(100), primary_key=True)
    status = Column(_status_enum(), primary_key=True)
    version = Column(Integer, default=0, nullable=False)

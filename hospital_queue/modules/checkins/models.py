import enum

from sqlalchemy import Column, DateTime, Enum, Integer, String
from sqlalchemy.orm import relationship

from ...database import Base, utcnow


class CheckInStatus(str, enum.Enum):
    ARRIVED = "Arrived"
    WITH_NURSE = "With Nurse"
    IN_ROOM = "In Room"
    COMPLETE = "Complete"
    CANCELLED = "Cancelled"


# Forward order of the visit; Cancelled sits outside it
CHECKIN_FLOW = [
    CheckInStatus.ARRIVED,
    CheckInStatus.WITH_NURSE,
    CheckInStatus.IN_ROOM,
    CheckInStatus.COMPLETE,
]
CHECKIN_TERMINAL = (CheckInStatus.COMPLETE, CheckInStatus.CANCELLED)


class CheckIn(Base):
    __tablename__ = "checkins"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String(64), index=True, nullable=False)
    appointment_id = Column(String(64), nullable=True)
    status = Column(
        Enum(CheckInStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=CheckInStatus.ARRIVED,
        nullable=False,
        index=True,
    )
    department = Column(String(100), nullable=True)
    receptionist_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    queue_entries = relationship("QueueEntry", back_populates="checkin")

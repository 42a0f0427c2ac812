import enum

from sqlalchemy import JSON, Column, DateTime, Enum, Float, Integer, String, Text

from ...database import Base, utcnow


class TriageCategory(str, enum.Enum):
    EMERGENCY = "Emergency"
    VERY_URGENT = "Very Urgent"
    URGENT = "Urgent"
    ROUTINE = "Routine"


# Board ordering: most severe first
CATEGORY_RANK = {
    TriageCategory.EMERGENCY: 1,
    TriageCategory.VERY_URGENT: 2,
    TriageCategory.URGENT: 3,
    TriageCategory.ROUTINE: 4,
}


class OpdStatus(str, enum.Enum):
    TRIAGE = "triage"
    CONSULTATION = "consultation"
    TREATMENT = "treatment"
    DISCHARGED = "discharged"


def _values(enum_cls):
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False)


class TriageAssessment(Base):
    __tablename__ = "triage_assessments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String(64), index=True, nullable=False)
    recorded_by = Column(String(64), nullable=True)
    mode = Column(String(10), nullable=False, default="Adult")

    # Vitals
    systolic = Column(Integer)
    diastolic = Column(Integer)
    heart_rate = Column(Integer)
    respiratory_rate = Column(Integer)
    temperature = Column(Float)
    spo2 = Column(Integer)
    avpu = Column(String(1))
    mobility = Column(String(30))

    chief_complaint = Column(Text, nullable=False)
    discriminators = Column(JSON, default=list)
    # Obstetric / trauma / pain context ("metadata" is reserved on declarative classes)
    clinical_context = Column("metadata", JSON, default=dict)

    category = Column(_values(TriageCategory), nullable=False)
    recorded_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class PatientTriageState(Base):
    """Quick-lookup mirror of a patient's latest triage category."""
    __tablename__ = "patient_triage_state"

    patient_id = Column(String(64), primary_key=True)
    triage_category = Column(_values(TriageCategory), nullable=True)
    current_status = Column(_values(OpdStatus), default=OpdStatus.TRIAGE, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

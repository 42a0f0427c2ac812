import enum
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import OpdStatus, TriageCategory


class TriageMode(str, enum.Enum):
    ADULT = "Adult"
    CHILD = "Child"


class TraumaType(str, enum.Enum):
    BLUNT = "blunt"
    PENETRATING = "penetrating"
    BURNS = "burns"
    FALL = "fall"
    RTA = "rta"
    OTHER = "other"


# Keys stored in the assessment's metadata bag
CONTEXT_FIELDS = (
    "pain_level", "is_pregnant", "pregnancy_weeks", "is_postpartum", "postpartum_days",
    "has_trauma", "trauma_type", "trauma_mechanism", "burns_percentage", "weight",
    "has_respiratory_distress", "has_chest_pain", "has_severe_bleeding",
    "height_cm", "blood_glucose", "capillary_refill", "muac_cm", "notes",
)


class TriageInput(BaseModel):
    """Everything the classifier looks at. Missing vitals are allowed."""
    mode: TriageMode = TriageMode.ADULT

    systolic: Optional[int] = Field(None, ge=50, le=260)
    diastolic: Optional[int] = Field(None, ge=30, le=160)
    heart_rate: Optional[int] = Field(None, ge=20, le=220)
    respiratory_rate: Optional[int] = Field(None, ge=5, le=60)
    temperature: Optional[float] = Field(None, ge=30, le=43)
    spo2: Optional[int] = Field(None, ge=50, le=100)
    avpu: Optional[Literal["A", "V", "P", "U"]] = None
    mobility: Optional[str] = Field(None, max_length=30)
    chief_complaint: Optional[str] = Field(None, max_length=500)

    pain_level: int = Field(0, ge=0, le=10)
    is_pregnant: bool = False
    pregnancy_weeks: Optional[int] = Field(None, ge=1, le=42)
    is_postpartum: bool = False
    postpartum_days: Optional[int] = Field(None, ge=0, le=42)
    has_trauma: bool = False
    trauma_type: Optional[TraumaType] = None
    trauma_mechanism: Optional[str] = Field(None, max_length=200)
    burns_percentage: Optional[float] = Field(None, ge=0, le=100)
    weight: Optional[float] = Field(None, ge=1, le=200)
    has_respiratory_distress: bool = False
    has_chest_pain: bool = False
    has_severe_bleeding: bool = False
    discriminators: List[str] = Field(default_factory=list)

    # Receptionist-capable measurements, stored but not scored
    height_cm: Optional[float] = Field(None, ge=30, le=230)
    blood_glucose: Optional[float] = Field(None, ge=1, le=40)
    capillary_refill: Optional[float] = Field(None, ge=0, le=10)
    muac_cm: Optional[float] = Field(None, ge=5, le=30)
    notes: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(frozen=True)

    def context(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", include=set(CONTEXT_FIELDS))


class TriageCreate(TriageInput):
    patient_id: str = Field(..., min_length=1, max_length=64)
    chief_complaint: str = Field(..., min_length=3, max_length=500)

    @field_validator("chief_complaint")
    def strip_complaint(cls, v):
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Chief complaint must have at least 3 characters.")
        return v

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={"example": {
            "patient_id": "P-000123", "mode": "Adult", "heart_rate": 118,
            "temperature": 38.9, "spo2": 96, "avpu": "A",
            "chief_complaint": "Fever and cough for three days", "pain_level": 4,
        }},
    )


class ClassificationResponse(BaseModel):
    category: TriageCategory
    reason: str


class TriageRecorded(BaseModel):
    id: int
    patient_id: str
    category: TriageCategory
    reason: str
    recorded_at: datetime


class TriageBoardRow(BaseModel):
    assessment_id: int
    patient_id: str
    patient_name: Optional[str] = None
    patient_number: Optional[str] = None
    triage_category: TriageCategory
    chief_complaint: str
    recorded_at: datetime
    avpu: Optional[str] = None
    temperature: Optional[float] = None
    heart_rate: Optional[int] = None
    systolic: Optional[int] = None
    diastolic: Optional[int] = None
    spo2: Optional[int] = None
    pain_level: int = 0
    status: OpdStatus


class OpdStatusUpdate(BaseModel):
    status: OpdStatus



class OpdStatusChanged(BaseModel):
    success: bool = True
    patient_id: str
    status: OpdStatus

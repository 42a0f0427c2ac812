"""
Deterministic triage decision tree.

Rules are grouped by category and checked from most to least severe; the
first rule that matches decides the category. Later groups are weaker
conditions, so their order matters. A missing vital never matches a rule.
"""
from typing import Callable, List, Optional, Tuple

from .models import TriageCategory
from .schemas import TraumaType, TriageInput, TriageMode

# Inclusive normal ranges per mode
HEART_RATE_RANGE = {TriageMode.ADULT: (40, 130), TriageMode.CHILD: (60, 160)}
RESPIRATORY_RATE_RANGE = {TriageMode.ADULT: (10, 30), TriageMode.CHILD: (15, 40)}

Rule = Tuple[str, Callable[[TriageInput], bool]]


def _below(value: Optional[float], limit: float) -> bool:
    return value is not None and value < limit


def _above(value: Optional[float], limit: float) -> bool:
    return value is not None and value > limit


def _at_least(value: Optional[float], limit: float) -> bool:
    return value is not None and value >= limit


def _outside(value: Optional[float], bounds: Tuple[float, float]) -> bool:
    low, high = bounds
    return _below(value, low) or _above(value, high)


def _trauma(t: TriageInput, kind: TraumaType) -> bool:
    return t.has_trauma and t.trauma_type == kind


EMERGENCY_RULES: List[Rule] = [
    ("unresponsive (AVPU U)", lambda t: t.avpu == "U"),
    ("oxygen saturation below 90%", lambda t: _below(t.spo2, 90)),
    ("severe active bleeding", lambda t: t.has_severe_bleeding),
    ("burns over 20% of body surface", lambda t: _above(t.burns_percentage, 20)),
]

VERY_URGENT_RULES: List[Rule] = [
    ("temperature 40°C or above", lambda t: _at_least(t.temperature, 40)),
    ("temperature below 35°C", lambda t: _below(t.temperature, 35)),
    ("heart rate outside normal range",
     lambda t: _outside(t.heart_rate, HEART_RATE_RANGE[t.mode])),
    ("systolic pressure below 90", lambda t: _below(t.systolic, 90)),
    ("systolic pressure above 180", lambda t: _above(t.systolic, 180)),
    ("respiratory distress", lambda t: t.has_respiratory_distress),
    ("respiratory rate outside normal range",
     lambda t: _outside(t.respiratory_rate, RESPIRATORY_RATE_RANGE[t.mode])),
    ("pregnant with chest pain", lambda t: t.is_pregnant and t.has_chest_pain),
    ("pregnant with respiratory distress",
     lambda t: t.is_pregnant and t.has_respiratory_distress),
    ("chest pain within 7 days postpartum",
     lambda t: t.is_postpartum and t.postpartum_days is not None
     and t.postpartum_days <= 7 and t.has_chest_pain),
    ("penetrating trauma", lambda t: _trauma(t, TraumaType.PENETRATING)),
    ("road traffic accident", lambda t: _trauma(t, TraumaType.RTA)),
]

URGENT_RULES: List[Rule] = [
    ("pain level 7 or above", lambda t: t.pain_level >= 7),
    ("chest pain", lambda t: t.has_chest_pain),
    ("burns over 10% of body surface",
     lambda t: _trauma(t, TraumaType.BURNS) and _above(t.burns_percentage, 10)),
    ("temperature 38.5°C or above", lambda t: _at_least(t.temperature, 38.5)),
    ("heart rate above 100", lambda t: _above(t.heart_rate, 100)),
]

DECISION_TREE: List[Tuple[TriageCategory, List[Rule]]] = [
    (TriageCategory.EMERGENCY, EMERGENCY_RULES),
    (TriageCategory.VERY_URGENT, VERY_URGENT_RULES),
    (TriageCategory.URGENT, URGENT_RULES),
]


def explain(assessment: TriageInput) -> Tuple[TriageCategory, str]:
    """Return the category and the rule that produced it."""
    for category, rules in DECISION_TREE:
        for reason, matches in rules:
            if matches(assessment):
                return category, reason
    return TriageCategory.ROUTINE, "no urgent findings"


def classify(assessment: TriageInput) -> TriageCategory:
    return explain(assessment)[0]

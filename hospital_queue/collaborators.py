"""
Interfaces to systems the queue core uses but does not own: patient and
staff directories, and the lane-change notification sink.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from .logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PatientCard:
    patient_id: str
    display_name: str
    patient_number: Optional[str] = None


@dataclass(frozen=True)
class StaffCard:
    staff_id: str
    display_name: str
    role: Optional[str] = None


class PatientDirectory(Protocol):
    def lookup(self, patient_id: str) -> Optional[PatientCard]: ...


class StaffDirectory(Protocol):
    def lookup(self, staff_id: str) -> Optional[StaffCard]: ...


class StaticDirectory:
    """Dictionary-backed directory; empty unless cards are passed in."""

    def __init__(self, cards: Optional[Dict[str, object]] = None):
        self._cards = dict(cards or {})

    def lookup(self, key: str):
        return self._cards.get(key)


@dataclass(frozen=True)
class LaneChange:
    department: str
    status: str
    entry_id: int
    action: str
    actor_id: Optional[str] = None


class LaneNotifier(Protocol):
    def lane_changed(self, change: LaneChange) -> None: ...


class LoggingNotifier:
    def lane_changed(self, change: LaneChange) -> None:
        logger.info(
            "lane %s/%s changed: entry=%s action=%s by=%s",
            change.department, change.status, change.entry_id, change.action, change.actor_id,
        )


def publish(notifier: LaneNotifier, change: LaneChange) -> None:
    """Deliver one change. Runs after commit, so a failure here is only logged."""
    try:
        notifier.lane_changed(change)
    except Exception:
        logger.exception("Lane notification failed for entry %s", change.entry_id)


# --- Defaults wired into the FastAPI dependencies ---
patient_directory = StaticDirectory()
staff_directory = StaticDirectory()
lane_notifier = LoggingNotifier()


def get_patient_directory() -> PatientDirectory:
    return patient_directory


def get_staff_directory() -> StaffDirectory:
    return staff_directory


def get_notifier() -> LaneNotifier:
    return lane_notifier

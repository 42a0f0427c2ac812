"""Caller identity passed explicitly into every core operation."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Header


@dataclass(frozen=True)
class Caller:
    staff_id: Optional[str] = None
    role: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.staff_id or 'anonymous'} ({self.role or 'unknown role'})"


SYSTEM = Caller(staff_id=None, role="system")


def get_caller(
    x_staff_id: Optional[str] = Header(None),
    x_staff_role: Optional[str] = Header(None),
) -> Caller:
    """Dependency: build the caller from headers set by the auth gateway."""
    return Caller(staff_id=x_staff_id, role=x_staff_role)

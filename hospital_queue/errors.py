"""
Typed failures raised by the queue and triage services.

Every error carries a stable ``code`` and a staff-readable ``detail``; the
HTTP layer turns them into JSON responses in ``main.py``.
"""
from typing import Any, Dict, Optional


class QueueError(Exception):
    code = "queue_error"
    status_code = 500
    retryable = False

    def __init__(
        self,
        detail: str,
        *,
        field: Optional[str] = None,
        current_status: Optional[str] = None,
    ):
        super().__init__(detail)
        self.detail = detail
        self.field = field
        self.current_status = current_status

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "detail": self.detail}
        if self.field is not None:
            body["field"] = self.field
        if self.current_status is not None:
            body["current_status"] = self.current_status
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(QueueError):
    """Malformed input, rejected before any mutation."""
    code = "validation_error"
    status_code = 400


class NotFoundError(QueueError):
    """Entry, check-in or reorder target is missing or outside the expected lane."""
    code = "not_found"
    status_code = 404


class ConflictError(QueueError):
    """The request is well formed but illegal for the current state."""
    code = "conflict"
    status_code = 409


class ConcurrencyError(QueueError):
    code = "concurrency_conflict"
    status_code = 409
    retryable = True


class InfrastructureError(QueueError):
    """Storage is unreachable. Reads are safe to retry; writes must be re-checked first."""
    code = "infrastructure_error"
    status_code = 503

    def __init__(self, detail: str, *, retryable: bool = False, **kwargs):
        super().__init__(detail, **kwargs)
        self.retryable = retryable

"""
Domain errors for admission control and the suggestion lifecycle.

Services raise these; api.main renders them as JSON with the mapped
status code. None of them is raised after a commit, so the caller's
transaction is always rolled back.
"""

from datetime import datetime
from typing import Any


class DomainError(Exception):
    status_code = 400
    code = "domain_error"
    message = "Request could not be processed"

    def __init__(self, message: str | None = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        for key, value in self.extra.items():
            payload[key] = value.isoformat() if isinstance(value, datetime) else value
        return payload


# ─── Admission ──────────────────────────────────────────────────────────────


class AlreadyInFlight(DomainError):
    status_code = 409
    code = "already_in_flight"
    message = "An analysis is already pending or processing for this user"


class RateLimited(DomainError):
    status_code = 429
    code = "rate_limited"
    message = "Please wait before requesting a new analysis"

    def __init__(self, next_available_at: datetime, message: str | None = None):
        super().__init__(message, next_available_at=next_available_at)
        self.next_available_at = next_available_at


class InsufficientCredits(DomainError):
    status_code = 402
    code = "insufficient_credits"
    message = "Not enough credits"


class DispatchFailed(DomainError):
    status_code = 503
    code = "dispatch_failed"
    message = "Analysis could not be queued; the credit was refunded"


# ─── Lifecycle / validation ─────────────────────────────────────────────────


class InvalidTransition(DomainError):
    status_code = 409
    code = "invalid_transition"
    message = "Status transition not allowed"


class InvalidStepIndex(DomainError):
    status_code = 422
    code = "invalid_step_index"
    message = "step_index does not reference a recommended action"


class InvalidStepReference(DomainError):
    status_code = 422
    code = "invalid_step_reference"
    message = "Step does not belong to this suggestion"


class CannotDeleteSystemStep(DomainError):
    status_code = 422
    code = "cannot_delete_system_step"
    message = "Only custom steps can be deleted"


class SystemStepImmutable(DomainError):
    status_code = 422
    code = "system_step_immutable"
    message = "Only custom steps can be edited"


class ValidationFailed(DomainError):
    status_code = 422
    code = "validation_failed"
    message = "Invalid input"


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"
    message = "You do not have access to this resource"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"
    message = "Resource not found"

# app/core/exceptions.py
"""
Error taxonomy for the scheduling core.
Services raise these; app.main maps them to HTTP responses and Celery tasks
decide from the type whether a retry makes sense.
"""
from typing import Optional


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""

    status_code = 500
    error_code = "scheduling_error"
    retryable = False

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__doc__ or self.error_code)
        self.message = message or (self.__class__.__doc__ or "").strip()
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.error_code, "detail": self.message}


class ValidationError(SchedulingError):
    """Request input is malformed or references unusable data."""

    status_code = 400
    error_code = "validation_error"


class NotFound(SchedulingError):
    """Requested record does not exist for this business."""

    status_code = 404
    error_code = "not_found"


class SlotUnavailable(SchedulingError):
    """The requested time slot is no longer available."""

    status_code = 409
    error_code = "slot_unavailable"


class InvalidTransition(SchedulingError):
    """Appointment status change is not allowed from the current status."""

    status_code = 409
    error_code = "invalid_transition"

    def __init__(self, current_status: str, new_status: str):
        super().__init__(
            f"Cannot change appointment status from '{current_status}' to '{new_status}'",
            current_status=current_status,
            new_status=new_status,
        )
        self.current_status = current_status
        self.new_status = new_status


class NotConnected(SchedulingError):
    """No usable calendar connection for this business or staff member."""

    status_code = 409
    error_code = "calendar_not_connected"

    def __init__(self, reason: str = "not connected", **context):
        super().__init__(reason, **context)
        self.reason = reason


class ProviderError(SchedulingError):
    """Calendar provider request failed; safe to retry."""

    status_code = 502
    error_code = "provider_error"
    retryable = True

    def __init__(self, message: str, status: Optional[int] = None, **context):
        super().__init__(message, **context)
        self.status = status


class TokenRefreshFailed(SchedulingError):
    """Calendar authorization was revoked; the account must be reconnected."""

    status_code = 409
    error_code = "calendar_reconnect_required"


class LockTimeout(SchedulingError):
    """Timed out waiting for a concurrent operation on the same record."""

    status_code = 503
    error_code = "busy"
    retryable = True

from __future__ import annotations

from typing import Any

from fastapi import status


class SchedulingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "scheduling_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Expired(SchedulingError):
    status_code = status.HTTP_410_GONE
    code = "expired"


class AlreadyUsed(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_used"


class BookingConflict(AlreadyUsed):
    """The conditional state flip matched no row: another request won the race."""

    code = "booking_conflict"


class OutOfRange(SchedulingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "out_of_range"


class ConflictDetected(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict_detected"


class SchedulingValidationError(SchedulingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class UpstreamUnavailable(SchedulingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "upstream_unavailable"


class Forbidden(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"

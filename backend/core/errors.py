"""Scheduling error kinds.

Every rejected availability, booking or lifecycle request raises one of these.
They are expected outcomes that the HTTP layer reports back to the caller with
a stable ``code`` so clients can tell "re-poll slots" apart from "pick another
day".
"""

from typing import Any

from fastapi import HTTPException, status


class SchedulingError(Exception):
    """Base class for all recoverable scheduling failures."""

    code = 'scheduling_error'
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                'code': self.code,
                'message': self.message,
                'details': self.details,
            },
        )


class InvalidDate(SchedulingError):
    """Date is in the past or beyond the booking horizon."""

    code = 'invalid_date'


class NoAvailability(SchedulingError):
    """Counselor has no enabled window covering the requested time."""

    code = 'no_availability'
    status_code = status.HTTP_409_CONFLICT


class SlotMisaligned(SchedulingError):
    code = 'slot_misaligned'


class SlotUnavailable(SchedulingError):
    """Another active appointment holds the slot, including a lost commit race."""

    code = 'slot_unavailable'
    status_code = status.HTTP_409_CONFLICT


class CapacityExceeded(SchedulingError):
    code = 'capacity_exceeded'
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(SchedulingError):
    code = 'invalid_transition'
    status_code = status.HTTP_409_CONFLICT


class Unauthorized(SchedulingError):
    code = 'unauthorized'
    status_code = status.HTTP_403_FORBIDDEN


class InvalidRating(SchedulingError):
    code = 'invalid_rating'


class InvalidAvailability(SchedulingError):
    code = 'invalid_availability'


class NotFound(SchedulingError):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND

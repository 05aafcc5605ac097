"""Exceptions raised by the scheduling services.

Every error carries the HTTP status it maps to and a short machine-readable
code; the API layer renders them as ``{"error": code, "message": text}``.
"""

from fastapi import status


class SchedulingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = 'scheduling_error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    error_code = 'validation_error'


class InvalidRecurrenceError(ValidationError):
    error_code = 'invalid_recurrence'


class OverlappingTemplateError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    error_code = 'overlapping_template'


class TemplateNotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = 'template_not_found'


class SlotFullError(SchedulingError):
    error_code = 'slot_full'


class SlotNotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = 'slot_not_found'


class PastSlotBookingError(SchedulingError):
    error_code = 'past_slot'


class ConcurrencyConflictError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    error_code = 'concurrency_conflict'


class BookingNotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = 'booking_not_found'


class InvalidBookingTransitionError(ValidationError):
    status_code = status.HTTP_409_CONFLICT
    error_code = 'invalid_booking_transition'


class BlackoutNotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = 'blackout_not_found'

"""Booking lifecycle events handed to the notification layer."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from clinic_scheduling.models.booking import Booking

logger = logging.getLogger(__name__)

BOOKING_CREATED = 'booking.created'
BOOKING_CANCELLED = 'booking.cancelled'
BOOKING_RESCHEDULED = 'booking.rescheduled'
BOOKING_COMPLETED = 'booking.completed'
BOOKING_NO_SHOW = 'booking.no_show'


@dataclass(frozen=True)
class BookingEvent:
    event_type: str
    booking_id: int
    patient_id: int
    provider_id: int
    slot_id: int
    start_time: datetime
    previous_booking_id: int | None = None
    occurred_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_booking(cls, event_type: str, booking: Booking) -> 'BookingEvent':
        return cls(
            event_type=event_type,
            booking_id=booking.id,
            patient_id=booking.patient_id,
            provider_id=booking.provider_id,
            slot_id=booking.slot_id,
            start_time=booking.start_time,
            previous_booking_id=booking.previous_booking_id,
        )


EventHandler = Callable[[BookingEvent], None]


def log_event(event: BookingEvent) -> None:
    logger.info(
        '%s: booking %s (patient %s, provider %s, slot %s at %s)',
        event.event_type,
        event.booking_id,
        event.patient_id,
        event.provider_id,
        event.slot_id,
        event.start_time.isoformat(),
    )


class BookingEventPublisher:
    """Fans events out to subscribed handlers once the booking is committed.

    A handler that raises is logged and skipped; it never affects the booking.
    """

    def __init__(self, handlers: list[EventHandler] | None = None):
        self._handlers: list[EventHandler] = list(handlers) if handlers is not None else [log_event]

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def publish(self, event_type: str, booking: Booking) -> BookingEvent:
        event = BookingEvent.from_booking(event_type, booking)
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                logger.exception('Booking event handler %r failed for %s', handler, event_type)
        return event


default_publisher = BookingEventPublisher()

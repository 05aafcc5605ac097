"""Booking service: availability queries, booking, cancellation and rescheduling.

Each public operation runs as one short transaction on the request's session.
Slot capacity is only ever touched through the ledger, and booking status
changes are conditional updates guarded on the expected current status.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core import config
from clinic_scheduling.models.booking import Booking, BookingPriority, BookingStatus, ConsultationType
from clinic_scheduling.models.slot import SlotInstance
from clinic_scheduling.scheduling import ledger
from clinic_scheduling.scheduling.blackouts import is_blacked_out
from clinic_scheduling.scheduling.errors import (
    BookingNotFoundError,
    ConcurrencyConflictError,
    InvalidBookingTransitionError,
    PastSlotBookingError,
    SchedulingError,
    SlotFullError,
    SlotNotFoundError,
    ValidationError,
)
from clinic_scheduling.scheduling.events import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CREATED,
    BOOKING_NO_SHOW,
    BOOKING_RESCHEDULED,
    BookingEventPublisher,
    default_publisher,
)
from clinic_scheduling.scheduling.materializer import find_slot_by_start, get_slot, materialize, working_windows
from clinic_scheduling.scheduling.templates import resolve_template

logger = logging.getLogger(__name__)

T = TypeVar('T')

MAX_REASON_LENGTH = 600


def _choice(enum_type, value: str, label: str) -> str:
    try:
        return enum_type(value.strip().lower()).value
    except (AttributeError, ValueError) as exc:
        raise ValidationError(f'Invalid {label}: {value!r}.') from exc


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if len(normalized) > MAX_REASON_LENGTH:
        raise ValidationError(f'Text fields must be {MAX_REASON_LENGTH} characters or fewer.')
    return normalized or None


def to_server_time(value: datetime) -> datetime:
    """Slot columns hold naive server-local times; aware inputs are converted first."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


@dataclass
class ScheduleConflicts:
    """What stands in the way of seeing a provider during a proposed window."""
    bookings: list[Booking] = field(default_factory=list)
    outside_hours: bool = False
    during_break: bool = False
    blacked_out: bool = False

    @property
    def has_conflicts(self) -> bool:
        return bool(self.bookings) or self.outside_hours or self.during_break or self.blacked_out


class BookingService:
    def __init__(
        self,
        db: AsyncSession,
        publisher: BookingEventPublisher | None = None,
        now: Callable[[], datetime] = datetime.now,
        retry_attempts: int | None = None,
    ):
        self.db = db
        self.publisher = publisher or default_publisher
        self.now = now
        self.retry_attempts = retry_attempts or config.LEDGER_RETRY_ATTEMPTS

    async def _run_in_transaction(
        self,
        work: Callable[[], Awaitable[T]],
        exhausted: Callable[[], SchedulingError],
    ) -> T:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                result = await work()
                await self.db.commit()
                return result
            except (ConcurrencyConflictError, OperationalError):
                await self.db.rollback()
                logger.warning('Concurrent update conflict (attempt %s of %s)', attempt, self.retry_attempts)
            except Exception:
                await self.db.rollback()
                raise
        raise exhausted()

    def _ensure_future(self, slot: SlotInstance) -> None:
        if slot.start_time <= self.now():
            raise PastSlotBookingError('Appointments must be booked in a slot that has not started yet.')

    async def _transition(self, booking_id: int, target: BookingStatus, **values) -> bool:
        result = await ledger.guarded_execute(
            self.db,
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.BOOKED.value)
            .values(status=target.value, **values),
        )
        return result.rowcount == 1

    async def get_booking(self, booking_id: int) -> Booking:
        booking = await self.db.get(Booking, booking_id, populate_existing=True)
        if booking is None:
            raise BookingNotFoundError(f'Booking {booking_id} not found.')
        return booking

    async def get_available_slots(
        self,
        provider_id: int,
        on_date: date,
        duration_minutes: int | None = None,
    ) -> list[SlotInstance]:
        if duration_minutes is not None and duration_minutes <= 0:
            raise ValidationError('Duration must be a positive number of minutes.')

        slots = await materialize(self.db, provider_id, on_date, on_date)
        return [
            slot
            for slot in slots
            if slot.is_available
            and slot.capacity > slot.booked_count
            and (duration_minutes is None or slot.duration_minutes == duration_minutes)
        ]

    async def check_conflicts(
        self,
        provider_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: int | None = None,
    ) -> ScheduleConflicts:
        """Report what clashes with seeing ``provider_id`` from start to end.

        Overlapping active bookings are listed, except ``exclude_booking_id``
        (the booking being moved). The window is also checked against the
        governing template's hours and break, and against blackout dates.
        """
        start_time = to_server_time(start_time)
        end_time = to_server_time(end_time)
        if start_time >= end_time:
            raise ValidationError('Start time must be before end time.')

        query = select(Booking).where(
            Booking.provider_id == provider_id,
            Booking.status == BookingStatus.BOOKED.value,
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )
        if exclude_booking_id is not None:
            query = query.where(Booking.id != exclude_booking_id)
        query = query.order_by(Booking.start_time.asc())
        conflicts = ScheduleConflicts(
            bookings=list((await self.db.scalars(query.execution_options(populate_existing=True))).all()),
        )

        on_date = start_time.date()
        conflicts.blacked_out = await is_blacked_out(self.db, provider_id, on_date)

        template = await resolve_template(self.db, provider_id, on_date)
        if template is None or end_time.date() != on_date:
            conflicts.outside_hours = True
            return conflicts

        windows = working_windows(template, on_date)
        conflicts.outside_hours = start_time < windows[0][0] or end_time > windows[-1][1]
        if template.has_break:
            break_start, break_end = windows[0][1], windows[1][0]
            conflicts.during_break = start_time < break_end and end_time > break_start
        return conflicts

    async def book_consultation(
        self,
        doctor_id: int,
        patient_id: int,
        appointment_date: datetime,
        duration: int | None = None,
        consultation_type: str = ConsultationType.SCHEDULED.value,
        priority: str = BookingPriority.MEDIUM.value,
        reason: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        start_time = to_server_time(appointment_date).replace(second=0, microsecond=0)
        await materialize(self.db, doctor_id, start_time.date(), start_time.date())

        slot = await find_slot_by_start(self.db, doctor_id, start_time)
        if slot is None:
            raise SlotNotFoundError(f'Doctor {doctor_id} has no slot starting at {start_time.isoformat()}.')

        if duration is not None and duration != slot.duration_minutes:
            raise ValidationError(
                f'Requested duration of {duration} minutes does not match the '
                f'{slot.duration_minutes}-minute slot.'
            )

        return await self.book_slot(
            slot.id,
            patient_id,
            consultation_type=consultation_type,
            priority=priority,
            reason=reason,
            notes=notes,
        )

    async def book_slot(
        self,
        slot_id: int,
        patient_id: int,
        consultation_type: str = ConsultationType.SCHEDULED.value,
        priority: str = BookingPriority.MEDIUM.value,
        reason: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        consultation_type = _choice(ConsultationType, consultation_type, 'consultation type')
        priority = _choice(BookingPriority, priority, 'priority')
        reason = _clean_text(reason)
        notes = _clean_text(notes)

        slot = await get_slot(self.db, slot_id)
        self._ensure_future(slot)
        provider_id, start_time, end_time = slot.provider_id, slot.start_time, slot.end_time

        async def work() -> Booking:
            await ledger.reserve(self.db, slot_id)
            booking = Booking(
                slot_id=slot_id,
                patient_id=patient_id,
                provider_id=provider_id,
                status=BookingStatus.BOOKED.value,
                consultation_type=consultation_type,
                priority=priority,
                reason=reason,
                notes=notes,
                start_time=start_time,
                end_time=end_time,
                created_at=self.now(),
            )
            self.db.add(booking)
            await self.db.flush()
            return booking

        booking = await self._run_in_transaction(
            work,
            lambda: SlotFullError(f'Slot {slot_id} could not be reserved; please pick another time.'),
        )
        logger.info('Patient %s booked slot %s (booking %s)', patient_id, slot_id, booking.id)
        self.publisher.publish(BOOKING_CREATED, booking)
        return booking

    async def cancel(self, booking_id: int, actor_id: int, reason: str) -> Booking:
        reason = _clean_text(reason)
        if not reason:
            raise ValidationError('A reason is required to cancel a booking.')

        booking = await self.get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED.value:
            logger.warning('Booking %s is already cancelled; ignoring repeated cancel by %s', booking_id, actor_id)
            return booking
        slot_id = booking.slot_id

        async def work() -> bool:
            cancelled = await self._transition(
                booking_id,
                BookingStatus.CANCELLED,
                cancel_reason=reason,
                cancelled_by=actor_id,
                cancelled_at=self.now(),
            )
            if cancelled:
                await ledger.release(self.db, slot_id)
            return cancelled

        cancelled = await self._run_in_transaction(
            work,
            lambda: ConcurrencyConflictError(f'Booking {booking_id} is busy; please retry the cancellation.'),
        )
        booking = await self.get_booking(booking_id)

        if not cancelled:
            if booking.status == BookingStatus.CANCELLED.value:
                logger.warning('Booking %s was cancelled concurrently; nothing to release', booking_id)
                return booking
            raise InvalidBookingTransitionError(f'Cannot cancel a booking with status {booking.status}.')

        logger.info('Booking %s cancelled by %s', booking_id, actor_id)
        self.publisher.publish(BOOKING_CANCELLED, booking)
        return booking

    async def reschedule(self, booking_id: int, new_slot_id: int) -> Booking:
        """Move a booking to another slot of the same provider.

        The original booking becomes RESCHEDULED and a new BOOKED booking that
        points back at it is returned. If the new slot cannot take the booking
        nothing changes.
        """
        booking = await self.get_booking(booking_id)
        if booking.status != BookingStatus.BOOKED.value:
            raise InvalidBookingTransitionError(f'Cannot reschedule a booking with status {booking.status}.')

        if new_slot_id == booking.slot_id:
            raise ValidationError('The booking already occupies this slot.')

        new_slot = await get_slot(self.db, new_slot_id)
        if new_slot.provider_id != booking.provider_id:
            raise ValidationError('Bookings can only be rescheduled to a slot of the same doctor.')
        self._ensure_future(new_slot)

        old_slot_id = booking.slot_id
        carried = {
            'patient_id': booking.patient_id,
            'provider_id': booking.provider_id,
            'consultation_type': booking.consultation_type,
            'priority': booking.priority,
            'reason': booking.reason,
            'notes': booking.notes,
            'start_time': new_slot.start_time,
            'end_time': new_slot.end_time,
        }

        async def work() -> Booking:
            await ledger.reserve(self.db, new_slot_id)
            if not await self._transition(booking_id, BookingStatus.RESCHEDULED, cancelled_at=self.now()):
                raise InvalidBookingTransitionError(f'Booking {booking_id} is no longer active.')
            await ledger.release(self.db, old_slot_id)

            replacement = Booking(
                slot_id=new_slot_id,
                status=BookingStatus.BOOKED.value,
                previous_booking_id=booking_id,
                **carried,
                created_at=self.now(),
            )
            self.db.add(replacement)
            await self.db.flush()
            return replacement

        replacement = await self._run_in_transaction(
            work,
            lambda: SlotFullError(f'Slot {new_slot_id} could not be reserved; please pick another time.'),
        )
        logger.info('Booking %s rescheduled to slot %s as booking %s', booking_id, new_slot_id, replacement.id)
        self.publisher.publish(BOOKING_RESCHEDULED, replacement)
        return replacement

    async def _close(self, booking_id: int, target: BookingStatus, event_type: str) -> Booking:
        booking = await self.get_booking(booking_id)
        if booking.status != BookingStatus.BOOKED.value:
            raise InvalidBookingTransitionError(f'Cannot mark a booking with status {booking.status} as {target.value}.')

        async def work() -> bool:
            return await self._transition(booking_id, target, completed_at=self.now())

        closed = await self._run_in_transaction(
            work,
            lambda: ConcurrencyConflictError(f'Booking {booking_id} is busy; please retry.'),
        )
        booking = await self.get_booking(booking_id)
        if not closed:
            raise InvalidBookingTransitionError(f'Cannot mark a booking with status {booking.status} as {target.value}.')

        self.publisher.publish(event_type, booking)
        return booking

    async def complete(self, booking_id: int) -> Booking:
        return await self._close(booking_id, BookingStatus.COMPLETED, BOOKING_COMPLETED)

    async def mark_no_show(self, booking_id: int) -> Booking:
        return await self._close(booking_id, BookingStatus.NO_SHOW, BOOKING_NO_SHOW)

    async def list_patient_bookings(self, patient_id: int) -> list[Booking]:
        query = select(Booking).where(Booking.patient_id == patient_id).order_by(Booking.start_time.asc())
        result = await self.db.scalars(query.execution_options(populate_existing=True))
        return list(result.all())

    async def list_provider_bookings(self, provider_id: int, start_date: date, end_date: date) -> list[Booking]:
        query = select(Booking).where(
            Booking.provider_id == provider_id,
            Booking.start_time >= datetime.combine(start_date, datetime.min.time()),
            Booking.start_time <= datetime.combine(end_date, datetime.max.time()),
        ).order_by(Booking.start_time.asc())
        result = await self.db.scalars(query.execution_options(populate_existing=True))
        return list(result.all())

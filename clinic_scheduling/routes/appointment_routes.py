from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.auth.dependencies import (
    get_current_user,
    is_admin,
    require_patient_access,
    require_provider_access,
)
from clinic_scheduling.core import config
from clinic_scheduling.database import get_db
from clinic_scheduling.models.booking import Booking, BookingPriority, ConsultationType
from clinic_scheduling.models.user import User
from clinic_scheduling.scheduling import materializer
from clinic_scheduling.scheduling.booking_service import MAX_REASON_LENGTH, BookingService, to_server_time
from clinic_scheduling.scheduling.errors import ValidationError
from clinic_scheduling.schemas import BookingResponse, CamelModel, SlotDetailResponse, SlotSummaryResponse

router = APIRouter(tags=['appointments'])

CONSULTATION_TYPES = {consultation_type.value for consultation_type in ConsultationType}
PRIORITIES = {priority.value for priority in BookingPriority}


def get_booking_service(db: AsyncSession = Depends(get_db)) -> BookingService:
    return BookingService(db)


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_REASON_LENGTH:
        raise ValueError(f'Text must be {MAX_REASON_LENGTH} characters or fewer.')

    return normalized


class SlotsMeta(CamelModel):
    total_slots: int
    available_slots: int


class AvailableSlotsResponse(CamelModel):
    slots: list[SlotSummaryResponse]
    meta: SlotsMeta


class GenerateSlotsRequest(CamelModel):
    doctor_id: int
    start_date: date
    end_date: date

    @model_validator(mode='after')
    def validate_range(self) -> 'GenerateSlotsRequest':
        if self.start_date > self.end_date:
            raise ValueError('Start date must not be after end date.')
        return self


class GenerateSlotsResponse(CamelModel):
    doctor_id: int
    start_date: date
    end_date: date
    total_slots: int
    slots: list[SlotDetailResponse]


class UpdateSlotRequest(CamelModel):
    capacity: int | None = Field(default=None, ge=1)
    is_available: bool | None = None
    notes: str | None = None


class CalendarResponse(CamelModel):
    doctor_id: int
    start_date: date
    end_date: date
    slots: list[SlotDetailResponse]
    bookings: list[BookingResponse]


class BookConsultationRequest(CamelModel):
    doctor_id: int
    patient_id: int
    appointment_date: datetime
    duration: int | None = Field(default=None, gt=0)
    consultation_type: str = ConsultationType.SCHEDULED.value
    priority: str = BookingPriority.MEDIUM.value
    reason: str | None = None
    notes: str | None = None

    @field_validator('appointment_date')
    @classmethod
    def validate_appointment_date(cls, value: datetime) -> datetime:
        return to_server_time(value)

    @field_validator('consultation_type')
    @classmethod
    def validate_consultation_type(cls, value: str) -> str:
        normalized = value.strip().lower().replace('-', '_')
        if normalized not in CONSULTATION_TYPES:
            raise ValueError('Invalid consultation type.')
        return normalized

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in PRIORITIES:
            raise ValueError('Invalid priority.')
        return normalized

    @field_validator('reason', 'notes')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class CancelBookingRequest(CamelModel):
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = _normalize_text(value)
        if not normalized:
            raise ValueError('A cancellation reason is required.')
        return normalized


class RescheduleBookingRequest(CamelModel):
    new_slot_id: int


class ConflictingBooking(CamelModel):
    id: int
    start_time: datetime
    end_time: datetime


class ConflictCheckResponse(CamelModel):
    doctor_id: int
    start_time: datetime
    end_time: datetime
    has_conflicts: bool
    conflicts: list[ConflictingBooking]
    outside_hours: bool
    during_break: bool
    blacked_out: bool


def _require_booking_party(user: User, booking: Booking) -> None:
    if is_admin(user) or user.id in (booking.patient_id, booking.provider_id):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only the patient, the doctor or an admin can change this appointment.',
    )


@router.get('/slots/available', response_model=AvailableSlotsResponse)
async def list_available_slots(
    doctor_id: int = Query(..., alias='doctorId'),
    slot_date: date = Query(..., alias='date'),
    duration: int | None = Query(default=None, gt=0),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    del current_user
    available = await service.get_available_slots(doctor_id, slot_date, duration)
    day_slots = await materializer.list_calendar(service.db, doctor_id, slot_date, slot_date)
    now = service.now()
    slots = [
        SlotSummaryResponse(
            id=slot.id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            available=slot.start_time > now,
        )
        for slot in available
    ]

    return AvailableSlotsResponse(
        slots=slots,
        meta=SlotsMeta(
            total_slots=len(day_slots),
            available_slots=sum(1 for slot in slots if slot.available),
        ),
    )


@router.post('/slots/generate', response_model=GenerateSlotsResponse, status_code=status.HTTP_201_CREATED)
async def generate_slots(
    data: GenerateSlotsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_provider_access(current_user, data.doctor_id)

    if (data.end_date - data.start_date).days + 1 > config.SLOT_GENERATION_HORIZON_DAYS:
        raise ValidationError(
            f'Slots can be generated for at most {config.SLOT_GENERATION_HORIZON_DAYS} days at a time.'
        )

    slots = await materializer.materialize(db, data.doctor_id, data.start_date, data.end_date)
    return GenerateSlotsResponse(
        doctor_id=data.doctor_id,
        start_date=data.start_date,
        end_date=data.end_date,
        total_slots=len(slots),
        slots=[SlotDetailResponse.model_validate(slot) for slot in slots],
    )


@router.patch('/slots/{slot_id}', response_model=SlotDetailResponse)
async def update_slot(
    slot_id: int,
    data: UpdateSlotRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    slot = await materializer.get_slot(db, slot_id)
    require_provider_access(current_user, slot.provider_id)
    return await materializer.update_slot(
        db,
        slot_id,
        capacity=data.capacity,
        is_available=data.is_available,
        notes=data.notes,
    )


@router.get('/calendar/doctor/{doctor_id}', response_model=CalendarResponse)
async def doctor_calendar(
    doctor_id: int,
    start_date: date = Query(..., alias='startDate'),
    end_date: date = Query(..., alias='endDate'),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_provider_access(current_user, doctor_id)

    if start_date > end_date:
        raise ValidationError('Start date must not be after end date.')

    slots = await materializer.list_calendar(service.db, doctor_id, start_date, end_date)
    bookings = await service.list_provider_bookings(doctor_id, start_date, end_date)
    return CalendarResponse(
        doctor_id=doctor_id,
        start_date=start_date,
        end_date=end_date,
        slots=[SlotDetailResponse.model_validate(slot) for slot in slots],
        bookings=[BookingResponse.model_validate(booking) for booking in bookings],
    )


@router.get('/conflicts', response_model=ConflictCheckResponse)
async def check_conflicts(
    doctor_id: int = Query(..., alias='doctorId'),
    start_time: datetime = Query(..., alias='startTime'),
    end_time: datetime | None = Query(default=None, alias='endTime'),
    duration: int = Query(default=30, ge=10, le=180),
    exclude_booking_id: int | None = Query(default=None, alias='excludeBookingId'),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    del current_user
    start_time = to_server_time(start_time)
    end_time = to_server_time(end_time) if end_time else start_time + timedelta(minutes=duration)

    conflicts = await service.check_conflicts(doctor_id, start_time, end_time, exclude_booking_id)
    return ConflictCheckResponse(
        doctor_id=doctor_id,
        start_time=start_time,
        end_time=end_time,
        has_conflicts=conflicts.has_conflicts,
        conflicts=[
            ConflictingBooking(id=booking.id, start_time=booking.start_time, end_time=booking.end_time)
            for booking in conflicts.bookings
        ],
        outside_hours=conflicts.outside_hours,
        during_break=conflicts.during_break,
        blacked_out=conflicts.blacked_out,
    )


@router.post('/book', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book_consultation(
    data: BookConsultationRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_patient_access(current_user, data.patient_id)
    return await service.book_consultation(
        doctor_id=data.doctor_id,
        patient_id=data.patient_id,
        appointment_date=data.appointment_date,
        duration=data.duration,
        consultation_type=data.consultation_type,
        priority=data.priority,
        reason=data.reason,
        notes=data.notes,
    )


@router.get('/patient/{patient_id}', response_model=list[BookingResponse])
async def list_patient_bookings(
    patient_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    require_patient_access(current_user, patient_id)
    return await service.list_patient_bookings(patient_id)


@router.get('/{booking_id}', response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    _require_booking_party(current_user, booking)
    return booking


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    data: CancelBookingRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    _require_booking_party(current_user, booking)
    return await service.cancel(booking_id, actor_id=current_user.id, reason=data.reason)


@router.post('/{booking_id}/reschedule', response_model=BookingResponse)
async def reschedule_booking(
    booking_id: int,
    data: RescheduleBookingRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    _require_booking_party(current_user, booking)
    return await service.reschedule(booking_id, data.new_slot_id)


@router.post('/{booking_id}/complete', response_model=BookingResponse)
async def complete_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    require_provider_access(current_user, booking.provider_id)
    return await service.complete(booking_id)


@router.post('/{booking_id}/no-show', response_model=BookingResponse)
async def mark_no_show(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    require_provider_access(current_user, booking.provider_id)
    return await service.mark_no_show(booking_id)

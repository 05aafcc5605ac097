from datetime import date, datetime, time, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError as RequestValidationError

from clinic_scheduling.core import config
from clinic_scheduling.models.user import User
from clinic_scheduling.routes import appointment_routes
from clinic_scheduling.routes.appointment_routes import (
    BookConsultationRequest,
    CancelBookingRequest,
    GenerateSlotsRequest,
    RescheduleBookingRequest,
    UpdateSlotRequest,
)
from clinic_scheduling.scheduling import templates
from clinic_scheduling.scheduling.booking_service import BookingService
from clinic_scheduling.scheduling.errors import ValidationError
from clinic_scheduling.scheduling.events import BookingEventPublisher
from clinic_scheduling.schemas import BookingResponse

MONDAY = date(2030, 1, 7)
DOCTOR = User(id=10, email='doctor@clinic.test', role='doctor')
OTHER_DOCTOR = User(id=11, email='other@clinic.test', role='doctor')
PATIENT = User(id=42, email='patient@example.test', role='patient')
OTHER_PATIENT = User(id=43, email='someone@example.test', role='patient')
ADMIN = User(id=1, email='admin@clinic.test', role='admin')


def _service(db, now=datetime(2030, 1, 1, 8, 0)) -> BookingService:
    return BookingService(db, publisher=BookingEventPublisher(handlers=[]), now=lambda: now)


def _book_request(**overrides) -> BookConsultationRequest:
    payload = {
        'doctorId': 10,
        'patientId': 42,
        'appointmentDate': '2030-01-07T09:30:00',
        'duration': 30,
        'consultationType': 'scheduled',
        'priority': 'medium',
    }
    payload.update(overrides)
    return BookConsultationRequest.model_validate(payload)


def test_book_request_normalizes_camel_case_payload() -> None:
    request = _book_request(consultationType=' Second-Opinion ', priority=' HIGH ', reason='  ', notes=' Bring labs ')

    assert request.doctor_id == 10
    assert request.appointment_date == datetime(2030, 1, 7, 9, 30)
    assert request.consultation_type == 'second_opinion'
    assert request.priority == 'high'
    assert request.reason is None
    assert request.notes == 'Bring labs'


@pytest.mark.parametrize(
    'overrides',
    [
        {'consultationType': 'house_call'},
        {'priority': 'whenever'},
        {'duration': 0},
        {'notes': 'x' * 601},
    ],
)
def test_book_request_rejects_invalid_fields(overrides: dict) -> None:
    with pytest.raises(RequestValidationError):
        _book_request(**overrides)


def test_cancel_request_requires_reason() -> None:
    with pytest.raises(RequestValidationError):
        CancelBookingRequest.model_validate({'reason': '   '})


def test_generate_request_rejects_inverted_range() -> None:
    with pytest.raises(RequestValidationError):
        GenerateSlotsRequest.model_validate({'doctorId': 10, 'startDate': '2030-01-08', 'endDate': '2030-01-07'})


def test_available_slots_returns_slots_and_meta(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            service = _service(db)
            await service.book_consultation(doctor_id=10, patient_id=42, appointment_date=datetime(2030, 1, 7, 9, 0))
            return await appointment_routes.list_available_slots(
                doctor_id=10,
                slot_date=MONDAY,
                duration=30,
                current_user=PATIENT,
                service=service,
            )

    response = run_db(scenario)
    payload = response.model_dump(by_alias=True)

    assert payload['meta'] == {'totalSlots': 6, 'availableSlots': 5}
    assert payload['slots'][0]['startTime'] == datetime(2030, 1, 7, 9, 30)
    assert set(payload['slots'][0]) == {'id', 'startTime', 'endTime', 'available'}
    assert all(slot['available'] for slot in payload['slots'])


def test_book_route_returns_booking_for_own_patient(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            booking = await appointment_routes.book_consultation(
                data=_book_request(),
                current_user=PATIENT,
                service=_service(db),
            )
            return BookingResponse.model_validate(booking).model_dump(by_alias=True)

    payload = run_db(scenario)

    assert payload['patientId'] == 42
    assert payload['providerId'] == 10
    assert payload['status'] == 'booked'
    assert payload['startTime'] == datetime(2030, 1, 7, 9, 30)
    assert payload['previousBookingId'] is None


def test_book_route_forbids_booking_for_another_patient(run_db) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            with pytest.raises(HTTPException) as exception_info:
                await appointment_routes.book_consultation(
                    data=_book_request(),
                    current_user=OTHER_PATIENT,
                    service=_service(db),
                )
            return exception_info.value

    error = run_db(scenario)

    assert error.status_code == 403
    assert error.detail == 'Patients can only act on their own appointments.'


def test_cancel_and_reschedule_routes_check_booking_party(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            service = _service(db)
            booking = await appointment_routes.book_consultation(
                data=_book_request(), current_user=PATIENT, service=service,
            )
            booking_id = booking.id
            slots = await service.get_available_slots(10, MONDAY)
            target_id = slots[-1].id

            with pytest.raises(HTTPException) as forbidden:
                await appointment_routes.cancel_booking(
                    booking_id=booking_id,
                    data=CancelBookingRequest(reason='Not mine'),
                    current_user=OTHER_PATIENT,
                    service=service,
                )

            moved = await appointment_routes.reschedule_booking(
                booking_id=booking_id,
                data=RescheduleBookingRequest.model_validate({'newSlotId': target_id}),
                current_user=DOCTOR,
                service=service,
            )
            cancelled = await appointment_routes.cancel_booking(
                booking_id=moved.id,
                data=CancelBookingRequest(reason='Travelling'),
                current_user=ADMIN,
                service=service,
            )
            return forbidden.value.status_code, moved.previous_booking_id, booking_id, cancelled

    status_code, previous_id, original_id, cancelled = run_db(scenario)

    assert status_code == 403
    assert previous_id == original_id
    assert cancelled.status == 'cancelled'
    assert cancelled.cancelled_by == ADMIN.id


def test_complete_route_is_reserved_for_the_doctor(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            service = _service(db)
            booking_id = (await appointment_routes.book_consultation(
                data=_book_request(), current_user=PATIENT, service=service,
            )).id
            with pytest.raises(HTTPException) as as_patient:
                await appointment_routes.complete_booking(booking_id=booking_id, current_user=PATIENT, service=service)
            with pytest.raises(HTTPException) as as_other_doctor:
                await appointment_routes.mark_no_show(booking_id=booking_id, current_user=OTHER_DOCTOR, service=service)
            completed = await appointment_routes.complete_booking(
                booking_id=booking_id, current_user=DOCTOR, service=service,
            )
            return as_patient.value.status_code, as_other_doctor.value.status_code, completed.status

    assert run_db(scenario) == (403, 403, 'completed')


def test_generate_slots_route_caps_range_at_horizon(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            with pytest.raises(ValidationError):
                await appointment_routes.generate_slots(
                    data=GenerateSlotsRequest(doctor_id=10, start_date=MONDAY, end_date=date(2030, 6, 1)),
                    current_user=DOCTOR,
                    db=db,
                )
            return await appointment_routes.generate_slots(
                data=GenerateSlotsRequest(doctor_id=10, start_date=MONDAY, end_date=date(2030, 1, 20)),
                current_user=ADMIN,
                db=db,
            )

    response = run_db(scenario)

    assert response.total_slots == 12
    assert response.slots[0].slot_date == MONDAY
    assert response.slots[0].start_time.time() == time(9, 0)


def test_update_slot_route_and_doctor_calendar(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            service = _service(db)
            slot_id = (await service.get_available_slots(10, MONDAY))[0].id

            with pytest.raises(HTTPException):
                await appointment_routes.update_slot(
                    slot_id=slot_id, data=UpdateSlotRequest(capacity=2), current_user=OTHER_DOCTOR, db=db,
                )
            updated = await appointment_routes.update_slot(
                slot_id=slot_id,
                data=UpdateSlotRequest.model_validate({'capacity': 2, 'notes': 'Telehealth'}),
                current_user=DOCTOR,
                db=db,
            )
            await service.book_slot(slot_id, 42)
            calendar = await appointment_routes.doctor_calendar(
                doctor_id=10,
                start_date=MONDAY,
                end_date=MONDAY,
                current_user=DOCTOR,
                service=service,
            )
            return updated.capacity, calendar

    capacity, calendar = run_db(scenario)

    assert capacity == 2
    assert len(calendar.slots) == 6
    assert calendar.slots[0].booked_count == 1
    assert calendar.slots[0].notes == 'Telehealth'
    assert [booking.patient_id for booking in calendar.bookings] == [42]


def test_book_request_converts_utc_timestamp_to_server_time() -> None:
    request = _book_request(appointmentDate='2030-01-07T09:30:00Z')

    assert request.appointment_date.tzinfo is None
    assert request.appointment_date == datetime(2030, 1, 7, 9, 30, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)


def test_available_slots_meta_counts_only_bookable_slots(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            return await appointment_routes.list_available_slots(
                doctor_id=10,
                slot_date=MONDAY,
                duration=None,
                current_user=PATIENT,
                service=_service(db, now=datetime(2030, 1, 7, 10, 15)),
            )

    payload = run_db(scenario).model_dump(by_alias=True)

    assert [slot['available'] for slot in payload['slots']] == [False, False, False, True, True, True]
    assert payload['meta'] == {'totalSlots': 6, 'availableSlots': 3}


@pytest.mark.parametrize(('end_date', 'expected_slots'), [(date(2030, 2, 3), 4 * 6), (date(2030, 2, 4), None)])
def test_generate_slots_horizon_counts_calendar_dates(
    run_db, monday_template_fields, monkeypatch, end_date, expected_slots,
) -> None:
    monkeypatch.setattr(config, 'SLOT_GENERATION_HORIZON_DAYS', 28)

    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            request = GenerateSlotsRequest(doctor_id=10, start_date=MONDAY, end_date=end_date)
            try:
                response = await appointment_routes.generate_slots(data=request, current_user=DOCTOR, db=db)
            except ValidationError:
                return None
            return response.total_slots

    assert run_db(scenario) == expected_slots


def test_conflicts_route_reports_overlapping_booking_without_patient_details(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            service = _service(db)
            booking_id = (await appointment_routes.book_consultation(
                data=_book_request(), current_user=PATIENT, service=service,
            )).id
            busy = await appointment_routes.check_conflicts(
                doctor_id=10,
                start_time=datetime(2030, 1, 7, 9, 45),
                end_time=None,
                duration=30,
                exclude_booking_id=None,
                current_user=OTHER_PATIENT,
                service=service,
            )
            moving = await appointment_routes.check_conflicts(
                doctor_id=10,
                start_time=datetime(2030, 1, 7, 9, 45),
                end_time=datetime(2030, 1, 7, 10, 15),
                duration=30,
                exclude_booking_id=booking_id,
                current_user=PATIENT,
                service=service,
            )
            return booking_id, busy.model_dump(by_alias=True), moving

    booking_id, busy, moving = run_db(scenario)

    assert busy['hasConflicts'] is True
    assert busy['endTime'] == datetime(2030, 1, 7, 10, 15)
    assert busy['conflicts'] == [
        {'id': booking_id, 'startTime': datetime(2030, 1, 7, 9, 30), 'endTime': datetime(2030, 1, 7, 10, 0)},
    ]
    assert moving.has_conflicts is False

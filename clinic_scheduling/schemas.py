"""Response models shared by the scheduling routers.

Fields are snake_case in Python and camelCase on the wire.
"""

from datetime import date, datetime

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class SlotSummaryResponse(CamelModel):
    id: int
    start_time: datetime
    end_time: datetime
    available: bool


class SlotDetailResponse(CamelModel):
    id: int
    provider_id: int
    template_id: int | None = None
    slot_date: date
    start_time: datetime
    end_time: datetime
    capacity: int
    booked_count: int
    is_available: bool
    slot_kind: str
    notes: str | None = None


class BookingResponse(CamelModel):
    id: int
    slot_id: int
    patient_id: int
    provider_id: int
    status: str
    consultation_type: str
    priority: str
    reason: str | None = None
    notes: str | None = None
    start_time: datetime
    end_time: datetime
    previous_booking_id: int | None = None
    cancel_reason: str | None = None
    cancelled_by: int | None = None
    created_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str

"""Booking model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from clinic_scheduling.database import Base


class BookingStatus(str, enum.Enum):
    BOOKED = "booked"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class ConsultationType(str, enum.Enum):
    EMERGENCY = "emergency"
    SCHEDULED = "scheduled"
    FOLLOWUP = "followup"
    SECOND_OPINION = "second_opinion"


class BookingPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class Booking(Base):
    """Represents a patient appointment bound to one slot."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    slot_id = Column(Integer, ForeignKey("slot_instances.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String, nullable=False, default=BookingStatus.BOOKED.value)
    consultation_type = Column(String, nullable=False, default=ConsultationType.SCHEDULED.value)
    priority = Column(String, nullable=False, default=BookingPriority.MEDIUM.value)
    reason = Column(String)
    notes = Column(String)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    previous_booking_id = Column(Integer, ForeignKey("bookings.id"))
    cancel_reason = Column(String)
    cancelled_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.now)
    cancelled_at = Column(DateTime)
    completed_at = Column(DateTime)

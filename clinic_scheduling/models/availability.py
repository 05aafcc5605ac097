"""Availability template model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Time
from clinic_scheduling.core import config
from clinic_scheduling.database import Base


class AvailabilityTemplate(Base):
    """Recurring weekly opening hours of one provider for one weekday.

    ``day_of_week`` counts from Sunday (0) to Saturday (6). Rows are never
    deleted; deactivation keeps the provenance of slots already generated.
    """
    __tablename__ = "availability_templates"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False)
    max_bookings_per_slot = Column(Integer, nullable=False, default=1)
    break_start_time = Column(Time)
    break_end_time = Column(Time)
    slot_kind = Column(String, nullable=False, default=lambda: config.DEFAULT_SLOT_KIND)
    recurrence_interval_weeks = Column(Integer, nullable=False, default=1)
    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def has_break(self) -> bool:
        return self.break_start_time is not None and self.break_end_time is not None

"""Slot instance model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from clinic_scheduling.database import Base


class SlotKind(str, enum.Enum):
    REGULAR = "regular"
    EMERGENCY = "emergency"
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"


class SlotInstance(Base):
    """A concrete bookable window for one provider on one date."""
    __tablename__ = "slot_instances"
    __table_args__ = (
        UniqueConstraint("provider_id", "slot_date", "start_time", "end_time", name="uq_slot_instances_window"),
        CheckConstraint("booked_count >= 0", name="ck_slot_instances_booked_non_negative"),
        CheckConstraint("booked_count <= capacity", name="ck_slot_instances_within_capacity"),
        CheckConstraint("start_time < end_time", name="ck_slot_instances_ordered"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    template_id = Column(Integer, ForeignKey("availability_templates.id"))
    slot_date = Column(Date, nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    capacity = Column(Integer, nullable=False)
    booked_count = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)
    slot_kind = Column(String, nullable=False, default=SlotKind.REGULAR.value)
    notes = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

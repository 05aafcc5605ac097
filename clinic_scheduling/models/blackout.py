"""Provider blackout (vacation) model definitions."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String
from clinic_scheduling.database import Base


class ProviderBlackout(Base):
    """An inclusive run of dates on which a provider takes no appointments."""
    __tablename__ = "provider_blackouts"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_provider_blackouts_ordered"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(String)
    created_at = Column(DateTime, default=datetime.now)

    def covers(self, value) -> bool:
        return self.start_date <= value <= self.end_date

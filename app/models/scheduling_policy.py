# app/models/scheduling_policy.py
"""
Per-business booking rules.
A business without a row gets the column defaults (see SchedulingPolicy.defaults).
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from app.models.base import Base

DEFAULT_SLOT_INTERVAL_MINUTES = 30
DEFAULT_MIN_ADVANCE_HOURS = 2
DEFAULT_MAX_CAPACITY_PER_SLOT = 1


class CalendarSyncMode:
    COMPANY = "company"  # one calendar for the whole business
    PER_STAFF = "per_staff"  # each staff member's own calendar

    ALL = (COMPANY, PER_STAFF)


class SchedulingPolicy(Base):
    __tablename__ = "scheduling_policies"
    __table_args__ = (
        CheckConstraint("slot_interval_minutes > 0", name="ck_policy_slot_interval_positive"),
        CheckConstraint("min_advance_hours > 0", name="ck_policy_min_advance_positive"),
        CheckConstraint("max_capacity_per_slot > 0", name="ck_policy_capacity_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(
        UUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    slot_interval_minutes = Column(Integer, nullable=False, default=DEFAULT_SLOT_INTERVAL_MINUTES)
    min_advance_hours = Column(Integer, nullable=False, default=DEFAULT_MIN_ADVANCE_HOURS)
    max_capacity_per_slot = Column(Integer, nullable=False, default=DEFAULT_MAX_CAPACITY_PER_SLOT)

    # External calendar behaviour
    calendar_sync_mode = Column(String(20), nullable=False, default=CalendarSyncMode.COMPANY)
    generate_meet_link = Column(Boolean, nullable=False, default=False)

    business = relationship("Business", back_populates="policy")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @classmethod
    def defaults(cls, business_id=None) -> "SchedulingPolicy":
        """Transient policy carrying the documented defaults"""
        return cls(
            business_id=business_id,
            slot_interval_minutes=DEFAULT_SLOT_INTERVAL_MINUTES,
            min_advance_hours=DEFAULT_MIN_ADVANCE_HOURS,
            max_capacity_per_slot=DEFAULT_MAX_CAPACITY_PER_SLOT,
            calendar_sync_mode=CalendarSyncMode.COMPANY,
            generate_meet_link=False,
        )

    def to_dict(self):
        return {
            "slot_interval_minutes": self.slot_interval_minutes,
            "min_advance_hours": self.min_advance_hours,
            "max_capacity_per_slot": self.max_capacity_per_slot,
            "calendar_sync_mode": self.calendar_sync_mode,
            "generate_meet_link": self.generate_meet_link,
        }

# app/models/time_block.py
from sqlalchemy import Column, String, Date, Time, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid
from app.models.base import Base


class TimeBlock(Base):
    """Specific date blocks (holidays, time-off, breaks)"""
    __tablename__ = "time_blocks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    staff_id = Column(UUID(as_uuid=True), ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=True)

    block_date = Column(Date, nullable=False, index=True)
    # Both null = the whole day is blocked
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(String, nullable=True)  # "Holiday", "Vacation", etc.

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None

# app/models/business.py
"""
Business (tenant) and its weekly opening hours
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Time, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from app.models.base import Base


class Business(Base):
    __tablename__ = "businesses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)  # public booking URL
    phone_number = Column(String(20), nullable=True)

    # Appointment times are wall-clock times in this zone
    timezone = Column(String(50), default="America/Sao_Paulo")

    hours = relationship("BusinessHours", back_populates="business", cascade="all, delete-orphan")
    policy = relationship("SchedulingPolicy", back_populates="business", uselist=False,
                          cascade="all, delete-orphan")

    # Technical fields
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    is_active = Column(Boolean, default=True)

    def __repr__(self):
        return f"<Business(id={self.id}, name={self.name})>"

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "id": str(self.id),
            "name": self.name,
            "slug": self.slug,
            "phone_number": self.phone_number,
            "timezone": self.timezone,
            "is_active": self.is_active,
        }


class BusinessHours(Base):
    __tablename__ = "business_hours"
    __table_args__ = (
        UniqueConstraint("business_id", "day_of_week", name="uq_business_hours_business_day"),
    )

    id = Column(Integer, primary_key=True)
    business_id = Column(
        UUID(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week = Column(Integer, nullable=False)  # 0=Monday, 6=Sunday
    is_open = Column(Boolean, nullable=False, default=True)
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)

    business = relationship("Business", back_populates="hours")

    def __repr__(self):
        return f"<BusinessHours(business_id={self.business_id}, day={self.day_of_week})>"

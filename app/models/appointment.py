# ===== app/models/appointment.py =====
from datetime import datetime

from sqlalchemy import Column, String, Integer, Text, Date, Time, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .base import Base
import uuid


class AppointmentStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    ALL = (PENDING, CONFIRMED, COMPLETED, CANCELED, NO_SHOW, RESCHEDULED)
    # Statuses that still hold a place in the agenda
    ACTIVE = (PENDING, CONFIRMED)


class SyncStatus:
    PENDING = "pending"
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"
    DELETED = "deleted"
    DELETE_FAILED = "delete_failed"


class BookingSource:
    PUBLIC = "public"
    STAFF = "staff"
    RESCHEDULE = "reschedule"


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_business_date", "business_id", "appointment_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # References
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id"), nullable=False)
    service_id = Column(UUID(as_uuid=True), ForeignKey("services.id"), nullable=False)
    staff_id = Column(UUID(as_uuid=True), ForeignKey("staff_members.id"), nullable=True)

    # Client info
    client_name = Column(String, nullable=False)
    client_phone = Column(String, nullable=False, index=True)

    # Appointment details (business-local wall clock)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)  # start_time + service duration, set once at creation
    notes = Column(Text, nullable=True)

    # Status tracking
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING)
    booking_source = Column(String(20), default=BookingSource.PUBLIC)

    # Calendar sync
    external_event_id = Column(String, nullable=True)
    external_calendar_id = Column(String, nullable=True)  # calendar the event was created in
    meet_link = Column(String, nullable=True)
    sync_status = Column(String(20), default=SyncStatus.PENDING)
    sync_attempts = Column(Integer, default=0)
    last_sync_error = Column(Text, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    business = relationship("Business")
    service = relationship("Service")
    staff = relationship("StaffMember")

    def __repr__(self):
        return f"<Appointment(id={self.id}, date={self.appointment_date}, status={self.status})>"

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.end_time)

    def to_dict(self):
        return {
            "id": str(self.id),
            "business_id": str(self.business_id),
            "service_id": str(self.service_id),
            "staff_id": str(self.staff_id) if self.staff_id else None,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "appointment_date": self.appointment_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "status": self.status,
            "booking_source": self.booking_source,
            "notes": self.notes,
            "external_event_id": self.external_event_id,
            "meet_link": self.meet_link,
            "sync_status": self.sync_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }

"""
Pydantic schemas for booking and appointment management requests
"""
from datetime import date, time
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.appointment import AppointmentStatus
from app.services.availability.slot_engine import parse_hhmm


def _parse_time(value):
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return parse_hhmm(str(value))
    except ValueError as e:
        raise ValueError(str(e))


# ============================================================================
# Request Schemas (for incoming data)
# ============================================================================

class PublicBookingRequest(BaseModel):
    """Booking made by a client from the public page"""
    service_id: UUID
    staff_id: Optional[UUID] = None
    appointment_date: date
    start_time: time = Field(..., description="HH:MM, business local time")
    client_name: str = Field(..., min_length=1, max_length=200)
    client_phone: str = Field(..., min_length=8, max_length=30)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('start_time', mode='before')
    @classmethod
    def validate_start_time(cls, v):
        return _parse_time(v)


class StaffBookingRequest(PublicBookingRequest):
    """Booking entered from the dashboard; starts confirmed"""
    pass


class StatusChangeRequest(BaseModel):
    status: str
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v not in AppointmentStatus.ALL:
            raise ValueError(f"Status must be one of: {', '.join(AppointmentStatus.ALL)}")
        return v


class RescheduleRequest(BaseModel):
    new_date: date
    new_time: time
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator('new_time', mode='before')
    @classmethod
    def validate_new_time(cls, v):
        return _parse_time(v)


class MassCancelRequest(BaseModel):
    date: date
    reason: str = Field("", max_length=500)
    reschedule: bool = False


class SessionPackageCreate(BaseModel):
    client_name: str = Field(..., min_length=1, max_length=200)
    client_phone: str = Field(..., min_length=8, max_length=30)
    service_id: Optional[UUID] = None
    total_sessions: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = None


class ManualSessionCreate(BaseModel):
    session_date: date
    notes: Optional[str] = None


# ============================================================================
# Response Schemas (for outgoing data)
# ============================================================================

class AvailabilityResponse(BaseModel):
    date: date
    service_id: UUID
    staff_id: Optional[UUID] = None
    slots: List[str]


class AvailableDatesResponse(BaseModel):
    dates: List[str]


class AppointmentResponse(BaseModel):
    id: str
    business_id: str
    service_id: str
    staff_id: Optional[str] = None
    client_name: str
    client_phone: str
    appointment_date: str
    start_time: str
    end_time: str
    status: str
    booking_source: Optional[str] = None
    notes: Optional[str] = None
    external_event_id: Optional[str] = None
    meet_link: Optional[str] = None
    sync_status: Optional[str] = None
    created_at: Optional[str] = None
    cancelled_at: Optional[str] = None


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]
    total: int
    skip: int
    limit: int


class MassCancelResponse(BaseModel):
    total: int
    canceled: int
    rescheduled: int
    failed: int
    details: List[dict]

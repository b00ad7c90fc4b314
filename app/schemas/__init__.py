# app/schemas/__init__.py
from .scheduling import (
    PublicBookingRequest,
    StaffBookingRequest,
    StatusChangeRequest,
    RescheduleRequest,
    MassCancelRequest,
    SessionPackageCreate,
    ManualSessionCreate,
    AvailabilityResponse,
    AvailableDatesResponse,
    AppointmentResponse,
    AppointmentListResponse,
    MassCancelResponse,
)

from .calendar import (
    AuthorizationUrlResponse,
    CalendarItem,
    CalendarConnectionStatus,
    SelectCalendarRequest,
    SyncModeRequest,
    SyncResultResponse,
)

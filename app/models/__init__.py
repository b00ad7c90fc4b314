# app/models/__init__.py
from .base import Base
from .business import Business, BusinessHours
from .scheduling_policy import SchedulingPolicy, CalendarSyncMode
from .service import Service
from .staff import StaffMember
from .time_block import TimeBlock
from .appointment import Appointment, AppointmentStatus, SyncStatus, BookingSource
from .session_package import SessionPackage, PackageSession, PackageStatus
from .calendar_token import CalendarToken, TokenStatus
from .message_template import MessageTemplate, TemplateType
from .notification_log import NotificationLog

__all__ = [
    "Base",
    "Business",
    "BusinessHours",
    "SchedulingPolicy",
    "CalendarSyncMode",
    "Service",
    "StaffMember",
    "TimeBlock",
    "Appointment",
    "AppointmentStatus",
    "SyncStatus",
    "BookingSource",
    "SessionPackage",
    "PackageSession",
    "PackageStatus",
    "CalendarToken",
    "TokenStatus",
    "MessageTemplate",
    "TemplateType",
    "NotificationLog",
]

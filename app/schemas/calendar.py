"""
Pydantic schemas for the calendar connection endpoints
"""
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from app.models.scheduling_policy import CalendarSyncMode


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str


class CalendarItem(BaseModel):
    id: str
    name: str
    primary: bool = False


class CalendarConnectionStatus(BaseModel):
    connected: bool
    needs_reconnect: bool = False
    staff_id: Optional[str] = None
    calendar_id: Optional[str] = None
    connected_email: Optional[str] = None
    status: Optional[str] = None
    last_error: Optional[str] = None
    calendars: List[CalendarItem] = Field(default_factory=list)


class SelectCalendarRequest(BaseModel):
    calendar_id: str = Field(..., min_length=1)


class SyncModeRequest(BaseModel):
    calendar_sync_mode: str
    generate_meet_link: Optional[bool] = None

    @field_validator('calendar_sync_mode')
    @classmethod
    def validate_mode(cls, v):
        if v not in CalendarSyncMode.ALL:
            raise ValueError(f"calendar_sync_mode must be one of: {', '.join(CalendarSyncMode.ALL)}")
        return v


class SyncResultResponse(BaseModel):
    status: str
    reason: Optional[str] = None
    event_id: Optional[str] = None
    meet_link: Optional[str] = None

import os
from datetime import date, datetime, time, timedelta, timezone

from cryptography.fernet import Fernet

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CALENDAR_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("LOCK_BACKEND", "memory")
os.environ.setdefault("LOCK_TIMEOUT_SECONDS", "5")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.exceptions import NotConnected, ProviderError
from app.models.appointment import Appointment, AppointmentStatus, BookingSource
from app.models.base import Base
from app.models.business import Business, BusinessHours
from app.models.scheduling_policy import SchedulingPolicy
from app.models.service import Service
from app.models.staff import StaffMember
from app.services.calendar.calendar_sync_service import CalendarSyncService
from app.services.calendar.google_calendar_service import ValidToken
from app.utils.keyed_lock import InMemoryKeyedLock

# A Monday well in the future so real-clock advance notice never interferes
MONDAY = date(2030, 1, 7)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory on a file-backed database, for tests running several threads"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'shared.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def lock():
    return InMemoryKeyedLock(timeout=5)


# ----------------------------------------------------------------------------
# Data builders
# ----------------------------------------------------------------------------

def create_business(db, slug="studio", open_time=time(9, 0), close_time=time(18, 0),
                    open_days=range(7), **policy):
    business = Business(name="Studio Bella", slug=slug, timezone="America/Sao_Paulo", is_active=True)
    db.add(business)
    db.flush()

    for day in range(7):
        db.add(BusinessHours(
            business_id=business.id,
            day_of_week=day,
            is_open=day in open_days,
            open_time=open_time,
            close_time=close_time,
        ))

    if policy:
        values = SchedulingPolicy.defaults(business.id).to_dict()
        values.update(policy)
        db.add(SchedulingPolicy(business_id=business.id, **values))

    db.commit()
    return business


def create_service(db, business, duration=30, requires_sessions=False, name="Haircut", is_active=True):
    service = Service(
        business_id=business.id,
        name=name,
        duration=duration,
        requires_sessions=requires_sessions,
        is_active=is_active,
    )
    db.add(service)
    db.commit()
    return service


def create_staff(db, business, name="Ana"):
    staff = StaffMember(business_id=business.id, name=name, is_active=True)
    db.add(staff)
    db.commit()
    return staff


def create_appointment(db, business, service, start=time(10, 0), day=MONDAY,
                       status=AppointmentStatus.CONFIRMED, staff=None, phone="5511999990000",
                       external_event_id=None):
    end_minutes = start.hour * 60 + start.minute + service.duration
    appointment = Appointment(
        business_id=business.id,
        service_id=service.id,
        staff_id=staff.id if staff else None,
        client_name="Maria",
        client_phone=phone,
        appointment_date=day,
        start_time=start,
        end_time=time(end_minutes // 60, end_minutes % 60),
        status=status,
        booking_source=BookingSource.STAFF,
        external_event_id=external_event_id,
    )
    db.add(appointment)
    db.commit()
    return appointment


@pytest.fixture
def business(db):
    return create_business(db)


@pytest.fixture
def service(db, business):
    return create_service(db, business)


# ----------------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------------

class FakeCalendar:
    """Stands in for GoogleCalendarService"""

    def __init__(self, connected=(None,), fail_create=False, fail_delete=False):
        self.connected = set(connected)
        self.fail_create = fail_create
        self.fail_delete = fail_delete
        self.calendar_id = "primary"
        self.events = {}
        self.event_calendars = {}
        self.created = []
        self.deleted = []

    def get_valid_token(self, db, business_id, staff_id=None):
        if staff_id not in self.connected:
            raise NotConnected("not connected")
        return ValidToken(
            access_token="token",
            calendar_id=self.calendar_id,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            token_id=None,
        )

    def create_event(self, token, body, with_meet_link=False):
        if self.fail_create:
            raise ProviderError("Google Calendar event insert failed (503)", status=503)
        event_id = f"evt-{len(self.created) + 1}"
        event = {"id": event_id, **body}
        if with_meet_link:
            event["hangoutLink"] = f"https://meet.google.com/{event_id}"
        self.events[event_id] = event
        self.event_calendars[event_id] = token.calendar_id
        self.created.append(event_id)
        return event

    def delete_event(self, token, event_id, calendar_id=None):
        if self.fail_delete:
            raise ProviderError("Google Calendar event delete failed (500)", status=500)
        target = calendar_id or token.calendar_id
        self.deleted.append(event_id)
        # Google answers 404 when the event lives in another calendar
        if self.event_calendars.get(event_id, target) != target:
            return False
        self.event_calendars.pop(event_id, None)
        return self.events.pop(event_id, None) is not None


class RecordingCalendarSync(CalendarSyncService):
    """Real sync logic, background scheduling recorded instead of enqueued"""

    def __init__(self, db, calendar=None, lock=None):
        super().__init__(db, calendar=calendar or FakeCalendar(), lock=lock or InMemoryKeyedLock(timeout=5))
        self.scheduled_syncs = []
        self.scheduled_removals = []

    def schedule_sync(self, appointment):
        self.scheduled_syncs.append(appointment.id)

    def schedule_event_removal(self, appointment):
        self.scheduled_removals.append(appointment.id)


class RecordingDispatcher:

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def dispatch(self, appointment_id, new_status, context=None):
        if self.fail:
            raise RuntimeError("broker down")
        self.calls.append((appointment_id, new_status, context))


@pytest.fixture
def fake_calendar():
    return FakeCalendar()


@pytest.fixture
def calendar_sync(db, fake_calendar, lock):
    return RecordingCalendarSync(db, calendar=fake_calendar, lock=lock)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()

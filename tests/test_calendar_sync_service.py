import uuid

import pytest

from app.core.exceptions import LockTimeout, NotFound, ProviderError
from app.models.appointment import Appointment, AppointmentStatus, SyncStatus
from app.models.scheduling_policy import CalendarSyncMode, SchedulingPolicy
from app.services.appointment.lifecycle_service import AppointmentLifecycleService
from app.services.calendar.calendar_sync_service import CalendarSyncService, extract_meet_link
from app.utils.keyed_lock import InMemoryKeyedLock

from conftest import FakeCalendar, RecordingCalendarSync, RecordingDispatcher, create_appointment, create_business, \
    create_service, create_staff


@pytest.fixture
def sync(db, fake_calendar, lock):
    return CalendarSyncService(db, calendar=fake_calendar, lock=lock)


def test_sync_creates_event_once(db, sync, fake_calendar, business, service):
    appointment = create_appointment(db, business, service)

    first = sync.sync_appointment(appointment.id)
    second = sync.sync_appointment(appointment.id)

    assert first.status == "synced"
    assert second.status == "already_synced"
    assert second.event_id == first.event_id
    assert fake_calendar.created == [first.event_id]

    db.refresh(appointment)
    assert appointment.external_event_id == first.event_id
    assert appointment.sync_status == SyncStatus.SYNCED
    assert appointment.sync_attempts == 1


def test_event_body_describes_the_appointment(db, sync, fake_calendar, business, service):
    appointment = create_appointment(db, business, service)

    result = sync.sync_appointment(appointment.id)

    event = fake_calendar.events[result.event_id]
    assert event["summary"] == "Haircut - Maria"
    assert event["start"] == {"dateTime": "2030-01-07T10:00:00", "timeZone": "America/Sao_Paulo"}
    assert event["end"]["dateTime"] == "2030-01-07T10:30:00"
    assert "conferenceData" not in event


def test_meet_link_is_requested_and_stored(db, sync, fake_calendar):
    business = create_business(db, slug="online", generate_meet_link=True)
    service = create_service(db, business)
    appointment = create_appointment(db, business, service)

    result = sync.sync_appointment(appointment.id)

    assert result.meet_link == f"https://meet.google.com/{result.event_id}"
    db.refresh(appointment)
    assert appointment.meet_link == result.meet_link


def test_per_staff_mode_without_staff_is_skipped(db, sync, fake_calendar):
    business = create_business(db, slug="team", calendar_sync_mode=CalendarSyncMode.PER_STAFF)
    service = create_service(db, business)
    appointment = create_appointment(db, business, service)

    result = sync.sync_appointment(appointment.id)

    assert result.status == "skipped"
    assert result.reason == "skipped: no staff assigned"
    assert fake_calendar.created == []
    db.refresh(appointment)
    assert appointment.external_event_id is None
    assert appointment.sync_status == SyncStatus.SKIPPED


def test_per_staff_mode_uses_staff_calendar(db, lock):
    business = create_business(db, slug="team", calendar_sync_mode=CalendarSyncMode.PER_STAFF)
    service = create_service(db, business)
    staff = create_staff(db, business)
    calendar = FakeCalendar(connected=[staff.id])
    appointment = create_appointment(db, business, service, staff=staff)

    result = CalendarSyncService(db, calendar=calendar, lock=lock).sync_appointment(appointment.id)

    assert result.status == "synced"
    assert "Staff: Ana" in calendar.events[result.event_id]["description"]


def test_company_mode_ignores_staff_connection(db, lock, business, service):
    staff = create_staff(db, business)
    calendar = FakeCalendar(connected=[staff.id])
    appointment = create_appointment(db, business, service, staff=staff)

    result = CalendarSyncService(db, calendar=calendar, lock=lock).sync_appointment(appointment.id)

    assert result.status == "skipped"
    assert result.reason == "skipped: not connected"


def test_inactive_appointment_is_not_synced(db, sync, fake_calendar, business, service):
    appointment = create_appointment(db, business, service, status=AppointmentStatus.CANCELED)

    result = sync.sync_appointment(appointment.id)

    assert result.status == "skipped"
    assert fake_calendar.created == []


def test_provider_failure_is_recorded_and_raised(db, lock, business, service):
    appointment = create_appointment(db, business, service)
    sync = CalendarSyncService(db, calendar=FakeCalendar(fail_create=True), lock=lock)

    with pytest.raises(ProviderError):
        sync.sync_appointment(appointment.id)

    db.refresh(appointment)
    assert appointment.sync_status == SyncStatus.FAILED
    assert appointment.sync_attempts == 1
    assert appointment.external_event_id is None
    # The booking itself is untouched
    assert appointment.status == AppointmentStatus.CONFIRMED


def test_missing_appointment(sync):
    with pytest.raises(NotFound):
        sync.sync_appointment(uuid.uuid4())


def test_remove_event_when_not_connected_clears_reference(db, lock, business, service):
    appointment = create_appointment(db, business, service, external_event_id="evt-9")
    sync = CalendarSyncService(db, calendar=FakeCalendar(connected=[]), lock=lock)

    assert sync.remove_appointment_event(appointment) == "not_connected"
    assert appointment.external_event_id is None
    assert appointment.sync_status == SyncStatus.DELETE_FAILED


def test_remove_event_without_event(db, sync, business, service):
    appointment = create_appointment(db, business, service)

    assert sync.remove_appointment_event(appointment) == "nothing_to_delete"


def test_event_is_removed_from_the_calendar_it_was_created_in(db, sync, fake_calendar, business, service):
    appointment = create_appointment(db, business, service)
    fake_calendar.calendar_id = "work"
    result = sync.sync_appointment(appointment.id)

    # Newer events go elsewhere; existing ones stay where they are
    fake_calendar.calendar_id = "personal"
    db.refresh(appointment)
    assert appointment.external_calendar_id == "work"

    assert sync.remove_appointment_event(appointment) == "deleted"
    assert result.event_id not in fake_calendar.events
    assert appointment.external_event_id is None
    assert appointment.external_calendar_id is None


def test_status_change_waits_for_running_sync(db, business, service):
    lock = InMemoryKeyedLock(timeout=0.05)
    appointment = create_appointment(db, business, service, status=AppointmentStatus.PENDING)
    attempts = []

    class CancelDuringInsert(FakeCalendar):

        def create_event(self, token, body, with_meet_link=False):
            try:
                lifecycle.transition(appointment.id, AppointmentStatus.CANCELED)
                attempts.append("canceled")
            except LockTimeout:
                attempts.append("blocked")
            return super().create_event(token, body, with_meet_link)

    calendar = CancelDuringInsert()
    sync = RecordingCalendarSync(db, calendar=calendar, lock=lock)
    lifecycle = AppointmentLifecycleService(db, dispatcher=RecordingDispatcher(), calendar_sync=sync, lock=lock)

    assert sync.sync_appointment(appointment.id).status == "synced"
    assert attempts == ["blocked"]

    lifecycle.transition(appointment.id, AppointmentStatus.CANCELED)

    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CANCELED
    assert appointment.external_event_id is None
    assert calendar.events == {}


class CanceledElsewhere(FakeCalendar):
    """Another process cancels the appointment while its event is inserted"""

    def __init__(self, db, appointment_id, **kwargs):
        super().__init__(**kwargs)
        self.db = db
        self.appointment_id = appointment_id

    def create_event(self, token, body, with_meet_link=False):
        event = super().create_event(token, body, with_meet_link)
        self.db.query(Appointment).filter(Appointment.id == self.appointment_id).update(
            {"status": AppointmentStatus.CANCELED}, synchronize_session=False
        )
        self.db.commit()
        return event


def test_event_of_appointment_canceled_during_insert_is_removed(db, lock, business, service):
    appointment = create_appointment(db, business, service, status=AppointmentStatus.PENDING)
    calendar = CanceledElsewhere(db, appointment.id)
    sync = RecordingCalendarSync(db, calendar=calendar, lock=lock)

    result = sync.sync_appointment(appointment.id)

    assert result.status == "skipped"
    assert result.reason == "skipped: appointment is canceled"
    assert calendar.created == ["evt-1"]
    assert calendar.events == {}

    db.refresh(appointment)
    assert appointment.external_event_id is None
    assert appointment.sync_status == SyncStatus.DELETED


def test_failed_removal_after_concurrent_cancel_is_retried(db, lock, business, service):
    appointment = create_appointment(db, business, service, status=AppointmentStatus.PENDING)
    sync = RecordingCalendarSync(db, calendar=CanceledElsewhere(db, appointment.id, fail_delete=True), lock=lock)

    result = sync.sync_appointment(appointment.id)

    assert result.status == "skipped"
    db.refresh(appointment)
    assert appointment.external_event_id == "evt-1"
    assert appointment.sync_status == SyncStatus.DELETE_FAILED
    assert sync.scheduled_removals == [appointment.id]


def test_set_sync_mode_creates_policy(db, sync, business):
    sync.set_sync_mode(business.id, CalendarSyncMode.PER_STAFF, generate_meet_link=True)

    policy = db.query(SchedulingPolicy).filter_by(business_id=business.id).one()
    assert policy.calendar_sync_mode == CalendarSyncMode.PER_STAFF
    assert policy.generate_meet_link is True
    assert policy.min_advance_hours == 2


def test_extract_meet_link_from_conference_data():
    event = {"conferenceData": {"entryPoints": [
        {"entryPointType": "phone", "uri": "tel:+1"},
        {"entryPointType": "video", "uri": "https://meet.google.com/abc"},
    ]}}

    assert extract_meet_link(event) == "https://meet.google.com/abc"
    assert extract_meet_link({}) is None

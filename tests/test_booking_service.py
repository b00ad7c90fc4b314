import threading
import uuid
from datetime import datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import NotFound, SlotUnavailable, ValidationError
from app.models.appointment import Appointment, AppointmentStatus, BookingSource
from app.models.base import Base
from app.models.time_block import TimeBlock
from app.services.appointment.booking_service import AppointmentBookingService, normalize_phone
from app.services.availability.availability_service import AvailabilityService
from app.utils.keyed_lock import InMemoryKeyedLock

from conftest import MONDAY, RecordingCalendarSync, create_business, create_service

EARLY_MONDAY = datetime.combine(MONDAY, time(7, 0))


@pytest.fixture
def booking(db, calendar_sync, lock):
    return AppointmentBookingService(db, calendar_sync=calendar_sync, lock=lock)


def book(booking, business, service, start=time(10, 0), **kwargs):
    kwargs.setdefault("client_name", "Maria Souza")
    kwargs.setdefault("client_phone", "+55 (11) 99999-0000")
    kwargs.setdefault("now", EARLY_MONDAY)
    return booking.create_appointment(
        business_id=business.id,
        service_id=service.id,
        appointment_date=MONDAY,
        start_time=start,
        **kwargs,
    )


def test_public_booking_is_pending_and_queued_for_sync(booking, business, service, calendar_sync):
    appointment = book(booking, business, service)

    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.booking_source == BookingSource.PUBLIC
    assert appointment.end_time == time(10, 30)
    assert appointment.client_phone == "+5511999990000"
    assert calendar_sync.scheduled_syncs == [appointment.id]


def test_capacity_is_never_exceeded(db, booking):
    business = create_business(db, slug="clinic", max_capacity_per_slot=2)
    service = create_service(db, business)

    book(booking, business, service, client_phone="5511911110001")
    slots = AvailabilityService.get_available_slots(db, business, service, MONDAY, now=EARLY_MONDAY)
    assert "10:00" in slots

    book(booking, business, service, client_phone="5511911110002")
    slots = AvailabilityService.get_available_slots(db, business, service, MONDAY, now=EARLY_MONDAY)
    assert "10:00" not in slots

    with pytest.raises(SlotUnavailable):
        book(booking, business, service, client_phone="5511911110003")

    assert db.query(Appointment).count() == 2


def test_second_booking_for_last_place_is_rejected(db, booking, business, service):
    book(booking, business, service)

    with pytest.raises(SlotUnavailable):
        book(booking, business, service, client_name="Joana", client_phone="5511988887777")

    assert db.query(Appointment).count() == 1


def test_concurrent_bookings_for_last_place(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    business = create_business(setup)
    service = create_service(setup, business)
    business_id, service_id = business.id, service.id
    setup.close()

    lock = InMemoryKeyedLock(timeout=10)
    barrier = threading.Barrier(2)
    outcomes = []

    def attempt(phone):
        session = Session()
        try:
            service_ = AppointmentBookingService(
                session, calendar_sync=RecordingCalendarSync(session, lock=lock), lock=lock
            )
            barrier.wait()
            service_.create_appointment(
                business_id=business_id,
                service_id=service_id,
                client_name="Client",
                client_phone=phone,
                appointment_date=MONDAY,
                start_time=time(10, 0),
                now=EARLY_MONDAY,
            )
            outcomes.append("booked")
        except SlotUnavailable:
            outcomes.append("rejected")
        finally:
            session.close()

    threads = [threading.Thread(target=attempt, args=(p,)) for p in ("5511900000001", "5511900000002")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["booked", "rejected"]

    check = Session()
    assert check.query(Appointment).count() == 1
    check.close()
    engine.dispose()


def test_public_booking_must_be_on_the_grid(booking, business, service):
    with pytest.raises(SlotUnavailable):
        book(booking, business, service, start=time(10, 15))


def test_public_booking_respects_advance_notice(booking, business, service):
    with pytest.raises(SlotUnavailable):
        book(booking, business, service, start=time(10, 0), now=datetime.combine(MONDAY, time(9, 0)))


def test_staff_booking_skips_grid_and_is_confirmed(booking, business, service):
    appointment = book(
        booking, business, service,
        start=time(10, 15),
        source=BookingSource.STAFF,
        now=datetime.combine(MONDAY, time(10, 0)),
    )

    assert appointment.status == AppointmentStatus.CONFIRMED
    assert appointment.booking_source == BookingSource.STAFF


def test_staff_booking_still_needs_business_hours(booking, business, service):
    with pytest.raises(SlotUnavailable):
        book(booking, business, service, start=time(17, 45), source=BookingSource.STAFF)


def test_staff_booking_until_midnight_closing(db, booking):
    business = create_business(db, slug="late", open_time=time(18, 0), close_time=time(0, 0))
    service = create_service(db, business)

    appointment = book(booking, business, service, start=time(23, 15), source=BookingSource.STAFF)

    assert appointment.end_time == time(23, 45)


def test_staff_booking_still_needs_capacity(booking, business, service):
    book(booking, business, service)

    with pytest.raises(SlotUnavailable):
        book(booking, business, service, start=time(10, 15), source=BookingSource.STAFF,
             client_phone="5511977776666")


def test_blocked_time_cannot_be_booked(db, booking, business, service):
    db.add(TimeBlock(business_id=business.id, block_date=MONDAY,
                     start_time=time(12, 0), end_time=time(14, 0), reason="Lunch"))
    db.commit()

    with pytest.raises(SlotUnavailable):
        book(booking, business, service, start=time(13, 0), source=BookingSource.STAFF)


def test_closed_day_cannot_be_booked(db, booking):
    business = create_business(db, slug="weekdays", open_days=range(1, 6))
    service = create_service(db, business)

    with pytest.raises(SlotUnavailable):
        book(booking, business, service)


@pytest.mark.parametrize("name,phone", [("", "5511999990000"), ("Maria", "123"), ("Maria", "")])
def test_client_data_is_validated(booking, business, service, name, phone):
    with pytest.raises(ValidationError):
        book(booking, business, service, client_name=name, client_phone=phone)


def test_inactive_service_is_rejected(db, booking, business):
    service = create_service(db, business, is_active=False)

    with pytest.raises(ValidationError):
        book(booking, business, service)


def test_unknown_business_is_not_found(booking, service):
    with pytest.raises(NotFound):
        booking.create_appointment(
            business_id=uuid.uuid4(),
            service_id=service.id,
            client_name="Maria",
            client_phone="5511999990000",
            appointment_date=MONDAY,
            start_time=time(10, 0),
        )


def test_normalize_phone():
    assert normalize_phone("+55 (11) 9 9999-0000") == "+5511999990000"
    assert normalize_phone(None) == ""

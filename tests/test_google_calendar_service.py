import threading
import time
from datetime import datetime, timedelta, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from app.core.exceptions import NotConnected, ProviderError, TokenRefreshFailed, ValidationError
from app.models.calendar_token import CalendarToken, TokenStatus
from app.services.calendar.google_calendar_service import GoogleCalendarService, ValidToken
from app.utils.keyed_lock import InMemoryKeyedLock

from conftest import create_business, create_staff


@pytest.fixture
def google(lock):
    return GoogleCalendarService(lock=lock)


def store_token(db, google, business, expires_in, staff=None, access="old-access"):
    row = CalendarToken(
        business_id=business.id,
        staff_id=staff.id if staff else None,
        access_token_encrypted=google.fernet.encrypt(access.encode()),
        refresh_token_encrypted=google.fernet.encrypt(b"refresh-token"),
        token_expires_at=datetime.now(timezone.utc) + expires_in,
        calendar_id="primary",
        calendar_list=[{"id": "primary", "name": "Studio", "primary": True}],
        status=TokenStatus.ACTIVE,
    )
    db.add(row)
    db.commit()
    return row


def refresh_never_called(refresh_token):
    raise AssertionError("token should not have been refreshed")


def test_state_round_trip(google, business):
    state = google.encode_state(business.id)

    assert google.decode_state(state) == (business.id, None)


def test_state_carries_staff(db, google, business):
    staff = create_staff(db, business)

    assert google.decode_state(google.encode_state(business.id, staff.id)) == (business.id, staff.id)


@pytest.mark.parametrize("state", ["garbage", ""])
def test_invalid_state_is_rejected(google, state):
    with pytest.raises(ValidationError):
        google.decode_state(state)


def test_tampered_state_is_rejected(google, business):
    state = google.encode_state(business.id)

    with pytest.raises(ValidationError):
        google.decode_state(state[:-2] + ("aa" if not state.endswith("aa") else "bb"))


def test_authorization_url_requests_offline_access(google, business):
    url = google.generate_authorization_url(business.id)

    assert url.startswith("https://accounts.google.com/o/oauth2/auth")
    assert "access_type=offline" in url
    assert "prompt=consent" in url


def test_missing_token_is_not_connected(db, google, business):
    with pytest.raises(NotConnected):
        google.get_valid_token(db, business.id)


def test_fresh_token_is_used_as_is(db, google, business, monkeypatch):
    store_token(db, google, business, timedelta(hours=1))
    monkeypatch.setattr(google, "_refresh_access_token", refresh_never_called)

    token = google.get_valid_token(db, business.id)

    assert token.access_token == "old-access"
    assert token.calendar_id == "primary"


def test_expiring_token_is_refreshed(db, google, business, monkeypatch):
    row = store_token(db, google, business, timedelta(seconds=30))
    new_expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    calls = []

    def refresh(refresh_token):
        calls.append(refresh_token)
        return "new-access", new_expiry

    monkeypatch.setattr(google, "_refresh_access_token", refresh)

    token = google.get_valid_token(db, business.id)

    assert token.access_token == "new-access"
    assert calls == ["refresh-token"]
    db.refresh(row)
    assert google.fernet.decrypt(row.access_token_encrypted) == b"new-access"

    # Now fresh, so a second call does not refresh again
    assert google.get_valid_token(db, business.id).access_token == "new-access"
    assert len(calls) == 1


def test_revoked_refresh_token_marks_connection_for_reconnect(db, google, business, monkeypatch):
    row = store_token(db, google, business, timedelta(minutes=-5))

    def refresh(refresh_token):
        raise TokenRefreshFailed("Google rejected the refresh token: invalid_grant")

    monkeypatch.setattr(google, "_refresh_access_token", refresh)

    with pytest.raises(TokenRefreshFailed):
        google.get_valid_token(db, business.id)

    db.refresh(row)
    assert row.status == TokenStatus.NEEDS_RECONNECT

    monkeypatch.setattr(google, "_refresh_access_token", refresh_never_called)
    with pytest.raises(TokenRefreshFailed):
        google.get_valid_token(db, business.id)

    status = google.connection_status(db, business.id)
    assert status["connected"] is False
    assert status["needs_reconnect"] is True


def test_unreachable_google_leaves_token_untouched(db, google, business, monkeypatch):
    row = store_token(db, google, business, timedelta(minutes=-5))

    def refresh(refresh_token):
        raise ProviderError("Google token endpoint unreachable")

    monkeypatch.setattr(google, "_refresh_access_token", refresh)

    with pytest.raises(ProviderError):
        google.get_valid_token(db, business.id)

    db.refresh(row)
    assert row.status == TokenStatus.ACTIVE


def test_concurrent_callers_share_one_refresh(file_sessions, monkeypatch):
    google = GoogleCalendarService(lock=InMemoryKeyedLock(timeout=10))
    setup = file_sessions()
    business = create_business(setup)
    store_token(setup, google, business, timedelta(seconds=30))
    business_id = business.id
    setup.close()

    calls = []

    def refresh(refresh_token):
        calls.append(refresh_token)
        time.sleep(0.2)
        return "new-access", datetime.now(timezone.utc) + timedelta(hours=1)

    monkeypatch.setattr(google, "_refresh_access_token", refresh)

    barrier = threading.Barrier(2)
    tokens = []
    errors = []

    def fetch():
        session = file_sessions()
        try:
            barrier.wait()
            tokens.append(google.get_valid_token(session, business_id).access_token)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=fetch) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert calls == ["refresh-token"]
    assert tokens == ["new-access", "new-access"]


def test_staff_tokens_are_separate(db, google, business):
    staff = create_staff(db, business)
    store_token(db, google, business, timedelta(hours=1), staff=staff, access="staff-access")

    assert google.get_valid_token(db, business.id, staff.id).access_token == "staff-access"
    with pytest.raises(NotConnected):
        google.get_valid_token(db, business.id)


class FakeRequest:

    def __init__(self, error=None, result=None):
        self.error = error
        self.result = result

    def execute(self, num_retries=0):
        if self.error:
            raise self.error
        return self.result


class FakeEvents:

    def __init__(self, request):
        self.request = request
        self.calendars = []

    def delete(self, calendarId, eventId):
        self.calendars.append(calendarId)
        return self.request


class FakeClient:

    def __init__(self, request):
        self.request = request
        self.events_api = FakeEvents(request)

    def events(self):
        return self.events_api


def http_error(status):
    body = f'{{"error": {{"code": {status}, "message": "error {status}"}}}}'
    return HttpError(httplib2.Response({"status": status}), body.encode())


TOKEN = ValidToken(access_token="a", calendar_id="primary", expires_at=None, token_id=None)


def test_delete_event(google, monkeypatch):
    monkeypatch.setattr(google, "_client", lambda access_token: FakeClient(FakeRequest(result="")))

    assert google.delete_event(TOKEN, "evt-1") is True


def test_delete_event_targets_given_calendar(google, monkeypatch):
    client = FakeClient(FakeRequest(result=""))
    monkeypatch.setattr(google, "_client", lambda access_token: client)

    google.delete_event(TOKEN, "evt-1", "work@group.calendar.google.com")
    google.delete_event(TOKEN, "evt-2")

    assert client.events_api.calendars == ["work@group.calendar.google.com", "primary"]


@pytest.mark.parametrize("status", [404, 410])
def test_delete_event_already_gone(google, monkeypatch, status):
    monkeypatch.setattr(google, "_client", lambda access_token: FakeClient(FakeRequest(http_error(status))))

    assert google.delete_event(TOKEN, "evt-1") is False


def test_delete_event_server_error(google, monkeypatch):
    monkeypatch.setattr(google, "_client", lambda access_token: FakeClient(FakeRequest(http_error(500))))

    with pytest.raises(ProviderError) as exc_info:
        google.delete_event(TOKEN, "evt-1")

    assert exc_info.value.status == 500


def test_select_calendar(db, google, business):
    store_token(db, google, business, timedelta(hours=1))

    with pytest.raises(ValidationError):
        google.select_calendar(db, business.id, "someone-else@example.com")

    row = google.select_calendar(db, business.id, "primary")
    assert row.calendar_id == "primary"


def test_disconnect(db, google, business):
    store_token(db, google, business, timedelta(hours=1))

    assert google.disconnect(db, business.id) is True
    assert google.disconnect(db, business.id) is False
    assert google.connection_status(db, business.id)["connected"] is False

# app/services/calendar/google_calendar_service.py
from dataclasses import dataclass
from datetime import timedelta, datetime, timezone
from typing import List, Dict, Optional, Tuple
from uuid import UUID

import httplib2
from cryptography.fernet import Fernet
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from jose import jwt, JWTError
from sqlalchemy.orm import Session
import logging

from app.config.settings import get_settings
from app.core.exceptions import NotConnected, ProviderError, TokenRefreshFailed, ValidationError
from app.models.calendar_token import CalendarToken, TokenStatus
from app.utils.keyed_lock import get_keyed_lock

settings = get_settings()

logger = logging.getLogger(__name__)

STATE_PURPOSE = "google_calendar_connect"
# Event already gone on Google's side
GONE_STATUSES = (404, 410)


@dataclass
class ValidToken:
    """Decrypted access token ready for API calls"""
    access_token: str
    calendar_id: str
    expires_at: datetime
    token_id: UUID


class TimeoutRequest(Request):
    """google-auth transport with a default timeout on every call"""

    def __init__(self, timeout: float, session=None):
        super().__init__(session)
        self.timeout = timeout

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(
            url, method=method, body=body, headers=headers, timeout=timeout or self.timeout, **kwargs
        )


def as_utc(value: datetime) -> datetime:
    """Stored expiries come back naive from some drivers; they are always UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def http_status(error: HttpError) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None and getattr(error, "resp", None) is not None:
        status = error.resp.status
    return int(status) if status is not None else None


class GoogleCalendarService:
    SCOPES = [
        'https://www.googleapis.com/auth/calendar.events',
        'https://www.googleapis.com/auth/calendar.readonly',
    ]

    def __init__(self, lock=None):
        if not settings.CALENDAR_ENCRYPTION_KEY:
            raise ValueError("CALENDAR_ENCRYPTION_KEY is not set")
        self.fernet = Fernet(settings.CALENDAR_ENCRYPTION_KEY.encode())
        self.lock = lock or get_keyed_lock()
        self.timeout = settings.GOOGLE_API_TIMEOUT_SECONDS

        # OAuth credentials from Google Cloud Console
        self.client_config = {
            "web": {
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "redirect_uris": [settings.GOOGLE_REDIRECT_URI],
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token"
            }
        }

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def encode_state(self, business_id: UUID, staff_id: Optional[UUID] = None) -> str:
        """Signed, short-lived state so the callback cannot be pointed at another business"""
        payload = {
            "business_id": str(business_id),
            "staff_id": str(staff_id) if staff_id else None,
            "purpose": STATE_PURPOSE,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.OAUTH_STATE_TTL_MINUTES),
        }
        return jwt.encode(payload, settings.oauth_state_secret, algorithm=settings.JWT_ALGORITHM)

    def decode_state(self, state: str) -> Tuple[UUID, Optional[UUID]]:
        try:
            payload = jwt.decode(state, settings.oauth_state_secret, algorithms=[settings.JWT_ALGORITHM])
        except JWTError as e:
            raise ValidationError(f"Invalid OAuth state: {e}")

        if payload.get("purpose") != STATE_PURPOSE or not payload.get("business_id"):
            raise ValidationError("Invalid OAuth state")

        staff_id = payload.get("staff_id")
        return UUID(payload["business_id"]), UUID(staff_id) if staff_id else None

    def _flow(self, state: Optional[str] = None) -> Flow:
        # PKCE off: the callback builds a fresh Flow and has no verifier to send
        return Flow.from_client_config(
            self.client_config,
            scopes=self.SCOPES,
            redirect_uri=self.client_config['web']['redirect_uris'][0],
            state=state,
            autogenerate_code_verifier=False,
        )

    def generate_authorization_url(self, business_id: UUID, staff_id: Optional[UUID] = None) -> str:
        """Step 1: OAuth consent URL for the business owner or a staff member"""
        authorization_url, _ = self._flow().authorization_url(
            access_type='offline',  # Gets refresh token
            include_granted_scopes='true',
            prompt='consent',  # Force consent screen to get refresh token
            state=self.encode_state(business_id, staff_id),
        )
        logger.info(f"Generated Google authorization URL for business {business_id} staff {staff_id}")
        return authorization_url

    def handle_oauth_callback(self, db: Session, code: str, state: str) -> CalendarToken:
        """Step 2: Exchange the authorization code and store encrypted tokens"""
        business_id, staff_id = self.decode_state(state)

        flow = self._flow(state=state)
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            logger.error(f"Failed to exchange code for tokens for business {business_id}: {e}")
            raise ProviderError(f"Google token exchange failed: {e}")
        credentials = flow.credentials

        calendars = self._fetch_calendar_list(credentials.token)
        connected_email = next((c["id"] for c in calendars if c.get("primary")), None)

        row = self.get_token_row(db, business_id, staff_id)
        if credentials.refresh_token:
            refresh_token_encrypted = self.fernet.encrypt(credentials.refresh_token.encode())
        elif row is not None:
            refresh_token_encrypted = row.refresh_token_encrypted
        else:
            raise ProviderError("Google did not return a refresh token")

        expires_at = as_utc(credentials.expiry) if credentials.expiry else \
            datetime.now(timezone.utc) + timedelta(hours=1)

        if row is None:
            row = CalendarToken(business_id=business_id, staff_id=staff_id, calendar_id="primary")
            db.add(row)
        elif row.calendar_id not in {c["id"] for c in calendars} | {"primary"}:
            row.calendar_id = "primary"

        row.access_token_encrypted = self.fernet.encrypt(credentials.token.encode())
        row.refresh_token_encrypted = refresh_token_encrypted
        row.token_expires_at = expires_at
        row.connected_email = connected_email
        row.calendar_list = calendars
        row.status = TokenStatus.ACTIVE
        row.last_error = None
        db.commit()
        db.refresh(row)

        logger.info(f"Connected Google Calendar {connected_email} for business {business_id} staff {staff_id}")
        return row

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def get_token_row(self, db: Session, business_id: UUID, staff_id: Optional[UUID] = None) -> Optional[CalendarToken]:
        query = db.query(CalendarToken).filter(CalendarToken.business_id == business_id)
        if staff_id is None:
            query = query.filter(CalendarToken.staff_id.is_(None))
        else:
            query = query.filter(CalendarToken.staff_id == staff_id)
        return query.first()

    def _is_expiring(self, row: CalendarToken) -> bool:
        margin = timedelta(seconds=settings.GOOGLE_TOKEN_REFRESH_MARGIN_SECONDS)
        return as_utc(row.token_expires_at) <= datetime.now(timezone.utc) + margin

    def _valid_token(self, row: CalendarToken) -> ValidToken:
        return ValidToken(
            access_token=self.fernet.decrypt(row.access_token_encrypted).decode(),
            calendar_id=row.calendar_id or "primary",
            expires_at=as_utc(row.token_expires_at),
            token_id=row.id,
        )

    def get_valid_token(self, db: Session, business_id: UUID, staff_id: Optional[UUID] = None) -> ValidToken:
        """
        Access token for (business, staff), refreshed when it expires within
        the refresh margin. Concurrent callers for the same owner refresh at
        most once: the second waits on the lock and finds the new token.

        Raises:
            NotConnected: no token stored
            TokenRefreshFailed: refresh token revoked, account must reconnect
            ProviderError: Google could not be reached
        """
        row = self.get_token_row(db, business_id, staff_id)
        if row is None:
            raise NotConnected("not connected", business_id=str(business_id))
        if row.status == TokenStatus.NEEDS_RECONNECT:
            raise TokenRefreshFailed("Calendar must be reconnected", business_id=str(business_id))
        if not self._is_expiring(row):
            return self._valid_token(row)

        with self.lock.acquire(f"lock:calendar-token:{business_id}:{staff_id or 'business'}"):
            row = db.query(CalendarToken).filter(CalendarToken.id == row.id) \
                .populate_existing().with_for_update().first()
            if row is None:
                raise NotConnected("not connected", business_id=str(business_id))
            if row.status == TokenStatus.NEEDS_RECONNECT:
                raise TokenRefreshFailed("Calendar must be reconnected", business_id=str(business_id))
            if not self._is_expiring(row):
                db.commit()
                return self._valid_token(row)

            try:
                access_token, expires_at = self._refresh_access_token(
                    self.fernet.decrypt(row.refresh_token_encrypted).decode()
                )
            except TokenRefreshFailed as e:
                row.status = TokenStatus.NEEDS_RECONNECT
                row.last_error = e.message
                db.commit()
                logger.warning(f"Calendar token for business {business_id} staff {staff_id} needs reconnect")
                raise
            except ProviderError:
                db.rollback()
                raise

            row.access_token_encrypted = self.fernet.encrypt(access_token.encode())
            row.token_expires_at = expires_at
            row.last_error = None
            db.commit()
            logger.info(f"Refreshed calendar token for business {business_id} staff {staff_id}")
            return self._valid_token(row)

    def _refresh_access_token(self, refresh_token: str) -> Tuple[str, datetime]:
        """Refresh expired access token using refresh token"""
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.client_config['web']['token_uri'],
            client_id=self.client_config['web']['client_id'],
            client_secret=self.client_config['web']['client_secret']
        )
        try:
            credentials.refresh(TimeoutRequest(self.timeout))
        except RefreshError as e:
            if getattr(e, "retryable", False):
                raise ProviderError(f"Google token refresh failed: {e}")
            raise TokenRefreshFailed(f"Google rejected the refresh token: {e}")
        except TransportError as e:
            raise ProviderError(f"Google token endpoint unreachable: {e}")

        expires_at = as_utc(credentials.expiry) if credentials.expiry else \
            datetime.now(timezone.utc) + timedelta(hours=1)
        return credentials.token, expires_at

    # ------------------------------------------------------------------
    # Calendar API
    # ------------------------------------------------------------------

    def _client(self, access_token: str):
        http = AuthorizedHttp(Credentials(token=access_token), http=httplib2.Http(timeout=self.timeout))
        return build('calendar', 'v3', http=http, cache_discovery=False)

    def _execute(self, request, action: str):
        try:
            return request.execute(num_retries=0)
        except HttpError as e:
            status = http_status(e)
            raise ProviderError(f"Google Calendar {action} failed ({status}): {e}", status=status)
        except (httplib2.HttpLib2Error, OSError, RefreshError, TransportError) as e:
            raise ProviderError(f"Google Calendar {action} failed: {e}")

    def _fetch_calendar_list(self, access_token: str) -> List[Dict]:
        result = self._execute(self._client(access_token).calendarList().list(), "calendar list")
        return [
            {"id": cal["id"], "name": cal.get("summary", cal["id"]), "primary": bool(cal.get("primary"))}
            for cal in result.get("items", [])
        ]

    def create_event(self, token: ValidToken, event_body: Dict, with_meet_link: bool = False) -> Dict:
        """Insert an event; Meet links need conferenceDataVersion=1"""
        request = self._client(token.access_token).events().insert(
            calendarId=token.calendar_id,
            body=event_body,
            conferenceDataVersion=1 if with_meet_link else 0,
        )
        event = self._execute(request, "event insert")
        logger.info(f"Created Google Calendar event {event.get('id')} in {token.calendar_id}")
        return event

    def delete_event(self, token: ValidToken, event_id: str, calendar_id: Optional[str] = None) -> bool:
        """
        Delete an event from `calendar_id`, defaulting to the token's current
        target. Returns False when Google no longer has it.
        """
        request = self._client(token.access_token).events().delete(
            calendarId=calendar_id or token.calendar_id, eventId=event_id
        )
        try:
            self._execute(request, "event delete")
        except ProviderError as e:
            if e.status in GONE_STATUSES:
                logger.info(f"Google Calendar event {event_id} already gone ({e.status})")
                return False
            raise
        logger.info(f"Deleted Google Calendar event {event_id}")
        return True

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def list_calendars(self, db: Session, business_id: UUID, staff_id: Optional[UUID] = None) -> List[Dict]:
        token = self.get_valid_token(db, business_id, staff_id)
        calendars = self._fetch_calendar_list(token.access_token)

        row = self.get_token_row(db, business_id, staff_id)
        row.calendar_list = calendars
        db.commit()
        return calendars

    def select_calendar(
            self, db: Session, business_id: UUID, calendar_id: str, staff_id: Optional[UUID] = None
    ) -> CalendarToken:
        row = self.get_token_row(db, business_id, staff_id)
        if row is None:
            raise NotConnected("not connected", business_id=str(business_id))

        known = {c["id"] for c in (row.calendar_list or [])}
        if calendar_id != "primary" and known and calendar_id not in known:
            raise ValidationError("Unknown calendar", calendar_id=calendar_id)

        row.calendar_id = calendar_id
        db.commit()
        logger.info(f"Business {business_id} staff {staff_id} now syncing to calendar {calendar_id}")
        return row

    def disconnect(self, db: Session, business_id: UUID, staff_id: Optional[UUID] = None) -> bool:
        row = self.get_token_row(db, business_id, staff_id)
        if row is None:
            return False
        db.delete(row)
        db.commit()
        logger.info(f"Disconnected Google Calendar for business {business_id} staff {staff_id}")
        return True

    def connection_status(self, db: Session, business_id: UUID, staff_id: Optional[UUID] = None) -> Dict:
        row = self.get_token_row(db, business_id, staff_id)
        if row is None:
            return {"connected": False, "status": None, "staff_id": str(staff_id) if staff_id else None}
        return {
            "connected": row.status == TokenStatus.ACTIVE,
            "needs_reconnect": row.status == TokenStatus.NEEDS_RECONNECT,
            "last_error": row.last_error,
            "calendars": row.calendar_list or [],
            **row.to_dict(),
        }

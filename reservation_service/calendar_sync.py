"""
Calendar collaborator.

Mirrors each reservation as an all-day event on a Google Calendar so the
owner sees bookings on their phone. Sync is best-effort: the reservation
table is the source of truth and callers only log failures.

GoogleCalendarClient talks to the Calendar v3 REST API with httpx and
authenticates as a service account: it signs an RS256 JWT assertion with the
key from the credentials file and trades it for a short-lived access token.
"""
import json
import logging
import os
import time
from urllib.parse import quote
from typing import Protocol

import httpx
from jose import jwt

from .config import settings
from . import errors, models

logger = logging.getLogger("reservation_service.calendar")

CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
# Allowance for drift between our clock and Google's
CLOCK_SKEW_SECONDS = 30
# Refresh this long before the token expires
TOKEN_REFRESH_MARGIN_SECONDS = 60

# Google event colour ids
COLOR_CONFIRMED = "10"  # green
COLOR_CANCELLED = "11"  # red
COLOR_PENDING = "5"  # yellow


class CalendarClient(Protocol):
    def upsert_event(self, reservation: models.Reservation) -> str | None:
        ...

    def delete_event(self, ref: str) -> None:
        ...


def event_color(status: models.ReservationStatus) -> str:
    if status == models.ReservationStatus.CONFIRMED:
        return COLOR_CONFIRMED
    if status == models.ReservationStatus.CANCELLED:
        return COLOR_CANCELLED
    return COLOR_PENDING


def build_event(reservation: models.Reservation, timezone: str) -> dict:
    """
    Builds the Calendar API event body for a reservation.
    All-day events use an exclusive end date, same as check_out.
    """
    description = "\n".join([
        f"Guest: {reservation.guest_name}",
        f"Email: {reservation.guest_email}",
        f"Phone: {reservation.guest_phone or 'Not provided'}",
        f"Status: {reservation.status.value.upper()}",
        "",
        f"Guests: {reservation.adults} adults, {reservation.children} children, "
        f"{reservation.infants} infants",
        f"Pets: {reservation.pets}",
        "",
        "Pricing:",
        f"- Nightly Rate: ${reservation.nightly_rate} x {reservation.num_nights} nights",
        f"- Cleaning Fee: ${reservation.cleaning_fee}",
        f"- Service Fee: ${reservation.service_fee}",
        f"- Tax: ${reservation.tax}",
        f"- Total: ${reservation.total_price}",
        "",
        f"Special Requests: {reservation.special_requests or 'None'}",
        "",
        f"Reservation ID: #{reservation.id}",
    ])
    return {
        "summary": f"{reservation.guest_name} - Reservation #{reservation.id}",
        "description": description,
        "start": {"date": reservation.check_in.isoformat(), "timeZone": timezone},
        "end": {"date": reservation.check_out.isoformat(), "timeZone": timezone},
        "colorId": event_color(reservation.status),
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "email", "minutes": 24 * 60},
                {"method": "popup", "minutes": 60},
            ],
        },
    }


class GoogleCalendarClient:
    def __init__(
            self,
            calendar_id: str,
            credentials: dict,
            timezone: str = "America/Los_Angeles",
            timeout: float = 10.0,
            transport: httpx.BaseTransport | None = None
    ):
        self.calendar_id = calendar_id
        self.credentials = credentials
        self.timezone = timezone
        self._http = httpx.Client(timeout=timeout, transport=transport)
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_credentials_file(cls, calendar_id: str, path: str, **kwargs) -> "GoogleCalendarClient":
        with open(path, encoding="utf-8") as f:
            credentials = json.load(f)
        return cls(calendar_id, credentials, **kwargs)

    def close(self):
        self._http.close()

    # --- Auth ---

    def _get_access_token(self) -> str:
        if self._access_token and time.time() < self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token

        token_uri = self.credentials.get("token_uri", DEFAULT_TOKEN_URI)
        now = int(time.time())
        # Backdated so a fast local clock does not produce a token "issued in the future"
        issued_at = now - CLOCK_SKEW_SECONDS
        claims = {
            "iss": self.credentials["client_email"],
            "scope": CALENDAR_SCOPE,
            "aud": token_uri,
            "iat": issued_at,
            "exp": issued_at + 3600,
        }
        assertion = jwt.encode(claims, self.credentials["private_key"], algorithm="RS256")

        try:
            response = self._http.post(token_uri, data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise errors.CalendarSyncError(f"Could not obtain a calendar access token: {e}") from e

        payload = response.json()
        self._access_token = payload["access_token"]
        self._token_expires_at = now + int(payload.get("expires_in", 3600))
        return self._access_token

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{CALENDAR_API_URL}/calendars/{quote(self.calendar_id, safe='')}{path}"
        try:
            response = self._send(method, url, **kwargs)
            if response.status_code == 401:
                # Revoked or expired early: drop the cached token and retry once
                logger.info("Calendar access token rejected, fetching a new one")
                self._access_token = None
                response = self._send(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise errors.CalendarSyncError(f"Calendar API {method} {path} failed: {e}") from e
        return response

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._get_access_token()}"}
        return self._http.request(method, url, headers=headers, **kwargs)

    # --- Capabilities ---

    def upsert_event(self, reservation: models.Reservation) -> str | None:
        """
        Creates the event, or patches it when the reservation already has one.
        Returns the event id.
        """
        body = build_event(reservation, self.timezone)
        if reservation.external_calendar_ref:
            response = self._request("PATCH", f"/events/{reservation.external_calendar_ref}", json=body)
            logger.info(f"Updated calendar event for reservation #{reservation.id}")
        else:
            response = self._request("POST", "/events", json=body)
            logger.info(f"Added reservation #{reservation.id} to calendar: {response.json().get('htmlLink')}")
        return response.json().get("id")

    def delete_event(self, ref: str) -> None:
        self._request("DELETE", f"/events/{ref}")
        logger.info(f"Deleted calendar event {ref}")


# Global client instance, built on first use
calendar_client: GoogleCalendarClient | None = None


def get_calendar_client() -> CalendarClient | None:
    """
    FastAPI dependency. Returns None when calendar sync is not configured,
    which disables the feature.
    """
    global calendar_client
    if not settings.GOOGLE_CALENDAR_ID:
        return None
    if calendar_client is None:
        if not os.path.exists(settings.GOOGLE_CREDENTIALS_FILE):
            logger.warning(
                f"Calendar credentials file {settings.GOOGLE_CREDENTIALS_FILE} not found. Calendar sync disabled."
            )
            return None
        calendar_client = GoogleCalendarClient.from_credentials_file(
            settings.GOOGLE_CALENDAR_ID,
            settings.GOOGLE_CREDENTIALS_FILE,
            timezone=settings.CALENDAR_TIMEZONE,
            timeout=settings.CALENDAR_TIMEOUT_SECONDS,
        )
        logger.info("Google Calendar client initialized.")
    return calendar_client


def close_calendar_client():
    global calendar_client
    if calendar_client is not None:
        calendar_client.close()
        calendar_client = None

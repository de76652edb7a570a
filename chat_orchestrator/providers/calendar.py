"""
External calendar / CRM client (LeadConnector-compatible REST API).

Free-slot lookups feed the availability engine; contacts and appointments are
written after a booking is stored locally. Transient failures (408, 429, 5xx
and transport errors) are retried with exponential backoff.
"""

import asyncio
import logging
from datetime import datetime, time
from typing import Optional, TypedDict
from zoneinfo import ZoneInfo

import httpx

from chat_orchestrator.config import CalendarConfig
from chat_orchestrator.schemas.booking_schema import Booking
from chat_orchestrator.utils import parse_iso_date

logger = logging.getLogger(__name__)

API_VERSION = "2021-04-15"
RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}


class CalendarError(Exception):
    """Raised when the calendar API cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SyncResult(TypedDict, total=False):
    attempted: bool
    synced: bool
    contact_id: str
    appointment_id: str
    reason: str


def format_datetime_with_timezone(date_str: str, time_str: str, time_zone: str) -> str:
    """Render a local date/time as ISO-8601 with the zone's UTC offset for that day.

    >>> format_datetime_with_timezone("2024-01-27", "12:00", "America/New_York")
    '2024-01-27T12:00:00-05:00'
    """
    hours, minutes = (int(p) for p in time_str.split(":")[:2])
    local = datetime.combine(parse_iso_date(date_str), time(hours, minutes), ZoneInfo(time_zone))
    offset = local.utcoffset()
    total = int(offset.total_seconds() // 60) if offset else 0
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{date_str}T{time_str[:5]}:00{sign}{total // 60:02d}:{total % 60:02d}"


def normalize_crm_phone(phone: str) -> str:
    """E.164-style phone for the CRM (US numbers get +1)."""
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return f"+{digits}"


def phones_match(a: str, b: str) -> bool:
    digits_a = "".join(ch for ch in a if ch.isdigit())
    digits_b = "".join(ch for ch in b if ch.isdigit())
    if digits_a == digits_b:
        return True
    return len(digits_a) >= 10 and len(digits_b) >= 10 and digits_a[-10:] == digits_b[-10:]


def extract_slot_starts(data) -> list[str]:
    """Flatten the free-slots payload into ISO start timestamps.

    The API answers with a bare list, ``{"slots": [...]}``,
    ``{"_embedded": {"slots": [...]}}`` or a date-keyed mapping
    ``{"2026-01-09": {"slots": ["09:00", ...]}, "traceId": ...}``.
    """
    def _start(item, date_key: Optional[str] = None) -> Optional[str]:
        value = item.get("startTime") if isinstance(item, dict) else item
        if not isinstance(value, str):
            return None
        if "T" not in value and date_key:
            return f"{date_key}T{value}"
        return value

    if isinstance(data, list):
        items = data
    elif isinstance(data.get("slots"), list):
        items = data["slots"]
    elif isinstance(data.get("_embedded"), dict) and data["_embedded"].get("slots"):
        items = data["_embedded"]["slots"]
    else:
        starts = []
        for key, value in data.items():
            if key == "traceId" or not isinstance(value, dict):
                continue
            for item in value.get("slots") or []:
                start = _start(item, key)
                if start:
                    starts.append(start)
        return starts
    return [s for s in (_start(item) for item in items) if s]


class CalendarClient:
    """Async client for the external calendar and contact API."""

    def __init__(
        self,
        config: CalendarConfig,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 10.0,
    ):
        self.config = config
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=config.base_url.rstrip("/"),
                timeout=config.timeout_seconds,
            )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Version": API_VERSION,
            "Content-Type": "application/json",
        }

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, label: str, **kwargs) -> dict:
        url = f"{self.config.base_url.rstrip('/')}{path}"
        last_error: Optional[CalendarError] = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = await self._client.request(method, url, headers=self._headers(), **kwargs)
                if resp.status_code >= 400:
                    raise CalendarError(
                        f"{label} failed with status {resp.status_code}", resp.status_code
                    )
                return resp.json()
            except httpx.HTTPError as e:
                last_error = CalendarError(f"{label} failed: {e}")
            except ValueError as e:
                raise CalendarError(f"{label} returned invalid JSON: {e}") from e
            except CalendarError as e:
                last_error = e

            retryable = last_error.status_code is None or last_error.status_code in RETRYABLE_STATUSES
            if attempt >= self.max_retries or not retryable:
                break
            delay = min(self.retry_delay * (2 ** attempt), self.max_retry_delay)
            logger.warning(
                "%s (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt + 1, self.max_retries, delay, last_error,
            )
            await asyncio.sleep(delay)

        logger.error("%s gave up: %s", label, last_error)
        raise last_error

    async def get_free_slots(self, start_date: str, end_date: str, time_zone: str) -> list[str]:
        """ISO start timestamps of free calendar slots between two local dates."""
        zone = ZoneInfo(time_zone)
        start = datetime.combine(parse_iso_date(start_date), time(0, 0), zone)
        end = datetime.combine(parse_iso_date(end_date), time(23, 59, 59), zone)
        data = await self._request(
            "GET",
            f"/calendars/{self.config.calendar_id}/free-slots",
            "Calendar free-slot lookup",
            params={
                "startDate": str(int(start.timestamp() * 1000)),
                "endDate": str(int(end.timestamp() * 1000)),
                "timezone": time_zone,
            },
        )
        return extract_slot_starts(data)

    async def find_contact(self, query: str, email: Optional[str] = None) -> Optional[str]:
        data = await self._request(
            "GET",
            "/contacts/",
            "Contact search",
            params={"locationId": self.config.location_id, "query": query},
        )
        for contact in data.get("contacts") or []:
            if email and (contact.get("email") or "").lower() == email.lower():
                return contact.get("id")
            if not email and contact.get("phone") and phones_match(contact["phone"], query):
                return contact.get("id")
        return None

    async def get_or_create_contact(
        self,
        name: str,
        phone: str,
        email: Optional[str] = None,
        address: Optional[str] = None,
    ) -> str:
        """Return the CRM contact id for this visitor, creating it if needed."""
        if email:
            contact_id = await self.find_contact(email, email=email)
            if contact_id:
                return contact_id
        if phone:
            digits = "".join(ch for ch in phone if ch.isdigit())
            contact_id = await self.find_contact(digits[-10:])
            if contact_id:
                return contact_id

        first_name, _, last_name = (name or "").strip().partition(" ")
        payload = {
            "locationId": self.config.location_id,
            "firstName": first_name,
            "lastName": last_name.strip(),
            "phone": normalize_crm_phone(phone) if phone else "",
        }
        if email:
            payload["email"] = email
        if address:
            payload["address1"] = address
        data = await self._request("POST", "/contacts/", "Contact creation", json=payload)
        contact_id = (data.get("contact") or {}).get("id")
        if not contact_id:
            raise CalendarError("Contact creation returned no id")
        return contact_id

    async def create_appointment(
        self,
        contact_id: str,
        start_time: str,
        end_time: str,
        title: str,
        address: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        data = await self._request(
            "POST",
            "/calendars/events/appointments",
            "Appointment creation",
            json={
                "calendarId": self.config.calendar_id,
                "locationId": self.config.location_id,
                "contactId": contact_id,
                "startTime": start_time,
                "endTime": end_time,
                "title": title,
                "address": address,
                "description": description or title,
                "appointmentStatus": "confirmed",
                "meetingLocationType": "address" if address else "custom",
                "toNotify": True,
                "ignoreFreeSlotValidation": False,
            },
        )
        appointment_id = data.get("id")
        if not appointment_id:
            raise CalendarError("Appointment creation returned no id")
        return appointment_id

    async def sync_booking(
        self, booking: Booking, service_summary: str, time_zone: str
    ) -> SyncResult:
        """Push a stored booking to the external calendar. Never raises."""
        if not (self.config.usable and self.config.location_id):
            return {
                "attempted": False,
                "synced": False,
                "reason": "Calendar integration not enabled or missing required settings",
            }
        result: SyncResult = {"attempted": True, "synced": False}
        try:
            contact_id = await self.get_or_create_contact(
                booking.customer_name,
                booking.customer_phone,
                booking.customer_email,
                booking.customer_address,
            )
            result["contact_id"] = contact_id
            title = (
                f"Cleaning: {service_summary}"
                if service_summary
                else f"Cleaning: {booking.customer_name} - {booking.total_duration_minutes} mins"
            )
            result["appointment_id"] = await self.create_appointment(
                contact_id,
                format_datetime_with_timezone(booking.booking_date, booking.start_time, time_zone),
                format_datetime_with_timezone(booking.booking_date, booking.end_time, time_zone),
                title,
                address=booking.customer_address,
            )
            result["synced"] = True
        except CalendarError as e:
            logger.error("Booking %s calendar sync failed: %s", booking.id, e)
            result["reason"] = str(e)
        return result

"""
Availability engine.

Computes open start times for a date from business hours, existing local
bookings and (optionally) the external calendar's free-slot feed.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol
from zoneinfo import ZoneInfo

from chat_orchestrator.providers.calendar import CalendarError
from chat_orchestrator.schemas.booking_schema import Booking, BusinessHours, DayHours
from chat_orchestrator.storage.base import Storage
from chat_orchestrator.utils import (
    add_days,
    is_valid_iso_date,
    minutes_to_time,
    parse_iso_date,
    time_to_minutes,
)

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 30


class FreeSlotSource(Protocol):
    """The part of the calendar client the engine depends on."""

    async def get_free_slots(self, start_date: str, end_date: str, time_zone: str) -> list[str]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def overlaps(start: str, end: str, other_start: str, other_end: str) -> bool:
    """Half-open interval overlap on HH:MM strings."""
    return start < other_end and end > other_start


def is_time_slot_available(start_time: str, end_time: str, bookings: list[Booking]) -> bool:
    return not any(overlaps(start_time, end_time, b.start_time, b.end_time) for b in bookings)


def free_times_for_date(free_slots: list[str], booking_date: str) -> set[str]:
    """Reduce calendar ISO start timestamps to HH:MM for one date."""
    times = set()
    for slot in free_slots:
        if not slot.startswith(booking_date) or "T" not in slot:
            continue
        hhmm = slot.split("T", 1)[1][:5]
        if len(hhmm) == 5:
            times.add(hhmm)
    return times


def compute_slots(
    day_hours: DayHours,
    duration_minutes: int,
    bookings: list[Booking],
    not_after_minutes: Optional[int] = None,
    calendar_free: Optional[set[str]] = None,
) -> list[str]:
    """Build the open-slot list for one day.

    Args:
        day_hours: Opening hours of the weekday.
        duration_minutes: Length of the requested job.
        bookings: Existing bookings on that date.
        not_after_minutes: When set (today), slots starting at or before this
            minute of the day are dropped.
        calendar_free: When set, a slot must also appear in this set.
    """
    if not day_hours.is_open:
        return []

    open_at = time_to_minutes(day_hours.open)
    close_at = time_to_minutes(day_hours.close)
    first = -(-open_at // SLOT_STEP_MINUTES) * SLOT_STEP_MINUTES

    slots = []
    for start in range(first, close_at, SLOT_STEP_MINUTES):
        if not_after_minutes is not None and start <= not_after_minutes:
            continue
        end = start + duration_minutes
        if end > close_at:
            continue
        start_time = minutes_to_time(start)
        end_time = minutes_to_time(end)
        if calendar_free is not None and start_time not in calendar_free:
            continue
        if not is_time_slot_available(start_time, end_time, bookings):
            continue
        slots.append(start_time)
    return slots


class AvailabilityEngine:
    """Open-slot computation bound to a storage and an optional calendar."""

    def __init__(
        self,
        storage: Storage,
        calendar: Optional[FreeSlotSource] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.storage = storage
        self.calendar = calendar
        self._now = now

    async def _hours_and_zone(self) -> tuple[BusinessHours, str]:
        company = await self.storage.get_company_profile()
        return company.business_hours, company.timezone

    def local_now(self, time_zone: str) -> datetime:
        return self._now().astimezone(ZoneInfo(time_zone))

    async def today_str(self) -> str:
        _, time_zone = await self._hours_and_zone()
        return self.local_now(time_zone).date().isoformat()

    async def _fetch_calendar(
        self, start_date: str, end_date: str, time_zone: str, require_calendar: bool
    ) -> Optional[list[str]]:
        if self.calendar is None:
            return None
        try:
            return await self.calendar.get_free_slots(start_date, end_date, time_zone)
        except CalendarError:
            if require_calendar:
                raise
            logger.warning(
                "Calendar free-slot lookup failed for %s..%s, using local hours only",
                start_date,
                end_date,
                exc_info=True,
            )
            return None

    async def _slots_for(
        self,
        booking_date: str,
        duration_minutes: int,
        hours: BusinessHours,
        time_zone: str,
        free_slots: Optional[list[str]],
    ) -> list[str]:
        day_hours = hours.for_weekday(parse_iso_date(booking_date).weekday())
        if not day_hours.is_open:
            return []
        bookings = await self.storage.get_bookings_for_date(booking_date)

        local_now = self.local_now(time_zone)
        not_after = None
        if booking_date == local_now.date().isoformat():
            not_after = local_now.hour * 60 + local_now.minute

        calendar_free = None
        if free_slots is not None:
            calendar_free = free_times_for_date(free_slots, booking_date)
        return compute_slots(day_hours, duration_minutes, bookings, not_after, calendar_free)

    async def get_availability_for_date(
        self, booking_date: str, duration_minutes: int, require_calendar: bool = False
    ) -> list[str]:
        """Open start times (HH:MM) for one ISO date.

        Raises:
            CalendarError: When ``require_calendar`` is set and the external
                calendar lookup fails.
        """
        hours, time_zone = await self._hours_and_zone()
        day_hours = hours.for_weekday(parse_iso_date(booking_date).weekday())
        if not day_hours.is_open:
            return []
        free_slots = await self._fetch_calendar(
            booking_date, booking_date, time_zone, require_calendar
        )
        return await self._slots_for(booking_date, duration_minutes, hours, time_zone, free_slots)

    async def get_availability_range(
        self,
        start_date: str,
        end_date: str,
        duration_minutes: int,
        require_calendar: bool = False,
    ) -> dict[str, list[str]]:
        """Open start times for every date in [start_date, end_date].

        The external calendar is queried once for the whole range.
        """
        if not is_valid_iso_date(start_date) or not is_valid_iso_date(end_date):
            return {}
        hours, time_zone = await self._hours_and_zone()
        free_slots = await self._fetch_calendar(start_date, end_date, time_zone, require_calendar)

        result: dict[str, list[str]] = {}
        cursor = start_date
        while cursor <= end_date:
            result[cursor] = await self._slots_for(
                cursor, duration_minutes, hours, time_zone, free_slots
            )
            cursor = add_days(cursor, 1)
        return result
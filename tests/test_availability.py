"""Tests for the availability engine."""

from datetime import datetime, timezone

import pytest

from chat_orchestrator.providers.calendar import CalendarError
from chat_orchestrator.schemas.booking_schema import BookingDraft, DayHours
from chat_orchestrator.tools.availability import (
    AvailabilityEngine,
    compute_slots,
    free_times_for_date,
    overlaps,
)
from tests.conftest import MONDAY, TODAY, TUESDAY, FrozenClock


class FakeCalendar:
    def __init__(self, slots=None, error: bool = False):
        self.slots = slots or []
        self.error = error
        self.calls = []

    async def get_free_slots(self, start_date, end_date, time_zone):
        self.calls.append((start_date, end_date, time_zone))
        if self.error:
            raise CalendarError("calendar down", 503)
        return self.slots


async def _book(storage, start: str, end: str, booking_date: str = MONDAY):
    await storage.create_booking(
        BookingDraft(
            booking_date=booking_date,
            start_time=start,
            end_time=end,
            total_duration_minutes=60,
            total_price=120,
            customer_name="Existing",
            customer_phone="555-000-0000",
            customer_address="1 Elm St",
        )
    )


class TestComputeSlots:
    def test_overlap_is_half_open(self):
        assert overlaps("10:00", "11:00", "10:30", "11:30") is True
        assert overlaps("10:00", "11:00", "11:00", "12:00") is False

    def test_closed_day(self):
        assert compute_slots(DayHours(is_open=False), 60, []) == []

    def test_job_must_end_by_close(self):
        slots = compute_slots(DayHours(open="09:00", close="12:00"), 90, [])
        assert slots == ["09:00", "09:30", "10:00", "10:30"]

    def test_open_time_rounds_up_to_step(self):
        slots = compute_slots(DayHours(open="08:15", close="10:00"), 30, [])
        assert slots[0] == "08:30"

    def test_free_times_for_date(self):
        free = ["2025-03-17T09:00:00-04:00", "2025-03-18T10:00:00-04:00", "garbage"]
        assert free_times_for_date(free, MONDAY) == {"09:00"}


class TestAvailabilityEngine:
    @pytest.mark.asyncio
    async def test_existing_booking_blocks_overlapping_starts(self, storage, clock):
        await _book(storage, "11:00", "12:00")
        engine = AvailabilityEngine(storage, now=clock)

        slots = await engine.get_availability_for_date(MONDAY, 60)

        assert "11:00" not in slots
        assert "10:30" not in slots
        assert "12:00" in slots
        assert slots[0] == "09:00"
        assert slots[-1] == "16:00"

    @pytest.mark.asyncio
    async def test_today_drops_past_slots(self, storage):
        # Monday 14:05 local
        clock = FrozenClock(datetime(2025, 3, 17, 18, 5, tzinfo=timezone.utc))
        engine = AvailabilityEngine(storage, now=clock)

        slots = await engine.get_availability_for_date(MONDAY, 60)

        assert slots == ["14:30", "15:00", "15:30", "16:00"]

    @pytest.mark.asyncio
    async def test_weekend_closed(self, storage, clock):
        engine = AvailabilityEngine(storage, now=clock)
        assert await engine.get_availability_for_date("2025-03-22", 60) == []

    @pytest.mark.asyncio
    async def test_today_str_uses_business_timezone(self, storage):
        # 02:00 UTC on Monday is still Sunday evening in New York
        clock = FrozenClock(datetime(2025, 3, 17, 2, 0, tzinfo=timezone.utc))
        engine = AvailabilityEngine(storage, now=clock)
        assert await engine.today_str() == TODAY

    @pytest.mark.asyncio
    async def test_calendar_slots_intersect(self, storage, clock):
        calendar = FakeCalendar(["2025-03-17T09:00:00-04:00", "2025-03-17T13:00:00-04:00"])
        engine = AvailabilityEngine(storage, calendar, now=clock)

        assert await engine.get_availability_for_date(MONDAY, 60) == ["09:00", "13:00"]
        assert calendar.calls == [(MONDAY, MONDAY, "America/New_York")]

    @pytest.mark.asyncio
    async def test_calendar_failure_falls_back_when_optional(self, storage, clock):
        engine = AvailabilityEngine(storage, FakeCalendar(error=True), now=clock)
        slots = await engine.get_availability_for_date(MONDAY, 60)
        assert slots[0] == "09:00"

    @pytest.mark.asyncio
    async def test_calendar_failure_raises_when_required(self, storage, clock):
        engine = AvailabilityEngine(storage, FakeCalendar(error=True), now=clock)
        with pytest.raises(CalendarError):
            await engine.get_availability_for_date(MONDAY, 60, require_calendar=True)

    @pytest.mark.asyncio
    async def test_range_queries_calendar_once(self, storage, clock):
        calendar = FakeCalendar(["2025-03-17T09:00:00-04:00", "2025-03-18T10:00:00-04:00"])
        engine = AvailabilityEngine(storage, calendar, now=clock)

        result = await engine.get_availability_range(MONDAY, TUESDAY, 60)

        assert result == {MONDAY: ["09:00"], TUESDAY: ["10:00"]}
        assert len(calendar.calls) == 1

    @pytest.mark.asyncio
    async def test_range_with_invalid_dates(self, storage, clock):
        engine = AvailabilityEngine(storage, now=clock)
        assert await engine.get_availability_range("soon", TUESDAY, 60) == {}

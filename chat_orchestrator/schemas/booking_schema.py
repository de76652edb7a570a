"""Catalog, business-hours, booking and lease data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class DayHours(BaseModel):
    """Opening hours for one weekday."""
    is_open: bool = True
    open: str = "08:00"
    close: str = "18:00"


class BusinessHours(BaseModel):
    """Opening hours per weekday."""
    monday: DayHours = Field(default_factory=DayHours)
    tuesday: DayHours = Field(default_factory=DayHours)
    wednesday: DayHours = Field(default_factory=DayHours)
    thursday: DayHours = Field(default_factory=DayHours)
    friday: DayHours = Field(default_factory=DayHours)
    saturday: DayHours = Field(
        default_factory=lambda: DayHours(is_open=False, open="09:00", close="14:00")
    )
    sunday: DayHours = Field(
        default_factory=lambda: DayHours(is_open=False, open="09:00", close="14:00")
    )

    def for_weekday(self, weekday: int) -> DayHours:
        """Hours for a Python weekday index (Monday == 0)."""
        return getattr(self, WEEKDAYS[weekday])


DEFAULT_BUSINESS_HOURS = BusinessHours()


class Service(BaseModel):
    """Bookable catalog service."""
    id: str
    name: str
    description: str = ""
    price: float = 0.0
    duration_minutes: int = 60


class Faq(BaseModel):
    id: str
    question: str
    answer: str


class CompanyProfile(BaseModel):
    """Business profile used in prompts, policies and booking rules."""
    name: str
    industry: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    timezone: str = "America/New_York"
    minimum_booking_value: float = 0.0
    business_hours: BusinessHours = Field(default_factory=BusinessHours)


class SyncStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    SYNCED = "synced"
    PENDING = "pending"


class BookingServiceLine(BaseModel):
    service_id: str
    service_name: str
    quantity: int = 1
    unit_price: float = 0.0


class BookingDraft(BaseModel):
    """Data needed to persist a booking, built by the create_booking tool."""
    conversation_id: Optional[str] = None
    booking_date: str
    start_time: str
    end_time: str
    total_duration_minutes: int
    total_price: float
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    customer_address: str
    services: list[BookingServiceLine] = Field(default_factory=list)


class Booking(BookingDraft):
    """Persisted booking."""
    id: str
    status: str = "confirmed"
    sync_status: SyncStatus = SyncStatus.NOT_REQUIRED
    external_contact_id: Optional[str] = None
    external_appointment_id: Optional[str] = None
    created_at: Optional[datetime] = None


class TimeSlotLease(BaseModel):
    """Short-lived mutual-exclusion record on a (booking_date, start_time) key."""
    booking_date: str
    start_time: str
    owner_id: str
    expires_at: datetime

    @property
    def key(self) -> tuple[str, str]:
        return (self.booking_date, self.start_time)

"""
The create_booking write path.

This is the only code that persists a Booking. Every attempt runs under a
time-slot lease for the exact (booking_date, start_time) and re-verifies the
slot against local bookings and (when configured) the external calendar
before writing. The lease is released on every exit path.
"""

import re
import uuid
from typing import Optional

from chat_orchestrator.conversation.audit import AuditTrail
from chat_orchestrator.logging_context import get_conversation_logger
from chat_orchestrator.prompts.messages import (
    BOOKING_CONFIRMED,
    BOOKING_PENDING_SYNC,
    get_error_message,
)
from chat_orchestrator.providers.calendar import CalendarClient, CalendarError, SyncResult
from chat_orchestrator.schemas.booking_schema import (
    BookingDraft,
    BookingServiceLine,
    SyncStatus,
)
from chat_orchestrator.storage.base import Notifier, Storage
from chat_orchestrator.tools.availability import AvailabilityEngine, is_time_slot_available
from chat_orchestrator.tools.leases import LeaseManager
from chat_orchestrator.tools.rate_limit import BookingLimiter
from chat_orchestrator.utils import add_days, add_minutes, is_valid_iso_date

logger = get_conversation_logger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

ALTERNATIVE_DAYS = 5
ALTERNATIVE_SUGGESTIONS = 3
ALTERNATIVE_SLOTS = 4


def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


class BookingWriter:
    """Creates bookings from ``create_booking`` tool arguments."""

    def __init__(
        self,
        storage: Storage,
        availability: AvailabilityEngine,
        leases: LeaseManager,
        limiter: BookingLimiter,
        audit: AuditTrail,
        calendar: Optional[CalendarClient] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.storage = storage
        self.availability = availability
        self.leases = leases
        self.limiter = limiter
        self.audit = audit
        self.calendar = calendar
        self.notifier = notifier

    @property
    def calendar_required(self) -> bool:
        return self.availability.calendar is not None

    async def _alternatives(self, booking_date: str, duration: int) -> dict:
        """Fresh slots for the requested date plus a few following days."""
        try:
            slots = await self.availability.get_availability_for_date(booking_date, duration)
            following = await self.availability.get_availability_range(
                add_days(booking_date, 1), add_days(booking_date, ALTERNATIVE_DAYS), duration
            )
        except CalendarError:
            logger.warning("Could not compute alternatives for %s", booking_date, exc_info=True)
            return {"booking_date": booking_date, "available_slots": [], "suggestions": []}
        suggestions = [
            {"date": day, "available_slots": sorted(day_slots)[:ALTERNATIVE_SLOTS]}
            for day, day_slots in following.items()
            if day_slots
        ][:ALTERNATIVE_SUGGESTIONS]
        return {"booking_date": booking_date, "available_slots": slots, "suggestions": suggestions}

    async def _sync(self, booking, service_names: str, time_zone: str) -> SyncResult:
        if self.calendar is None:
            return {
                "attempted": False,
                "synced": False,
                "reason": "Calendar integration not enabled or missing required settings",
            }
        return await self.calendar.sync_booking(booking, service_names, time_zone)

    async def _notify(self, booking) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_booking_created(booking)
        except Exception:
            logger.exception("Booking notification failed for %s", booking.id)

    async def create_booking(
        self, args: dict, conversation_id: Optional[str], language: str = "en"
    ) -> dict:
        conversation = (
            await self.storage.get_conversation(conversation_id) if conversation_id else None
        )
        cart = conversation.memory.cart if conversation else []
        cart_by_id = {line.service_id: line for line in cart}

        provided_ids = [_clean(i) for i in args.get("service_ids") or [] if _clean(i)]
        service_ids = list(dict.fromkeys(provided_ids))
        if cart and set(service_ids) != set(cart_by_id):
            if service_ids:
                logger.info(
                    "Using cart service ids %s instead of provided %s",
                    list(cart_by_id),
                    service_ids,
                )
            service_ids = list(cart_by_id)

        if conversation_id and self.limiter.is_limited(conversation_id):
            return {
                "success": False,
                "error": "Booking limit reached for this conversation.",
                "user_message": get_error_message("bookingLimitReached", language),
            }

        booking_date = _clean(args.get("booking_date"))
        start_time = _clean(args.get("start_time"))[:5]
        customer_name = _clean(args.get("customer_name"))
        customer_phone = _clean(args.get("customer_phone"))
        customer_email = _clean(args.get("customer_email")) or None
        customer_address = _clean(args.get("customer_address"))

        if (
            not service_ids
            or not is_valid_iso_date(booking_date)
            or not _HHMM.match(start_time)
            or not customer_name
            or not customer_phone
            or not customer_address
        ):
            error = "Missing required booking fields."
            if conversation_id:
                await self.audit.record(
                    conversation_id,
                    "[create_booking] Failed: Missing required fields",
                    type="booking_error",
                    severity="error",
                    step="validation",
                )
            return {
                "success": False,
                "error": error,
                "user_message": get_error_message("systemUnavailable", language),
            }

        lines: list[BookingServiceLine] = []
        total_price = 0.0
        total_duration = 0
        for service_id in service_ids:
            service = await self.storage.get_service(service_id)
            if service is None:
                return {
                    "success": False,
                    "error": f"Service ID {service_id} not found",
                    "user_message": get_error_message("systemUnavailable", language),
                }
            cart_line = cart_by_id.get(service_id)
            quantity = cart_line.quantity if cart_line else 1
            unit_price = cart_line.unit_price if cart_line else service.price
            total_price += unit_price * quantity
            total_duration += service.duration_minutes * quantity
            lines.append(
                BookingServiceLine(
                    service_id=service.id,
                    service_name=service.name,
                    quantity=quantity,
                    unit_price=unit_price,
                )
            )

        end_time = add_minutes(start_time, total_duration)
        owner_id = conversation_id or f"anonymous-{uuid.uuid4().hex}"

        if not await self.leases.acquire(booking_date, start_time, owner_id):
            return {
                "success": False,
                "error": "This time slot is being booked by another customer. Please select a different time.",
                "user_message": get_error_message("availabilityCheckFailed", language),
                **await self._alternatives(booking_date, total_duration),
            }

        try:
            return await self._create_under_lease(
                conversation_id=conversation_id,
                language=language,
                booking_date=booking_date,
                start_time=start_time,
                end_time=end_time,
                total_duration=total_duration,
                total_price=total_price,
                lines=lines,
                customer_name=customer_name,
                customer_phone=customer_phone,
                customer_email=customer_email,
                customer_address=customer_address,
            )
        except Exception:
            logger.exception("Unexpected error creating booking for %s %s", booking_date, start_time)
            return {
                "success": False,
                "error": "An unexpected error occurred.",
                "user_message": get_error_message("systemUnavailable", language),
            }
        finally:
            await self.leases.release(booking_date, start_time, owner_id)

    async def _create_under_lease(
        self,
        *,
        conversation_id: Optional[str],
        language: str,
        booking_date: str,
        start_time: str,
        end_time: str,
        total_duration: int,
        total_price: float,
        lines: list[BookingServiceLine],
        customer_name: str,
        customer_phone: str,
        customer_email: Optional[str],
        customer_address: str,
    ) -> dict:
        existing = await self.storage.get_bookings_for_date(booking_date)
        if not is_time_slot_available(start_time, end_time, existing):
            logger.warning("Slot %s %s-%s conflicts with a stored booking", booking_date, start_time, end_time)
            return {
                "success": False,
                "error": "Time slot is no longer available.",
                "user_message": get_error_message("availabilityCheckFailed", language),
                **await self._alternatives(booking_date, total_duration),
            }

        try:
            slots = await self.availability.get_availability_for_date(
                booking_date, total_duration, require_calendar=self.calendar_required
            )
        except CalendarError as e:
            logger.error("Availability check failed closed for %s: %s", booking_date, e)
            if conversation_id:
                await self.audit.record(
                    conversation_id,
                    "[create_booking] Failed: Availability check error",
                    type="booking_error",
                    severity="error",
                    step="availability",
                    error=str(e),
                )
            return {
                "success": False,
                "error": str(e) or "Failed to verify availability.",
                "user_message": get_error_message("availabilityCheckFailed", language),
            }

        if start_time not in slots:
            if conversation_id:
                await self.audit.record(
                    conversation_id,
                    f"[create_booking] Failed: Time slot {start_time} not available",
                    type="booking_error",
                    severity="warning",
                    step="availability",
                    available_slots=slots,
                )
            alternatives = await self._alternatives(booking_date, total_duration)
            return {
                "success": False,
                "error": "Selected time is unavailable. Choose another slot.",
                "user_message": get_error_message("availabilityCheckFailed", language),
                "booking_date": booking_date,
                "available_slots": slots,
                "suggestions": alternatives["suggestions"],
            }

        company = await self.storage.get_company_profile()
        minimum_note = ""
        if company.minimum_booking_value > 0 and total_price < company.minimum_booking_value:
            minimum_note = get_error_message(
                "minimumAdjustment", language, minimum=f"{company.minimum_booking_value:.2f}"
            )
            total_price = company.minimum_booking_value

        booking = await self.storage.create_booking(
            BookingDraft(
                conversation_id=conversation_id,
                booking_date=booking_date,
                start_time=start_time,
                end_time=end_time,
                total_duration_minutes=total_duration,
                total_price=round(total_price, 2),
                customer_name=customer_name,
                customer_phone=customer_phone,
                customer_email=customer_email,
                customer_address=customer_address,
                services=lines,
            )
        )
        service_names = ", ".join(line.service_name for line in lines)

        sync = await self._sync(booking, service_names, company.timezone)
        pending_sync = bool(sync.get("attempted")) and not sync.get("synced")
        if sync.get("synced"):
            status = SyncStatus.SYNCED
        elif pending_sync:
            status = SyncStatus.PENDING
        else:
            status = SyncStatus.NOT_REQUIRED
        # Booking is already persisted; the turn still reports success
        try:
            await self.storage.update_booking_sync(
                booking.id, status, sync.get("contact_id"), sync.get("appointment_id")
            )
        except Exception:
            logger.exception("Could not record sync status %s for booking %s", status.value, booking.id)

        if conversation_id:
            await self._record_success(
                conversation_id, booking, service_names, total_price, sync, pending_sync
            )
            self.limiter.record(conversation_id)

        await self._notify(booking)
        logger.info(
            "Booking %s created for %s %s-%s (%s)",
            booking.id, booking_date, start_time, end_time, status.value,
        )

        result = {
            "success": True,
            "booking_id": booking.id,
            "booking_date": booking_date,
            "start_time": start_time,
            "end_time": end_time,
            "total_duration_minutes": total_duration,
            "total_price": f"{total_price:.2f}",
            "services": [{"id": line.service_id, "name": line.service_name} for line in lines],
            "minimum_adjustment_note": minimum_note,
        }
        if pending_sync:
            result["warning"] = BOOKING_PENDING_SYNC
            result["pending_sync"] = True
        else:
            result["user_message"] = BOOKING_CONFIRMED
        return result

    async def _record_success(
        self,
        conversation_id: str,
        booking,
        service_names: str,
        total_price: float,
        sync: SyncResult,
        pending_sync: bool,
    ) -> None:
        conversation = await self.storage.get_conversation(conversation_id)
        if conversation is not None:
            conversation.visitor_name = booking.customer_name
            conversation.visitor_phone = booking.customer_phone
            conversation.visitor_address = booking.customer_address
            if booking.customer_email:
                conversation.visitor_email = booking.customer_email
            await self.storage.update_conversation(conversation)

        if sync.get("synced"):
            sync_label = f"Contact {sync.get('contact_id')} | Appointment {sync.get('appointment_id')}"
        elif sync.get("attempted"):
            sync_label = "Calendar sync failed"
        else:
            sync_label = "Calendar sync skipped"
        await self.audit.record(
            conversation_id,
            f"[SUCCESS] Booking created: {booking.booking_date} {booking.start_time}-{booking.end_time}"
            f" | {service_names} | ${total_price:.2f} | {sync_label}",
            type="booking_created",
            step="success",
            booking_id=booking.id,
            sync_attempted=bool(sync.get("attempted")),
            synced=bool(sync.get("synced")),
        )
        if pending_sync:
            logger.warning("Booking %s saved locally, calendar sync pending", booking.id)
            await self.audit.record(
                conversation_id,
                "[WARNING] Booking created locally but calendar sync failed: "
                f"{sync.get('reason') or 'Unknown error'}",
                type="booking_fallback",
                severity="warning",
                step="calendar_sync",
                booking_id=booking.id,
                requires_manual_sync=True,
            )

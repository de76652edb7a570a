"""
Tool registry and dispatcher.

Declares the JSON schemas offered to the model and executes tool calls
against storage, the availability engine and the booking writer. Handlers
never raise into the model loop: every outcome, including failure, is a
JSON-serializable dict.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from chat_orchestrator.conversation.audit import AuditTrail
from chat_orchestrator.conversation.parsing import (
    detect_date_window,
    format_availability_response,
    format_business_hours_summary,
    is_affirmative_response,
    normalize_service_name,
    pick_random_slots,
)
from chat_orchestrator.logging_context import get_conversation_logger
from chat_orchestrator.prompts.messages import get_error_message
from chat_orchestrator.providers.calendar import CalendarClient, CalendarError
from chat_orchestrator.schemas.booking_schema import Service
from chat_orchestrator.schemas.conversation_schema import Conversation, IntakeObjective
from chat_orchestrator.schemas.memory_schema import SuggestedOption
from chat_orchestrator.storage.base import Storage
from chat_orchestrator.tools import cart as cart_ops
from chat_orchestrator.tools.availability import AvailabilityEngine
from chat_orchestrator.tools.booking import BookingWriter
from chat_orchestrator.tools.cache import TTLCache
from chat_orchestrator.tools.catalog import (
    format_service,
    rank_faqs,
    rank_services,
    resolve_service_by_name,
)
from chat_orchestrator.utils import add_days, is_valid_iso_date, parse_iso_date

logger = get_conversation_logger(__name__)

LIST_SERVICES = "list_services"
GET_SERVICE_DETAILS = "get_service_details"
SUGGEST_BOOKING_DATES = "suggest_booking_dates"
CREATE_BOOKING = "create_booking"
UPDATE_CONTACT = "update_contact"
UPDATE_MEMORY = "update_memory"
ADD_SERVICE = "add_service"
REMOVE_SERVICE = "remove_service"
GET_CART = "get_cart"
CLEAR_CART = "clear_cart"
GET_BUSINESS_POLICIES = "get_business_policies"
SEARCH_FAQS = "search_faqs"

# Tools whose reply should not be overridden by the next intake question
INFORMATIONAL_TOOLS = frozenset(
    {
        SEARCH_FAQS,
        GET_BUSINESS_POLICIES,
        SUGGEST_BOOKING_DATES,
        CREATE_BOOKING,
        LIST_SERVICES,
        GET_SERVICE_DETAILS,
    }
)

DEFAULT_SUGGESTIONS = 3
MAX_SUGGESTIONS = 5
SLOTS_PER_SUGGESTION = 4
DAYS_TO_SCAN = 10
DAYS_TO_SCAN_SPECIFIC = 5

_MEMORY_FIELDS = (
    "zipcode",
    "service_type",
    "service_details",
    "preferred_date",
    "selected_date",
    "selected_time",
    "name",
    "phone",
    "email",
    "address",
)


def _function(name: str, description: str, properties: dict, required: Optional[list] = None) -> dict:
    parameters: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        parameters["required"] = required
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


def build_tool_definitions(enabled_objectives: list[IntakeObjective]) -> list[dict]:
    """Tool schemas for the model; create_booking.required follows the intake flow."""
    enabled = {o.id.value for o in enabled_objectives}
    booking_required = ["service_ids", "booking_date", "start_time"]
    for objective_id, field_name in (
        ("name", "customer_name"),
        ("phone", "customer_phone"),
        ("address", "customer_address"),
    ):
        if objective_id in enabled:
            booking_required.append(field_name)

    service_id = {"type": "string", "description": "ID of the service from list_services"}
    return [
        _function(
            LIST_SERVICES,
            "List all available cleaning services from our catalog. CRITICAL: You must ONLY "
            "recommend services that exist in this list. Never combine multiple smaller services "
            "when a single larger service exists. For example, if customer needs a 7-seater "
            "cleaned, recommend the 7-8 Seater service, NOT multiple 3-seater sessions.",
            {
                "query": {
                    "type": "string",
                    "description": "Search by size/type (e.g. '7 seater', 'sectional', 'large', "
                    "'loveseat'). The system uses smart matching to find relevant services.",
                }
            },
        ),
        _function(
            GET_SERVICE_DETAILS,
            "Get details for a specific service",
            {"service_id": service_id},
            ["service_id"],
        ),
        _function(
            SUGGEST_BOOKING_DATES,
            "Get up to 3 suggested available dates for booking. Use this to proactively suggest "
            "dates to the customer. Can also check specific date or week if customer requests it.",
            {
                "service_id": {**service_id, "description": "ID of the service to determine duration"},
                "specific_date": {
                    "type": "string",
                    "description": "Optional specific date to check (YYYY-MM-DD). If provided, "
                    "will check this date and surrounding dates.",
                },
                "date_window": {
                    "type": "string",
                    "description": "Optional relative window in the customer's words "
                    "(e.g. 'next week', 'this week', 'in two weeks').",
                },
                "max_suggestions": {
                    "type": "number",
                    "description": "Maximum number of date suggestions to return (default 3, max 5)",
                },
            },
            ["service_id"],
        ),
        _function(
            CREATE_BOOKING,
            "Create a booking for one or more services once the customer has provided all "
            "required details and explicitly confirmed the final summary",
            {
                "service_ids": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "IDs of services to book",
                },
                "booking_date": {
                    "type": "string",
                    "description": "Booking date in YYYY-MM-DD (business timezone)",
                },
                "start_time": {
                    "type": "string",
                    "description": "Start time in HH:mm (24h, business timezone)",
                },
                "customer_name": {"type": "string", "description": "Customer full name"},
                "customer_email": {"type": "string", "description": "Customer email (only if provided)"},
                "customer_phone": {"type": "string", "description": "Customer phone"},
                "customer_address": {
                    "type": "string",
                    "description": "Full address with street, city, state, and unit if applicable",
                },
                "notes": {"type": "string", "description": "Any additional notes from the customer"},
            },
            booking_required,
        ),
        _function(
            UPDATE_CONTACT,
            "Save visitor contact info (name/email/phone) to the conversation as soon as it is provided",
            {
                "name": {"type": "string", "description": "Visitor name"},
                "email": {"type": "string", "description": "Visitor email"},
                "phone": {"type": "string", "description": "Visitor phone"},
            },
        ),
        _function(
            UPDATE_MEMORY,
            "Update the conversation memory with collected information. Call this after "
            "collecting each piece of information to track progress. IMPORTANT: Use add_service "
            "to add services to the cart.",
            {
                "zipcode": {"type": "string", "description": "Customer's ZIP code"},
                "service_type": {
                    "type": "string",
                    "description": "Type of service selected (e.g., '3-seater sofa cleaning')",
                },
                "service_details": {"type": "string", "description": "Service details (size, material, notes)"},
                "preferred_date": {"type": "string", "description": "Customer's preferred date"},
                "selected_date": {"type": "string", "description": "Confirmed booking date (YYYY-MM-DD)"},
                "selected_time": {"type": "string", "description": "Confirmed booking time (HH:mm)"},
                "name": {"type": "string", "description": "Customer name"},
                "phone": {"type": "string", "description": "Customer phone"},
                "email": {"type": "string", "description": "Customer email"},
                "address": {"type": "string", "description": "Customer full address"},
                "current_step": {"type": "string", "description": "Current step in the intake flow"},
                "completed_step": {"type": "string", "description": "Step that was just completed"},
            },
        ),
        _function(
            ADD_SERVICE,
            "Add a service to the customer's cart. Call this IMMEDIATELY after customer confirms "
            "each service. This tracks all services for the final booking.",
            {
                "service_id": service_id,
                "service_name": {"type": "string", "description": "Name of the service"},
                "price": {"type": "number", "description": "Price of the service"},
                "quantity": {"type": "number", "description": "Quantity of the service (default 1)"},
            },
            ["service_id", "service_name", "price"],
        ),
        _function(
            REMOVE_SERVICE,
            "Remove a service from the customer's cart when they no longer want it",
            {
                "service_id": service_id,
                "service_name": {"type": "string", "description": "Name of the service"},
            },
        ),
        _function(GET_CART, "Get current services in the customer's cart with total price", {}),
        _function(CLEAR_CART, "Remove every service from the customer's cart", {}),
        _function(GET_BUSINESS_POLICIES, "Get business hours and any minimum booking rules", {}),
        _function(
            SEARCH_FAQS,
            "Search frequently asked questions database to answer questions about policies, "
            "cleaning process, products, guarantees, cancellation, and other common inquiries",
            {
                "query": {
                    "type": "string",
                    "description": "Optional search keywords to filter FAQs (e.g., 'cancellation', "
                    "'products', 'guarantee'). Leave empty to get all FAQs.",
                }
            },
        ),
    ]


@dataclass
class ToolContext:
    """Per-call context: who is asking and what they just said."""

    conversation_id: Optional[str] = None
    language: str = "en"
    user_message: str = ""
    user_message_id: Optional[str] = None
    # Set by the orchestrator's auto-booking path after a verified confirmation
    confirmed: bool = False


def _as_id(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip() if value is not None else ""


def _failure(error: str, user_message: Optional[str] = None, **extra: Any) -> dict:
    result: dict[str, Any] = {"success": False, "error": error}
    if user_message:
        result["user_message"] = user_message
    result.update(extra)
    return result


Handler = Callable[[dict, ToolContext], Awaitable[dict]]


class ToolDispatcher:
    """Executes model tool calls by name."""

    def __init__(
        self,
        storage: Storage,
        availability: AvailabilityEngine,
        booking: BookingWriter,
        cache: TTLCache,
        audit: AuditTrail,
        calendar: Optional[CalendarClient] = None,
    ) -> None:
        self.storage = storage
        self.availability = availability
        self.booking = booking
        self.cache = cache
        self.audit = audit
        self.calendar = calendar
        self._handlers: dict[str, Handler] = {
            LIST_SERVICES: self._list_services,
            GET_SERVICE_DETAILS: self._get_service_details,
            SUGGEST_BOOKING_DATES: self._suggest_booking_dates,
            CREATE_BOOKING: self._create_booking,
            UPDATE_CONTACT: self._update_contact,
            UPDATE_MEMORY: self._update_memory,
            ADD_SERVICE: self._add_service,
            REMOVE_SERVICE: self._remove_service,
            GET_CART: self._get_cart,
            CLEAR_CART: self._clear_cart,
            GET_BUSINESS_POLICIES: self._get_business_policies,
            SEARCH_FAQS: self._search_faqs,
        }

    async def services(self) -> list[Service]:
        return await self.cache.get_or_load("services", self.storage.list_services)

    async def execute(self, name: str, args: Optional[dict], ctx: ToolContext) -> dict:
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("Model requested unknown tool %s", name)
            return _failure(f"Tool {name} not implemented or found")
        try:
            return await handler(args or {}, ctx)
        except Exception:
            logger.exception("Tool %s failed", name)
            return _failure(
                "An unexpected error occurred.",
                get_error_message("systemUnavailable", ctx.language),
            )

    async def _conversation(self, ctx: ToolContext) -> Optional[Conversation]:
        if not ctx.conversation_id:
            return None
        return await self.storage.get_conversation(ctx.conversation_id)

    # -- catalog ------------------------------------------------------------

    async def _list_services(self, args: dict, ctx: ToolContext) -> dict:
        ranked = rank_services(await self.services(), args.get("query"))
        return {"success": True, "services": [format_service(s) for s in ranked]}

    async def _get_service_details(self, args: dict, ctx: ToolContext) -> dict:
        service_id = _as_id(args.get("service_id"))
        if not service_id:
            return _failure("Service ID is required")
        service = await self.storage.get_service(service_id)
        if service is None:
            return _failure("Service not found")
        return {"success": True, "service": format_service(service)}

    async def _search_faqs(self, args: dict, ctx: ToolContext) -> dict:
        faqs = await self.cache.get_or_load("faqs", self.storage.list_faqs)
        return {"success": True, **rank_faqs(faqs, args.get("query"))}

    async def _get_business_policies(self, args: dict, ctx: ToolContext) -> dict:
        company = await self.storage.get_company_profile()
        return {
            "success": True,
            "business_name": company.name,
            "email": company.email,
            "phone": company.phone,
            "address": company.address,
            "minimum_booking_value": company.minimum_booking_value,
            "business_hours": format_business_hours_summary(company.business_hours),
        }

    # -- availability -------------------------------------------------------

    async def _suggest_booking_dates(self, args: dict, ctx: ToolContext) -> dict:
        service_id = _as_id(args.get("service_id"))
        if not service_id:
            return _failure("Service ID is required")
        service = await self.storage.get_service(service_id)
        if service is None:
            return _failure("Service not found")

        window = detect_date_window(args.get("date_window") or "")
        try:
            requested = int(args.get("max_suggestions") or 0)
        except (TypeError, ValueError):
            requested = 0
        default_max = window["max_suggestions"] if window else DEFAULT_SUGGESTIONS
        max_suggestions = min(max(requested or default_max, 1), MAX_SUGGESTIONS)

        company = await self.storage.get_company_profile()
        today = await self.availability.today_str()
        specific = args.get("specific_date")
        if specific and is_valid_iso_date(specific) and specific >= today:
            start, days = specific, DAYS_TO_SCAN_SPECIFIC
        elif window:
            start, days = add_days(today, window["start_offset_days"]), window["window_days"]
        else:
            start, days = today, DAYS_TO_SCAN

        try:
            availability = await self.availability.get_availability_range(
                start,
                add_days(start, days),
                service.duration_minutes,
                require_calendar=self.availability.calendar is not None,
            )
        except CalendarError:
            logger.exception("suggest_booking_dates failed for %s..+%d", start, days)
            return _failure(
                "Failed to check availability",
                get_error_message("availabilityCheckFailed", ctx.language),
                message=get_error_message("availabilityCheckFailed", ctx.language),
            )

        suggestions = [
            {
                "date": day,
                "day_of_week": parse_iso_date(day).strftime("%A"),
                "available_slots": pick_random_slots(slots, SLOTS_PER_SUGGESTION),
            }
            for day, slots in availability.items()
            if slots
        ][:max_suggestions]

        await self._remember_suggestions(ctx, suggestions)
        return {
            "success": True,
            "suggestions": suggestions,
            "formatted_text": format_availability_response(suggestions),
            "time_zone": company.timezone,
            "calendar_provider": "external" if self.availability.calendar is not None else "local",
        }

    async def _remember_suggestions(self, ctx: ToolContext, suggestions: list[dict]) -> None:
        conversation = await self._conversation(ctx)
        if conversation is None:
            return
        memory = conversation.memory
        memory.last_suggested_options = [
            SuggestedOption(date=s["date"], available_slots=s["available_slots"]) for s in suggestions
        ]
        first = suggestions[0] if suggestions else None
        memory.last_suggested_date = first["date"] if first else None
        memory.last_suggested_slots = list(first["available_slots"]) if first else []
        await self.storage.update_conversation(conversation)

    # -- contact and memory -------------------------------------------------

    async def _update_contact(self, args: dict, ctx: ToolContext) -> dict:
        name = (args.get("name") or "").strip()
        email = (args.get("email") or "").strip()
        phone = (args.get("phone") or "").strip()
        conversation = await self._conversation(ctx)
        if conversation is None:
            return _failure("Conversation ID missing")
        if not (name or email or phone):
            return _failure("Provide at least one of name, email, or phone")

        if name:
            conversation.visitor_name = name
        if email:
            conversation.visitor_email = email
        if phone:
            conversation.visitor_phone = phone
        await self.storage.update_conversation(conversation)

        contact_id = None
        if (
            self.calendar is not None
            and self.calendar.config.usable
            and self.calendar.config.location_id
            and (conversation.visitor_email or conversation.visitor_phone)
        ):
            contact_id = await self._sync_contact(conversation)

        return {
            "success": True,
            "visitor_name": conversation.visitor_name,
            "visitor_email": conversation.visitor_email,
            "visitor_phone": conversation.visitor_phone,
            "contact_id": contact_id,
        }

    async def _sync_contact(self, conversation: Conversation) -> Optional[str]:
        try:
            contact_id = await self.calendar.get_or_create_contact(
                conversation.visitor_name or "",
                conversation.visitor_phone or "",
                conversation.visitor_email,
            )
        except CalendarError as e:
            logger.warning("Calendar contact sync failed: %s", e)
            await self.audit.record(
                conversation.id,
                f"[WARNING] Calendar contact sync failed: {e}. Contact saved locally only.",
                type="contact_sync_error",
                severity="warning",
                requires_manual_sync=True,
            )
            return None
        await self.audit.record(
            conversation.id,
            f"Calendar contact synced: {conversation.visitor_name or 'Unknown'} | "
            f"{conversation.visitor_email or 'no email'} | "
            f"{conversation.visitor_phone or 'no phone'} | ID {contact_id}",
            type="contact_sync",
            contact_id=contact_id,
        )
        return contact_id

    async def _update_memory(self, args: dict, ctx: ToolContext) -> dict:
        conversation = await self._conversation(ctx)
        if conversation is None:
            return _failure("Conversation not found")

        memory = conversation.memory
        for field_name in _MEMORY_FIELDS:
            value = args.get(field_name)
            if isinstance(value, str):
                value = value.strip()
            if value:
                setattr(memory.collected_data, field_name, str(value))
        if args.get("current_step"):
            memory.current_step = str(args["current_step"])
        if args.get("completed_step"):
            memory.mark_completed(str(args["completed_step"]))

        collected = memory.collected_data
        if args.get("zipcode"):
            conversation.visitor_zipcode = collected.zipcode
        if args.get("address"):
            conversation.visitor_address = collected.address
        if args.get("name"):
            conversation.visitor_name = collected.name
        if args.get("phone"):
            conversation.visitor_phone = collected.phone
        if args.get("email"):
            conversation.visitor_email = collected.email
        await self.storage.update_conversation(conversation)
        return {"success": True, "memory": memory.model_dump(mode="json")}

    # -- cart ---------------------------------------------------------------

    async def _add_service(self, args: dict, ctx: ToolContext) -> dict:
        service_name = (args.get("service_name") or "").strip()
        if not service_name:
            return _failure("Missing service_name")
        conversation = await self._conversation(ctx)
        if conversation is None:
            return _failure("Conversation not found")

        normalized_name = normalize_service_name(service_name)
        service_id = _as_id(args.get("service_id"))
        service = await self.storage.get_service(service_id) if service_id else None
        if service is not None and normalize_service_name(service.name) != normalized_name:
            # The id and the name disagree; the name is what the visitor saw
            service = None
        if service is None:
            service = resolve_service_by_name(await self.services(), service_name)
        if service is None:
            return _failure("Service not found for provided name")

        memory = conversation.memory
        if (
            memory.auto_added_message_id
            and ctx.user_message_id
            and memory.auto_added_message_id == ctx.user_message_id
            and normalized_name in memory.auto_added_services
        ):
            return {
                **cart_ops.view(memory),
                "message": f"Already added {service.name} to cart.",
            }

        try:
            quantity = max(int(float(args.get("quantity") or 1)), 1)
        except (TypeError, ValueError):
            quantity = 1
        unit_price = service.price
        line, merged = cart_ops.add_line(memory, service.id, service.name, unit_price, quantity)

        if merged:
            message = f"Updated {service.name} quantity to {line.quantity}"
        else:
            collected = memory.collected_data
            collected.service_type = collected.service_type or service.name
            collected.service_details = collected.service_details or service.name
            memory.mark_completed("serviceType", "serviceDetails")
            message = (
                f"Added {service.name} ({quantity} x ${unit_price:g}) to cart. "
                f"Total: ${memory.cart_total():g}"
            )
        await self.storage.update_conversation(conversation)
        logger.info("Cart now has %d line(s)", len(memory.cart))
        return {
            **cart_ops.view(memory),
            "added": {
                "service_id": service.id,
                "service_name": service.name,
                "unit_price": unit_price,
                "quantity": quantity,
            },
            "message": message,
        }

    async def _remove_service(self, args: dict, ctx: ToolContext) -> dict:
        conversation = await self._conversation(ctx)
        if conversation is None:
            return _failure("Conversation not found")
        removed = cart_ops.remove_line(
            conversation.memory, _as_id(args.get("service_id")) or None, args.get("service_name")
        )
        if removed is None:
            return _failure("Service not found in cart")
        await self.storage.update_conversation(conversation)
        return {
            **cart_ops.view(conversation.memory),
            "message": f"Removed {removed.service_name} from cart. "
            f"Total: ${conversation.memory.cart_total():g}",
        }

    async def _get_cart(self, args: dict, ctx: ToolContext) -> dict:
        conversation = await self._conversation(ctx)
        if conversation is None:
            return _failure("Conversation not found")
        return dict(cart_ops.view(conversation.memory))

    async def _clear_cart(self, args: dict, ctx: ToolContext) -> dict:
        conversation = await self._conversation(ctx)
        if conversation is None:
            return _failure("Conversation not found")
        removed = cart_ops.clear(conversation.memory)
        await self.storage.update_conversation(conversation)
        return {**cart_ops.view(conversation.memory), "message": f"Cart cleared ({removed} removed)."}

    # -- booking ------------------------------------------------------------

    async def _create_booking(self, args: dict, ctx: ToolContext) -> dict:
        if not (ctx.confirmed or is_affirmative_response(ctx.user_message)):
            logger.warning("create_booking refused: no customer confirmation this turn")
            return _failure(
                "Booking requires explicit customer confirmation.",
                instruction=(
                    "Do not book yet. Present the booking summary (services, date, time, "
                    "address, total) and ask the customer to confirm. Call create_booking "
                    "only after they reply yes."
                ),
                requires_confirmation=True,
            )
        return await self.booking.create_booking(args, ctx.conversation_id, ctx.language)

"""
Heuristic field capture that runs before the model sees a turn.

The model sometimes answers narrowly without calling update_memory or
update_contact. These helpers scan the raw visitor message and write what
they find straight into the conversation so the intake flow keeps moving.
All functions mutate the passed Conversation in place; persisting is the
caller's job.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from chat_orchestrator.conversation.parsing import (
    looks_like_address,
    looks_like_name,
    parse_address,
    parse_name,
    parse_phone,
    parse_relative_date,
    parse_time,
    parse_zip,
)
from chat_orchestrator.schemas.conversation_schema import Conversation, Message, MessageRole, ObjectiveId
from chat_orchestrator.schemas.memory_schema import ConversationMemory

logger = logging.getLogger(__name__)

_ISO_IN_TEXT = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")


@dataclass
class CaptureResult:
    memory_updates: dict[str, str] = field(default_factory=dict)
    contact_updates: dict[str, str] = field(default_factory=dict)
    labels: list[str] = field(default_factory=list)

    @property
    def captured(self) -> bool:
        return bool(self.memory_updates)

    @property
    def phone(self) -> Optional[str]:
        return self.memory_updates.get("phone")


def capture_contact_fields(
    conversation: Conversation,
    text: str,
    visible_history: int,
    min_history_for_name: int,
    pending_objective: Optional[str] = None,
) -> CaptureResult:
    """Pull ZIP, name, phone and address out of ``text``.

    A field that is already collected (or whose step is completed) is never
    overwritten. A bare name ("Maria Silva") is only accepted once the
    conversation has ``min_history_for_name`` visible messages and the name
    step is the one being asked for.
    """
    memory = conversation.memory
    collected = memory.collected_data
    done = set(memory.completed_steps)
    result = CaptureResult()

    if "zipcode" not in done and not collected.zipcode:
        zipcode = parse_zip(text)
        if zipcode:
            result.memory_updates["zipcode"] = zipcode
            result.labels.append(f"zipcode:{zipcode}")

    phone = parse_phone(text)
    address = parse_address(text)
    if address is None and not phone and looks_like_address(text):
        # "555-123-4567, thanks" passes the comma rule; a phone reply is not an address
        address = text.strip()

    if "name" not in done and not collected.name:
        name = parse_name(text)
        if (
            name is None
            and visible_history >= min_history_for_name
            and pending_objective == ObjectiveId.NAME.value
            and looks_like_name(text)
            and not phone
            and not address
        ):
            name = text.strip()
        if name:
            result.memory_updates["name"] = name
            result.contact_updates["name"] = name
            result.labels.append(f"name:{name}")

    if "phone" not in done and not collected.phone and phone:
        result.memory_updates["phone"] = phone
        result.contact_updates["phone"] = phone
        result.labels.append(f"phone:{phone}")

    if "address" not in done and not collected.address and address:
        result.memory_updates["address"] = address
        result.labels.append("address")

    if not result.captured:
        return result

    for key, value in result.memory_updates.items():
        setattr(collected, key, value)
    memory.mark_completed(*result.memory_updates)
    if "zipcode" in result.memory_updates:
        conversation.visitor_zipcode = result.memory_updates["zipcode"]
    if "address" in result.memory_updates:
        conversation.visitor_address = result.memory_updates["address"]
    if "name" in result.memory_updates:
        conversation.visitor_name = result.memory_updates["name"]
    if "phone" in result.memory_updates:
        conversation.visitor_phone = result.memory_updates["phone"]
    logger.info("Auto-captured %s", ", ".join(result.labels))
    return result


def _mentioned_date(text: str, today: str, candidates: list[str]) -> Optional[str]:
    iso = _ISO_IN_TEXT.search(text or "")
    if iso and iso.group(1) in candidates:
        return iso.group(1)
    relative = parse_relative_date(text, today)
    if relative in candidates:
        return relative
    return None


def resolve_selected_slot(
    memory: ConversationMemory, text: str, today: str
) -> Optional[tuple[str, str]]:
    """Match a short reply like "10am" against the last shown options.

    Returns ``(date, time)`` or None. When several shown dates offer the
    same time the reply must name the date; otherwise nothing is picked.
    """
    chosen_time = parse_time(text)
    if not chosen_time:
        return None

    options = memory.last_suggested_options
    if options:
        dates = [o.date for o in options]
        named = _mentioned_date(text, today, dates)
        if named:
            option = next(o for o in options if o.date == named)
            if not option.available_slots or chosen_time in option.available_slots:
                return named, chosen_time
            return None
        matching = [o for o in options if chosen_time in o.available_slots]
        if len(matching) == 1:
            return matching[0].date, chosen_time
        if len(matching) > 1:
            logger.info(
                "Time %s offered on %d dates; waiting for the visitor to pick one",
                chosen_time,
                len(matching),
            )
            return None

    if memory.last_suggested_date and (
        not memory.last_suggested_slots or chosen_time in memory.last_suggested_slots
    ):
        return memory.last_suggested_date, chosen_time
    return None


def apply_selected_slot(memory: ConversationMemory, booking_date: str, start_time: str) -> None:
    collected = memory.collected_data
    collected.preferred_date = collected.preferred_date or booking_date
    collected.selected_date = booking_date
    collected.selected_time = start_time
    memory.mark_completed("date")
    memory.clear_suggestions()


def latest_proposed_service_id(messages: list[Message]) -> Optional[str]:
    """Service id from the most recent add_service tool call, if any."""
    for message in reversed(messages):
        metadata = message.metadata
        if metadata.get("type") != "tool_call" or metadata.get("tool_name") != "add_service":
            continue
        service_id = (metadata.get("tool_args") or {}).get("service_id")
        if service_id:
            if isinstance(service_id, float) and service_id.is_integer():
                service_id = int(service_id)
            return str(service_id)
    return None


def last_visible_assistant_message(messages: list[Message]) -> Optional[Message]:
    for message in reversed(messages):
        if message.role == MessageRole.ASSISTANT and not message.internal:
            return message
    return None


def missing_booking_fields(conversation: Conversation) -> list[str]:
    """What an auto-booking would still lack, in visitor-facing words."""
    memory = conversation.memory
    collected = memory.collected_data
    checks = [
        ("service selection", bool(memory.cart)),
        ("preferred date", bool(collected.selected_date or collected.preferred_date)),
        ("time slot", bool(collected.selected_time)),
        ("your name", bool(collected.name or conversation.visitor_name)),
        ("phone number", bool(collected.phone or conversation.visitor_phone)),
        ("address", bool(collected.address or conversation.visitor_address)),
    ]
    return [label for label, present in checks if not present]

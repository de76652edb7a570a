"""
Intake state tracker.

Walks a fixed, ordered list of intake objectives and returns the first one
whose completion predicate is still false. Completion is always derived from
the conversation's memory and denormalized contact fields, never stored as a
separate flag, so a value captured out of order satisfies its step at once.

Usage:
    tracker = IntakeTracker(chat_settings.intake_objectives)
    objective = tracker.next_objective(conversation)
    if objective is None:
        ...  # every step is complete
"""

import logging
from typing import Optional

from chat_orchestrator.schemas.conversation_schema import (
    Conversation,
    IntakeObjective,
    Message,
    ObjectiveId,
)

logger = logging.getLogger(__name__)

DEFAULT_INTAKE_OBJECTIVES: list[IntakeObjective] = [
    IntakeObjective(
        id=ObjectiveId.SERVICE_TYPE, label="Service type", description="Which service is requested"
    ),
    IntakeObjective(
        id=ObjectiveId.SERVICE_DETAILS,
        label="Service details",
        description="Extra details (size, options, notes)",
    ),
    IntakeObjective(
        id=ObjectiveId.ZIPCODE, label="Zip code", description="Collect ZIP code to validate service area"
    ),
    IntakeObjective(
        id=ObjectiveId.DATE,
        label="Preferred date",
        description="Ask for a preferred date before showing availability",
    ),
    IntakeObjective(id=ObjectiveId.NAME, label="Name", description="Customer full name"),
    IntakeObjective(id=ObjectiveId.PHONE, label="Phone", description="Phone number for confirmations"),
    IntakeObjective(
        id=ObjectiveId.ADDRESS, label="Address", description="Full address with street, unit, city, state"
    ),
]

# How many recent intake_next audit messages are considered for repeats
REPEAT_LOOKBACK = 5


def order_objectives(objectives: Optional[list[IntakeObjective]]) -> list[IntakeObjective]:
    """Effective, enabled objectives in asking order.

    An empty configuration falls back to the defaults. When the ZIP code would
    be the very first question it moves to just after ``serviceDetails``.
    """
    ordered = list(objectives or DEFAULT_INTAKE_OBJECTIVES)
    ids = [o.id for o in ordered]
    if ids and ids[0] == ObjectiveId.ZIPCODE and ObjectiveId.SERVICE_DETAILS in ids:
        zipcode = ordered.pop(0)
        details_at = [o.id for o in ordered].index(ObjectiveId.SERVICE_DETAILS)
        ordered.insert(details_at + 1, zipcode)
    return [o for o in ordered if o.enabled]


def is_objective_complete(objective_id: str, conversation: Conversation) -> bool:
    """Completion predicate for one objective."""
    memory = conversation.memory
    collected = memory.collected_data
    has_cart = bool(memory.cart)

    if objective_id == ObjectiveId.ZIPCODE:
        # A full address supersedes the ZIP code
        return bool(
            collected.zipcode
            or conversation.visitor_zipcode
            or collected.address
            or conversation.visitor_address
        )
    if objective_id == ObjectiveId.SERVICE_TYPE:
        return has_cart
    if objective_id == ObjectiveId.SERVICE_DETAILS:
        return has_cart or bool(collected.service_details)
    if objective_id == ObjectiveId.DATE:
        return bool((collected.selected_date or collected.preferred_date) and collected.selected_time)
    if objective_id == ObjectiveId.NAME:
        return bool(collected.name or conversation.visitor_name)
    if objective_id == ObjectiveId.PHONE:
        return bool(collected.phone or conversation.visitor_phone)
    if objective_id == ObjectiveId.ADDRESS:
        return bool(collected.address or conversation.visitor_address)
    logger.warning("Unknown intake objective: %s", objective_id)
    return False


class IntakeTracker:
    """Ordered objective list bound to one chat-settings snapshot."""

    def __init__(self, objectives: Optional[list[IntakeObjective]] = None) -> None:
        self.objectives = order_objectives(objectives)

    @property
    def enabled_ids(self) -> set[str]:
        return {o.id.value for o in self.objectives}

    def next_objective(self, conversation: Conversation) -> Optional[IntakeObjective]:
        for objective in self.objectives:
            if not is_objective_complete(objective.id, conversation):
                return objective
        return None

    def flow_text(self) -> str:
        """Numbered checklist for the system prompt."""
        if not self.objectives:
            return "1. Service type\n2. Preferred date\n3. Name\n4. Phone\n5. Address"
        return "\n".join(f"{i}. {o.label}" for i, o in enumerate(self.objectives, start=1))

    @staticmethod
    def repeat_count(messages: list[Message], objective: Optional[IntakeObjective]) -> int:
        """Consecutive recent turns that already asked for ``objective``."""
        if objective is None:
            return 0
        recent = [m for m in messages if m.metadata.get("type") == "intake_next"][-REPEAT_LOOKBACK:]
        count = 0
        for message in reversed(recent):
            next_step = message.metadata.get("next_step") or {}
            if next_step.get("id") != objective.id.value:
                break
            count += 1
        return count

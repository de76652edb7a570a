"""
Versioned conversation memory.

Memory is replaced wholesale on every write. Older blobs (no ``version`` key,
camelCase field names, untyped cart entries) are upgraded by
``migrate_memory`` before validation so a new intake objective never breaks
deserialization of an older conversation.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field

MEMORY_VERSION = 2


class InvalidMemoryError(ValueError):
    """Raised when a stored memory blob cannot be migrated."""


class CartLine(BaseModel):
    """One service in the cart. ``price`` is always unit_price * quantity."""

    service_id: str
    service_name: str
    unit_price: float = 0.0
    quantity: int = Field(default=1, ge=1)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price(self) -> float:
        return round(self.unit_price * self.quantity, 2)


class CollectedData(BaseModel):
    zipcode: Optional[str] = None
    service_type: Optional[str] = None
    service_details: Optional[str] = None
    preferred_date: Optional[str] = None
    selected_date: Optional[str] = None
    selected_time: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class SuggestedOption(BaseModel):
    """A date shown to the visitor together with the slots offered for it."""

    date: str
    available_slots: list[str] = Field(default_factory=list)


class ConversationMemory(BaseModel):
    """Typed memory blob owned by a conversation."""

    version: int = MEMORY_VERSION
    collected_data: CollectedData = Field(default_factory=CollectedData)
    completed_steps: list[str] = Field(default_factory=list)
    cart: list[CartLine] = Field(default_factory=list)
    current_step: Optional[str] = None

    # Hints for resolving short replies against the last shown options
    last_suggested_date: Optional[str] = None
    last_suggested_slots: list[str] = Field(default_factory=list)
    last_suggested_options: list[SuggestedOption] = Field(default_factory=list)
    language: Optional[str] = None

    auto_added_services: list[str] = Field(default_factory=list)
    auto_added_message_id: Optional[str] = None

    def mark_completed(self, *steps: str) -> None:
        for step in steps:
            if step not in self.completed_steps:
                self.completed_steps.append(step)

    def cart_total(self) -> float:
        return round(sum(line.price for line in self.cart), 2)

    def clear_suggestions(self) -> None:
        self.last_suggested_date = None
        self.last_suggested_slots = []
        self.last_suggested_options = []


_LEGACY_COLLECTED_KEYS = {
    "zipcode": "zipcode",
    "serviceType": "service_type",
    "serviceDetails": "service_details",
    "preferredDate": "preferred_date",
    "selectedDate": "selected_date",
    "selectedTime": "selected_time",
    "name": "name",
    "phone": "phone",
    "email": "email",
    "address": "address",
}

_LEGACY_TOP_KEYS = {
    "currentStep": "current_step",
    "lastSuggestedDate": "last_suggested_date",
    "lastSuggestedSlots": "last_suggested_slots",
    "language": "language",
    "autoAddedServices": "auto_added_services",
    "autoAddedMessageId": "auto_added_message_id",
}


def _migrate_cart_entry(entry: Any) -> Optional[dict]:
    if not isinstance(entry, dict):
        return None
    service_id = entry.get("serviceId", entry.get("service_id"))
    if service_id is None:
        return None
    quantity = entry.get("quantity") or 1
    try:
        quantity = max(1, int(quantity))
    except (TypeError, ValueError):
        quantity = 1
    unit_price = entry.get("unitPrice", entry.get("unit_price"))
    if unit_price is None:
        # Legacy lines sometimes carried only the line price
        try:
            unit_price = float(entry.get("price") or 0) / quantity
        except (TypeError, ValueError):
            unit_price = 0.0
    return {
        "service_id": str(service_id),
        "service_name": str(entry.get("serviceName", entry.get("service_name", ""))),
        "unit_price": float(unit_price or 0),
        "quantity": quantity,
    }


def _migrate_legacy(raw: dict) -> dict:
    collected = raw.get("collectedData") or {}
    migrated: dict[str, Any] = {
        "version": MEMORY_VERSION,
        "collected_data": {
            new: collected[old]
            for old, new in _LEGACY_COLLECTED_KEYS.items()
            if collected.get(old) not in (None, "")
        },
        "completed_steps": list(dict.fromkeys(raw.get("completedSteps") or [])),
        "cart": [
            line for line in map(_migrate_cart_entry, raw.get("cart") or []) if line
        ],
    }
    for old, new in _LEGACY_TOP_KEYS.items():
        if raw.get(old) is not None:
            migrated[new] = raw[old]

    options = raw.get("lastSuggestedOptions") or []
    migrated["last_suggested_options"] = [
        {"date": opt["date"], "available_slots": opt.get("availableSlots") or []}
        for opt in options
        if isinstance(opt, dict) and opt.get("date")
    ]
    return migrated


def migrate_memory(raw: Optional[dict]) -> ConversationMemory:
    """Upgrade a stored memory blob to the current version.

    Args:
        raw: The stored blob, or None for a fresh conversation.

    Returns:
        A validated ``ConversationMemory``.

    Raises:
        InvalidMemoryError: If the blob declares a version newer than this build
            understands.
    """
    if not raw:
        return ConversationMemory()
    version = raw.get("version")
    if version is None:
        return ConversationMemory.model_validate(_migrate_legacy(raw))
    if not isinstance(version, int) or version > MEMORY_VERSION or version < 1:
        raise InvalidMemoryError(f"Unsupported memory version: {version!r}")
    if version == 1:
        # v1 already used snake_case keys but had no hint fields
        return ConversationMemory.model_validate({**raw, "version": MEMORY_VERSION})
    return ConversationMemory.model_validate(raw)

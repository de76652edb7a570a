"""Cart line arithmetic on top of ConversationMemory.cart.

A service id appears at most once in the cart; re-adding merges quantity.
"""

import logging
from typing import Optional, TypedDict

from chat_orchestrator.conversation.parsing import normalize_service_name
from chat_orchestrator.schemas.memory_schema import CartLine, ConversationMemory

logger = logging.getLogger(__name__)


class CartLineView(TypedDict):
    service_id: str
    service_name: str
    quantity: int
    unit_price: float
    line_total: float


class CartView(TypedDict):
    success: bool
    cart: list[CartLineView]
    total: float
    service_ids: list[str]
    is_empty: bool


def find_line(
    memory: ConversationMemory, service_id: str, service_name: Optional[str] = None
) -> Optional[CartLine]:
    """Line for a service id, or for the same normalized service name."""
    wanted = normalize_service_name(service_name) if service_name else None
    for line in memory.cart:
        if line.service_id == service_id:
            return line
        if wanted and normalize_service_name(line.service_name) == wanted:
            return line
    return None


def add_line(
    memory: ConversationMemory,
    service_id: str,
    service_name: str,
    unit_price: float,
    quantity: int = 1,
) -> tuple[CartLine, bool]:
    """Add or merge a cart line.

    Returns:
        The resulting line and whether it merged into an existing one.
    """
    quantity = max(1, int(quantity))
    existing = find_line(memory, service_id, service_name)
    if existing is not None:
        existing.quantity += quantity
        return existing, True

    line = CartLine(
        service_id=service_id,
        service_name=service_name,
        unit_price=unit_price,
        quantity=quantity,
    )
    memory.cart.append(line)
    return line, False


def remove_line(
    memory: ConversationMemory,
    service_id: Optional[str] = None,
    service_name: Optional[str] = None,
) -> Optional[CartLine]:
    """Drop a line by id, or by normalized name when no id matches."""
    target = find_line(memory, service_id or "", service_name)
    if target is None:
        return None
    memory.cart.remove(target)
    return target


def clear(memory: ConversationMemory) -> int:
    removed = len(memory.cart)
    memory.cart = []
    return removed


def view(memory: ConversationMemory) -> CartView:
    lines: list[CartLineView] = [
        {
            "service_id": line.service_id,
            "service_name": line.service_name,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "line_total": line.price,
        }
        for line in memory.cart
    ]
    return {
        "success": True,
        "cart": lines,
        "total": memory.cart_total(),
        "service_ids": [line.service_id for line in memory.cart],
        "is_empty": not memory.cart,
    }

"""
Publish/subscribe channel for live conversation updates.

Handlers are async callables. ``publish`` schedules each handler as its own
task so a slow or failing subscriber never delays the chat reply.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class ConversationEvent:
    type: str
    conversation_id: str
    message: Optional[dict] = None
    conversation: Optional[dict] = None
    data: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[ConversationEvent], Awaitable[None]]


class EventChannel:
    """In-process broadcast of ``ConversationEvent`` values."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler``; the returned callable unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: ConversationEvent) -> None:
        for handler in list(self._handlers):
            task = asyncio.get_running_loop().create_task(self._deliver(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, handler: EventHandler, event: ConversationEvent) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception("Event handler failed for %s on %s", event.type, event.conversation_id)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (tests and shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

"""
Storage and notification collaborator interfaces.

The orchestrator and tools only ever talk to these protocols. Implementations
are injected through constructors; nothing in the package reaches for a
module-level store.
"""

import logging
from datetime import datetime
from typing import Optional, Protocol

from chat_orchestrator.schemas.booking_schema import (
    Booking,
    BookingDraft,
    CompanyProfile,
    Faq,
    Service,
    SyncStatus,
    TimeSlotLease,
)
from chat_orchestrator.schemas.conversation_schema import (
    ChatSettings,
    Conversation,
    IntegrationSettings,
    Message,
)

logger = logging.getLogger(__name__)


class LeaseConflictError(Exception):
    """Raised by ``insert_lease`` when a lease already exists for the key."""


class Storage(Protocol):
    """Persistence collaborator consumed by the chat core."""

    # Conversations
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    async def create_conversation(self, conversation: Conversation) -> Conversation: ...

    async def update_conversation(self, conversation: Conversation) -> Conversation: ...

    async def find_open_conversations_by_phone(
        self, phone: str, exclude_id: Optional[str] = None
    ) -> list[Conversation]: ...

    async def close_inactive_conversations(self, before: datetime) -> int: ...

    # Messages
    async def add_message(self, message: Message) -> Message: ...

    async def get_messages(self, conversation_id: str) -> list[Message]: ...

    # Catalog and settings
    async def list_services(self) -> list[Service]: ...

    async def get_service(self, service_id: str) -> Optional[Service]: ...

    async def list_faqs(self) -> list[Faq]: ...

    async def get_company_profile(self) -> CompanyProfile: ...

    async def get_chat_settings(self) -> ChatSettings: ...

    async def get_integration_settings(self, provider: str) -> Optional[IntegrationSettings]: ...

    # Bookings
    async def get_bookings_for_date(self, booking_date: str) -> list[Booking]: ...

    async def create_booking(self, draft: BookingDraft) -> Booking: ...

    async def update_booking_sync(
        self,
        booking_id: str,
        sync_status: SyncStatus,
        contact_id: Optional[str] = None,
        appointment_id: Optional[str] = None,
    ) -> None: ...

    # Lease primitives. insert_lease must be atomic insert-if-absent.
    async def delete_expired_leases(
        self, now: datetime, key: Optional[tuple[str, str]] = None
    ) -> int: ...

    async def get_lease(self, booking_date: str, start_time: str) -> Optional[TimeSlotLease]: ...

    async def insert_lease(self, lease: TimeSlotLease) -> None: ...

    async def update_lease_expiry(
        self, booking_date: str, start_time: str, owner_id: str, expires_at: datetime
    ) -> None: ...

    async def delete_lease(self, booking_date: str, start_time: str, owner_id: str) -> bool: ...


class Notifier(Protocol):
    """Outbound notification collaborator (SMS, Telegram, CRM ...)."""

    async def notify_new_conversation(self, conversation: Conversation) -> None: ...

    async def notify_booking_created(self, booking: Booking) -> None: ...


class LoggingNotifier:
    """Default notifier that only records events in the process log."""

    async def notify_new_conversation(self, conversation: Conversation) -> None:
        logger.info(
            "New conversation %s started from %s",
            conversation.id,
            conversation.first_page_url or "unknown page",
        )

    async def notify_booking_created(self, booking: Booking) -> None:
        logger.info(
            "Booking %s created for %s %s", booking.id, booking.booking_date, booking.start_time
        )

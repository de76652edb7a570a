"""
In-memory reference implementation of the storage collaborator.

Used by the development server and the test suite. The lease table is guarded
by a lock so ``insert_lease`` is a true insert-if-absent even when called from
several threads.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

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
    ConversationStatus,
    IntegrationSettings,
    Message,
)
from chat_orchestrator.storage.base import LeaseConflictError
from chat_orchestrator.utils import normalize_phone

logger = logging.getLogger(__name__)


class InMemoryStorage:
    """Dict-backed storage. Returned models are copies; callers persist via update."""

    def __init__(
        self,
        company: CompanyProfile,
        services: Optional[list[Service]] = None,
        faqs: Optional[list[Faq]] = None,
        chat_settings: Optional[ChatSettings] = None,
        integrations: Optional[list[IntegrationSettings]] = None,
    ) -> None:
        self._company = company
        self._services: dict[str, Service] = {s.id: s for s in services or []}
        self._faqs: dict[str, Faq] = {f.id: f for f in faqs or []}
        self._chat_settings = chat_settings or ChatSettings()
        self._integrations = {i.provider: i for i in integrations or []}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}
        self._bookings: dict[str, Booking] = {}
        self._leases: dict[tuple[str, str], TimeSlotLease] = {}
        self._lease_lock = threading.Lock()
        self._catalog_listeners: list[Callable[[str], None]] = []

    # -- catalog mutation (admin side) --------------------------------------

    def add_catalog_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with "services" or "faqs" on mutation."""
        self._catalog_listeners.append(listener)

    def _catalog_changed(self, kind: str) -> None:
        for listener in self._catalog_listeners:
            listener(kind)

    def upsert_service(self, service: Service) -> None:
        self._services[service.id] = service
        self._catalog_changed("services")

    def delete_service(self, service_id: str) -> None:
        self._services.pop(service_id, None)
        self._catalog_changed("services")

    def upsert_faq(self, faq: Faq) -> None:
        self._faqs[faq.id] = faq
        self._catalog_changed("faqs")

    def set_chat_settings(self, chat_settings: ChatSettings) -> None:
        self._chat_settings = chat_settings

    def set_integration(self, integration: IntegrationSettings) -> None:
        self._integrations[integration.provider] = integration

    # -- conversations ------------------------------------------------------

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation.model_copy(deep=True)
        self._messages.setdefault(conversation.id, [])
        return conversation

    async def update_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation

    async def find_open_conversations_by_phone(
        self, phone: str, exclude_id: Optional[str] = None
    ) -> list[Conversation]:
        wanted = normalize_phone(phone)
        return [
            c.model_copy(deep=True)
            for c in self._conversations.values()
            if c.visitor_phone and normalize_phone(c.visitor_phone) == wanted
            and c.status == ConversationStatus.OPEN
            and c.id != exclude_id
        ]

    async def close_inactive_conversations(self, before: datetime) -> int:
        closed = 0
        for conversation in self._conversations.values():
            if conversation.status == ConversationStatus.OPEN and conversation.last_message_at < before:
                conversation.status = ConversationStatus.CLOSED
                closed += 1
        return closed

    # -- messages -----------------------------------------------------------

    async def add_message(self, message: Message) -> Message:
        self._messages.setdefault(message.conversation_id, []).append(message)
        return message

    async def get_messages(self, conversation_id: str) -> list[Message]:
        return list(self._messages.get(conversation_id, []))

    # -- catalog and settings -----------------------------------------------

    async def list_services(self) -> list[Service]:
        return list(self._services.values())

    async def get_service(self, service_id: str) -> Optional[Service]:
        return self._services.get(service_id)

    async def list_faqs(self) -> list[Faq]:
        return list(self._faqs.values())

    async def get_company_profile(self) -> CompanyProfile:
        return self._company

    async def get_chat_settings(self) -> ChatSettings:
        return self._chat_settings

    async def get_integration_settings(self, provider: str) -> Optional[IntegrationSettings]:
        return self._integrations.get(provider)

    # -- bookings -----------------------------------------------------------

    async def get_bookings_for_date(self, booking_date: str) -> list[Booking]:
        return [
            b
            for b in self._bookings.values()
            if b.booking_date == booking_date and b.status != "cancelled"
        ]

    async def create_booking(self, draft: BookingDraft) -> Booking:
        booking = Booking(
            id=uuid.uuid4().hex,
            created_at=datetime.now(timezone.utc),
            **draft.model_dump(),
        )
        self._bookings[booking.id] = booking
        return booking

    async def update_booking_sync(
        self,
        booking_id: str,
        sync_status: SyncStatus,
        contact_id: Optional[str] = None,
        appointment_id: Optional[str] = None,
    ) -> None:
        booking = self._bookings.get(booking_id)
        if booking is None:
            return
        booking.sync_status = sync_status
        booking.external_contact_id = contact_id or booking.external_contact_id
        booking.external_appointment_id = appointment_id or booking.external_appointment_id

    def all_bookings(self) -> list[Booking]:
        return list(self._bookings.values())

    # -- leases -------------------------------------------------------------

    async def delete_expired_leases(
        self, now: datetime, key: Optional[tuple[str, str]] = None
    ) -> int:
        with self._lease_lock:
            expired = [
                k
                for k, lease in self._leases.items()
                if lease.expires_at <= now and (key is None or k == key)
            ]
            for k in expired:
                del self._leases[k]
        return len(expired)

    async def get_lease(self, booking_date: str, start_time: str) -> Optional[TimeSlotLease]:
        return self._leases.get((booking_date, start_time))

    async def insert_lease(self, lease: TimeSlotLease) -> None:
        with self._lease_lock:
            if lease.key in self._leases:
                raise LeaseConflictError(f"Lease already held for {lease.key}")
            self._leases[lease.key] = lease

    async def update_lease_expiry(
        self, booking_date: str, start_time: str, owner_id: str, expires_at: datetime
    ) -> None:
        with self._lease_lock:
            lease = self._leases.get((booking_date, start_time))
            if lease is not None and lease.owner_id == owner_id:
                lease.expires_at = expires_at

    async def delete_lease(self, booking_date: str, start_time: str, owner_id: str) -> bool:
        with self._lease_lock:
            lease = self._leases.get((booking_date, start_time))
            if lease is None or lease.owner_id != owner_id:
                return False
            del self._leases[(booking_date, start_time)]
            return True

from chat_orchestrator.schemas.api_schema import BookingCompleted, ChatRequest, ChatResponse
from chat_orchestrator.schemas.booking_schema import (
    DEFAULT_BUSINESS_HOURS,
    Booking,
    BookingDraft,
    BookingServiceLine,
    BusinessHours,
    CompanyProfile,
    DayHours,
    Faq,
    Service,
    SyncStatus,
    TimeSlotLease,
)
from chat_orchestrator.schemas.conversation_schema import (
    ChatSettings,
    Conversation,
    ConversationStatus,
    IntakeObjective,
    IntegrationSettings,
    Message,
    MessageRole,
    ObjectiveId,
    UrlMatchType,
    UrlRule,
)
from chat_orchestrator.schemas.memory_schema import (
    MEMORY_VERSION,
    CartLine,
    CollectedData,
    ConversationMemory,
    InvalidMemoryError,
    SuggestedOption,
    migrate_memory,
)

__all__ = [
    "BookingCompleted",
    "ChatRequest",
    "ChatResponse",
    "DEFAULT_BUSINESS_HOURS",
    "Booking",
    "BookingDraft",
    "BookingServiceLine",
    "BusinessHours",
    "CompanyProfile",
    "DayHours",
    "Faq",
    "Service",
    "SyncStatus",
    "TimeSlotLease",
    "ChatSettings",
    "Conversation",
    "ConversationStatus",
    "IntakeObjective",
    "IntegrationSettings",
    "Message",
    "MessageRole",
    "ObjectiveId",
    "UrlMatchType",
    "UrlRule",
    "MEMORY_VERSION",
    "CartLine",
    "CollectedData",
    "ConversationMemory",
    "InvalidMemoryError",
    "SuggestedOption",
    "migrate_memory",
]

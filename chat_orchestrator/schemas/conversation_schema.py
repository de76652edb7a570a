"""Conversation, message and chat-settings models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from chat_orchestrator.schemas.memory_schema import ConversationMemory, migrate_memory


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class MessageRole(str, Enum):
    VISITOR = "visitor"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class UrlMatchType(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"


class ObjectiveId(str, Enum):
    """The fixed set of intake objectives."""

    ZIPCODE = "zipcode"
    SERVICE_TYPE = "serviceType"
    SERVICE_DETAILS = "serviceDetails"
    DATE = "date"
    NAME = "name"
    PHONE = "phone"
    ADDRESS = "address"


class IntakeObjective(BaseModel):
    """One required piece of booking data, tracked by its own completion rule."""

    id: ObjectiveId
    label: str
    description: str = ""
    enabled: bool = True


class UrlRule(BaseModel):
    pattern: str = Field(min_length=1)
    match: UrlMatchType


class Message(BaseModel):
    """A single append-only conversation message.

    ``metadata["internal"]`` marks audit/debug entries that must never reach
    the visitor or the model history.
    """

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def internal(self) -> bool:
        return bool(self.metadata.get("internal"))


class Conversation(BaseModel):
    """Visitor conversation with denormalized contact fields and typed memory."""

    id: str
    status: ConversationStatus = ConversationStatus.OPEN
    visitor_name: Optional[str] = None
    visitor_phone: Optional[str] = None
    visitor_email: Optional[str] = None
    visitor_address: Optional[str] = None
    visitor_zipcode: Optional[str] = None
    first_page_url: Optional[str] = None
    memory: ConversationMemory = Field(default_factory=ConversationMemory)
    created_at: datetime = Field(default_factory=_utcnow)
    last_message_at: datetime = Field(default_factory=_utcnow)

    @field_validator("memory", mode="before")
    @classmethod
    def _upgrade_memory(cls, value: Any) -> Any:
        # Stored blobs may predate the current memory version
        if value is None or isinstance(value, dict):
            return migrate_memory(value)
        return value


class ChatSettings(BaseModel):
    """Runtime chat settings owned by storage."""

    enabled: bool = True
    active_provider: Optional[str] = None
    excluded_url_rules: list[UrlRule] = Field(default_factory=list)
    intake_objectives: list[IntakeObjective] = Field(default_factory=list)


class IntegrationSettings(BaseModel):
    """Per-provider AI integration settings (keys, model, enabled flag)."""

    provider: str
    enabled: bool = False
    api_key: Optional[str] = None
    model: Optional[str] = None

"""Request/response models for the chat HTTP endpoint (camelCase on the wire)."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(_CamelModel):
    """Body of ``POST /api/chat``."""

    conversation_id: Optional[str] = None
    message: str = Field(min_length=1, max_length=2000)
    page_url: Optional[str] = None
    visitor_id: Optional[str] = None
    user_agent: Optional[str] = None
    visitor_name: Optional[str] = None
    visitor_email: Optional[str] = None
    visitor_phone: Optional[str] = None
    language: Optional[str] = None


class BookingCompleted(_CamelModel):
    value: float
    services: list[str] = Field(default_factory=list)


class ChatResponse(_CamelModel):
    conversation_id: str
    response: str
    lead_captured: bool = False
    booking_completed: Optional[BookingCompleted] = None

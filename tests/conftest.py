"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from chat_orchestrator.api.app import build_runtime
from chat_orchestrator.config import AppConfig, ChatConfig, ModelConfig
from chat_orchestrator.conversation.guardrails import GuardrailPipeline
from chat_orchestrator.providers.llm import AssistantMessage, ToolCall
from chat_orchestrator.schemas.booking_schema import (
    BusinessHours,
    CompanyProfile,
    DayHours,
    Faq,
    Service,
)
from chat_orchestrator.schemas.conversation_schema import (
    ChatSettings,
    Conversation,
    IntegrationSettings,
    Message,
    MessageRole,
)
from chat_orchestrator.schemas.memory_schema import CartLine
from chat_orchestrator.storage.memory import InMemoryStorage

# Sunday 2025-03-16 12:00 in America/New_York; the next Monday is 2025-03-17
NOW = datetime(2025, 3, 16, 16, 0, tzinfo=timezone.utc)
TODAY = "2025-03-16"
MONDAY = "2025-03-17"
TUESDAY = "2025-03-18"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class ScriptedModel:
    """ChatModel double that replays canned assistant messages in order."""

    def __init__(self, *replies: AssistantMessage, default: str = "Okay."):
        self.replies = list(replies)
        self.default = default
        self.calls: list[dict] = []
        self.closed = 0

    async def complete(self, messages, tools=None):
        self.calls.append({"messages": messages, "tools": tools})
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return AssistantMessage(content=self.default)

    async def close(self) -> None:
        self.closed += 1


def say(text: Optional[str]) -> AssistantMessage:
    return AssistantMessage(content=text)


def call_tool(name: str, arguments: str = "{}", call_id: str = "call_1") -> AssistantMessage:
    return AssistantMessage(content=None, tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


def make_services() -> list[Service]:
    return [
        Service(id="1", name="3 Seater Sofa", description="Standard three seat sofa", price=120, duration_minutes=60),
        Service(
            id="2",
            name="Sectional Sofa (6-8 Seater)",
            description="Large L-shaped sectional",
            price=220,
            duration_minutes=180,
        ),
        Service(id="3", name="Mattress Cleaning", description="Queen or king mattress", price=90, duration_minutes=60),
        Service(id="4", name="Area Rug", description="Rugs up to 8x10", price=60, duration_minutes=60),
    ]


def make_faqs() -> list[Faq]:
    return [
        Faq(id="f1", question="Can I cancel or reschedule?", answer="Yes, up to 24 hours before."),
        Faq(id="f2", question="Are your products pet safe?", answer="All products are safe for pets and kids."),
        Faq(id="f3", question="How long does it take to dry?", answer="Usually 4 to 6 hours."),
    ]


def make_company(**overrides) -> CompanyProfile:
    hours = BusinessHours(monday=DayHours(is_open=True, open="09:00", close="17:00"))
    data = {
        "name": "Skleanings",
        "industry": "upholstery cleaning",
        "phone": "555-000-1111",
        "email": "hello@skleanings.test",
        "address": "1 Clean Way, Springfield",
        "timezone": "America/New_York",
        "business_hours": hours,
    }
    data.update(overrides)
    return CompanyProfile(**data)


def make_storage(
    chat_settings: Optional[ChatSettings] = None,
    integrations: Optional[list[IntegrationSettings]] = None,
    **company_overrides,
) -> InMemoryStorage:
    if integrations is None:
        integrations = [IntegrationSettings(provider="openai", enabled=True, api_key="sk-test", model="gpt-test")]
    return InMemoryStorage(
        make_company(**company_overrides),
        services=make_services(),
        faqs=make_faqs(),
        chat_settings=chat_settings,
        integrations=integrations,
    )


def make_config(**chat_overrides) -> AppConfig:
    chat = {"rate_limit": 100, "rate_window_seconds": 60.0}
    chat.update(chat_overrides)
    return AppConfig(
        chat=ChatConfig(**chat),
        model=ModelConfig(
            active_provider="openai",
            openai_api_key="",
            gemini_api_key="",
            openrouter_api_key="",
        ),
    )


def make_runtime(storage, model, clock=None, **chat_overrides):
    return build_runtime(
        config=make_config(**chat_overrides),
        storage=storage,
        llm_factory=lambda selection: model,
        now=clock or FrozenClock(),
    )


async def seed_conversation(storage: InMemoryStorage, conversation_id: str = "conv-1", **fields) -> Conversation:
    conversation = Conversation(id=conversation_id, last_message_at=NOW, **fields)
    return await storage.create_conversation(conversation)


async def seed_message(
    storage: InMemoryStorage, conversation_id: str, role: MessageRole, content: str, **metadata
) -> Message:
    message = Message(
        id=f"m-{len(await storage.get_messages(conversation_id))}",
        conversation_id=conversation_id,
        role=role,
        content=content,
        metadata=metadata,
    )
    return await storage.add_message(message)


def ready_to_book(conversation: Conversation, booking_date: str = MONDAY, start_time: str = "10:00") -> Conversation:
    """Fill memory with everything an auto-booking needs."""
    memory = conversation.memory
    memory.cart = [CartLine(service_id="1", service_name="3 Seater Sofa", unit_price=120)]
    collected = memory.collected_data
    collected.zipcode = "62704"
    collected.selected_date = booking_date
    collected.selected_time = start_time
    collected.name = "Maria Silva"
    collected.phone = "555-123-4567"
    collected.address = "123 Main Street, Springfield"
    memory.mark_completed("serviceType", "serviceDetails", "zipcode", "date", "name", "phone", "address")
    return conversation


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def storage():
    return make_storage()


@pytest.fixture
def model():
    return ScriptedModel()


@pytest.fixture
def runtime(storage, model, clock):
    return make_runtime(storage, model, clock)


@pytest.fixture
def guardrail_pipeline():
    return GuardrailPipeline()

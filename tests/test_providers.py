"""Tests for the model client, provider resolution and the calendar client."""

import json

import httpx
import pytest
import respx

from chat_orchestrator.config import CalendarConfig, ModelConfig
from chat_orchestrator.providers.calendar import (
    CalendarClient,
    CalendarError,
    extract_slot_starts,
    format_datetime_with_timezone,
    normalize_crm_phone,
)
from chat_orchestrator.providers.llm import (
    ChatCompletionClient,
    LLMError,
    ProviderSelection,
    ProviderUnavailableError,
    ToolCall,
    resolve_provider,
)
from chat_orchestrator.schemas.booking_schema import Booking
from chat_orchestrator.schemas.conversation_schema import ChatSettings, IntegrationSettings
from tests.conftest import MONDAY, make_storage

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
CALENDAR_URL = "https://cal.test"


def _model_config(**overrides) -> ModelConfig:
    values = {
        "active_provider": "openai",
        "openai_api_key": "",
        "gemini_api_key": "",
        "openrouter_api_key": "",
        "openrouter_referer": "https://skleanings.test",
        "openrouter_title": "Skleanings",
        "temperature": 0.2,
        "max_completion_tokens": 500,
    }
    values.update(overrides)
    return ModelConfig(**values)


def _completion(content=None, tool_calls=None) -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"choices": [{"index": 0, "message": message}]}


def _calendar_config(**overrides) -> CalendarConfig:
    values = {
        "enabled": True,
        "base_url": CALENDAR_URL,
        "api_key": "cal-key",
        "location_id": "loc-1",
        "calendar_id": "cal-1",
        "timeout_seconds": 5,
    }
    values.update(overrides)
    return CalendarConfig(**values)


def _booking() -> Booking:
    return Booking(
        id="b-1",
        booking_date=MONDAY,
        start_time="10:00",
        end_time="11:00",
        total_duration_minutes=60,
        total_price=120,
        customer_name="Maria Silva",
        customer_phone="555-123-4567",
        customer_address="123 Main Street, Springfield",
    )


class TestChatCompletionClient:
    @pytest.mark.asyncio
    async def test_openai_payload_and_tool_calls(self):
        with respx.mock:
            route = respx.post(OPENAI_URL).mock(
                return_value=httpx.Response(
                    200,
                    json=_completion(
                        tool_calls=[
                            {
                                "id": "call_9",
                                "type": "function",
                                "function": {"name": "list_services", "arguments": '{"query": "sofa"}'},
                            }
                        ]
                    ),
                )
            )
            client = ChatCompletionClient(ProviderSelection("openai", "sk-1", "gpt-test"), _model_config())
            reply = await client.complete([{"role": "user", "content": "hi"}], tools=[{"type": "function"}])
            await client.close()

        assert reply.content is None
        assert reply.tool_calls[0].name == "list_services"
        assert reply.tool_calls[0].parsed_arguments() == {"query": "sofa"}

        request = route.calls[0].request
        assert request.headers["authorization"] == "Bearer sk-1"
        body = json.loads(request.content)
        assert body["model"] == "gpt-test"
        assert body["max_completion_tokens"] == 500
        assert body["parallel_tool_calls"] is True
        assert body["tool_choice"] == "auto"
        assert "max_tokens" not in body

    @pytest.mark.asyncio
    async def test_openrouter_headers(self):
        with respx.mock:
            route = respx.post(OPENROUTER_URL).mock(
                return_value=httpx.Response(200, json=_completion("Hello!"))
            )
            client = ChatCompletionClient(
                ProviderSelection("openrouter", "or-1", "openai/gpt-4o-mini"), _model_config()
            )
            reply = await client.complete([{"role": "user", "content": "hi"}])
            await client.close()

        assert reply.content == "Hello!"
        request = route.calls[0].request
        assert request.headers["http-referer"] == "https://skleanings.test"
        assert request.headers["x-title"] == "Skleanings"
        body = json.loads(request.content)
        assert body["max_tokens"] == 500
        assert "tools" not in body

    @pytest.mark.asyncio
    async def test_http_error_raises_llm_error(self):
        with respx.mock:
            respx.post(OPENAI_URL).mock(return_value=httpx.Response(500))
            client = ChatCompletionClient(ProviderSelection("openai", "sk-1", "gpt-test"), _model_config())
            with pytest.raises(LLMError):
                await client.complete([{"role": "user", "content": "hi"}])
            await client.close()

    @pytest.mark.asyncio
    async def test_missing_choices_raises_llm_error(self):
        with respx.mock:
            respx.post(OPENAI_URL).mock(return_value=httpx.Response(200, json={"choices": []}))
            client = ChatCompletionClient(ProviderSelection("openai", "sk-1", "gpt-test"), _model_config())
            with pytest.raises(LLMError):
                await client.complete([{"role": "user", "content": "hi"}])
            await client.close()

    def test_unparseable_tool_arguments(self):
        assert ToolCall(id="c", name="get_cart", arguments="{not json").parsed_arguments() == {}
        assert ToolCall(id="c", name="get_cart", arguments="[1, 2]").parsed_arguments() == {}


class TestResolveProvider:
    @pytest.mark.asyncio
    async def test_stored_integration(self):
        selection = await resolve_provider(make_storage(), _model_config())
        assert selection == ProviderSelection("openai", "sk-test", "gpt-test")

    @pytest.mark.asyncio
    async def test_environment_key_wins(self):
        selection = await resolve_provider(make_storage(), _model_config(openai_api_key="sk-env"))
        assert selection.api_key == "sk-env"

    @pytest.mark.asyncio
    async def test_falls_back_from_unusable_active_provider(self):
        storage = make_storage(chat_settings=ChatSettings(active_provider="gemini"))
        selection = await resolve_provider(storage, _model_config())
        assert selection.provider == "openai"

    @pytest.mark.asyncio
    async def test_env_only_provider_uses_default_model(self):
        storage = make_storage(chat_settings=ChatSettings(active_provider="gemini"))
        selection = await resolve_provider(storage, _model_config(gemini_api_key="g-key"))
        assert selection == ProviderSelection("gemini", "g-key", "gemini-2.5-flash")

    @pytest.mark.asyncio
    async def test_enabled_without_key(self):
        storage = make_storage(integrations=[IntegrationSettings(provider="openai", enabled=True)])
        with pytest.raises(ProviderUnavailableError, match="OpenAI API key is missing"):
            await resolve_provider(storage, _model_config())

    @pytest.mark.asyncio
    async def test_nothing_enabled(self):
        storage = make_storage(integrations=[])
        with pytest.raises(ProviderUnavailableError, match="No AI integration is enabled"):
            await resolve_provider(storage, _model_config())


class TestCalendarHelpers:
    def test_format_datetime_with_timezone(self):
        assert format_datetime_with_timezone("2024-01-27", "12:00", "America/New_York") == "2024-01-27T12:00:00-05:00"
        assert format_datetime_with_timezone(MONDAY, "10:00", "America/New_York") == "2025-03-17T10:00:00-04:00"

    def test_normalize_crm_phone(self):
        assert normalize_crm_phone("(555) 123-4567") == "+15551234567"
        assert normalize_crm_phone("1 555 123 4567") == "+15551234567"

    def test_extract_slot_starts_shapes(self):
        assert extract_slot_starts(["2025-03-17T09:00:00-04:00"]) == ["2025-03-17T09:00:00-04:00"]
        assert extract_slot_starts({"slots": [{"startTime": "2025-03-17T09:00:00-04:00"}]}) == [
            "2025-03-17T09:00:00-04:00"
        ]
        assert extract_slot_starts({"_embedded": {"slots": ["2025-03-17T09:00:00-04:00"]}}) == [
            "2025-03-17T09:00:00-04:00"
        ]
        assert extract_slot_starts({"2025-03-17": {"slots": ["09:00"]}, "traceId": "t"}) == ["2025-03-17T09:00"]


class TestCalendarClient:
    @pytest.mark.asyncio
    async def test_free_slots(self):
        with respx.mock:
            route = respx.get(url__startswith=f"{CALENDAR_URL}/calendars/cal-1/free-slots").mock(
                return_value=httpx.Response(
                    200,
                    json={"2025-03-17": {"slots": ["2025-03-17T09:00:00-04:00"]}, "traceId": "t"},
                )
            )
            client = CalendarClient(_calendar_config())
            slots = await client.get_free_slots(MONDAY, MONDAY, "America/New_York")
            await client.close()

        assert slots == ["2025-03-17T09:00:00-04:00"]
        request = route.calls[0].request
        assert request.url.params["timezone"] == "America/New_York"
        assert request.headers["authorization"] == "Bearer cal-key"
        assert request.headers["version"] == "2021-04-15"

    @pytest.mark.asyncio
    async def test_retries_transient_status(self):
        with respx.mock:
            route = respx.get(url__startswith=f"{CALENDAR_URL}/calendars/cal-1/free-slots").mock(
                side_effect=[
                    httpx.Response(503),
                    httpx.Response(200, json={"slots": ["2025-03-17T09:00:00-04:00"]}),
                ]
            )
            client = CalendarClient(_calendar_config(), retry_delay=0)
            slots = await client.get_free_slots(MONDAY, MONDAY, "America/New_York")
            await client.close()

        assert route.call_count == 2
        assert slots == ["2025-03-17T09:00:00-04:00"]

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        with respx.mock:
            route = respx.get(url__startswith=f"{CALENDAR_URL}/calendars/cal-1/free-slots").mock(
                return_value=httpx.Response(400)
            )
            client = CalendarClient(_calendar_config(), retry_delay=0)
            with pytest.raises(CalendarError) as excinfo:
                await client.get_free_slots(MONDAY, MONDAY, "America/New_York")
            await client.close()

        assert excinfo.value.status_code == 400
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_existing_contact_found_by_phone(self):
        with respx.mock:
            respx.get(url__startswith=f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contacts": [{"id": "ct-9", "phone": "+15551234567"}]})
            )
            create = respx.post(f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contact": {"id": "unused"}})
            )
            client = CalendarClient(_calendar_config())
            contact_id = await client.get_or_create_contact("Maria Silva", "555-123-4567")
            await client.close()

        assert contact_id == "ct-9"
        assert not create.called

    @pytest.mark.asyncio
    async def test_contact_created_when_missing(self):
        with respx.mock:
            respx.get(url__startswith=f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contacts": []})
            )
            create = respx.post(f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contact": {"id": "ct-new"}})
            )
            client = CalendarClient(_calendar_config())
            contact_id = await client.get_or_create_contact("Maria Silva", "555-123-4567")
            await client.close()

        assert contact_id == "ct-new"
        payload = json.loads(create.calls[0].request.content)
        assert payload["firstName"] == "Maria"
        assert payload["lastName"] == "Silva"
        assert payload["phone"] == "+15551234567"
        assert payload["locationId"] == "loc-1"

    @pytest.mark.asyncio
    async def test_sync_booking_success(self):
        with respx.mock:
            respx.get(url__startswith=f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contacts": []})
            )
            respx.post(f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contact": {"id": "ct-new"}})
            )
            appointment = respx.post(f"{CALENDAR_URL}/calendars/events/appointments").mock(
                return_value=httpx.Response(200, json={"id": "ap-1"})
            )
            client = CalendarClient(_calendar_config())
            result = await client.sync_booking(_booking(), "3 Seater Sofa", "America/New_York")
            await client.close()

        assert result == {"attempted": True, "synced": True, "contact_id": "ct-new", "appointment_id": "ap-1"}
        payload = json.loads(appointment.calls[0].request.content)
        assert payload["startTime"] == "2025-03-17T10:00:00-04:00"
        assert payload["endTime"] == "2025-03-17T11:00:00-04:00"
        assert payload["title"] == "Cleaning: 3 Seater Sofa"

    @pytest.mark.asyncio
    async def test_sync_booking_failure_is_reported_not_raised(self):
        with respx.mock:
            respx.get(url__startswith=f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contacts": []})
            )
            respx.post(f"{CALENDAR_URL}/contacts/").mock(
                return_value=httpx.Response(200, json={"contact": {"id": "ct-new"}})
            )
            respx.post(f"{CALENDAR_URL}/calendars/events/appointments").mock(
                return_value=httpx.Response(422)
            )
            client = CalendarClient(_calendar_config())
            result = await client.sync_booking(_booking(), "3 Seater Sofa", "America/New_York")
            await client.close()

        assert result["attempted"] is True
        assert result["synced"] is False
        assert result["contact_id"] == "ct-new"
        assert "422" in result["reason"]

    @pytest.mark.asyncio
    async def test_sync_skipped_when_not_configured(self):
        client = CalendarClient(_calendar_config(enabled=False))
        result = await client.sync_booking(_booking(), "3 Seater Sofa", "America/New_York")
        await client.close()
        assert result["attempted"] is False

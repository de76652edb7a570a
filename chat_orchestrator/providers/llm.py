"""
OpenAI-compatible chat-completions client and provider resolution.

OpenAI, Gemini (through its OpenAI-compatible endpoint) and OpenRouter are
all driven through the same ``/chat/completions`` call with function tools.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from chat_orchestrator.config import SUPPORTED_PROVIDERS, ModelConfig
from chat_orchestrator.storage.base import Storage

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai",
    "openrouter": "https://openrouter.ai/api/v1",
}

PROVIDER_LABELS = {"openai": "OpenAI", "gemini": "Gemini", "openrouter": "OpenRouter"}


class LLMError(Exception):
    """Raised when the model provider call fails or returns an unusable payload."""


class ProviderUnavailableError(Exception):
    """No usable model provider; surfaced to the visitor as 503."""


@dataclass
class ProviderSelection:
    provider: str
    api_key: str
    model: str


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict:
        """JSON arguments, or {} when the model sent something unparseable."""
        try:
            parsed = json.loads(self.arguments or "{}")
        except (json.JSONDecodeError, TypeError):
            logger.warning("Unparseable arguments for tool %s: %r", self.name, self.arguments)
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_message(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class AssistantMessage:
    content: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class ChatModel(Protocol):
    """What the orchestrator needs from a model client."""

    async def complete(
        self, messages: list[dict], tools: Optional[list[dict]] = None
    ) -> AssistantMessage: ...

    async def close(self) -> None: ...


async def resolve_provider(storage: Storage, config: ModelConfig) -> ProviderSelection:
    """Pick the active provider, falling back in a fixed priority order.

    A provider is usable when it is enabled (a stored integration record with
    ``enabled=True``, or no record but an environment key) and a key exists.
    Environment keys take precedence over stored keys.

    Raises:
        ProviderUnavailableError: When no provider is usable.
    """
    chat_settings = await storage.get_chat_settings()
    active = chat_settings.active_provider or config.active_provider
    order = [active] + [p for p in SUPPORTED_PROVIDERS if p != active]

    missing_key = None
    for provider in order:
        if provider not in SUPPORTED_PROVIDERS:
            continue
        integration = await storage.get_integration_settings(provider)
        env_key = config.env_key_for(provider)
        enabled = integration.enabled if integration is not None else bool(env_key)
        if not enabled:
            continue
        api_key = env_key or (integration.api_key if integration else "") or ""
        if not api_key:
            missing_key = missing_key or provider
            continue
        model = (integration.model if integration and integration.model else None) or (
            config.default_model_for(provider)
        )
        if provider != active:
            logger.warning("Provider %s unavailable, falling back to %s", active, provider)
        return ProviderSelection(provider=provider, api_key=api_key, model=model)

    if missing_key:
        raise ProviderUnavailableError(
            f"{PROVIDER_LABELS[missing_key]} API key is missing. "
            "Please configure it in Admin -> Integrations."
        )
    raise ProviderUnavailableError(
        "No AI integration is enabled. Please enable OpenAI, Gemini or OpenRouter "
        "in Admin -> Integrations."
    )


class ChatCompletionClient:
    """Thin async client for ``POST {base}/chat/completions``."""

    def __init__(
        self,
        selection: ProviderSelection,
        config: ModelConfig,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
    ):
        self.selection = selection
        self.config = config
        self.base_url = (base_url or PROVIDER_BASE_URLS[selection.provider]).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.selection.api_key}",
            "Content-Type": "application/json",
        }
        if self.selection.provider == "openrouter":
            if self.config.openrouter_referer:
                headers["HTTP-Referer"] = self.config.openrouter_referer
            if self.config.openrouter_title:
                headers["X-Title"] = self.config.openrouter_title
        return headers

    def build_payload(self, messages: list[dict], tools: Optional[list[dict]] = None) -> dict:
        payload: dict[str, Any] = {
            "model": self.selection.model,
            "messages": messages,
            "temperature": self.config.temperature,
        }
        if self.selection.provider == "openai":
            payload["max_completion_tokens"] = self.config.max_completion_tokens
        else:
            payload["max_tokens"] = self.config.max_completion_tokens
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
            if self.selection.provider == "openai":
                payload["parallel_tool_calls"] = True
        return payload

    async def complete(
        self, messages: list[dict], tools: Optional[list[dict]] = None
    ) -> AssistantMessage:
        """Run one chat-completions round.

        Raises:
            LLMError: On transport errors, non-2xx responses or malformed bodies.
        """
        try:
            resp = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=self.build_payload(messages, tools),
                headers=self._headers(),
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "%s chat completion failed with status %s",
                self.selection.provider,
                e.response.status_code,
            )
            raise LLMError(f"Provider returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("%s chat completion failed: %s", self.selection.provider, e)
            raise LLMError(str(e)) from e

        try:
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("Provider response had no choices") from e

        tool_calls = [
            ToolCall(
                id=call.get("id") or f"call_{i}",
                name=(call.get("function") or {}).get("name", ""),
                arguments=(call.get("function") or {}).get("arguments") or "{}",
            )
            for i, call in enumerate(message.get("tool_calls") or [])
        ]
        return AssistantMessage(content=message.get("content"), tool_calls=tool_calls)

from chat_orchestrator.providers.calendar import CalendarClient, CalendarError, SyncResult
from chat_orchestrator.providers.llm import (
    AssistantMessage,
    ChatCompletionClient,
    ChatModel,
    LLMError,
    ProviderSelection,
    ProviderUnavailableError,
    ToolCall,
    resolve_provider,
)

__all__ = [
    "AssistantMessage",
    "CalendarClient",
    "CalendarError",
    "ChatCompletionClient",
    "ChatModel",
    "LLMError",
    "ProviderSelection",
    "ProviderUnavailableError",
    "SyncResult",
    "ToolCall",
    "resolve_provider",
]

from chat_orchestrator.storage.base import LeaseConflictError, LoggingNotifier, Notifier, Storage
from chat_orchestrator.storage.memory import InMemoryStorage

__all__ = [
    "InMemoryStorage",
    "LeaseConflictError",
    "LoggingNotifier",
    "Notifier",
    "Storage",
]

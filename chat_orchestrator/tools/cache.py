"""TTL cache for catalog lookups, owned by the tool dispatcher."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Keyed cache with per-entry expiry and explicit invalidation.

    Keys are catalog kinds ("services", "faqs"). Storage collaborators call
    ``invalidate(kind)`` after a mutation so the next read reloads.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def get(self, kind: str) -> Optional[Any]:
        entry = self._entries.get(kind)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[kind]
            return None
        return entry.value

    def set(self, kind: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[kind] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)

    async def get_or_load(self, kind: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get(kind)
        if cached is not None:
            return cached
        value = await loader()
        self.set(kind, value)
        return value

    def invalidate(self, kind: Optional[str] = None) -> None:
        """Drop one kind, or everything when kind is None."""
        if kind is None:
            self._entries.clear()
        else:
            self._entries.pop(kind, None)
        logger.debug("Cache invalidated: %s", kind or "all")

"""Admission and booking rate limiters."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketLimiter:
    """Token bucket per key (client IP + conversation id).

    ``capacity`` requests may burst; tokens refill continuously at
    ``capacity / window_seconds`` per second.
    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capacity = capacity
        self.refill_rate = capacity / window_seconds
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}

    @staticmethod
    def key_for(client_ip: Optional[str], conversation_id: Optional[str]) -> str:
        return f"{client_ip or 'unknown'}:{conversation_id or 'new'}"

    def allow(self, key: str) -> bool:
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(tokens=float(self.capacity), updated_at=now)
            self._buckets[key] = bucket
        else:
            elapsed = max(0.0, now - bucket.updated_at)
            bucket.tokens = min(float(self.capacity), bucket.tokens + elapsed * self.refill_rate)
            bucket.updated_at = now

        if bucket.tokens < 1:
            logger.warning("Rate limit hit for %s", key)
            return False
        bucket.tokens -= 1
        return True

    def prune(self) -> int:
        """Forget buckets that have fully refilled."""
        now = self._clock()
        full = [
            key
            for key, bucket in self._buckets.items()
            if bucket.tokens + (now - bucket.updated_at) * self.refill_rate >= self.capacity
        ]
        for key in full:
            del self._buckets[key]
        return len(full)


@dataclass
class _BookingWindow:
    count: int = 0
    last_booking_at: Optional[float] = None


class BookingLimiter:
    """Caps successful bookings per conversation.

    The count resets once ``window_seconds`` have passed since the last
    booking in that conversation.
    """

    def __init__(
        self,
        max_bookings: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_bookings = max_bookings
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _BookingWindow] = {}

    def _expired(self, window: _BookingWindow, now: float) -> bool:
        return window.last_booking_at is None or now - window.last_booking_at > self.window_seconds

    def is_limited(self, conversation_id: str) -> bool:
        window = self._windows.get(conversation_id)
        if window is None or self._expired(window, self._clock()):
            return False
        return window.count >= self.max_bookings

    def record(self, conversation_id: str) -> None:
        now = self._clock()
        window = self._windows.get(conversation_id)
        if window is None or self._expired(window, now):
            window = self._windows[conversation_id] = _BookingWindow()
        window.count += 1
        window.last_booking_at = now

    def prune(self) -> int:
        """Forget conversations whose booking window has lapsed."""
        now = self._clock()
        lapsed = [key for key, window in self._windows.items() if self._expired(window, now)]
        for key in lapsed:
            del self._windows[key]
        return len(lapsed)

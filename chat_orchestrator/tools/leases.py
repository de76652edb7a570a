"""
Time-slot lease manager.

A lease is a short-lived exclusive claim on a (booking_date, start_time) pair
held by one conversation while ``create_booking`` runs. Leases expire on
their own, so a crashed holder never blocks a slot beyond the TTL.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from chat_orchestrator.schemas.booking_schema import TimeSlotLease
from chat_orchestrator.storage.base import LeaseConflictError, Storage

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaseManager:
    """Acquire/release/sweep on top of the storage lease primitives."""

    def __init__(
        self,
        storage: Storage,
        ttl_seconds: float = 30.0,
        sweep_interval_seconds: float = 300.0,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.storage = storage
        self.ttl = timedelta(seconds=ttl_seconds)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._now = now
        self._sweeper: Optional[asyncio.Task] = None

    async def acquire(self, booking_date: str, start_time: str, owner_id: str) -> bool:
        """Try to take the lease for a slot.

        Returns:
            True when the caller now holds the lease (new or renewed), False
            when another owner holds it or won a concurrent insert.
        """
        now = self._now()
        key = (booking_date, start_time)
        await self.storage.delete_expired_leases(now, key=key)

        current = await self.storage.get_lease(booking_date, start_time)
        if current is not None and current.expires_at > now:
            if current.owner_id == owner_id:
                await self.storage.update_lease_expiry(
                    booking_date, start_time, owner_id, now + self.ttl
                )
                return True
            logger.warning(
                "Slot %s %s is leased by another conversation", booking_date, start_time
            )
            return False

        try:
            await self.storage.insert_lease(
                TimeSlotLease(
                    booking_date=booking_date,
                    start_time=start_time,
                    owner_id=owner_id,
                    expires_at=now + self.ttl,
                )
            )
        except LeaseConflictError:
            logger.warning("Lost lease race for %s %s", booking_date, start_time)
            return False
        return True

    async def release(self, booking_date: str, start_time: str, owner_id: str) -> None:
        await self.storage.delete_lease(booking_date, start_time, owner_id)

    async def sweep(self) -> int:
        """Delete every expired lease."""
        removed = await self.storage.delete_expired_leases(self._now())
        if removed:
            logger.info("Swept %d expired time-slot leases", removed)
        return removed

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Lease sweep failed")

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

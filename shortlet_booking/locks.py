"""
Per-date-range booking locks.

Two guests submitting the same property and dates at the same moment would
both pass the availability check. Submissions for one range are serialized
through a Redis lock when ``REDIS_URL`` is configured, or through a
process-local asyncio lock registry otherwise.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional

import structlog
from redis import asyncio as aioredis

from .errors import ConflictError

logger = structlog.get_logger(__name__)

BUSY_MESSAGE = "Another booking is being processed for these dates. Please try again."


def booking_key(property_id: str, check_in: date, check_out: date) -> str:
    return f"booking:lock:{property_id}:{check_in.isoformat()}:{check_out.isoformat()}"


class BookingLockManager:
    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        timeout: int = 60,
        blocking_timeout: float = 5,
    ):
        self.redis = redis
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._local: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` or raise ``ConflictError`` after waiting."""
        if self.redis is not None:
            async with self._hold_redis(key):
                yield
        else:
            async with self._hold_local(key):
                yield

    @asynccontextmanager
    async def _hold_redis(self, key: str) -> AsyncIterator[None]:
        lock = self.redis.lock(key, timeout=self.timeout)
        if not await lock.acquire(blocking_timeout=self.blocking_timeout):
            logger.warning("Booking lock busy", key=key)
            raise ConflictError(BUSY_MESSAGE)
        try:
            yield
        finally:
            await lock.release()

    @asynccontextmanager
    async def _hold_local(self, key: str) -> AsyncIterator[None]:
        lock = self._local.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.blocking_timeout)
            except asyncio.TimeoutError:
                logger.warning("Booking lock busy", key=key)
                raise ConflictError(BUSY_MESSAGE) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            # Drop the registry entry once nobody holds or waits for it
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._local[key]

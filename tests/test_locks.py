import asyncio
from datetime import date

import pytest

from shortlet_booking.errors import ConflictError
from shortlet_booking.locks import BUSY_MESSAGE, BookingLockManager, booking_key


def test_key_names_property_and_dates():
    key = booking_key("apt-lekki-1", date(2025, 3, 1), date(2025, 3, 5))

    assert key == "booking:lock:apt-lekki-1:2025-03-01:2025-03-05"


class TestLocalLocks:
    async def test_same_range_is_serialized(self):
        locks = BookingLockManager(blocking_timeout=1)
        events = []

        async def submit(name, pause):
            async with locks.hold("booking:lock:a"):
                events.append(f"{name}-in")
                await asyncio.sleep(pause)
                events.append(f"{name}-out")

        await asyncio.gather(submit("first", 0.05), submit("second", 0))

        assert events == ["first-in", "first-out", "second-in", "second-out"]

    async def test_busy_range_times_out_with_conflict(self):
        locks = BookingLockManager(blocking_timeout=0.05)
        holding = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("booking:lock:a"):
                holding.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await holding.wait()

        with pytest.raises(ConflictError) as excinfo:
            async with locks.hold("booking:lock:a"):
                pass

        release.set()
        await task
        assert excinfo.value.message == BUSY_MESSAGE
        assert excinfo.value.status_code == 409

    async def test_different_ranges_do_not_block(self):
        locks = BookingLockManager(blocking_timeout=0.05)

        async with locks.hold("booking:lock:a"):
            async with locks.hold("booking:lock:b"):
                pass

    async def test_registry_is_emptied_after_use(self):
        locks = BookingLockManager()

        async with locks.hold("booking:lock:a"):
            assert "booking:lock:a" in locks._local

        assert locks._local == {}
        assert locks._users == {}

    async def test_lock_is_released_when_body_raises(self):
        locks = BookingLockManager(blocking_timeout=0.05)

        with pytest.raises(RuntimeError):
            async with locks.hold("booking:lock:a"):
                raise RuntimeError("boom")

        async with locks.hold("booking:lock:a"):
            pass


class FakeRedisLock:
    def __init__(self, owner, key, timeout):
        self.owner = owner
        self.key = key
        self.timeout = timeout

    async def acquire(self, blocking_timeout=None):
        self.owner.calls.append(("acquire", self.key, self.timeout, blocking_timeout))
        return self.owner.available

    async def release(self):
        self.owner.calls.append(("release", self.key))


class FakeRedis:
    def __init__(self, available=True):
        self.available = available
        self.calls = []

    def lock(self, key, timeout=None):
        return FakeRedisLock(self, key, timeout)


class TestRedisLocks:
    async def test_acquires_and_releases(self):
        redis = FakeRedis()
        locks = BookingLockManager(redis=redis, timeout=60, blocking_timeout=5)

        async with locks.hold("booking:lock:a"):
            pass

        assert redis.calls == [
            ("acquire", "booking:lock:a", 60, 5),
            ("release", "booking:lock:a"),
        ]

    async def test_unavailable_lock_is_a_conflict(self):
        redis = FakeRedis(available=False)
        locks = BookingLockManager(redis=redis)

        with pytest.raises(ConflictError, match="Another booking is being processed"):
            async with locks.hold("booking:lock:a"):
                pytest.fail("body must not run")

        assert [call[0] for call in redis.calls] == ["acquire"]

import asyncio

import pytest

from supportdesk.services.lock_service import LockAcquisitionError, conversation_lock_key, hold_lock


class TestHoldLock:
    @pytest.mark.asyncio
    async def test_sets_lease_and_releases(self, fake_redis):
        async with hold_lock(fake_redis, "lock:a", timeout_ms=100, lease_ms=5000):
            assert await fake_redis.get("lock:a") is not None
            assert 0 < await fake_redis.pttl("lock:a") <= 5000

        assert await fake_redis.exists("lock:a") == 0

    @pytest.mark.asyncio
    async def test_held_lock_times_out(self, fake_redis):
        await fake_redis.set("lock:a", "other")

        with pytest.raises(LockAcquisitionError) as exc:
            async with hold_lock(fake_redis, "lock:a", timeout_ms=0):
                pass

        assert exc.value.key == "lock:a"
        assert exc.value.timeout_ms == 0
        assert await fake_redis.get("lock:a") == "other"

    @pytest.mark.asyncio
    async def test_waits_for_release(self, fake_redis):
        await fake_redis.set("lock:a", "other")

        async def release_soon():
            await asyncio.sleep(0.06)
            await fake_redis.delete("lock:a")

        releaser = asyncio.create_task(release_soon())
        async with hold_lock(fake_redis, "lock:a", timeout_ms=1000):
            assert await fake_redis.get("lock:a") != "other"
        await releaser

    @pytest.mark.asyncio
    async def test_second_holder_waits_for_first(self, fake_redis):
        order = []

        async def worker(name):
            async with hold_lock(fake_redis, "lock:a", timeout_ms=1000):
                order.append(f"{name}-in")
                await asyncio.sleep(0.02)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_releases_on_error(self, fake_redis):
        key = conversation_lock_key("conv-1")

        with pytest.raises(ValueError):
            async with hold_lock(fake_redis, key, timeout_ms=100):
                assert await fake_redis.exists(key) == 1
                raise ValueError("boom")

        assert await fake_redis.exists(key) == 0

    @pytest.mark.asyncio
    async def test_expired_lease_does_not_release_new_holder(self, fake_redis):
        async with hold_lock(fake_redis, "lock:a", timeout_ms=100, lease_ms=5000):
            # Lease lapses and another agent takes the lock before this block ends.
            await fake_redis.delete("lock:a")
            await fake_redis.set("lock:a", "new-holder", px=5000)

        assert await fake_redis.get("lock:a") == "new-holder"


def test_conversation_lock_key():
    assert conversation_lock_key("abc") == "supportdesk:lock:conversation:abc"

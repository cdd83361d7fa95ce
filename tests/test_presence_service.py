import pytest

from supportdesk.services.presence_service import PresenceTracker


class FakeClock:
    def __init__(self, now: float = 5_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def presence(fake_redis, clock):
    return PresenceTracker(fake_redis, ttl_seconds=30, clock=clock)


class TestPresence:
    @pytest.mark.asyncio
    async def test_heartbeat_marks_agent_online(self, presence):
        await presence.heartbeat("tenant-1", "agent-1")

        assert await presence.list_online_agents("tenant-1") == ["agent-1"]
        assert await presence.list_online_agents("tenant-2") == []

    @pytest.mark.asyncio
    async def test_stale_heartbeat_expires(self, presence, clock):
        await presence.heartbeat("tenant-1", "agent-1")
        clock.now += 20
        await presence.heartbeat("tenant-1", "agent-2")
        clock.now += 15

        assert await presence.list_online_agents("tenant-1") == ["agent-2"]

    @pytest.mark.asyncio
    async def test_go_offline(self, presence):
        await presence.heartbeat("tenant-1", "agent-1")
        await presence.go_offline("tenant-1", "agent-1")

        assert await presence.list_online_agents("tenant-1") == []


class TestTyping:
    @pytest.mark.asyncio
    async def test_typing_toggle(self, presence, fake_redis):
        await presence.set_typing("conv-1", "user-1", True)
        assert await presence.is_typing("conv-1", "user-1") is True
        assert 0 < await fake_redis.ttl("supportdesk:typing:conv-1:user-1") <= 5

        await presence.set_typing("conv-1", "user-1", False)
        assert await presence.is_typing("conv-1", "user-1") is False

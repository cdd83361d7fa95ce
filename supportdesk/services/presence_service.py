"""Agent presence and typing indicators, kept in Redis with short TTLs."""

import time
from typing import Callable, Optional

from supportdesk.config import settings
from supportdesk.logging_config import get_logger

logger = get_logger("presence_service")


class PresenceTracker:
    def __init__(self, redis_client, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.presence_ttl_seconds
        self.clock = clock

    @staticmethod
    def _online_key(tenant_id) -> str:
        return f"supportdesk:presence:{tenant_id}"

    @staticmethod
    def _typing_key(conversation_id, user_id) -> str:
        return f"supportdesk:typing:{conversation_id}:{user_id}"

    async def heartbeat(self, tenant_id, agent_id) -> None:
        key = self._online_key(tenant_id)
        await self.redis.zadd(key, {str(agent_id): self.clock()})
        await self.redis.expire(key, self.ttl_seconds * 4)

    async def go_offline(self, tenant_id, agent_id) -> None:
        await self.redis.zrem(self._online_key(tenant_id), str(agent_id))

    async def list_online_agents(self, tenant_id) -> list[str]:
        key = self._online_key(tenant_id)
        cutoff = self.clock() - self.ttl_seconds
        await self.redis.zremrangebyscore(key, 0, cutoff)
        return list(await self.redis.zrange(key, 0, -1))

    async def set_typing(self, conversation_id, user_id, is_typing: bool) -> None:
        key = self._typing_key(conversation_id, user_id)
        if is_typing:
            await self.redis.set(key, "1", ex=max(1, self.ttl_seconds // 6))
        else:
            await self.redis.delete(key)

    async def is_typing(self, conversation_id, user_id) -> bool:
        return await self.redis.get(self._typing_key(conversation_id, user_id)) is not None

"""Sliding-window rate limiting per (kind, tenant), stored in Redis sorted sets."""

import time
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import uuid4

from supportdesk.config import settings
from supportdesk.logging_config import get_logger

logger = get_logger("rate_limiter")

AI_RESPONSE = "ai_response"


@dataclass
class RateLimitDecision:
    is_limited: bool
    current: int
    limit: int
    retry_after_seconds: Optional[float] = None


class RateLimiter:
    def __init__(
        self,
        redis_client,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self.max_requests = max_requests or settings.rate_limit_max_requests
        self.clock = clock

    @staticmethod
    def _key(tenant_id, kind: str) -> str:
        return f"supportdesk:ratelimit:{kind}:{tenant_id}"

    async def check(self, tenant_id, kind: str = AI_RESPONSE) -> RateLimitDecision:
        """Read-only check: counting requests does not consume the window."""
        key = self._key(tenant_id, kind)
        now = self.clock()
        await self.redis.zremrangebyscore(key, 0, now - self.window_seconds)
        current = await self.redis.zcard(key)

        if current < self.max_requests:
            return RateLimitDecision(is_limited=False, current=current, limit=self.max_requests)

        retry_after = None
        oldest = await self.redis.zrange(key, 0, 0, withscores=True)
        if oldest:
            retry_after = max(0.0, oldest[0][1] + self.window_seconds - now)

        logger.warning(
            "Rate limit exceeded",
            extra={"context": {"tenant_id": str(tenant_id), "kind": kind, "current": current}},
        )
        return RateLimitDecision(
            is_limited=True,
            current=current,
            limit=self.max_requests,
            retry_after_seconds=retry_after,
        )

    async def record(self, tenant_id, kind: str = AI_RESPONSE) -> None:
        """Count one admitted request."""
        key = self._key(tenant_id, kind)
        now = self.clock()
        await self.redis.zadd(key, {f"{now}:{uuid4().hex}": now})
        await self.redis.expire(key, self.window_seconds)

"""Time-boxed lease locks in Redis, keyed by conversation."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError

from supportdesk.config import settings
from supportdesk.logging_config import get_logger

logger = get_logger("lock_service")

LOCK_POLL_SECONDS = 0.05


class LockAcquisitionError(Exception):
    """The lock was still held by someone else when the wait ran out."""

    def __init__(self, key: str, timeout_ms: int):
        self.key = key
        self.timeout_ms = timeout_ms
        super().__init__(f"Could not acquire lock {key} within {timeout_ms}ms")


def conversation_lock_key(conversation_id) -> str:
    return f"supportdesk:lock:conversation:{conversation_id}"


@asynccontextmanager
async def hold_lock(
    redis_client,
    key: str,
    timeout_ms: int | None = None,
    lease_ms: int | None = None,
) -> AsyncIterator[Lock]:
    """Hold the lease for the body of the block.

    Release is an atomic compare-and-delete, so a lease that expired and was
    taken over by someone else is left alone.
    """
    timeout_ms = timeout_ms if timeout_ms is not None else settings.lock_timeout_ms
    lease_ms = lease_ms if lease_ms is not None else settings.lock_lease_ms
    lock = redis_client.lock(
        key,
        timeout=lease_ms / 1000,
        sleep=LOCK_POLL_SECONDS,
        blocking_timeout=timeout_ms / 1000,
    )

    if not await lock.acquire():
        logger.warning(f"Lock timeout: {key}", extra={"context": {"timeout_ms": timeout_ms}})
        raise LockAcquisitionError(key, timeout_ms)
    try:
        yield lock
    finally:
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.warning(f"Lease expired before release: {key}", extra={"context": {"lease_ms": lease_ms}})

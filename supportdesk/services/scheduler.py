"""Delayed job scheduling for AI response work."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable
from uuid import uuid4

from supportdesk.logging_config import get_logger

logger = get_logger("scheduler")

Job = Callable[[Any], Awaitable[None]]


class JobCancellationError(Exception):
    """Raised when a job can no longer be cancelled (already started, finished or unknown)."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Cannot cancel job {job_id}: {reason}")


class JobScheduler(ABC):
    @abstractmethod
    def schedule(self, delay_ms: int, job: Job, payload: Any) -> str:
        """Run `job(payload)` after `delay_ms`. Returns a job handle."""
        pass

    @abstractmethod
    def cancel(self, job_id: str) -> None:
        """Best-effort cancel. Raises JobCancellationError when it is too late."""
        pass

    async def shutdown(self) -> None:
        """Drop every job that has not finished."""
        pass


class AsyncioJobScheduler(JobScheduler):
    """In-process scheduler on the running event loop."""

    def __init__(self, sleep_func=asyncio.sleep):
        self._sleep = sleep_func
        self._tasks: dict[str, asyncio.Task] = {}
        self._started: set[str] = set()

    def schedule(self, delay_ms: int, job: Job, payload: Any) -> str:
        job_id = uuid4().hex
        self._tasks[job_id] = asyncio.create_task(self._run(job_id, delay_ms, job, payload))
        return job_id

    async def _run(self, job_id: str, delay_ms: int, job: Job, payload: Any) -> None:
        try:
            await self._sleep(delay_ms / 1000)
            self._started.add(job_id)
            await job(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Scheduled job {job_id} failed: {e}",
                exc_info=True,
                extra={"context": {"job_id": job_id}},
            )
        finally:
            self._tasks.pop(job_id, None)
            self._started.discard(job_id)

    def cancel(self, job_id: str) -> None:
        task = self._tasks.get(job_id)
        if task is None:
            raise JobCancellationError(job_id, "unknown or finished")
        if job_id in self._started:
            raise JobCancellationError(job_id, "already running")
        task.cancel()
        self._tasks.pop(job_id, None)

    def is_pending(self, job_id: str) -> bool:
        return job_id in self._tasks and job_id not in self._started

    async def wait_idle(self) -> None:
        """Wait until every scheduled job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._started.clear()

"""Process-wide collaborators of the AI response pipeline."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from supportdesk.config import settings
from supportdesk.services.ai_service import ResponseOrchestrator
from supportdesk.services.notification_service import NotificationSender
from supportdesk.services.rate_limiter import RateLimiter
from supportdesk.services.scheduler import JobScheduler


@dataclass
class SupportRuntime:
    session_scope: Callable[[], ContextManager[Session]]
    orchestrator: ResponseOrchestrator
    notifier: NotificationSender
    rate_limiter: RateLimiter
    scheduler: JobScheduler
    redis: Any
    debounce_ms: int = field(default_factory=lambda: settings.debounce_ms)
    max_attempts: int = field(default_factory=lambda: settings.ai_max_attempts)
    backoff_base_seconds: float = field(default_factory=lambda: settings.ai_backoff_base_seconds)
    history_limit: int = field(default_factory=lambda: settings.ai_history_limit)
    sleep_func: Callable = asyncio.sleep


_runtime: Optional[SupportRuntime] = None


def set_runtime(runtime: Optional[SupportRuntime]) -> None:
    global _runtime
    _runtime = runtime


def get_runtime() -> SupportRuntime:
    if _runtime is None:
        raise RuntimeError("Support runtime is not initialized")
    return _runtime

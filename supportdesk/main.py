import asyncio
import os

import redis.asyncio as redis_async
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from supportdesk.config import settings
from supportdesk.database import session_scope
from supportdesk.logging_config import get_logger, setup_logging
from supportdesk.routers import conversations, presence, usage
from supportdesk.runtime import SupportRuntime, get_runtime, set_runtime
from supportdesk.services.ai_service import ResponseOrchestrator
from supportdesk.services.llm import OpenAIProvider
from supportdesk.services.notification_service import HttpNotificationSender
from supportdesk.services.rate_limiter import RateLimiter
from supportdesk.services.scheduler import AsyncioJobScheduler
from supportdesk.services.store import ConversationStore
from supportdesk.services.usage_service import reset_due_usage

setup_logging(settings.log_level)

app = FastAPI(
    title="Support Desk API",
    description="AI-first customer support conversations with human handoff",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(conversations.router)
app.include_router(presence.router)
app.include_router(usage.router)

logger = get_logger("main")
usage_logger = get_logger("usage_worker")
_usage_worker_task: asyncio.Task | None = None

USAGE_RESET_INTERVAL_SECONDS = 3600


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_usage_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("USAGE_WORKER_ENABLED"), default=True)


def build_runtime() -> SupportRuntime:
    redis_client = redis_async.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        socket_timeout=settings.redis_socket_timeout_seconds,
    )
    provider = OpenAIProvider(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.stream_timeout_seconds,
    )
    return SupportRuntime(
        session_scope=session_scope,
        orchestrator=ResponseOrchestrator(provider),
        notifier=HttpNotificationSender(),
        rate_limiter=RateLimiter(redis_client),
        scheduler=AsyncioJobScheduler(),
        redis=redis_client,
    )


async def _usage_worker_loop() -> None:
    while True:
        try:
            await asyncio.sleep(USAGE_RESET_INTERVAL_SECONDS)
            with session_scope() as db:
                reset = reset_due_usage(ConversationStore(db))
            if reset:
                usage_logger.info("Monthly usage reset", extra={"context": {"tenants": reset}})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            usage_logger.error(
                "Usage worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_runtime() -> None:
    global _usage_worker_task
    set_runtime(build_runtime())
    logger.info("Support runtime started")

    if not _is_usage_worker_enabled():
        return
    if _usage_worker_task is None or _usage_worker_task.done():
        _usage_worker_task = asyncio.create_task(_usage_worker_loop())
        usage_logger.info("Usage worker started")


@app.on_event("shutdown")
async def stop_runtime() -> None:
    global _usage_worker_task
    if _usage_worker_task is not None:
        _usage_worker_task.cancel()
        try:
            await _usage_worker_task
        except asyncio.CancelledError:
            pass
        _usage_worker_task = None

    runtime = get_runtime()
    await runtime.scheduler.shutdown()
    await runtime.redis.aclose()
    set_runtime(None)


@app.get("/health")
async def health():
    return {"status": "ok"}

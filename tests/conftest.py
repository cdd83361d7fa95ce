import asyncio
import os
from contextlib import contextmanager

os.environ.setdefault("DATABASE_URL", "sqlite://")

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from supportdesk.database import Base
from supportdesk.models import Company, Plan, User
from supportdesk.logging_config import LoggerAdapter, get_logger
from supportdesk.runtime import SupportRuntime
from supportdesk.services import conversation_service
from supportdesk.services.ai_service import ResponseOrchestrator
from supportdesk.services.llm.base import CompletionProvider, RunSnapshot, RunStatus, StatusChange, TextDelta
from supportdesk.services.notification_service import NotificationSender
from supportdesk.services.rate_limiter import RateLimiter
from supportdesk.services.scheduler import AsyncioJobScheduler
from supportdesk.services.store import ConversationStore


class FakeCompletionProvider(CompletionProvider):
    """Replays scripted runs.

    Each script is a list of stream events; an exception instance in the list
    is raised at that point of the stream.
    """

    def __init__(self, scripts=None, snapshots=None, continuation=None):
        self.scripts = list(scripts or [])
        self.snapshots = list(snapshots or [])
        self.continuation = list(continuation or [])
        self.requests = []
        self.polled = []
        self.tool_results = []

    async def _play(self, events):
        for event in events:
            await asyncio.sleep(0)
            if isinstance(event, BaseException):
                raise event
            if event == "hang":
                await asyncio.Event().wait()
            yield event

    def stream_completion(self, request):
        self.requests.append(request)
        script = self.scripts.pop(0) if len(self.scripts) > 1 else (self.scripts[0] if self.scripts else [])
        return self._play(script)

    async def poll_status(self, handle):
        self.polled.append(handle)
        if self.snapshots:
            return self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        return RunSnapshot(status=RunStatus.IN_PROGRESS)

    def submit_tool_result(self, handle, tool_call_id, payload, request):
        self.tool_results.append((handle, tool_call_id, payload))
        return self._play(self.continuation)


def reply_script(text: str, handle: str = "resp_1", tokens: int = 42):
    return [
        StatusChange(status=RunStatus.IN_PROGRESS, handle=handle),
        TextDelta(text=text),
        StatusChange(status=RunStatus.COMPLETED, handle=handle, usage={"total_tokens": tokens}),
    ]


class RecordingNotifier(NotificationSender):
    def __init__(self, delivered: bool = True):
        self.calls = []
        self.delivered = delivered

    async def notify(self, user_ids, title, body, deep_link=None):
        self.calls.append({"user_ids": user_ids, "title": title, "body": body, "deep_link": deep_link})
        return self.delivered


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Real SQLite session shared by the test and the code under test."""
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return ConversationStore(db_session)


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(redis_server):
    return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def sync_redis(redis_server):
    """Blocking client on the same fake server, for sync TestClient tests."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def provider():
    return FakeCompletionProvider(scripts=[reply_script("Our store opens at 9am.")])


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_tenant(store):
    def _make(limit: int = 100, used: int = 0, triggers=None, **fields) -> Company:
        plan = Plan(name="Pro", ai_responses_per_month=limit)
        store.db.add(plan)
        store.db.flush()
        company = Company(
            name="Acme",
            plan_id=plan.id,
            ai_responses_this_month=used,
            ai_handoff_triggers=triggers or [],
            **fields,
        )
        store.db.add(company)
        store.db.commit()
        return company

    return _make


@pytest.fixture
def make_user(store):
    def _make(tenant: Company, role: str = "customer", display_name: str = "Jane Doe", **fields) -> User:
        user = User(tenant_id=tenant.id, role=role, display_name=display_name, **fields)
        store.db.add(user)
        store.db.commit()
        return user

    return _make


@pytest.fixture
def make_conversation(store):
    def _make(tenant: Company, customer: User, status: str = "ai_handling", **fields):
        conversation = conversation_service.get_or_create_conversation(store, tenant.id, customer.id)
        if status != "ai_handling" or fields:
            store.patch_conversation(conversation.id, status=status, **fields)
        store.commit()
        return store.get_conversation(conversation.id)

    return _make


@pytest.fixture
def log():
    return LoggerAdapter(get_logger("tests"), {})


@pytest.fixture
def runtime(db_session, provider, notifier, fake_redis, recording_sleep):
    @contextmanager
    def shared_session():
        yield db_session

    return SupportRuntime(
        session_scope=shared_session,
        orchestrator=ResponseOrchestrator(
            provider,
            stream_timeout_seconds=2.0,
            stall_seconds=0.05,
            init_timeout_seconds=0.5,
            poll_interval_seconds=0.01,
        ),
        notifier=notifier,
        rate_limiter=RateLimiter(fake_redis, window_seconds=60, max_requests=10),
        scheduler=AsyncioJobScheduler(),
        redis=fake_redis,
        debounce_ms=20,
        max_attempts=3,
        backoff_base_seconds=1.0,
        history_limit=20,
        sleep_func=recording_sleep,
    )

import asyncio
from uuid import uuid4

import pytest

from supportdesk.services import conversation_service
from supportdesk.services.debounce_service import _schedule_follow_up, run_ai_job, schedule_ai_response
from supportdesk.services.message_service import send_customer_message
from supportdesk.services.state_machine import ConversationStatus, MessageRole


@pytest.fixture
def tenant(make_tenant):
    return make_tenant(limit=100)


@pytest.fixture
def customer(make_user, tenant):
    return make_user(tenant)


def _ai_messages(store, conversation_id):
    return [m for m in store.list_recent_messages(conversation_id, 50) if m.role == MessageRole.AI.value]


class TestDebounce:
    @pytest.mark.asyncio
    async def test_burst_produces_one_reply(self, runtime, store, provider, make_conversation, tenant, customer):
        conversation = make_conversation(tenant, customer)

        for text in ("Hi", "I ordered a bike", "Where is it?"):
            result = await send_customer_message(runtime, store, conversation.id, customer.id, text)
            assert result.ok is True
        await runtime.scheduler.wait_idle()

        assert len(provider.requests) == 1
        assert provider.requests[0].messages[-1] == {"role": "user", "content": "Where is it?"}
        assert len(_ai_messages(store, conversation.id)) == 1
        refreshed = store.get_conversation(conversation.id)
        assert refreshed.pending_job_id is None
        assert refreshed.ai_processing is False

    @pytest.mark.asyncio
    async def test_three_messages_inside_debounce_window(self, runtime, store, provider, make_conversation, tenant, customer):
        runtime.debounce_ms = 500
        conversation = make_conversation(tenant, customer)

        for index, text in enumerate(("Hello", "Do you ship to Canada?", "And Mexico?")):
            if index:
                await asyncio.sleep(0.3)
            await send_customer_message(runtime, store, conversation.id, customer.id, text)
        await runtime.scheduler.wait_idle()

        assert len(provider.requests) == 1
        assert len(_ai_messages(store, conversation.id)) == 1

    @pytest.mark.asyncio
    async def test_message_during_admission_is_answered_once(self, runtime, store, provider, make_conversation, tenant, customer):
        conversation = make_conversation(tenant, customer)
        original_check = runtime.rate_limiter.check
        sent = []

        async def check_after_new_message(tenant_id, kind):
            if not sent:
                sent.append(True)
                await send_customer_message(runtime, store, conversation.id, customer.id, "Second question")
            return await original_check(tenant_id, kind)

        runtime.rate_limiter.check = check_after_new_message
        await send_customer_message(runtime, store, conversation.id, customer.id, "First question")
        await runtime.scheduler.wait_idle()

        assert [r.messages[-1]["content"] for r in provider.requests] == ["Second question"]
        assert len(_ai_messages(store, conversation.id)) == 1

    @pytest.mark.asyncio
    async def test_new_message_replaces_pending_job(self, runtime, store, make_conversation, tenant, customer):
        conversation = make_conversation(tenant, customer)

        first = schedule_ai_response(runtime, store, conversation)
        second = schedule_ai_response(runtime, store, store.get_conversation(conversation.id))

        assert first != second
        assert not runtime.scheduler.is_pending(first)
        assert runtime.scheduler.is_pending(second)
        assert store.get_conversation(conversation.id).pending_job_id == second
        await runtime.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_superseded_job_does_nothing(self, runtime, store, provider, make_conversation, tenant, customer):
        conversation = make_conversation(tenant, customer, pending_job_id="newer-job")
        conversation_service.save_message(store, conversation, MessageRole.CUSTOMER, "Hi")
        store.commit()

        await run_ai_job(runtime, {"conversation_id": str(conversation.id), "job_id": "older-job"})

        assert provider.requests == []
        assert store.get_conversation(conversation.id).pending_job_id == "newer-job"

    @pytest.mark.asyncio
    async def test_job_skips_conversation_no_longer_ai_owned(self, runtime, store, provider, make_conversation, tenant, customer):
        conversation = make_conversation(tenant, customer, status="available", pending_job_id="job-1")

        await run_ai_job(runtime, {"conversation_id": str(conversation.id), "job_id": "job-1"})

        assert provider.requests == []
        assert store.get_conversation(conversation.id).pending_job_id is None

    @pytest.mark.asyncio
    async def test_job_for_unknown_conversation(self, runtime, provider):
        await run_ai_job(runtime, {"conversation_id": str(uuid4()), "job_id": "job-1"})

        assert provider.requests == []


class TestFollowUp:
    @pytest.mark.asyncio
    async def test_unanswered_message_gets_its_own_job(self, runtime, store, make_conversation, tenant, customer):
        conversation = make_conversation(tenant, customer)
        answered = conversation_service.save_message(store, conversation, MessageRole.CUSTOMER, "First")
        conversation_service.save_message(store, conversation, MessageRole.CUSTOMER, "Also this")
        store.commit()

        _schedule_follow_up(runtime, store, conversation.id, answered.id)

        job_id = store.get_conversation(conversation.id).pending_job_id
        assert job_id is not None
        assert runtime.scheduler.is_pending(job_id)
        await runtime.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_nothing_new_means_no_job(self, runtime, store, make_conversation, tenant, customer):
        conversation = make_conversation(tenant, customer)
        answered = conversation_service.save_message(store, conversation, MessageRole.CUSTOMER, "Only one")
        store.commit()

        _schedule_follow_up(runtime, store, conversation.id, answered.id)

        assert store.get_conversation(conversation.id).pending_job_id is None

    @pytest.mark.asyncio
    async def test_message_during_processing_is_answered_afterwards(
        self, runtime, store, provider, make_conversation, tenant, customer
    ):
        conversation = make_conversation(tenant, customer)
        await send_customer_message(runtime, store, conversation.id, customer.id, "First question")

        original_stream = provider.stream_completion
        sent_during_processing = []

        def stream_and_interrupt(request):
            if not sent_during_processing:
                busy = store.get_conversation(conversation.id)
                assert busy.ai_processing is True
                message = conversation_service.save_message(store, busy, MessageRole.CUSTOMER, "Second question")
                store.commit()
                sent_during_processing.append(message.id)
            return original_stream(request)

        provider.stream_completion = stream_and_interrupt
        await runtime.scheduler.wait_idle()

        assert len(provider.requests) == 2
        assert provider.requests[1].messages[-1] == {"role": "user", "content": "Second question"}
        assert len(_ai_messages(store, conversation.id)) == 2
        assert store.get_conversation(conversation.id).status == ConversationStatus.AI_HANDLING.value

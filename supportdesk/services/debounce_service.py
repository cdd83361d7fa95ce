"""Coalesces bursts of customer messages into one delayed AI job."""

from uuid import UUID

from supportdesk.logging_config import conversation_logger, get_logger
from supportdesk.models import Conversation
from supportdesk.runtime import SupportRuntime
from supportdesk.services import conversation_service
from supportdesk.services.admission_service import admit_ai_attempt
from supportdesk.services.retry_service import generate_with_retries
from supportdesk.services.scheduler import JobCancellationError
from supportdesk.services.state_machine import ConversationStatus, MessageRole
from supportdesk.services.store import ConversationStore

logger = get_logger("debounce_service")


def schedule_ai_response(runtime: SupportRuntime, store: ConversationStore, conversation: Conversation) -> str:
    """Replace any pending AI job for the conversation with a fresh one."""
    if conversation.pending_job_id:
        try:
            runtime.scheduler.cancel(conversation.pending_job_id)
        except JobCancellationError as e:
            logger.info(
                f"Previous AI job not cancelled: {e.reason}",
                extra={"context": {"conversation_id": str(conversation.id), "job_id": e.job_id}},
            )

    payload = {"conversation_id": str(conversation.id)}
    job_id = runtime.scheduler.schedule(runtime.debounce_ms, lambda job_payload: run_ai_job(runtime, job_payload), payload)
    # The job cannot start before this returns, so it always sees its own id.
    payload["job_id"] = job_id
    conversation_service.set_pending_job(store, conversation.id, job_id)
    logger.debug(
        "Scheduled AI job",
        extra={"context": {"conversation_id": str(conversation.id), "job_id": job_id, "delay_ms": runtime.debounce_ms}},
    )
    return job_id


async def run_ai_job(runtime: SupportRuntime, payload: dict) -> None:
    conversation_id = UUID(payload["conversation_id"])
    job_id = payload["job_id"]

    with runtime.session_scope() as db:
        store = ConversationStore(db)

        if not conversation_service.clear_pending_job(store, conversation_id, job_id):
            logger.info(
                "AI job superseded",
                extra={"context": {"conversation_id": str(conversation_id), "job_id": job_id}},
            )
            return

        conversation = store.get_conversation(conversation_id)
        if conversation is None:
            return
        log = conversation_logger("debounce_service", conversation, job_id=job_id)

        if conversation.status != ConversationStatus.AI_HANDLING.value or conversation.ai_processing:
            log.info("Skipping AI job", context={"status": conversation.status, "ai_processing": conversation.ai_processing})
            return

        if not await admit_ai_attempt(store, runtime.rate_limiter, runtime.notifier, conversation, log):
            return

        answered_id = await generate_with_retries(runtime, store, conversation_id)
        if answered_id is not None:
            _schedule_follow_up(runtime, store, conversation_id, answered_id)


def _schedule_follow_up(runtime: SupportRuntime, store: ConversationStore, conversation_id: UUID, answered_id: UUID) -> None:
    """Messages that arrived while the AI was busy get their own job."""
    conversation = store.get_conversation(conversation_id)
    if (
        conversation is None
        or conversation.status != ConversationStatus.AI_HANDLING.value
        or conversation.ai_processing
        or conversation.pending_job_id
    ):
        return

    latest = store.latest_message(conversation_id, [MessageRole.CUSTOMER.value])
    if latest is not None and latest.id != answered_id:
        schedule_ai_response(runtime, store, conversation)

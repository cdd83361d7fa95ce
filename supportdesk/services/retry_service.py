"""Bounded retries around one AI response, with forced handoff on exhaustion."""

from typing import Optional
from uuid import UUID, uuid4

from supportdesk.logging_config import LoggerAdapter, conversation_logger
from supportdesk.models import Conversation
from supportdesk.runtime import SupportRuntime
from supportdesk.services import conversation_service
from supportdesk.services.ai_service import AIConfig, apply_outcome, build_history
from supportdesk.services.alert_service import alert_error
from supportdesk.services.llm.base import FatalGenerationError, StaleThreadError, TransientGenerationError
from supportdesk.services.notification_service import notify_support_agents
from supportdesk.services.state_machine import ConversationStatus, MessageRole
from supportdesk.services.store import ConversationStore

AI_FAILURE_REASON = "AI generation failed after multiple attempts"
AI_UNAVAILABLE_MESSAGE = "AI is temporarily unavailable. A support agent will assist you shortly."


def _owned_by(conversation: Optional[Conversation], attempt_id: str) -> bool:
    return (
        conversation is not None
        and conversation.status == ConversationStatus.AI_HANDLING.value
        and conversation.ai_attempt_id == attempt_id
    )


def backoff_seconds(attempt: int, base_seconds: float) -> float:
    return base_seconds * 2 ** (attempt - 1)


async def generate_with_retries(runtime: SupportRuntime, store: ConversationStore, conversation_id: UUID) -> Optional[UUID]:
    """Answer the latest customer message. Returns the id of the message that was handled.

    The processing flag is claimed once before the first attempt and released
    once after the last, so triggers arriving in between see the conversation
    as busy. A job whose message was already answered by an earlier run does
    nothing.
    """
    attempt_id = uuid4().hex
    if not conversation_service.set_ai_processing(store, conversation_id, attempt_id):
        return None

    conversation = store.get_conversation(conversation_id)
    log = conversation_logger("retry_service", conversation, attempt_id=attempt_id)

    try:
        customer_message = store.latest_message(conversation_id, [MessageRole.CUSTOMER.value])
        if customer_message is None:
            log.info("No customer message to answer")
            return None
        if conversation.last_answered_message_id == customer_message.id:
            log.info("Latest customer message already answered", context={"message_id": str(customer_message.id)})
            return None

        last_error: Optional[Exception] = None
        for attempt in range(1, runtime.max_attempts + 1):
            conversation = store.get_conversation(conversation_id)
            if not _owned_by(conversation, attempt_id):
                log.info("Conversation left AI handling, stopping retries", context={"attempt": attempt})
                return customer_message.id

            attempt_log = log.bind(attempt=attempt)
            company = store.get_company(conversation.tenant_id)
            messages = store.list_recent_messages(conversation_id, runtime.history_limit)
            history = build_history(messages, conversation.external_thread_id)

            try:
                outcome = await runtime.orchestrator.generate(
                    AIConfig.from_company(company),
                    customer_message.content,
                    history,
                    attempt_log,
                    thread_id=conversation.external_thread_id,
                )
            except StaleThreadError as e:
                attempt_log.warning(f"Dropping stale thread handle: {e}")
                conversation_service.update_thread_id(store, conversation_id, None)
                last_error = e
            except TransientGenerationError as e:
                attempt_log.warning(f"AI generation failed (attempt {attempt}): {e}")
                last_error = e
            except FatalGenerationError as e:
                attempt_log.error(f"AI generation failed permanently (attempt {attempt}): {e}")
                last_error = e
                break
            except Exception as e:
                attempt_log.error(f"Unexpected AI generation error (attempt {attempt}): {e}", exc_info=True)
                last_error = e
                break
            else:
                await apply_outcome(
                    store,
                    runtime.notifier,
                    conversation_id,
                    attempt_id,
                    outcome,
                    attempt_log,
                    answered_message_id=customer_message.id,
                )
                return customer_message.id

            if attempt < runtime.max_attempts:
                delay = backoff_seconds(attempt, runtime.backoff_base_seconds)
                attempt_log.info(f"Retrying in {delay:g}s")
                await runtime.sleep_func(delay)

        await _hand_off_after_failure(runtime, store, conversation_id, attempt_id, last_error, log)
        return customer_message.id
    finally:
        conversation_service.clear_ai_processing(store, conversation_id, attempt_id)


async def _hand_off_after_failure(
    runtime: SupportRuntime,
    store: ConversationStore,
    conversation_id: UUID,
    attempt_id: str,
    error: Optional[Exception],
    log: LoggerAdapter,
) -> None:
    conversation = store.get_conversation(conversation_id)
    if not _owned_by(conversation, attempt_id):
        log.info("Conversation left AI handling, skipping failure handoff")
        return

    log.error("All AI generation attempts failed", context={"error": str(error)})
    handed_off = conversation_service.hand_off(
        store, conversation, AI_FAILURE_REASON, notice=AI_UNAVAILABLE_MESSAGE, attempt_id=attempt_id
    )
    if handed_off is None:
        log.info("Conversation changed before the failure handoff, skipping notice")
        return
    await notify_support_agents(
        store,
        runtime.notifier,
        conversation,
        "Customer needs assistance",
        "A customer is waiting for support (AI unavailable)",
    )
    await alert_error(
        "AI generation failed after retries",
        {"conversation_id": conversation_id, "tenant_id": conversation.tenant_id, "error": error},
    )

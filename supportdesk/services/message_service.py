from typing import Optional
from uuid import UUID

from supportdesk.database import utcnow
from supportdesk.logging_config import get_logger
from supportdesk.models import Message
from supportdesk.runtime import SupportRuntime
from supportdesk.services import conversation_service
from supportdesk.services.debounce_service import schedule_ai_response
from supportdesk.services.result import Result
from supportdesk.services.state_machine import ConversationStatus, MessageRole, SystemMessageType
from supportdesk.services.state_service import STAFF_ROLES
from supportdesk.services.store import ConversationStore

logger = get_logger("message_service")


async def send_customer_message(
    runtime: SupportRuntime,
    store: ConversationStore,
    conversation_id: UUID,
    customer_id: UUID,
    content: str,
    attachment: Optional[dict] = None,
) -> Result[Message]:
    """Store a customer message and, while the AI owns the conversation, schedule a reply.

    A resolved conversation is reopened first; the reopen notice sorts before
    the message that caused it.
    """
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    if conversation.customer_id != customer_id:
        return Result.failure("Unauthorized", "forbidden")

    if conversation.status == ConversationStatus.RESOLVED.value:
        conversation_service.apply_transition(
            store,
            conversation,
            ConversationStatus.AI_HANDLING,
            conversation_service.REOPENED_MESSAGE,
            SystemMessageType.HANDOFF,
            commit=False,
        )

    message = conversation_service.save_message(
        store,
        conversation,
        MessageRole.CUSTOMER,
        content,
        sender_id=customer_id,
        **(attachment or {}),
    )
    store.commit()

    conversation = store.get_conversation(conversation_id)
    if conversation.status == ConversationStatus.AI_HANDLING.value and not conversation.ai_processing:
        schedule_ai_response(runtime, store, conversation)
    else:
        logger.debug(
            "Customer message stored without AI trigger",
            extra={"context": {"conversation_id": str(conversation_id), "status": conversation.status}},
        )
    return Result.success(message)


def mark_read_by_agent(store: ConversationStore, conversation_id: UUID, agent_id: UUID) -> Result[int]:
    """Stamp unread customer messages. Messages already read keep their first stamp."""
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    agent = store.get_user(agent_id)
    if not agent or agent.role not in STAFF_ROLES or agent.tenant_id != conversation.tenant_id:
        return Result.failure("Unauthorized", "forbidden")
    count = store.stamp_read_receipts(conversation_id, [MessageRole.CUSTOMER.value], "read_by_agent_at", utcnow())
    store.commit()
    return Result.success(count)


def mark_read_by_customer(store: ConversationStore, conversation_id: UUID, customer_id: UUID) -> Result[int]:
    """Stamp unread agent and AI messages."""
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    if conversation.customer_id != customer_id:
        return Result.failure("Unauthorized", "forbidden")
    count = store.stamp_read_receipts(
        conversation_id,
        [MessageRole.AGENT.value, MessageRole.AI.value],
        "read_by_customer_at",
        utcnow(),
    )
    store.commit()
    return Result.success(count)

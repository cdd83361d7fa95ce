from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm.attributes import set_committed_value

from supportdesk.database import utcnow
from supportdesk.logging_config import get_logger
from supportdesk.models import Conversation, Message
from supportdesk.services.state_machine import (
    ConversationStatus,
    MessageRole,
    SystemMessageType,
    transition_fields,
)
from supportdesk.services.store import ConversationStore

logger = get_logger("conversation_service")

HANDOFF_MESSAGE = "Conversation handed off to support staff."
HANDBACK_TO_AI_MESSAGE = "Conversation handed back to support bot."
REOPENED_MESSAGE = "Your conversation has been reopened."

_TICK = timedelta(microseconds=1)


def get_or_create_conversation(store: ConversationStore, tenant_id: UUID, customer_id: UUID) -> Conversation:
    """One conversation per (tenant, customer)."""
    conversation = store.find_conversation(tenant_id, customer_id)
    if conversation:
        return conversation

    now = utcnow()
    conversation = store.add_conversation(
        Conversation(
            tenant_id=tenant_id,
            customer_id=customer_id,
            status=ConversationStatus.AI_HANDLING.value,
            ai_processing=False,
            participating_agents=[],
            message_count=0,
            created_at=now,
            updated_at=now,
        )
    )
    logger.info(
        "Created conversation",
        extra={"context": {"conversation_id": str(conversation.id), "tenant_id": str(tenant_id)}},
    )
    return conversation


def _next_timestamp(conversation: Conversation) -> datetime:
    now = utcnow()
    if conversation.last_message_at and now <= conversation.last_message_at:
        return conversation.last_message_at + _TICK
    return now


def save_message(
    store: ConversationStore,
    conversation: Conversation,
    role: MessageRole,
    content: str,
    **fields,
) -> Message:
    """Append a message. Timestamps are strictly increasing per conversation."""
    created_at = _next_timestamp(conversation)
    message = store.insert_message(
        conversation_id=conversation.id,
        tenant_id=conversation.tenant_id,
        role=MessageRole(role).value,
        content=content,
        created_at=created_at,
        **fields,
    )

    counters = {
        "message_count": (conversation.message_count or 0) + 1,
        "last_message_at": created_at,
    }
    if conversation.first_message_at is None:
        counters["first_message_at"] = created_at
    if message.role == MessageRole.AGENT.value:
        counters["last_agent_message_at"] = created_at
    store.patch_conversation(conversation.id, **counters)
    for key, value in counters.items():
        set_committed_value(conversation, key, value)
    return message


def save_system_message(
    store: ConversationStore,
    conversation: Conversation,
    content: str,
    message_type: Optional[SystemMessageType] = None,
) -> Message:
    return save_message(
        store,
        conversation,
        MessageRole.SYSTEM,
        content,
        system_message_type=SystemMessageType(message_type).value if message_type else None,
    )


def apply_transition(
    store: ConversationStore,
    conversation: Conversation,
    to_status: ConversationStatus,
    audit_message: str,
    audit_type: Optional[SystemMessageType] = None,
    commit: bool = True,
    expected: Optional[dict] = None,
    **fields,
) -> Optional[Message]:
    """Move the conversation to `to_status` and append its audit message.

    The status patch and the audit message are committed together. Raises
    InvalidTransitionError for transitions the state machine does not allow.

    With `expected`, the patch is a conditional write on those columns; if
    another writer got there first nothing is written and None is returned.
    """
    from_status = ConversationStatus(conversation.status)
    patch = transition_fields(from_status, to_status)
    patch.update(fields)

    if expected is None:
        store.patch_conversation(conversation.id, **patch)
    elif not store.patch_conversation_if(conversation.id, expected, **patch):
        store.rollback()
        logger.info(
            f"Conversation {conversation.id}: {from_status.value} -> {ConversationStatus(to_status).value} lost to a concurrent change",
            extra={"context": {"conversation_id": str(conversation.id), "expected": expected}},
        )
        return None
    audit = save_system_message(store, conversation, audit_message, audit_type)
    if commit:
        store.commit()

    logger.info(
        f"Conversation {conversation.id}: {from_status.value} -> {ConversationStatus(to_status).value}",
        extra={"context": {"conversation_id": str(conversation.id), "tenant_id": str(conversation.tenant_id)}},
    )
    return audit


def hand_off(
    store: ConversationStore,
    conversation: Conversation,
    reason: str,
    notice: str = HANDOFF_MESSAGE,
    attempt_id: Optional[str] = None,
) -> Optional[Message]:
    """ai_handling -> available with a handoff reason.

    Written only while the conversation is still AI-owned (and, with
    `attempt_id`, still held by that attempt). Returns None when an agent or
    another attempt changed it first; no notice is posted then.
    """
    if conversation.status != ConversationStatus.AI_HANDLING.value:
        logger.info(
            f"Conversation {conversation.id}: handoff skipped, status is {conversation.status}",
            extra={"context": {"conversation_id": str(conversation.id), "reason": reason}},
        )
        return None
    expected = {"status": ConversationStatus.AI_HANDLING.value}
    if attempt_id is not None:
        expected["ai_attempt_id"] = attempt_id
    now = utcnow()
    return apply_transition(
        store,
        conversation,
        ConversationStatus.AVAILABLE,
        notice,
        SystemMessageType.HANDOFF,
        expected=expected,
        handoff_reason=reason,
        handoff_triggered_at=now,
    )


def set_ai_processing(store: ConversationStore, conversation_id: UUID, attempt_id: str) -> bool:
    """Claim the conversation for one AI attempt. False if it is not AI-owned or already busy."""
    claimed = store.patch_conversation_if(
        conversation_id,
        {"status": ConversationStatus.AI_HANDLING.value, "ai_processing": False},
        ai_processing=True,
        ai_processing_started_at=utcnow(),
        ai_attempt_id=attempt_id,
    )
    store.commit()
    return claimed


def clear_ai_processing(store: ConversationStore, conversation_id: UUID, attempt_id: str) -> bool:
    """Release the processing flag if this attempt still holds it."""
    released = store.patch_conversation_if(
        conversation_id,
        {"ai_attempt_id": attempt_id},
        ai_processing=False,
        ai_processing_started_at=None,
        ai_attempt_id=None,
    )
    store.commit()
    return released


def set_pending_job(store: ConversationStore, conversation_id: UUID, job_id: Optional[str]) -> None:
    store.patch_conversation(conversation_id, pending_job_id=job_id)
    store.commit()


def clear_pending_job(store: ConversationStore, conversation_id: UUID, job_id: str) -> bool:
    """Clear the pending handle only if it is still ours."""
    cleared = store.patch_conversation_if(conversation_id, {"pending_job_id": job_id}, pending_job_id=None)
    store.commit()
    return cleared


def update_thread_id(store: ConversationStore, conversation_id: UUID, thread_id: Optional[str]) -> None:
    store.patch_conversation(conversation_id, external_thread_id=thread_id)
    store.commit()

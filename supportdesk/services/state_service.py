from typing import Optional
from uuid import UUID

from supportdesk.database import utcnow
from supportdesk.logging_config import get_logger
from supportdesk.models import Conversation, Message, User
from supportdesk.services import conversation_service
from supportdesk.services.lock_service import LockAcquisitionError, conversation_lock_key, hold_lock
from supportdesk.services.notification_service import NotificationSender, notify_support_agents
from supportdesk.services.result import Result
from supportdesk.services.state_machine import (
    ConversationStatus,
    MessageRole,
    SystemMessageType,
    can_transition,
)
from supportdesk.services.store import ConversationStore
from supportdesk.services.usage_service import check_usage_limit

logger = get_logger("state_service")

STAFF_ROLES = ("support", "admin")
CUSTOMER_HANDOFF_REASON = "Customer requested human support"
HANDBACK_USAGE_ERROR = "Cannot hand back to AI: Company has reached AI usage limit"


def _load_agent(store: ConversationStore, conversation: Conversation, agent_id: UUID) -> Optional[User]:
    agent = store.get_user(agent_id)
    if not agent or agent.role not in STAFF_ROLES or agent.tenant_id != conversation.tenant_id:
        return None
    return agent


def _join_message(agent: User) -> str:
    return f"{agent.first_name} (Support Staff) has joined the conversation."


def _add_participant(
    store: ConversationStore,
    conversation: Conversation,
    agent: User,
) -> bool:
    """Record an agent's first join. Returns False if the agent was already in.

    A first join appends the join message and, when the agent has one, the
    greeting right after it. Caller holds the conversation lock.
    """
    participants = [str(p) for p in (conversation.participating_agents or [])]
    if str(agent.id) in participants:
        return False

    participants.append(str(agent.id))
    status = ConversationStatus(conversation.status)
    if status == ConversationStatus.SUPPORT_STAFF_HANDLING:
        store.patch_conversation(conversation.id, participating_agents=participants)
        conversation_service.save_system_message(
            store, conversation, _join_message(agent), SystemMessageType.AGENT_JOINED
        )
    else:
        conversation_service.apply_transition(
            store,
            conversation,
            ConversationStatus.SUPPORT_STAFF_HANDLING,
            _join_message(agent),
            SystemMessageType.AGENT_JOINED,
            commit=False,
            participating_agents=participants,
        )

    if agent.auto_greeting_enabled and agent.agent_greeting:
        conversation_service.save_message(
            store,
            conversation,
            MessageRole.AGENT,
            agent.agent_greeting,
            sender_id=agent.id,
            sender_name=agent.display_name,
        )
    return True


async def trigger_handoff(
    store: ConversationStore,
    notifier: NotificationSender,
    conversation_id: UUID,
    reason: str,
) -> Result[Conversation]:
    """ai_handling -> available, then tell the support team."""
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")

    if conversation.status != ConversationStatus.AI_HANDLING.value:
        return Result.failure(f"Cannot hand off from status {conversation.status}", "invalid_state")

    if conversation_service.hand_off(store, conversation, reason) is None:
        return Result.failure("Conversation changed before the handoff was written", "invalid_state")
    await notify_support_agents(
        store,
        notifier,
        conversation,
        "New customer needs help",
        f"A customer needs assistance: {reason}",
    )
    return Result.success(store.get_conversation(conversation_id))


async def request_human_support(
    store: ConversationStore,
    notifier: NotificationSender,
    conversation_id: UUID,
    customer_id: UUID,
) -> Result[Conversation]:
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    if conversation.customer_id != customer_id:
        return Result.failure("Unauthorized", "forbidden")

    return await trigger_handoff(store, notifier, conversation_id, CUSTOMER_HANDOFF_REASON)


async def agent_accept(
    redis_client,
    store: ConversationStore,
    conversation_id: UUID,
    agent_id: UUID,
    lock_timeout_ms: Optional[int] = None,
) -> Result[bool]:
    """Agent picks the conversation up. Returns whether this was the agent's first join."""
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    agent = _load_agent(store, conversation, agent_id)
    if not agent:
        return Result.failure("Agent not found", "forbidden")

    try:
        async with hold_lock(redis_client, conversation_lock_key(conversation_id), timeout_ms=lock_timeout_ms):
            conversation = store.get_conversation(conversation_id)
            status = ConversationStatus(conversation.status)
            if status != ConversationStatus.SUPPORT_STAFF_HANDLING and not can_transition(
                status, ConversationStatus.SUPPORT_STAFF_HANDLING
            ):
                return Result.failure(f"Cannot accept from status {status.value}", "invalid_state")

            joined = _add_participant(store, conversation, agent)
            store.commit()
    except LockAcquisitionError as e:
        return Result.failure(str(e), "lock_timeout")

    if joined:
        logger.info(
            f"Agent {agent_id} joined conversation {conversation_id}",
            extra={"context": {"conversation_id": str(conversation_id), "agent_id": str(agent_id)}},
        )
    return Result.success(joined)


async def agent_send_message(
    redis_client,
    store: ConversationStore,
    conversation_id: UUID,
    agent_id: UUID,
    content: str,
    attachment: Optional[dict] = None,
    lock_timeout_ms: Optional[int] = None,
) -> Result[Message]:
    """Post an agent message, joining the agent first if needed.

    The first-join check and all resulting writes happen under the
    conversation lock so two agents cannot both join as "first".
    """
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    agent = _load_agent(store, conversation, agent_id)
    if not agent:
        return Result.failure("Agent not found", "forbidden")

    try:
        async with hold_lock(redis_client, conversation_lock_key(conversation_id), timeout_ms=lock_timeout_ms):
            conversation = store.get_conversation(conversation_id)
            _add_participant(store, conversation, agent)

            message = conversation_service.save_message(
                store,
                conversation,
                MessageRole.AGENT,
                content,
                sender_id=agent.id,
                sender_name=agent.display_name,
                **(attachment or {}),
            )
            store.commit()
    except LockAcquisitionError as e:
        return Result.failure(str(e), "lock_timeout")

    return Result.success(message)


def hand_back_to_queue(store: ConversationStore, conversation_id: UUID, agent_id: UUID) -> Result[Conversation]:
    """support_staff_handling -> available."""
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    if conversation.status != ConversationStatus.SUPPORT_STAFF_HANDLING.value:
        return Result.failure(f"Cannot hand back from status {conversation.status}", "invalid_state")

    agent = _load_agent(store, conversation, agent_id)
    name = agent.first_name if agent else "Support staff"
    conversation_service.apply_transition(
        store,
        conversation,
        ConversationStatus.AVAILABLE,
        f"{name} returned the conversation to the support queue.",
        SystemMessageType.AGENT_LEFT,
        handoff_reason="Returned to queue by support staff",
        handoff_triggered_at=utcnow(),
    )
    return Result.success(store.get_conversation(conversation_id))


def hand_back_to_ai(store: ConversationStore, conversation_id: UUID) -> Result[Conversation]:
    """support_staff_handling -> ai_handling, refused while the tenant is out of AI quota."""
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    if conversation.status != ConversationStatus.SUPPORT_STAFF_HANDLING.value:
        return Result.failure(f"Cannot hand back to AI from status {conversation.status}", "invalid_state")

    usage = check_usage_limit(store, conversation.tenant_id)
    if usage.has_reached_limit:
        logger.info(
            "Handback to AI refused: usage limit reached",
            extra={"context": {"conversation_id": str(conversation_id), "usage": usage.current_usage, "limit": usage.limit}},
        )
        return Result.failure(HANDBACK_USAGE_ERROR, "usage_limit_reached")

    conversation_service.apply_transition(
        store,
        conversation,
        ConversationStatus.AI_HANDLING,
        conversation_service.HANDBACK_TO_AI_MESSAGE,
        SystemMessageType.HANDOFF,
    )
    return Result.success(store.get_conversation(conversation_id))


def mark_resolved(
    store: ConversationStore,
    conversation_id: UUID,
    resolved_by: str = "agent",
    agent_id: Optional[UUID] = None,
) -> Result[Conversation]:
    conversation = store.get_conversation(conversation_id)
    if not conversation:
        return Result.failure("Conversation not found", "not_found")
    if conversation.status == ConversationStatus.RESOLVED.value:
        return Result.failure("Conversation is already resolved", "invalid_state")

    content = "Conversation marked as resolved"
    if resolved_by == "agent" and agent_id:
        agent = _load_agent(store, conversation, agent_id)
        if agent:
            content = f"Conversation marked as resolved by {agent.first_name} (Support Staff)"
    elif resolved_by == "ai":
        content = "Conversation marked as resolved by AI"

    conversation_service.apply_transition(
        store,
        conversation,
        ConversationStatus.RESOLVED,
        content,
        SystemMessageType.ISSUE_RESOLVED,
    )
    return Result.success(store.get_conversation(conversation_id))


def check_invariants(conversation: Conversation) -> list[str]:
    """Check state invariants. Returns the list of violations."""
    violations = []
    status = conversation.status

    if conversation.ai_processing and status != ConversationStatus.AI_HANDLING.value:
        violations.append("ai_processing_outside_ai_handling")

    if conversation.ai_processing and not conversation.ai_attempt_id:
        violations.append("ai_processing_without_attempt")

    participants = list(conversation.participating_agents or [])
    if participants and status != ConversationStatus.SUPPORT_STAFF_HANDLING.value:
        violations.append("participants_outside_staff_handling")

    if len(participants) != len(set(str(p) for p in participants)):
        violations.append("duplicate_participants")

    if status == ConversationStatus.SUPPORT_STAFF_HANDLING.value and not participants:
        violations.append("staff_handling_without_agent")

    return violations

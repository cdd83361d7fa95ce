"""Gates an AI attempt on the tenant's rate window and monthly quota."""

from supportdesk.logging_config import LoggerAdapter, get_logger
from supportdesk.models import Conversation
from supportdesk.services import conversation_service
from supportdesk.services.notification_service import NotificationSender, notify_support_agents
from supportdesk.services.rate_limiter import AI_RESPONSE, RateLimiter
from supportdesk.services.store import ConversationStore
from supportdesk.services.usage_service import check_usage_limit

logger = get_logger("admission_service")

RATE_LIMITED_REASON = "rate limited"
RATE_LIMITED_MESSAGE = "Our system is experiencing high demand. Please wait a moment before sending another message."

USAGE_LIMIT_REASON = "usage limit reached"
USAGE_LIMIT_MESSAGE = (
    "AI support bot is currently not available at the moment. "
    "A support staff will be in contact with you shortly."
)


async def admit_ai_attempt(
    store: ConversationStore,
    rate_limiter: RateLimiter,
    notifier: NotificationSender,
    conversation: Conversation,
    log: LoggerAdapter,
) -> bool:
    """Run both gates. A rejection posts the customer notice, hands off and notifies agents.

    Must run before the processing flag is set. Only admitted attempts count
    against the rate window.
    """
    decision = await rate_limiter.check(conversation.tenant_id, AI_RESPONSE)
    if decision.is_limited:
        log.warning("AI attempt rejected: rate limited", context={"current": decision.current, "limit": decision.limit})
        await _reject(store, notifier, conversation, RATE_LIMITED_REASON, RATE_LIMITED_MESSAGE)
        return False

    usage = check_usage_limit(store, conversation.tenant_id)
    if usage.has_reached_limit:
        log.warning(
            "AI attempt rejected: usage limit reached",
            context={"usage": usage.current_usage, "limit": usage.limit},
        )
        await _reject(store, notifier, conversation, USAGE_LIMIT_REASON, USAGE_LIMIT_MESSAGE)
        return False

    await rate_limiter.record(conversation.tenant_id, AI_RESPONSE)
    return True


async def _reject(
    store: ConversationStore,
    notifier: NotificationSender,
    conversation: Conversation,
    reason: str,
    notice: str,
) -> None:
    if conversation_service.hand_off(store, conversation, reason, notice=notice) is None:
        logger.info(
            "Admission handoff skipped, conversation already changed owner",
            extra={"context": {"conversation_id": str(conversation.id), "reason": reason}},
        )
        return
    await notify_support_agents(
        store,
        notifier,
        conversation,
        "New customer needs help",
        f"A customer needs assistance: {reason}",
    )

"""Push notifications to support staff and tenant admins."""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

import httpx

from supportdesk.config import settings
from supportdesk.logging_config import get_logger
from supportdesk.models import Conversation
from supportdesk.services.alert_service import alert_warning
from supportdesk.services.store import ConversationStore

logger = get_logger("notification_service")


class NotificationSender(ABC):
    @abstractmethod
    async def notify(self, user_ids: list[str], title: str, body: str, deep_link: Optional[str] = None) -> bool:
        """Deliver a push notification. Returns False on delivery failure."""
        pass


class HttpNotificationSender(NotificationSender):
    """Sends notifications through the push provider's HTTP API."""

    def __init__(self, api_url: str = "", api_key: str = "", transport=None, timeout: float = 10.0):
        self.api_url = api_url or settings.push_api_url
        self.api_key = api_key or settings.push_api_key
        self.transport = transport
        self.timeout = timeout

    async def notify(self, user_ids: list[str], title: str, body: str, deep_link: Optional[str] = None) -> bool:
        if not self.api_url:
            logger.warning("Push API not configured, notification dropped", extra={"context": {"title": title}})
            return False
        if not user_ids:
            return True

        payload = {"user_ids": user_ids, "title": title, "content": body}
        if deep_link:
            payload["rest_path"] = deep_link

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
            except httpx.HTTPError as e:
                logger.error(f"Push request failed: {e}")
                return False

        if response.status_code >= 300:
            logger.error(
                f"Push API error: {response.status_code}",
                extra={"context": {"body": response.text[:500]}},
            )
            return False
        return True


def conversation_deep_link(conversation_id: UUID) -> str:
    return f"/support?conversation={conversation_id}"


async def notify_support_agents(
    store: ConversationStore,
    notifier: NotificationSender,
    conversation: Conversation,
    title: str,
    body: str,
) -> bool:
    """Tell the tenant's support staff about a conversation. Delivery failure is logged, never raised."""
    agent_ids = [str(agent_id) for agent_id in store.list_staff_ids(conversation.tenant_id)]
    if not agent_ids:
        logger.info(
            "No support agents to notify",
            extra={"context": {"conversation_id": str(conversation.id), "tenant_id": str(conversation.tenant_id)}},
        )
        return False

    try:
        delivered = await notifier.notify(agent_ids, title, body, conversation_deep_link(conversation.id))
    except Exception as e:
        logger.error(
            f"Notifying support agents failed: {e}",
            exc_info=True,
            extra={"context": {"conversation_id": str(conversation.id)}},
        )
        delivered = False

    if not delivered:
        await alert_warning(
            "Support agent notification not delivered",
            {"conversation_id": conversation.id, "tenant_id": conversation.tenant_id},
        )
    return delivered


async def notify_users(
    notifier: NotificationSender,
    user_ids: Iterable[UUID],
    title: str,
    body: str,
    deep_link: Optional[str] = None,
) -> bool:
    ids = [str(user_id) for user_id in user_ids]
    try:
        return await notifier.notify(ids, title, body, deep_link)
    except Exception as e:
        logger.error(f"Notification failed: {e}", exc_info=True)
        return False

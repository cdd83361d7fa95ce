"""Operational alerts posted to an ops webhook."""

from typing import Optional

import httpx

from supportdesk.config import settings
from supportdesk.logging_config import get_logger

logger = get_logger("alert_service")


async def send_alert(level: str, message: str, context: Optional[dict] = None, transport=None) -> bool:
    """Post an alert to the configured webhook.

    Args:
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict

    Returns:
        True if delivered
    """
    if not settings.alert_webhook_url:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    payload = {"level": level, "text": message, "context": {k: str(v) for k, v in (context or {}).items()}}

    try:
        async with httpx.AsyncClient(timeout=10, transport=transport) as client:
            response = await client.post(settings.alert_webhook_url, json=payload)
            return response.status_code < 300
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


async def alert_error(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for ERROR level alert."""
    return await send_alert("ERROR", message, context)


async def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for WARNING level alert."""
    return await send_alert("WARNING", message, context)

import logging

import httpx

from shiptrack.config import settings

logger = logging.getLogger(__name__)


async def send_text(
    recipient_handle: str,
    reply_to_message_id: str | None,
    text: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Send a text message through the WhatsApp Cloud API.

    Makes exactly one request, bounded by the configured timeout. Returns True
    only on a 2xx response; timeouts, transport errors and error statuses all
    return False so the caller can queue the message for a later retry.
    """
    if not settings.whatsapp_token or not settings.whatsapp_phone_number_id:
        logger.warning("No WhatsApp credentials configured")
        return False

    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": recipient_handle,
        "type": "text",
        "text": {"body": text},
    }
    if reply_to_message_id:
        payload["context"] = {"message_id": reply_to_message_id}

    headers = {
        "Authorization": f"Bearer {settings.whatsapp_token}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.post(
                f"{settings.whatsapp_api_url}/{settings.whatsapp_phone_number_id}/messages",
                json=payload,
                headers=headers,
                timeout=settings.notification_timeout_seconds,
            )
    except httpx.TimeoutException:
        logger.error(f"WhatsApp API timed out after {settings.notification_timeout_seconds}s")
        return False
    except httpx.HTTPError as e:
        logger.error(f"WhatsApp API request failed: {e}")
        return False

    if not response.is_success:
        logger.error(f"WhatsApp API error: {response.status_code}")
        return False

    return True

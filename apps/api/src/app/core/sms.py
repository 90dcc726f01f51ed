"""
SMS Notification Client

Delivers checkpoint notifications to applicants through an HTTP SMS gateway.
Delivery is best-effort: callers receive True/False and decide what a failure
means. The permit core treats a failed SMS as non-fatal.
"""

import logging

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

SMS_TIMEOUT_SECONDS = 10.0


async def send_sms(to_number: str, message: str) -> bool:
    """
    Send a text message via the configured gateway.

    When no gateway is configured (local development) the message is logged
    instead of sent and the call reports success.

    Args:
        to_number: Recipient phone number in E.164 format
        message: Message body

    Returns:
        True if the gateway accepted the message
    """
    if not settings.sms_gateway_url:
        logger.warning("SMS_GATEWAY_URL not set - logging SMS instead of sending")
        logger.info(f"SMS TO: {to_number} | BODY: {message}")
        return True

    headers = {}
    if settings.sms_api_key:
        headers["Authorization"] = f"Bearer {settings.sms_api_key.get_secret_value()}"

    try:
        async with httpx.AsyncClient(timeout=SMS_TIMEOUT_SECONDS) as client:
            response = await client.post(
                settings.sms_gateway_url,
                json={
                    "from": settings.sms_sender_id,
                    "to": to_number,
                    "text": message,
                },
                headers=headers,
            )
            response.raise_for_status()

        logger.info(f"SMS sent to {to_number}")
        return True

    except httpx.HTTPStatusError as e:
        logger.error(f"SMS gateway rejected message to {to_number}: {e}")
        return False
    except httpx.RequestError as e:
        logger.error(f"SMS gateway connection error: {e}")
        return False


async def send_crossing_recorded(
    phone_number: str,
    applicant_name: str,
    checkpoint_name: str,
) -> bool:
    """Tell the applicant that a checkpoint crossing was recorded."""
    message = (
        f"Dear {applicant_name}, your crossing at {checkpoint_name} has been recorded. "
        "Keep your e-Visit permit with you during your stay."
    )
    return await send_sms(phone_number, message)

"""
SMS / WhatsApp OTP Delivery

Sends mobile OTPs through the WATI WhatsApp template API.
In dummy mode (settings.sms_dummy) the code is logged instead of sent.
"""

import logging
import re

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

COUNTRY_PREFIX = "91"
REQUEST_TIMEOUT_SECONDS = 10.0


def normalize_mobile(mobile: str) -> str | None:
    """Return the 10-digit national number, or None if it is not one."""
    digits = re.sub(r"\D", "", mobile or "")
    if len(digits) == 12 and digits.startswith(COUNTRY_PREFIX):
        digits = digits[2:]
    return digits if len(digits) == 10 else None


async def send_otp_sms(mobile: str, otp: str) -> bool:
    """
    Send an OTP to a mobile number.

    Args:
        mobile: Student mobile number as entered on the form
        otp: Plaintext one-time code

    Returns:
        True if the gateway accepted the message
    """
    if settings.sms_dummy:
        if settings.is_development:
            logger.info(f"[SMS-DUMMY] OTP for {mobile}: {otp}")
        else:
            logger.info(f"[SMS-DUMMY] OTP generated for {mobile}")
        return True

    national = normalize_mobile(mobile)
    if national is None:
        logger.error(f"Invalid mobile number format for OTP delivery: {mobile!r}")
        return False

    whatsapp_number = f"{COUNTRY_PREFIX}{national}"
    template = settings.wati_template_name
    url = f"{settings.wati_base_url.rstrip('/')}/api/v1/sendTemplateMessage"
    payload = {
        "template_name": template,
        "broadcast_name": template,
        "parameters": [{"name": "1", "value": otp}],
    }

    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
            response = await client.post(
                url,
                params={"whatsappNumber": whatsapp_number},
                json=payload,
                headers={"Authorization": f"Bearer {settings.wati_api_key}"},
            )
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"WATI OTP delivery failed for {whatsapp_number}: {e}")
        return False

    if data.get("validWhatsAppNumber") is False:
        logger.error(f"{whatsapp_number} is not registered on WhatsApp")
        return False

    logger.info(f"OTP sent via WhatsApp to {whatsapp_number}")
    return True

"""SMS delivery for one-time codes.

Delivery is best-effort: senders return False on failure instead of
raising, and never retry. A code that failed to send stays valid.
"""

from typing import Protocol

import httpx

from otpauth.core.config import Settings
from otpauth.core.logging import get_logger
from otpauth.services.phone import mask_phone

logger = get_logger("sms")

MESSAGE_TEMPLATE = "Your verification code is: {code}. Valid for {minutes} minutes."


class SmsSender(Protocol):
    async def send(self, phone_number: str, code: str) -> bool: ...


def render_message(code: str, minutes: int) -> str:
    return MESSAGE_TEMPLATE.format(code=code, minutes=minutes)


class LoggingSmsSender:
    """Development sender: writes the code to the log instead of sending it."""

    def __init__(self, expiry_minutes: int = 5):
        self.expiry_minutes = expiry_minutes

    async def send(self, phone_number: str, code: str) -> bool:
        masked = mask_phone(phone_number)
        logger.info(f"OTP for {masked}: {code}", extra={"phone": masked})
        return True


class HttpSmsSender:
    """Posts messages to an HTTP SMS gateway.

    The gateway receives JSON {to, from, message} with the API key in the
    Authorization header. Any 2xx response counts as accepted.
    """

    def __init__(
        self,
        gateway_url: str,
        api_key: str | None = None,
        sender_id: str = "OTPAUTH",
        timeout: float = 5.0,
        expiry_minutes: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout
        self.expiry_minutes = expiry_minutes
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send(self, phone_number: str, code: str) -> bool:
        payload = {
            "to": phone_number,
            "from": self.sender_id,
            "message": render_message(code, self.expiry_minutes),
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.gateway_url, json=payload, headers=self._headers()
                )
        except httpx.TimeoutException:
            logger.warning(f"SMS gateway timed out sending to {mask_phone(phone_number)}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"SMS gateway request failed for {mask_phone(phone_number)}: {e}")
            return False

        if response.status_code >= 400:
            logger.error(
                f"SMS gateway rejected message to {mask_phone(phone_number)}: "
                f"HTTP {response.status_code}"
            )
            return False
        return True


def get_sms_sender(settings: Settings) -> SmsSender:
    """Pick the sender for the current configuration."""
    if settings.sms_gateway_url:
        return HttpSmsSender(
            gateway_url=settings.sms_gateway_url,
            api_key=settings.sms_gateway_api_key,
            sender_id=settings.sms_sender_id,
            timeout=settings.sms_timeout_seconds,
            expiry_minutes=settings.otp_expiry_minutes,
        )
    return LoggingSmsSender(expiry_minutes=settings.otp_expiry_minutes)

# /app/services/channel_service.py

import httpx
import logging
import re
import tenacity
from typing import Dict, List, Optional

from app.config.settings import settings, ChannelConfig
from app.models.flow import QuickReplyButton
from app.utils.circuit_breaker import CircuitBreaker
from app.workflows.errors import ChannelSendError

logger = logging.getLogger(__name__)

# WhatsApp interactive messages accept at most three reply buttons
MAX_REPLY_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_TEXT_LENGTH = 4096


def format_phone(phone: str) -> str:
    """Format phone number for the WhatsApp API."""
    clean_phone = re.sub(r"[^\d+]", "", phone or "")
    if not clean_phone.startswith("+"):
        clean_phone = "+" + clean_phone.lstrip("+")
    return clean_phone


def build_whatsapp_payload(recipient: str, message: str, buttons: Optional[List[QuickReplyButton]] = None) -> dict:
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": format_phone(recipient),
    }
    if buttons:
        payload["type"] = "interactive"
        payload["interactive"] = {
            "type": "button",
            "body": {"text": message[:MAX_TEXT_LENGTH] or " "},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": button.id, "title": button.title[:MAX_BUTTON_TITLE]}}
                    for button in buttons[:MAX_REPLY_BUTTONS]
                ]
            },
        }
    else:
        payload["type"] = "text"
        payload["text"] = {"body": message[:MAX_TEXT_LENGTH]}
    return payload


class ChannelService:
    """
    Channel Sender backed by the WhatsApp Cloud API.
    Each configured platform gets its own circuit breaker.
    """

    def __init__(self, channels: Dict[str, ChannelConfig], api_version: str = "v18.0", timeout: float = 15.0):
        self.channels = channels
        self.base_url = f"https://graph.facebook.com/{api_version}"
        self.http_client = httpx.AsyncClient(timeout=timeout)
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}

    def _breaker(self, platform: str) -> CircuitBreaker:
        if platform not in self.circuit_breakers:
            self.circuit_breakers[platform] = CircuitBreaker(name=f"channel:{platform}")
        return self.circuit_breakers[platform]

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=2, min=1, max=10),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def resilient_api_call(self, platform: str, func, *args, **kwargs):
        return await self._breaker(platform).call(func, *args, **kwargs)

    async def send(
        self,
        platform: str,
        recipient: str,
        message: str,
        buttons: Optional[List[QuickReplyButton]] = None,
    ) -> Optional[str]:
        """
        Deliver one message and return the provider's message id.

        Raises:
            ChannelSendError: If the platform is not configured or the provider refused the message
        """
        config = self.channels.get(platform)
        if config is None:
            raise ChannelSendError(platform, recipient, "channel not configured")
        if platform != "whatsapp":
            raise ChannelSendError(platform, recipient, "platform not supported")
        if not recipient:
            raise ChannelSendError(platform, recipient, "missing recipient")

        payload = build_whatsapp_payload(recipient, message, buttons)
        url = f"{self.base_url}/{config.phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {config.access_token}", "Content-Type": "application/json"}

        try:
            response = await self.resilient_api_call(platform, self.http_client.post, url, json=payload, headers=headers)
        except Exception as e:
            raise ChannelSendError(platform, recipient, str(e)) from e

        if response.status_code == 200:
            message_id = (response.json().get("messages") or [{}])[0].get("id")
            logger.info(f"WhatsApp message sent to {payload['to'][:4]}..., wamid: {message_id}")
            return message_id

        try:
            error_message = (response.json().get("error") or {}).get("message", "Unknown error")
        except ValueError:
            error_message = response.text
        logger.error(f"whatsapp_send_failed to {payload['to'][:4]}...: {response.status_code} - {error_message}")
        raise ChannelSendError(platform, recipient, f"HTTP {response.status_code}: {error_message}")

    async def close(self):
        await self.http_client.aclose()


# Globally accessible instance
channel_service = ChannelService(
    settings.CHANNEL_REGISTRY,
    api_version=settings.whatsapp_api_version,
    timeout=settings.channel_send_timeout,
)

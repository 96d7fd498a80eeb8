"""WhatsApp Business Cloud API client.

Text messages are sent with ``POST /{phone_number_id}/messages`` using
bearer authentication. WhatsApp has no public comments, so comment replies
always fail with a clear error.
"""

import logging
from typing import Optional

import httpx

from autoreply_core.providers.base import PlatformClient, SendResult

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://graph.facebook.com"
DEFAULT_API_VERSION = "v20.0"


class WhatsAppClient(PlatformClient):
    """Send WhatsApp text messages through the Cloud API."""

    supports_comment_replies = False

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        default_phone_number_id: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.default_phone_number_id = default_phone_number_id
        self.timeout = timeout

    @property
    def platform(self) -> str:
        return "whatsapp"

    async def reply_to_comment(
        self,
        comment_id: str,
        text: str,
        access_token: str,
    ) -> SendResult:
        return SendResult.failed("Comment replies are not supported on WhatsApp")

    async def send_direct_message(
        self,
        recipient_id: str,
        text: str,
        access_token: str,
        page_id: Optional[str] = None,
    ) -> SendResult:
        phone_number_id = page_id or self.default_phone_number_id
        if not phone_number_id:
            return SendResult.failed("WhatsApp phone number id not configured")

        url = f"{self.base_url}/{self.api_version}/{phone_number_id}/messages"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "messaging_product": "whatsapp",
                        "to": recipient_id,
                        "type": "text",
                        "text": {"body": text},
                    },
                )
        except httpx.TimeoutException:
            logger.warning("WhatsApp request timed out")
            return SendResult.failed("Request timed out", is_ambiguous=True)
        except httpx.HTTPError as e:
            logger.warning("WhatsApp transport error", extra={"error": str(e)})
            return SendResult.failed(str(e) or e.__class__.__name__, is_ambiguous=True)

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            return SendResult.failed(f"HTTP {response.status_code}")

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning(
                "WhatsApp API error",
                extra={"status_code": response.status_code, "error": message},
            )
            return SendResult.failed(message or "Failed to send WhatsApp message")

        if response.status_code >= 400:
            return SendResult.failed(f"HTTP {response.status_code}")

        message_id = None
        messages = data.get("messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            message_id = messages[0].get("id")
        return SendResult(success=True, external_id=message_id)

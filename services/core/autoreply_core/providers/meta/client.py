"""Graph API clients for Facebook Pages and Instagram business accounts.

Comment replies:
- Facebook: ``POST /{comment_id}/comments`` with form field ``message``
- Instagram: ``POST /{comment_id}/replies`` with form field ``message``

Direct messages (both): ``POST /me/messages`` with a JSON body
``{recipient: {id}, message: {text}, messaging_type: "RESPONSE"}``.

The page access token is passed as the ``access_token`` query parameter.
Graph API errors arrive as ``{"error": {"message": ...}}``.
"""

import logging
from typing import Any, Optional

import httpx

from autoreply_core.providers.base import PlatformClient, SendResult

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://graph.facebook.com"
DEFAULT_API_VERSION = "v19.0"
DEFAULT_TIMEOUT = 10.0


class GraphAPIClient(PlatformClient):
    """Shared Graph API transport for the Meta platforms."""

    COMMENT_REPLY_EDGE = "comments"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.api_version}/{path.lstrip('/')}"

    async def _post(
        self,
        path: str,
        access_token: str,
        id_field: str,
        data: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> SendResult:
        """POST to the Graph API and map the response to a SendResult."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self._url(path),
                    params={"access_token": access_token},
                    data=data,
                    json=json,
                )
        except httpx.TimeoutException:
            logger.warning("Graph API request timed out", extra={"path": path})
            return SendResult.failed("Request timed out", is_ambiguous=True)
        except httpx.HTTPError as e:
            logger.warning(
                "Graph API transport error", extra={"path": path, "error": str(e)}
            )
            return SendResult.failed(str(e) or e.__class__.__name__, is_ambiguous=True)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            return SendResult.failed(f"HTTP {response.status_code}")

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning(
                "Graph API error",
                extra={"path": path, "status_code": response.status_code, "error": message},
            )
            return SendResult.failed(message or "Unknown Graph API error")

        if response.status_code >= 400:
            return SendResult.failed(f"HTTP {response.status_code}")

        return SendResult(success=True, external_id=payload.get(id_field))

    async def reply_to_comment(
        self,
        comment_id: str,
        text: str,
        access_token: str,
    ) -> SendResult:
        return await self._post(
            f"{comment_id}/{self.COMMENT_REPLY_EDGE}",
            access_token,
            id_field="id",
            data={"message": text},
        )

    async def send_direct_message(
        self,
        recipient_id: str,
        text: str,
        access_token: str,
        page_id: Optional[str] = None,
    ) -> SendResult:
        return await self._post(
            "me/messages",
            access_token,
            id_field="message_id",
            json={
                "recipient": {"id": recipient_id},
                "message": {"text": text},
                "messaging_type": "RESPONSE",
            },
        )


class FacebookClient(GraphAPIClient):
    """Facebook Page comments and Messenger."""

    COMMENT_REPLY_EDGE = "comments"

    @property
    def platform(self) -> str:
        return "facebook"


class InstagramClient(GraphAPIClient):
    """Instagram business account comments and DMs."""

    COMMENT_REPLY_EDGE = "replies"

    @property
    def platform(self) -> str:
        return "instagram"

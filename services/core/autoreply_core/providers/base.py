"""Base platform client interface and DTOs.

Every platform the service replies on implements ``PlatformClient``:

    class FacebookClient(PlatformClient):
        @property
        def platform(self) -> str:
            return "facebook"

        async def reply_to_comment(self, comment_id, text, access_token) -> SendResult:
            ...

Clients report API and transport failures through ``SendResult`` and do
not raise, so the dispatcher can audit the outcome of every attempt.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class SendResult:
    """Outcome of one outbound send or reply call."""

    success: bool
    external_id: Optional[str] = None
    error: Optional[str] = None
    is_ambiguous: bool = False  # True if we don't know whether it was delivered

    @classmethod
    def failed(cls, error: str, is_ambiguous: bool = False) -> "SendResult":
        return cls(success=False, error=error, is_ambiguous=is_ambiguous)


# =============================================================================
# PLATFORM CLIENT INTERFACE
# =============================================================================


class PlatformClient(ABC):
    """Abstract interface for outbound platform APIs."""

    supports_comment_replies: bool = True

    @property
    @abstractmethod
    def platform(self) -> str:
        """Platform key (facebook, instagram, whatsapp)."""
        ...

    @abstractmethod
    async def reply_to_comment(
        self,
        comment_id: str,
        text: str,
        access_token: str,
    ) -> SendResult:
        """Post a public reply under a comment.

        Args:
            comment_id: The platform's comment id.
            text: Reply text.
            access_token: Decrypted page access token.

        Returns:
            SendResult with the created reply id on success.
        """
        ...

    @abstractmethod
    async def send_direct_message(
        self,
        recipient_id: str,
        text: str,
        access_token: str,
        page_id: Optional[str] = None,
    ) -> SendResult:
        """Send a private message to a user.

        Args:
            recipient_id: Platform-scoped id of the recipient.
            text: Message text.
            access_token: Decrypted page access token.
            page_id: Sending page or phone number id, for platforms that
                address the sender in the URL.

        Returns:
            SendResult with the created message id on success.
        """
        ...

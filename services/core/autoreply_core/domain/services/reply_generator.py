"""Reply text generation.

Picks the text of every automated reply. When the tenant has AI replies
enabled, a system prompt configured and the inbound event carries text,
the AI collaborator is asked for a reply under a timeout. Any AI failure
falls back to the tenant's greeting message, then to a built-in default,
so a reply text is always produced.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from autoreply_core.domain.models import AutomationSettings
from autoreply_core.domain.services.inference import (
    ChatMessage,
    InferenceClient,
    InferenceError,
)

logger = logging.getLogger(__name__)


DEFAULT_COMMENT_REPLY = "Thanks for your comment!"
DEFAULT_MESSAGE_REPLY = "Thanks for your message! We will get back to you soon."
COMMENT_TO_DM_PREFIX = "Hi! Thanks for commenting on our post."
DEFAULT_RULE_DM = "Thank you for your feedback!"

COMMENT_CONTEXT = "This is a reply to a social media comment."
MESSAGE_CONTEXT = "This is a direct message conversation."

COMMENT_MAX_TOKENS = 100
MESSAGE_MAX_TOKENS = 150
RULE_DM_MAX_TOKENS = 200


# =============================================================================
# AI COLLABORATOR
# =============================================================================


@dataclass
class AIReply:
    """Generated text plus the model and usage details behind it."""

    text: str
    model_info: Optional[dict] = None


class AIResponder(ABC):
    """Produces reply text from a tenant prompt and customer text."""

    @abstractmethod
    async def generate_reply(
        self,
        system_prompt: str,
        user_text: str,
        business_name: Optional[str],
        context: Optional[str] = None,
        max_tokens: int = MESSAGE_MAX_TOKENS,
    ) -> AIReply:
        """Return generated reply text and model details.

        Raises:
            InferenceError: When the completion service fails.
        """
        ...


def build_system_prompt(
    system_prompt: str,
    business_name: Optional[str],
    context: Optional[str],
) -> str:
    """Wrap the tenant prompt with business identity and tone rules."""
    business_line = (
        f"You are responding on behalf of {business_name}." if business_name else ""
    )
    context_line = f"Context: {context}" if context else ""
    return (
        f"{system_prompt}\n\n"
        f"{business_line}\n"
        f"{context_line}\n\n"
        "Keep responses concise, friendly, and professional. "
        "Do not use markdown formatting."
    )


class InferenceAIResponder(AIResponder):
    """AIResponder backed by the OpenAI-compatible InferenceClient."""

    def __init__(self, client: InferenceClient):
        self.client = client

    async def generate_reply(
        self,
        system_prompt: str,
        user_text: str,
        business_name: Optional[str],
        context: Optional[str] = None,
        max_tokens: int = MESSAGE_MAX_TOKENS,
    ) -> AIReply:
        response = await self.client.chat(
            [
                ChatMessage(
                    role="system",
                    content=build_system_prompt(system_prompt, business_name, context),
                ),
                ChatMessage(role="user", content=user_text),
            ],
            max_tokens=max_tokens,
        )
        return AIReply(
            text=response.content.strip(),
            model_info=response.model_info.to_dict(),
        )


# =============================================================================
# REPLY GENERATOR
# =============================================================================


@dataclass
class GeneratedReply:
    """Reply text and how it was obtained."""

    text: str
    ai_generated: bool = False
    fallback_reason: Optional[str] = None
    model_info: Optional[dict] = None


class ReplyGenerator:
    """Choose between AI and static reply text for each reply kind."""

    def __init__(self, ai: Optional[AIResponder] = None, timeout: float = 15.0):
        self.ai = ai
        self.timeout = timeout

    async def comment_reply(
        self,
        settings: AutomationSettings,
        text: str,
        business_name: Optional[str],
    ) -> GeneratedReply:
        """Public reply under a comment."""
        return await self._generate(
            settings,
            text,
            business_name,
            user_text=f'A customer commented: "{text}"\n\nPlease write a friendly reply.',
            context=COMMENT_CONTEXT,
            max_tokens=COMMENT_MAX_TOKENS,
            fallback=_greeting(settings) or DEFAULT_COMMENT_REPLY,
        )

    async def direct_message_reply(
        self,
        settings: AutomationSettings,
        text: str,
        business_name: Optional[str],
    ) -> GeneratedReply:
        """Reply to an inbound direct message."""
        return await self._generate(
            settings,
            text,
            business_name,
            user_text=text,
            context=MESSAGE_CONTEXT,
            max_tokens=MESSAGE_MAX_TOKENS,
            fallback=_greeting(settings) or DEFAULT_MESSAGE_REPLY,
        )

    async def comment_to_dm_text(
        self,
        settings: AutomationSettings,
        text: str,
        business_name: Optional[str],
    ) -> GeneratedReply:
        """Private follow-up sent to a commenter."""
        greeting = _greeting(settings)
        fallback = f"{COMMENT_TO_DM_PREFIX} {greeting}" if greeting else COMMENT_TO_DM_PREFIX
        return await self._generate(
            settings,
            text,
            business_name,
            user_text=f'Customer commented: "{text}". Send a follow-up DM.',
            context=MESSAGE_CONTEXT,
            max_tokens=MESSAGE_MAX_TOKENS,
            fallback=fallback,
        )

    async def rule_dm_text(
        self,
        settings: AutomationSettings,
        text: str,
        business_name: Optional[str],
        template: Optional[str],
    ) -> GeneratedReply:
        """Private message sent by an automation rule.

        Templates with ``{placeholders}`` are personalised by the AI when it
        is enabled; anything else is sent as written.
        """
        fallback = template or DEFAULT_RULE_DM
        if "{" not in fallback:
            return GeneratedReply(text=fallback)
        return await self._generate(
            settings,
            text,
            business_name,
            user_text=(
                f'Based on this feedback: "{text}", generate a personalized direct '
                f"message response using this template: {template}"
            ),
            context=MESSAGE_CONTEXT,
            max_tokens=RULE_DM_MAX_TOKENS,
            fallback=fallback,
        )

    async def _generate(
        self,
        settings: AutomationSettings,
        text: str,
        business_name: Optional[str],
        user_text: str,
        context: str,
        max_tokens: int,
        fallback: str,
    ) -> GeneratedReply:
        if not settings.ai_enabled:
            return GeneratedReply(text=fallback)

        system_prompt = (settings.system_prompt or "").strip()
        if not system_prompt:
            return GeneratedReply(text=fallback, fallback_reason="no system prompt")
        if not (text or "").strip():
            return GeneratedReply(text=fallback, fallback_reason="no event text")
        if self.ai is None:
            return GeneratedReply(text=fallback, fallback_reason="ai not configured")

        try:
            generated = await asyncio.wait_for(
                self.ai.generate_reply(
                    system_prompt,
                    user_text,
                    business_name,
                    context=context,
                    max_tokens=max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("AI reply timed out", extra={"timeout": self.timeout})
            return GeneratedReply(text=fallback, fallback_reason="timeout")
        except InferenceError as e:
            logger.warning("AI reply failed", extra={"error": str(e)})
            return GeneratedReply(text=fallback, fallback_reason=f"inference error: {e}")
        except Exception as e:
            logger.exception("Unexpected AI reply failure")
            return GeneratedReply(text=fallback, fallback_reason=f"error: {e}")

        reply_text = (generated.text or "").strip()
        if not reply_text:
            return GeneratedReply(text=fallback, fallback_reason="empty response")

        return GeneratedReply(text=reply_text, ai_generated=True, model_info=generated.model_info)


def _greeting(settings: AutomationSettings) -> str:
    # Sent verbatim, blank counts as unset
    greeting = settings.greeting_message or ""
    return greeting if greeting.strip() else ""

"""Inbox persistence for inbound events and automated replies.

Every inbound comment, direct message and form lead that reaches an active
tenant is stored as a message in a conversation, so the tenant's inbox
shows the customer's words next to what the service sent back.

Upserts are idempotent: a redelivered event with the same external id
returns the stored message instead of adding a second one.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from autoreply_core.domain.models import (
    Conversation,
    InboxMessage,
    MessageStatus,
    Platform,
)
from autoreply_core.webhooks.events import CommentEvent, FormSubmission, MessageEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # Columns are naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class InboxService:
    """Store conversations and messages for the tenant inbox."""

    def __init__(self, db: DBSession):
        self.db = db

    # =========================================================================
    # UPSERTS
    # =========================================================================

    def upsert_conversation(
        self,
        tenant_id: int,
        platform: str,
        conversation_type: str,
        external_thread_id: str,
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> Conversation:
        """Find the conversation for a thread or create it."""
        conversation = self.db.scalars(
            select(Conversation).where(
                Conversation.tenant_id == tenant_id,
                Conversation.platform == platform,
                Conversation.external_thread_id == external_thread_id,
            )
        ).first()

        if conversation is None:
            conversation = Conversation(
                tenant_id=tenant_id,
                platform=platform,
                conversation_type=conversation_type,
                external_thread_id=external_thread_id,
                customer_id=customer_id,
                customer_name=customer_name,
            )
            self.db.add(conversation)
            self.db.flush()
        elif customer_name and not conversation.customer_name:
            conversation.customer_name = customer_name

        return conversation

    def add_message(
        self,
        conversation: Conversation,
        sender: str,
        content: str,
        external_message_id: Optional[str] = None,
        status: str = MessageStatus.RECEIVED,
    ) -> InboxMessage:
        """Append a message, returning the stored one for a known external id."""
        if external_message_id:
            existing = self.db.scalars(
                select(InboxMessage).where(
                    InboxMessage.conversation_id == conversation.id,
                    InboxMessage.external_message_id == external_message_id,
                )
            ).first()
            if existing is not None:
                return existing

        now = _utcnow()
        message = InboxMessage(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            sender=sender,
            content=content,
            platform=conversation.platform,
            external_message_id=external_message_id,
            status=status,
            created_at=now,
        )
        self.db.add(message)
        conversation.last_message_text = content
        conversation.last_message_at = now
        self.db.flush()
        return message

    # =========================================================================
    # PIPELINE ENTRY POINTS
    # =========================================================================

    def record_event(self, tenant_id: int, event) -> Optional[InboxMessage]:
        """Store an inbound comment or direct message.

        Comments open one thread per comment; direct messages share one
        thread per sender.
        """
        if isinstance(event, CommentEvent):
            conversation = self.upsert_conversation(
                tenant_id,
                event.platform,
                "comment",
                external_thread_id=event.external_id,
                customer_id=event.author_id or None,
                customer_name=event.author_name or None,
            )
        elif isinstance(event, MessageEvent):
            conversation = self.upsert_conversation(
                tenant_id,
                event.platform,
                "dm",
                external_thread_id=event.sender_id,
                customer_id=event.sender_id,
                customer_name=event.sender_name or None,
            )
        else:
            return None

        return self.add_message(
            conversation,
            "customer",
            event.text,
            external_message_id=event.external_id or None,
        )

    def record_form_submission(
        self, tenant_id: int, submission: FormSubmission
    ) -> InboxMessage:
        """Store a website form lead in the sender's form thread."""
        conversation = self.upsert_conversation(
            tenant_id,
            Platform.FORM,
            "form",
            external_thread_id=submission.sender_email,
            customer_id=submission.sender_email,
            customer_name=submission.sender_name or None,
        )
        return self.add_message(
            conversation,
            "customer",
            submission.message,
            external_message_id=submission.id,
        )

    def record_reply(
        self,
        conversation: Conversation,
        text: str,
        status: str,
        external_message_id: Optional[str] = None,
    ) -> InboxMessage:
        """Store an outbound reply in the conversation it answers."""
        return self.add_message(
            conversation,
            "agent",
            text,
            external_message_id=external_message_id,
            status=status,
        )

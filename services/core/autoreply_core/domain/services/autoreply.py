"""Auto-reply dispatch pipeline.

Processes one verified webhook delivery:

    entries -> events -> duplicate guard -> tenant -> inbox
            -> settings gate -> reply text -> platform send -> audit
            -> automation rules

Entries are processed sequentially and independently. An exception in one
entry is audited and does not stop its siblings. Every send attempt is
audited with its outcome. Inbox writes are best-effort: a failed write is
audited as a warning and the reply still goes out.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from autoreply_core.domain.models import (
    AutomationSettings,
    Conversation,
    MessageStatus,
    Platform,
)
from autoreply_core.domain.services.audit import AuditSink
from autoreply_core.domain.services.automation_rules import (
    MESSAGE_TYPE_COMMENT,
    MESSAGE_TYPE_FORM,
    MESSAGE_TYPE_MESSAGE,
    AutomationRuleExecutor,
    RuleTriggerInput,
)
from autoreply_core.domain.services.dedupe import DeliveryDeduplicator
from autoreply_core.domain.services.inbox import InboxService
from autoreply_core.domain.services.reply_generator import ReplyGenerator
from autoreply_core.domain.services.tenants import ResolvedTenant, TenantResolver
from autoreply_core.observability.logging import DeliveryContext, get_logger
from autoreply_core.providers.base import PlatformClient, SendResult
from autoreply_core.webhooks.events import (
    CommentEvent,
    FormSubmission,
    InboundEvent,
    MessageEvent,
    UnknownEvent,
    parse_meta_entry,
    parse_whatsapp_entry,
    payload_object_matches,
)

logger = get_logger(__name__)


@dataclass
class DeliveryResult:
    """Counts reported back to the platform for one delivery."""

    processed: int = 0
    total: int = 0
    ignored_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "processed": self.processed, "total": self.total}


class AutoReplyDispatcher:
    """Route parsed events to the comment and message reply branches."""

    def __init__(
        self,
        audit: AuditSink,
        resolver: TenantResolver,
        replies: ReplyGenerator,
        clients: dict[str, PlatformClient],
        deduplicator: Optional[DeliveryDeduplicator] = None,
        inbox: Optional[InboxService] = None,
        rules: Optional[AutomationRuleExecutor] = None,
    ):
        self.audit = audit
        self.resolver = resolver
        self.replies = replies
        self.clients = clients
        self.deduplicator = deduplicator
        self.inbox = inbox
        self.rules = rules

    # =========================================================================
    # DELIVERIES
    # =========================================================================

    async def process_delivery(self, platform: str, payload: Any) -> DeliveryResult:
        """Process every entry of a platform delivery.

        Args:
            platform: Route platform (facebook, instagram, whatsapp).
            payload: Parsed JSON body.

        Returns:
            DeliveryResult; ``processed`` counts entries that completed
            without raising, whether or not a reply was sent.
        """
        if not payload_object_matches(platform, payload):
            obj = payload.get("object") if isinstance(payload, dict) else None
            logger.info("Ignoring webhook object", platform=platform, object=obj)
            return DeliveryResult(ignored_reason=f"object {obj!r} not handled")

        entries = payload.get("entry")
        if not isinstance(entries, list) or not entries:
            return DeliveryResult(ignored_reason="no entries")

        # Page-object deliveries may carry Instagram events
        event_platform = "instagram" if payload.get("object") == "instagram" else platform

        result = DeliveryResult(total=len(entries))
        for entry in entries:
            entry_id = entry.get("id") if isinstance(entry, dict) else None
            try:
                await self.process_entry(event_platform, entry)
                result.processed += 1
            except Exception as e:
                logger.error(
                    "Webhook entry error",
                    DeliveryContext(platform=event_platform, page_id=entry_id),
                    exc_info=True,
                    error=str(e),
                )
                self.audit.error(
                    f"Webhook entry error: {e}",
                    meta={"entry_id": entry_id, "platform": event_platform},
                )

        logger.info(
            "Webhook delivery processed",
            platform=event_platform,
            processed=result.processed,
            total=result.total,
            audit_dropped=self.audit.dropped,
        )
        return result

    def parse_entry(self, platform: str, entry: Any) -> list[InboundEvent]:
        if platform == "whatsapp":
            return parse_whatsapp_entry(entry)
        return parse_meta_entry(platform, entry)

    async def process_entry(self, platform: str, entry: Any) -> None:
        for event in self.parse_entry(platform, entry):
            await self.handle_event(event)

    async def handle_event(self, event: InboundEvent) -> None:
        """Gate one event, store it and run its reply branch and rules."""
        context = DeliveryContext(
            platform=event.platform, page_id=event.page_id, event_id=event.external_id
        )

        if isinstance(event, UnknownEvent):
            logger.debug("Ignoring event", context, reason=event.reason)
            return

        if self.deduplicator is not None and self.deduplicator.is_duplicate(
            event.platform, event.external_id
        ):
            return

        resolved = self.resolver.resolve(event.platform, event.page_id)
        if resolved is None:
            return
        context.tenant_id = resolved.tenant_id

        conversation = self.persist_event(resolved.tenant_id, event, context)

        settings = self.resolver.automation_settings(resolved.tenant_id)
        if settings is None or not settings.auto_reply_enabled:
            logger.info("Auto-reply not enabled", context)
            return

        self.audit.info(
            f"Received {event.event_type} event",
            tenant_id=resolved.tenant_id,
            meta={
                "page_id": event.page_id,
                "platform": event.platform,
                "event_id": event.external_id,
            },
        )

        if isinstance(event, CommentEvent):
            await self.handle_comment(event, resolved, settings, context, conversation)
            trigger = RuleTriggerInput(
                tenant_id=resolved.tenant_id,
                platform=event.platform,
                message_type=MESSAGE_TYPE_COMMENT,
                external_id=event.external_id,
                text=event.text,
                author_id=event.author_id or None,
                author_name=event.author_name or None,
                page_id=event.page_id,
                access_token=resolved.access_token,
            )
        elif isinstance(event, MessageEvent):
            await self.handle_message(event, resolved, settings, context, conversation)
            trigger = RuleTriggerInput(
                tenant_id=resolved.tenant_id,
                platform=event.platform,
                message_type=MESSAGE_TYPE_MESSAGE,
                external_id=event.external_id,
                text=event.text,
                author_id=event.sender_id or None,
                author_name=event.sender_name or None,
                page_id=event.page_id,
                access_token=resolved.access_token,
            )
        else:
            return

        await self.run_rules(trigger, resolved, settings, conversation, context)

    # =========================================================================
    # BRANCHES
    # =========================================================================

    async def handle_comment(
        self,
        event: CommentEvent,
        resolved: ResolvedTenant,
        settings: AutomationSettings,
        context: DeliveryContext,
        conversation: Optional[Conversation] = None,
    ) -> None:
        client = self.clients.get(event.platform)
        if client is None or not client.supports_comment_replies:
            logger.info("Platform has no comment replies", context)
            return

        tenant = resolved.tenant
        try:
            reply = await self.replies.comment_reply(settings, event.text, tenant.business_name)
            result = await client.reply_to_comment(
                event.external_id, reply.text, resolved.access_token
            )
            self.record_reply(conversation, reply.text, result)

            if not result.success:
                logger.error("Comment reply failed", context, error=result.error)
                self.audit.error(
                    f"Comment reply failed: {result.error}",
                    tenant_id=tenant.id,
                    meta={
                        "comment_id": event.external_id,
                        "platform": event.platform,
                        "ambiguous": result.is_ambiguous,
                    },
                )
                return

            self.audit.info(
                "Comment replied successfully",
                tenant_id=tenant.id,
                meta={
                    "comment_id": event.external_id,
                    "reply_id": result.external_id,
                    "ai_generated": reply.ai_generated,
                    "fallback_reason": reply.fallback_reason,
                    "model_info": reply.model_info,
                    "platform": event.platform,
                },
            )

            if settings.comment_to_dm_enabled and event.author_id:
                await self.send_comment_dm(client, event, resolved, settings, conversation)
        except Exception as e:
            logger.error("Comment handling error", context, exc_info=True, error=str(e))
            self.audit.error(
                f"Comment handling error: {e}",
                tenant_id=tenant.id,
                meta={"comment_id": event.external_id, "platform": event.platform},
            )

    async def send_comment_dm(
        self,
        client: PlatformClient,
        event: CommentEvent,
        resolved: ResolvedTenant,
        settings: AutomationSettings,
        conversation: Optional[Conversation] = None,
    ) -> None:
        """Follow a public reply with a private message to the commenter."""
        tenant = resolved.tenant
        dm = await self.replies.comment_to_dm_text(settings, event.text, tenant.business_name)
        result = await client.send_direct_message(
            event.author_id, dm.text, resolved.access_token, page_id=event.page_id
        )
        self.record_reply(conversation, dm.text, result)
        meta = {
            "comment_id": event.external_id,
            "recipient_id": event.author_id,
            "platform": event.platform,
        }
        if result.success:
            self.audit.info(
                "Comment-to-DM sent",
                tenant_id=tenant.id,
                meta={**meta, "message_id": result.external_id, "ai_generated": dm.ai_generated},
            )
        else:
            self.audit.error(
                f"Comment-to-DM failed: {result.error}",
                tenant_id=tenant.id,
                meta={**meta, "ambiguous": result.is_ambiguous},
            )

    async def handle_message(
        self,
        event: MessageEvent,
        resolved: ResolvedTenant,
        settings: AutomationSettings,
        context: DeliveryContext,
        conversation: Optional[Conversation] = None,
    ) -> None:
        client = self.clients.get(event.platform)
        if client is None:
            logger.warning("No client for platform", context)
            return

        tenant = resolved.tenant
        try:
            reply = await self.replies.direct_message_reply(
                settings, event.text, tenant.business_name
            )
            result = await client.send_direct_message(
                event.sender_id, reply.text, resolved.access_token, page_id=event.page_id
            )
            self.record_reply(conversation, reply.text, result)

            if result.success:
                self.audit.info(
                    "Message replied successfully",
                    tenant_id=tenant.id,
                    meta={
                        "message_id": event.external_id,
                        "reply_id": result.external_id,
                        "ai_generated": reply.ai_generated,
                        "fallback_reason": reply.fallback_reason,
                        "model_info": reply.model_info,
                        "platform": event.platform,
                    },
                )
            else:
                logger.error("Message reply failed", context, error=result.error)
                self.audit.error(
                    f"Message reply failed: {result.error}",
                    tenant_id=tenant.id,
                    meta={
                        "message_id": event.external_id,
                        "platform": event.platform,
                        "ambiguous": result.is_ambiguous,
                    },
                )
        except Exception as e:
            logger.error("Message handling error", context, exc_info=True, error=str(e))
            self.audit.error(
                f"Message handling error: {e}",
                tenant_id=tenant.id,
                meta={"message_id": event.external_id, "platform": event.platform},
            )

    # =========================================================================
    # AUTOMATION RULES
    # =========================================================================

    async def run_rules(
        self,
        trigger: RuleTriggerInput,
        resolved: ResolvedTenant,
        settings: AutomationSettings,
        conversation: Optional[Conversation],
        context: DeliveryContext,
    ) -> None:
        """Run the tenant's automation rules after the built-in reply."""
        if self.rules is None:
            return

        try:
            result = await self.rules.execute(
                trigger, settings, resolved.tenant.business_name, conversation
            )
        except Exception as e:
            logger.error("Automation rules error", context, exc_info=True, error=str(e))
            self.audit.error(
                f"Automation rules error: {e}",
                tenant_id=resolved.tenant_id,
                meta={"platform": trigger.platform, "event_id": trigger.external_id},
            )
            return

        if result.rule_matched:
            self.audit.info(
                "Automation rules executed",
                tenant_id=resolved.tenant_id,
                meta={
                    **result.to_meta(),
                    "platform": trigger.platform,
                    "event_id": trigger.external_id,
                },
            )

    # =========================================================================
    # INBOX
    # =========================================================================

    def persist_event(
        self, tenant_id: int, event: InboundEvent, context: DeliveryContext
    ) -> Optional[Conversation]:
        """Store an inbound event in the tenant inbox, returning its conversation."""
        if self.inbox is None:
            return None

        try:
            with self.inbox.db.begin_nested():
                message = self.inbox.record_event(tenant_id, event)
        except SQLAlchemyError as e:
            logger.warning("Failed to persist incoming event", context, error=str(e))
            self.audit.warn(
                f"Failed to persist incoming {event.event_type}",
                tenant_id=tenant_id,
                meta={
                    "error": str(e),
                    "platform": event.platform,
                    "event_id": event.external_id,
                },
            )
            return None

        return message.conversation if message is not None else None

    def record_reply(
        self, conversation: Optional[Conversation], text: str, result: SendResult
    ) -> None:
        """Store an outbound reply next to the message it answers."""
        if self.inbox is None or conversation is None:
            return

        status = MessageStatus.SENT if result.success else MessageStatus.FAILED
        try:
            with self.inbox.db.begin_nested():
                self.inbox.record_reply(
                    conversation, text, status, external_message_id=result.external_id
                )
        except SQLAlchemyError as e:
            logger.warning(
                "Failed to persist reply",
                tenant_id=conversation.tenant_id,
                error=str(e),
            )

    # =========================================================================
    # WEBSITE FORMS
    # =========================================================================

    async def process_form_submission(
        self, tenant_id: int, submission: FormSubmission
    ) -> DeliveryResult:
        """Record a website form lead and run the tenant's rules on it."""
        if self.deduplicator is not None and self.deduplicator.is_duplicate(
            "form", submission.id
        ):
            return DeliveryResult(processed=1, total=1, ignored_reason="duplicate")

        resolved = self.resolver.resolve_by_id(tenant_id)
        if resolved is None:
            return DeliveryResult(processed=1, total=1, ignored_reason="tenant not active")

        self.audit.info(
            "Form submission received",
            tenant_id=resolved.tenant_id,
            meta={
                "submission_id": submission.id,
                "sender_email": submission.sender_email,
                "sender_name": submission.sender_name,
                "message": submission.message,
                "source": submission.source,
                "timestamp": submission.timestamp,
                "metadata": submission.metadata,
            },
        )

        context = DeliveryContext(
            platform=Platform.FORM, tenant_id=resolved.tenant_id, event_id=submission.id
        )
        conversation = self.persist_form_submission(resolved.tenant_id, submission, context)

        settings = self.resolver.automation_settings(resolved.tenant_id)
        if settings is None or not settings.auto_reply_enabled:
            logger.info("Auto-reply not enabled", context)
            return DeliveryResult(processed=1, total=1)

        trigger = RuleTriggerInput(
            tenant_id=resolved.tenant_id,
            platform=Platform.FORM,
            message_type=MESSAGE_TYPE_FORM,
            external_id=submission.id,
            text=submission.message,
            author_id=None,
            author_name=submission.sender_name or submission.sender_email,
        )
        await self.run_rules(trigger, resolved, settings, conversation, context)
        return DeliveryResult(processed=1, total=1)

    def persist_form_submission(
        self, tenant_id: int, submission: FormSubmission, context: DeliveryContext
    ) -> Optional[Conversation]:
        if self.inbox is None:
            return None

        try:
            with self.inbox.db.begin_nested():
                message = self.inbox.record_form_submission(tenant_id, submission)
        except SQLAlchemyError as e:
            logger.warning("Failed to persist form submission", context, error=str(e))
            self.audit.warn(
                "Failed to persist incoming form submission",
                tenant_id=tenant_id,
                meta={"error": str(e), "submission_id": submission.id},
            )
            return None

        return message.conversation

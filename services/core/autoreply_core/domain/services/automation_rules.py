"""Automation rule execution.

Runs a tenant's enabled rules against one inbound comment, direct message
or form lead. A rule matches on its trigger type, its trigger words
(case-insensitive substring) and its platform list, then runs its action:

    comment  -> comments only, trigger words optional
    keyword  -> any message type, trigger words required
    time     -> not run from webhooks
    manual   -> not run from webhooks

    send_dm            -> private message to the author
    send_public_reply  -> public reply under the comment
    send_email         -> not supported

Rules run independently; a failing rule is audited and the rest still run.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from autoreply_core.domain.models import (
    AutomationRule,
    AutomationSettings,
    Conversation,
    MessageStatus,
    RuleAction,
    RuleTrigger,
)
from autoreply_core.domain.services.audit import AuditSink
from autoreply_core.domain.services.inbox import InboxService
from autoreply_core.domain.services.reply_generator import (
    DEFAULT_COMMENT_REPLY,
    ReplyGenerator,
)
from autoreply_core.providers.base import PlatformClient, SendResult

logger = logging.getLogger(__name__)


# Message types a rule can be evaluated against
MESSAGE_TYPE_COMMENT = "comment"
MESSAGE_TYPE_MESSAGE = "message"
MESSAGE_TYPE_FORM = "form_submission"


@dataclass
class RuleTriggerInput:
    """The inbound item a tenant's rules are evaluated against."""

    tenant_id: int
    platform: str
    message_type: str
    external_id: str
    text: str
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    page_id: Optional[str] = None
    access_token: Optional[str] = None


@dataclass
class RuleExecutionResult:
    """Outcome of running a tenant's rules on one inbound item."""

    rule_matched: bool = False
    action_executed: bool = False
    dm_sent: bool = False
    reply_sent: bool = False
    matched_rule_ids: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_meta(self) -> dict:
        return {
            "rule_ids": self.matched_rule_ids,
            "action_executed": self.action_executed,
            "dm_sent": self.dm_sent,
            "reply_sent": self.reply_sent,
        }


def rule_matches(
    rule: AutomationRule, text: str, message_type: str, platform: str
) -> bool:
    """Check a rule's trigger against one inbound item."""
    if rule.trigger_platforms is not None and platform not in rule.trigger_platforms:
        return False

    words = [w for w in (rule.trigger_words or []) if isinstance(w, str) and w.strip()]
    lowered = (text or "").lower()

    if rule.trigger_type == RuleTrigger.COMMENT:
        if message_type != MESSAGE_TYPE_COMMENT:
            return False
        return not words or any(w.lower() in lowered for w in words)

    if rule.trigger_type == RuleTrigger.KEYWORD:
        if not words:
            logger.warning("Keyword rule has no trigger words", extra={"rule_id": rule.id})
            return False
        return any(w.lower() in lowered for w in words)

    if rule.trigger_type not in (RuleTrigger.TIME, RuleTrigger.MANUAL):
        logger.warning(
            "Unknown rule trigger type",
            extra={"rule_id": rule.id, "trigger_type": rule.trigger_type},
        )
    return False


class AutomationRuleExecutor:
    """Load a tenant's enabled rules and run the matching ones."""

    def __init__(
        self,
        db: DBSession,
        clients: dict[str, PlatformClient],
        replies: ReplyGenerator,
        audit: AuditSink,
    ):
        self.db = db
        self.clients = clients
        self.replies = replies
        self.audit = audit
        self.inbox = InboxService(db)

    def enabled_rules(self, tenant_id: int) -> list[AutomationRule]:
        return list(
            self.db.scalars(
                select(AutomationRule)
                .where(
                    AutomationRule.tenant_id == tenant_id,
                    AutomationRule.enabled.is_(True),
                )
                .order_by(AutomationRule.id)
            )
        )

    async def execute(
        self,
        trigger: RuleTriggerInput,
        settings: AutomationSettings,
        business_name: Optional[str],
        conversation: Optional[Conversation] = None,
    ) -> RuleExecutionResult:
        """Run every enabled rule that matches the trigger.

        Args:
            trigger: The inbound item.
            settings: Tenant automation settings, used for AI templates.
            business_name: Tenant business name for AI prompts.
            conversation: Inbox conversation that outbound rule messages
                are stored in, when the inbound item was persisted.

        Returns:
            RuleExecutionResult; per-rule failures are collected in
            ``errors`` and never raised.
        """
        result = RuleExecutionResult()

        for rule in self.enabled_rules(trigger.tenant_id):
            if not rule_matches(rule, trigger.text, trigger.message_type, trigger.platform):
                continue

            result.rule_matched = True
            result.matched_rule_ids.append(rule.id)
            logger.info(
                "Automation rule triggered",
                extra={"rule_id": rule.id, "tenant_id": trigger.tenant_id},
            )

            try:
                executed = await self.run_action(
                    rule, trigger, settings, business_name, conversation, result
                )
            except Exception as e:
                logger.exception("Automation rule failed", extra={"rule_id": rule.id})
                result.errors.append(str(e))
                self.audit.error(
                    f"Automation rule error: {e}",
                    tenant_id=trigger.tenant_id,
                    meta={"rule_id": rule.id, "platform": trigger.platform},
                )
                continue

            if executed:
                result.action_executed = True

        return result

    async def run_action(
        self,
        rule: AutomationRule,
        trigger: RuleTriggerInput,
        settings: AutomationSettings,
        business_name: Optional[str],
        conversation: Optional[Conversation],
        result: RuleExecutionResult,
    ) -> bool:
        if rule.action_type == RuleAction.SEND_DM:
            return await self.send_dm(rule, trigger, settings, business_name, conversation, result)
        if rule.action_type == RuleAction.SEND_PUBLIC_REPLY:
            return await self.send_public_reply(rule, trigger, conversation, result)

        logger.info(
            "Rule action not supported",
            extra={"rule_id": rule.id, "action_type": rule.action_type},
        )
        return False

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def send_dm(
        self,
        rule: AutomationRule,
        trigger: RuleTriggerInput,
        settings: AutomationSettings,
        business_name: Optional[str],
        conversation: Optional[Conversation],
        result: RuleExecutionResult,
    ) -> bool:
        """Send the rule's private message to the author.

        Without a platform channel (website forms) the message is stored
        as queued in the inbox for the tenant to send.
        """
        if not rule.send_private_reply:
            return False
        if not (trigger.author_id or trigger.author_name):
            logger.info("Rule DM skipped, no author", extra={"rule_id": rule.id})
            return False

        dm = await self.replies.rule_dm_text(
            settings, trigger.text, business_name, rule.private_reply_template
        )
        meta = {
            "rule_id": rule.id,
            "platform": trigger.platform,
            "source_id": trigger.external_id,
            "recipient_id": trigger.author_id or trigger.author_name,
            "ai_generated": dm.ai_generated,
        }

        client = self.clients.get(trigger.platform)
        if client is None or not trigger.access_token or not trigger.author_id:
            self._record_reply(conversation, dm.text, MessageStatus.QUEUED)
            self.audit.info("Automation rule DM queued", tenant_id=trigger.tenant_id, meta=meta)
            return True

        sent = await client.send_direct_message(
            trigger.author_id, dm.text, trigger.access_token, page_id=trigger.page_id
        )
        self._record_send(conversation, dm.text, sent)
        if not sent.success:
            self.audit.error(
                f"Automation rule DM failed: {sent.error}",
                tenant_id=trigger.tenant_id,
                meta={**meta, "ambiguous": sent.is_ambiguous},
            )
            return False

        result.dm_sent = True
        self.audit.info(
            "Automation rule DM sent",
            tenant_id=trigger.tenant_id,
            meta={**meta, "message_id": sent.external_id},
        )
        return True

    async def send_public_reply(
        self,
        rule: AutomationRule,
        trigger: RuleTriggerInput,
        conversation: Optional[Conversation],
        result: RuleExecutionResult,
    ) -> bool:
        """Post the rule's public reply under a comment."""
        client = self.clients.get(trigger.platform)
        if (
            trigger.message_type != MESSAGE_TYPE_COMMENT
            or client is None
            or not client.supports_comment_replies
            or not trigger.access_token
        ):
            logger.info(
                "Rule public reply skipped, no comment channel",
                extra={"rule_id": rule.id, "platform": trigger.platform},
            )
            return False

        text = rule.public_reply_template or DEFAULT_COMMENT_REPLY
        sent = await client.reply_to_comment(trigger.external_id, text, trigger.access_token)
        self._record_send(conversation, text, sent)
        meta = {"rule_id": rule.id, "platform": trigger.platform, "comment_id": trigger.external_id}
        if not sent.success:
            self.audit.error(
                f"Automation rule reply failed: {sent.error}",
                tenant_id=trigger.tenant_id,
                meta={**meta, "ambiguous": sent.is_ambiguous},
            )
            return False

        result.reply_sent = True
        self.audit.info(
            "Automation rule reply sent",
            tenant_id=trigger.tenant_id,
            meta={**meta, "reply_id": sent.external_id},
        )
        return True

    def _record_send(
        self, conversation: Optional[Conversation], text: str, sent: SendResult
    ) -> None:
        status = MessageStatus.SENT if sent.success else MessageStatus.FAILED
        self._record_reply(conversation, text, status, sent.external_id)

    def _record_reply(
        self,
        conversation: Optional[Conversation],
        text: str,
        status: str,
        external_id: Optional[str] = None,
    ) -> None:
        if conversation is None:
            return
        try:
            with self.db.begin_nested():
                self.inbox.record_reply(
                    conversation, text, status, external_message_id=external_id
                )
        except SQLAlchemyError as e:
            logger.warning("Failed to persist rule reply", extra={"error": str(e)})

"""Domain services for Autoreply."""

from autoreply_core.domain.services.audit import AuditService, AuditSink
from autoreply_core.domain.services.automation_rules import (
    AutomationRuleExecutor,
    RuleExecutionResult,
    RuleTriggerInput,
    rule_matches,
)
from autoreply_core.domain.services.autoreply import AutoReplyDispatcher, DeliveryResult
from autoreply_core.domain.services.dedupe import DeliveryDeduplicator
from autoreply_core.domain.services.inbox import InboxService
from autoreply_core.domain.services.reply_generator import (
    AIReply,
    AIResponder,
    GeneratedReply,
    InferenceAIResponder,
    ReplyGenerator,
)
from autoreply_core.domain.services.tenants import ResolvedTenant, TenantResolver

__all__ = [
    "AIReply",
    "AIResponder",
    "AuditService",
    "AuditSink",
    "AutoReplyDispatcher",
    "AutomationRuleExecutor",
    "DeliveryDeduplicator",
    "DeliveryResult",
    "GeneratedReply",
    "InboxService",
    "InferenceAIResponder",
    "ReplyGenerator",
    "ResolvedTenant",
    "RuleExecutionResult",
    "RuleTriggerInput",
    "TenantResolver",
    "rule_matches",
]

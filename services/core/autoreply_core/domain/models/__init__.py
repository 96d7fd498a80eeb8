"""Domain models for Autoreply.

SQLAlchemy ORM models for tenants, their connected pages, automation
settings and rules, the inbox, the audit log and the duplicate-delivery
ledger.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class Platform(str):
    """Inbound platform values."""

    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"
    FORM = "form"


class SubscriptionStatus(str):
    """Billing subscription status values."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


class AuditLevel(str):
    """Audit log level values."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class RuleTrigger(str):
    """Automation rule trigger types."""

    COMMENT = "comment"
    KEYWORD = "keyword"
    TIME = "time"
    MANUAL = "manual"


class RuleAction(str):
    """Automation rule action types."""

    SEND_DM = "send_dm"
    SEND_PUBLIC_REPLY = "send_public_reply"
    SEND_EMAIL = "send_email"


class MessageStatus(str):
    """Inbox message status values."""

    RECEIVED = "received"
    SENT = "sent"
    FAILED = "failed"
    QUEUED = "queued"


# =============================================================================
# MODELS
# =============================================================================


class Tenant(Base):
    """Billing customer owning connected pages and automation settings."""

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    subscription_status: Mapped[str] = mapped_column(
        Enum(
            "active",
            "trialing",
            "past_due",
            "canceled",
            "inactive",
            name="subscription_status_enum",
        ),
        nullable=False,
        default=SubscriptionStatus.INACTIVE,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    # Relationships
    tokens: Mapped[list["IntegrationToken"]] = relationship(back_populates="tenant")
    settings: Mapped[Optional["AutomationSettings"]] = relationship(
        back_populates="tenant", uselist=False
    )

    @property
    def is_subscribed(self) -> bool:
        return self.subscription_status == SubscriptionStatus.ACTIVE


class IntegrationToken(Base):
    """Connected page/account with its encrypted access token."""

    __tablename__ = "integration_tokens"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(
        Enum("facebook", "instagram", "whatsapp", name="token_platform_enum"),
        nullable=False,
    )
    # Page id, Instagram business account id or WhatsApp phone number id
    page_id: Mapped[str] = mapped_column(String(64), nullable=False)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("platform", "page_id", name="uq_token_platform_page"),
        Index("idx_token_page", "page_id"),
        Index("idx_token_tenant", "tenant_id"),
    )

    # Relationships
    tenant: Mapped["Tenant"] = relationship(back_populates="tokens")


class AutomationSettings(Base):
    """Per-tenant auto-reply switches and reply content."""

    __tablename__ = "automation_settings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    auto_reply_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    ai_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    greeting_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    comment_to_dm_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    tenant: Mapped["Tenant"] = relationship(back_populates="settings")


class AuditLog(Base):
    """Append-only audit log of pipeline decisions."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    # NULL for rows written before a tenant was resolved
    tenant_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    level: Mapped[str] = mapped_column(
        Enum("info", "warn", "error", name="audit_level_enum"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_audit_created", "created_at"),
        Index("idx_audit_tenant", "tenant_id"),
    )


class ProcessedWebhookEvent(Base):
    """First sighting of an external event id, for duplicate delivery checks."""

    __tablename__ = "processed_webhook_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("platform", "external_event_id", name="uq_processed_event"),
        Index("idx_processed_seen", "first_seen_at"),
    )


def _default_rule_platforms() -> list[str]:
    return [Platform.FACEBOOK, Platform.INSTAGRAM]


class AutomationRule(Base):
    """Tenant-defined trigger and action run against inbound events."""

    __tablename__ = "automation_rules"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Trigger
    trigger_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=RuleTrigger.COMMENT
    )
    trigger_words: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # NULL matches every platform
    trigger_platforms: Mapped[Optional[list]] = mapped_column(
        JSON, nullable=True, default=_default_rule_platforms
    )

    # Action
    action_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default=RuleAction.SEND_DM
    )
    send_private_reply: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    private_reply_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    public_reply_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (Index("idx_rule_tenant_enabled", "tenant_id", "enabled"),)


class Conversation(Base):
    """Inbox thread with one customer on one platform."""

    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    conversation_type: Mapped[str] = mapped_column(
        Enum("dm", "comment", "form", name="conversation_type_enum"), nullable=False
    )
    # Sender id for DMs, comment id for comments, sender email for forms
    external_thread_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "platform", "external_thread_id", name="uq_conversation_thread"
        ),
    )

    # Relationships
    messages: Mapped[list["InboxMessage"]] = relationship(
        back_populates="conversation", order_by="InboxMessage.id"
    )


class InboxMessage(Base):
    """One inbound or outbound message within a conversation."""

    __tablename__ = "inbox_messages"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sender: Mapped[str] = mapped_column(
        Enum("customer", "agent", name="message_sender_enum"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    external_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        Enum("received", "sent", "failed", "queued", name="message_status_enum"),
        nullable=False,
        default=MessageStatus.RECEIVED,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_inbox_conversation", "conversation_id"),
        Index("idx_inbox_external", "conversation_id", "external_message_id"),
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="messages")


# Export all models
__all__ = [
    "Base",
    "Tenant",
    "IntegrationToken",
    "AutomationSettings",
    "AuditLog",
    "ProcessedWebhookEvent",
    "AutomationRule",
    "Conversation",
    "InboxMessage",
    # Enums
    "Platform",
    "SubscriptionStatus",
    "AuditLevel",
    "RuleTrigger",
    "RuleAction",
    "MessageStatus",
]

"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates:
- tenants
- integration_tokens
- automation_settings
- audit_log
- processed_webhook_events
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tenants (billing customers)
    op.create_table(
        "tenants",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("business_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column(
            "subscription_status",
            sa.Enum(
                "active",
                "trialing",
                "past_due",
                "canceled",
                "inactive",
                name="subscription_status_enum",
            ),
            nullable=False,
            server_default="inactive",
        ),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )

    # Connected pages, Instagram accounts and WhatsApp numbers
    op.create_table(
        "integration_tokens",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id",
            sa.BigInteger,
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "platform",
            sa.Enum("facebook", "instagram", "whatsapp", name="token_platform_enum"),
            nullable=False,
        ),
        sa.Column("page_id", sa.String(64), nullable=False),
        sa.Column("access_token_encrypted", sa.Text, nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("platform", "page_id", name="uq_token_platform_page"),
    )
    op.create_index("idx_token_page", "integration_tokens", ["page_id"])
    op.create_index("idx_token_tenant", "integration_tokens", ["tenant_id"])

    # Per-tenant automation switches
    op.create_table(
        "automation_settings",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id",
            sa.BigInteger,
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("auto_reply_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("ai_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("system_prompt", sa.Text, nullable=True),
        sa.Column("greeting_message", sa.Text, nullable=True),
        sa.Column(
            "comment_to_dm_enabled", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )

    # Append-only audit log
    op.create_table(
        "audit_log",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.BigInteger, nullable=True),
        sa.Column(
            "level",
            sa.Enum("info", "warn", "error", name="audit_level_enum"),
            nullable=False,
        ),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("meta", sa.JSON, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_audit_created", "audit_log", ["created_at"])
    op.create_index("idx_audit_tenant", "audit_log", ["tenant_id"])

    # Duplicate delivery ledger
    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("platform", sa.String(32), nullable=False),
        sa.Column("external_event_id", sa.String(255), nullable=False),
        sa.Column(
            "first_seen_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("platform", "external_event_id", name="uq_processed_event"),
    )
    op.create_index(
        "idx_processed_seen", "processed_webhook_events", ["first_seen_at"]
    )


def downgrade() -> None:
    op.drop_table("processed_webhook_events")
    op.drop_table("audit_log")
    op.drop_table("automation_settings")
    op.drop_table("integration_tokens")
    op.drop_table("tenants")

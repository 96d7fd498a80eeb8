"""Automation rules and inbox

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

Creates:
- automation_rules
- conversations
- inbox_messages
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tenant-defined trigger/action rules
    op.create_table(
        "automation_rules",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id",
            sa.BigInteger,
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("trigger_type", sa.String(32), nullable=False, server_default="comment"),
        sa.Column("trigger_words", sa.JSON, nullable=True),
        sa.Column("trigger_platforms", sa.JSON, nullable=True),
        sa.Column("action_type", sa.String(32), nullable=False, server_default="send_dm"),
        sa.Column(
            "send_private_reply", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("private_reply_template", sa.Text, nullable=True),
        sa.Column("public_reply_template", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_rule_tenant_enabled", "automation_rules", ["tenant_id", "enabled"]
    )

    # Inbox threads
    op.create_table(
        "conversations",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id",
            sa.BigInteger,
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(32), nullable=False),
        sa.Column(
            "conversation_type",
            sa.Enum("dm", "comment", "form", name="conversation_type_enum"),
            nullable=False,
        ),
        sa.Column("external_thread_id", sa.String(255), nullable=False),
        sa.Column("customer_id", sa.String(255), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("last_message_text", sa.Text, nullable=True),
        sa.Column("last_message_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "tenant_id", "platform", "external_thread_id", name="uq_conversation_thread"
        ),
    )

    # Inbox messages
    op.create_table(
        "inbox_messages",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "conversation_id",
            sa.BigInteger,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", sa.BigInteger, nullable=False),
        sa.Column(
            "sender",
            sa.Enum("customer", "agent", name="message_sender_enum"),
            nullable=False,
        ),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("platform", sa.String(32), nullable=False),
        sa.Column("external_message_id", sa.String(255), nullable=True),
        sa.Column(
            "status",
            sa.Enum("received", "sent", "failed", "queued", name="message_status_enum"),
            nullable=False,
            server_default="received",
        ),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_inbox_conversation", "inbox_messages", ["conversation_id"])
    op.create_index(
        "idx_inbox_external", "inbox_messages", ["conversation_id", "external_message_id"]
    )


def downgrade() -> None:
    op.drop_table("inbox_messages")
    op.drop_table("conversations")
    op.drop_table("automation_rules")

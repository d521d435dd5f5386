"""Gateway tables: keys, allowlists, queue, content filters, consent

Revision ID: 001_gateway
Revises: None
Create Date: 2026-10-16
"""
from datetime import datetime, timezone
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_gateway"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Rules shipped with 1.0.
_SEED_FILTERS = [
    (r"\b\d{3}-\d{2}-\d{4}\b", "regex", "deny", "Social Security Number"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "regex", "deny", "Credit card number"),
    ("password", "literal", "flag", "Contains word 'password'"),
    (
        r"\b(?:api[_-]?key|secret[_-]?key|access[_-]?token)\s*[:=]\s*\S+",
        "regex",
        "deny",
        "API key or secret",
    ),
]


def upgrade() -> None:
    # --- gateway_api_keys ---
    op.create_table(
        "gateway_api_keys",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("key_prefix", sa.String(16), nullable=False),
        sa.Column("key_hash", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("last_used_at", sa.DateTime, nullable=True),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
        sa.Column("rate_limit_per_hour", sa.Integer, nullable=False, server_default="10"),
        sa.Column("rate_limit_per_day", sa.Integer, nullable=False, server_default="50"),
        sa.Column("webhook_url", sa.String(2048), nullable=True),
    )
    op.create_index("ix_gateway_api_keys_key_prefix", "gateway_api_keys", ["key_prefix"])
    op.create_index("ix_gateway_api_keys_key_hash", "gateway_api_keys", ["key_hash"], unique=True)

    # --- gateway_allowlist ---
    op.create_table(
        "gateway_allowlist",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("key_id", sa.String(36), sa.ForeignKey("gateway_api_keys.id"), nullable=False),
        sa.Column("recipient_pattern", sa.String(320), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("key_id", "recipient_pattern", name="uq_allowlist_key_pattern"),
    )
    op.create_index("ix_gateway_allowlist_key_id", "gateway_allowlist", ["key_id"])

    # --- gateway_queue ---
    op.create_table(
        "gateway_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("key_id", sa.String(36), sa.ForeignKey("gateway_api_keys.id"), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("recipient_address", sa.String(320), nullable=False),
        sa.Column("recipient_name", sa.String(255), nullable=True),
        sa.Column("subject", sa.Text, nullable=True),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("priority", sa.String(16), nullable=False, server_default="normal"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("context_json", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("reviewed_at", sa.DateTime, nullable=True),
        sa.Column("sent_at", sa.DateTime, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
    )
    op.create_index("ix_gateway_queue_key_id", "gateway_queue", ["key_id"])
    op.create_index("ix_gateway_queue_status", "gateway_queue", ["status"])
    op.create_index("ix_gateway_queue_created_at", "gateway_queue", ["created_at"])

    # --- gateway_content_filters ---
    filters = op.create_table(
        "gateway_content_filters",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("pattern", sa.String(1024), nullable=False),
        sa.Column("pattern_type", sa.String(16), nullable=False, server_default="regex"),
        sa.Column("action", sa.String(16), nullable=False, server_default="deny"),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_gateway_content_filters_enabled", "gateway_content_filters", ["enabled"])

    # --- contact_consent ---
    op.create_table(
        "contact_consent",
        sa.Column("address", sa.String(320), primary_key=True),
        sa.Column("ai_contact_allowed", sa.Boolean, nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    now = datetime.now(timezone.utc)
    op.bulk_insert(
        filters,
        [
            {
                "pattern": pattern,
                "pattern_type": pattern_type,
                "action": action,
                "description": description,
                "enabled": True,
                "created_at": now,
            }
            for pattern, pattern_type, action, description in _SEED_FILTERS
        ],
    )


def downgrade() -> None:
    op.drop_table("contact_consent")
    op.drop_index("ix_gateway_content_filters_enabled", table_name="gateway_content_filters")
    op.drop_table("gateway_content_filters")
    op.drop_index("ix_gateway_queue_created_at", table_name="gateway_queue")
    op.drop_index("ix_gateway_queue_status", table_name="gateway_queue")
    op.drop_index("ix_gateway_queue_key_id", table_name="gateway_queue")
    op.drop_table("gateway_queue")
    op.drop_index("ix_gateway_allowlist_key_id", table_name="gateway_allowlist")
    op.drop_table("gateway_allowlist")
    op.drop_index("ix_gateway_api_keys_key_hash", table_name="gateway_api_keys")
    op.drop_index("ix_gateway_api_keys_key_prefix", table_name="gateway_api_keys")
    op.drop_table("gateway_api_keys")

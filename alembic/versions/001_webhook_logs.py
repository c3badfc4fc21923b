"""Add webhook_logs audit table

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Webhook audit trail - one row per processed inbound webhook
    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("request_id", sa.String(191), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False, server_default="unknown"),
        sa.Column("payload", sa.Text, nullable=True),
        sa.Column("signature_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("source_ip", sa.String(64), nullable=True),
        sa.Column("origin", sa.String(255), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_logs_request_id", "webhook_logs", ["request_id"])
    op.create_index("ix_webhook_logs_event_type", "webhook_logs", ["event_type"])
    op.create_index("ix_webhook_logs_received_at", "webhook_logs", ["received_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_logs_received_at", table_name="webhook_logs")
    op.drop_index("ix_webhook_logs_event_type", table_name="webhook_logs")
    op.drop_index("ix_webhook_logs_request_id", table_name="webhook_logs")
    op.drop_table("webhook_logs")

"""Initial schema: distribution ledger, challenge/user read models, run logs.

Revision ID: 001
Revises:
Create Date: 2025-06-01
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "challenges",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("owner_ids", sa.JSON, nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("display_name", sa.String(128), nullable=True),
    )

    op.create_table(
        "prize_assignments",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("challenge_id", sa.String(64), nullable=False, index=True),
        sa.Column("challenge_title", sa.String(255), nullable=False),
        sa.Column("prize_amount", sa.Integer, nullable=False),
        sa.Column("prize_structure", sa.String(32), nullable=False),
        sa.Column("host_confirmed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("host_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "distribution_status", sa.String(32), nullable=False,
            server_default="pending", index=True,
        ),
        sa.Column("host_email_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("host_email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("host_email_message_id", sa.String(255), nullable=True),
        sa.Column("emails_sent_to_hosts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("emails_successful", sa.Integer, nullable=False, server_default="0"),
        sa.Column("emails_failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("confirmation_token", sa.String(64), nullable=True),
        sa.Column("confirmation_nonce", sa.String(32), nullable=True),
        sa.Column("confirmation_expires", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_email_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_retry_email_sent", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "prize_records",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "prize_id", sa.String(64), sa.ForeignKey("prize_assignments.id"),
            nullable=False, index=True,
        ),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("prize_amount", sa.Integer, nullable=False),
        sa.Column("status", sa.String(32), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "system_logs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("type", sa.String(64), nullable=False, index=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("balance_checked", sa.JSON, nullable=False),
        sa.Column("retry_results", sa.JSON, nullable=False),
        sa.Column("summary", sa.JSON, nullable=False),
    )

    op.create_table(
        "error_logs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("source", sa.String(128), nullable=False),
        sa.Column("error", sa.Text, nullable=False),
        sa.Column("stack", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Retry candidate scan
    op.create_index(
        "ix_prize_assignments_confirmed_status",
        "prize_assignments",
        ["host_confirmed", "distribution_status"],
    )


def downgrade() -> None:
    op.drop_index("ix_prize_assignments_confirmed_status", table_name="prize_assignments")
    op.drop_table("error_logs")
    op.drop_table("system_logs")
    op.drop_table("prize_records")
    op.drop_table("prize_assignments")
    op.drop_table("users")
    op.drop_table("challenges")

"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Append-only upload attempt log used for moderation review and auto-block.
    op.create_table(
        "upload_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("file_name", sa.String(), nullable=True),
        sa.Column("storage", sa.String(), nullable=True),
        sa.Column("ip", sa.String(), nullable=True),
        sa.Column("referer", sa.Text(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("compliant", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_upload_logs_ip", "upload_logs", ["ip"], unique=False)
    op.create_index("ix_upload_logs_created_at", "upload_logs", ["created_at"], unique=False)

    op.create_table(
        "upload_ip_blocklist",
        sa.Column("ip", sa.String(), primary_key=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("blocked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "app_config",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.String(), nullable=False),
    )
    op.create_table(
        "quota_config",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.Integer(), server_default=sa.text("0"), nullable=False),
    )

    # Per-identity upload counters for anonymous lifetime and user daily quotas.
    op.create_table(
        "upload_quota",
        sa.Column("identity", sa.String(), primary_key=True, nullable=False),
        sa.Column("scope", sa.String(), primary_key=True, nullable=False),
        sa.Column("day", sa.String(), primary_key=True, nullable=False),
        sa.Column("count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "assets",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("storage", sa.String(), nullable=True),
        sa.Column("referer", sa.Text(), nullable=True),
        sa.Column("ip", sa.String(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("total", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("tags", sa.Text(), server_default="", nullable=True),
        sa.Column("time", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_assets_url", "assets", ["url"], unique=True)

    op.create_table(
        "tg_file_meta",
        sa.Column("file_id", sa.String(), primary_key=True),
        sa.Column("file_name", sa.String(), nullable=True),
        sa.Column("message_id", sa.BigInteger(), nullable=True),
        sa.Column("chat_id", sa.String(), nullable=True),
    )

    op.create_table(
        "taglist",
        sa.Column("name", sa.String(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("taglist")
    op.drop_table("tg_file_meta")
    op.drop_index("ix_assets_url", table_name="assets")
    op.drop_table("assets")
    op.drop_table("upload_quota")
    op.drop_table("quota_config")
    op.drop_table("app_config")
    op.drop_table("upload_ip_blocklist")
    op.drop_index("ix_upload_logs_created_at", table_name="upload_logs")
    op.drop_index("ix_upload_logs_ip", table_name="upload_logs")
    op.drop_table("upload_logs")

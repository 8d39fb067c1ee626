"""add file access log

Revision ID: 0002_file_access_logs
Revises: 0001_init
Create Date: 2026-10-20
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_file_access_logs"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Record every served file so admins can trace hotlinking referers.
    op.create_table(
        "file_access_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("referer", sa.Text(), nullable=True),
        sa.Column("ip", sa.String(), nullable=True),
        sa.Column("time", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_file_access_logs_url", "file_access_logs", ["url"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_file_access_logs_url", table_name="file_access_logs")
    op.drop_table("file_access_logs")

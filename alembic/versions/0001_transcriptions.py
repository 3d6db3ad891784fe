"""transcriptions table

Revision ID: 0001_transcriptions
Revises: 
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_transcriptions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "transcriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("call_sid", sa.String(length=64), nullable=False),
        sa.Column("stream_sid", sa.String(length=64), nullable=False),
        sa.Column("output_path", sa.String(length=255), nullable=False),
        sa.Column("transcript", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_transcriptions_call_sid", "transcriptions", ["call_sid"])
    op.create_index("ix_transcriptions_stream_sid", "transcriptions", ["stream_sid"])


def downgrade() -> None:
    op.drop_index("ix_transcriptions_stream_sid", table_name="transcriptions")
    op.drop_index("ix_transcriptions_call_sid", table_name="transcriptions")
    op.drop_table("transcriptions")

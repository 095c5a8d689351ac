"""initial

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "call_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_call_id", sa.String(length=128), nullable=False),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("recording_url", sa.String(length=1024), nullable=False),
        sa.Column("campaign_name", sa.String(length=255)),
        sa.Column("caller_id", sa.String(length=64)),
        sa.Column("publisher_id", sa.String(length=128)),
        sa.Column("buyer_id", sa.String(length=128)),
        sa.Column("system_name", sa.String(length=128)),
        sa.Column("call_timestamp", sa.DateTime(timezone=True)),
        sa.Column("inbound_phone_number", sa.String(length=64)),
        sa.Column("dialed_number", sa.String(length=64)),
        sa.Column("call_status", sa.String(length=40), nullable=False, server_default="queued"),
        sa.Column("status", sa.String(length=128)),
        sa.Column("transcript", sa.Text()),
        sa.Column("labeled_transcript", sa.Text()),
        sa.Column("qc", sa.JSON()),
        sa.Column("duration_seconds", sa.Float()),
        sa.Column("estimated_cost", sa.Float()),
        sa.Column("error", sa.Text()),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processing_started_at", sa.DateTime(timezone=True)),
        sa.Column("processing_ended_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("external_call_id", name="uq_call_records_external_call_id"),
    )
    op.create_index("ix_call_records_call_status", "call_records", ["call_status"])
    op.create_index("ix_call_records_status", "call_records", ["status"])
    op.create_index("ix_call_records_campaign_name", "call_records", ["campaign_name"])
    op.create_index("ix_call_records_caller_id", "call_records", ["caller_id"])
    op.create_index("ix_call_records_publisher_id", "call_records", ["publisher_id"])
    op.create_index("ix_call_records_buyer_id", "call_records", ["buyer_id"])
    op.create_index("ix_call_records_call_timestamp", "call_records", ["call_timestamp"])


def downgrade() -> None:
    op.drop_table("call_records")

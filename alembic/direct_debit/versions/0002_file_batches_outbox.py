"""file batches, batch items and outbox

Revision ID: 0002_direct_debit_batches
Revises: 0001_direct_debit
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002_direct_debit_batches"
down_revision = "0001_direct_debit"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "billing_file_batches",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("parent_batch_id", sa.Integer(), nullable=True),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("file_type", sa.String(), nullable=False),
        sa.Column("adapter", sa.String(), nullable=True),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("original_file_name", sa.String(), nullable=True),
        sa.Column("storage_key", sa.String(), nullable=True),
        sa.Column("sha256", sa.String(length=64), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount_ars", sa.Numeric(18, 2), nullable=True),
        sa.Column("total_paid_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rejected_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_error_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("meta", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["parent_batch_id"], ["billing_file_batches.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_file_batches_parent_batch_id", "billing_file_batches", ["parent_batch_id"])
    op.create_index(
        "ix_file_batches_direction_business_date", "billing_file_batches", ["direction", "business_date"]
    )
    op.create_index("ix_file_batches_status_business_date", "billing_file_batches", ["status", "business_date"])
    op.create_index(
        "uq_file_batches_inbound_parent_sha",
        "billing_file_batches",
        ["parent_batch_id", "sha256"],
        unique=True,
        postgresql_where=sa.text("direction = 'INBOUND'"),
    )

    op.create_table(
        "billing_file_batch_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("attempt_id", sa.Integer(), nullable=True),
        sa.Column("charge_id", sa.Integer(), nullable=True),
        sa.Column("line_no", sa.Integer(), nullable=True),
        sa.Column("external_reference", sa.String(), nullable=True),
        sa.Column("raw_hash", sa.String(length=64), nullable=True),
        sa.Column("amount_ars", sa.Numeric(18, 2), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("response_code", sa.String(), nullable=True),
        sa.Column("response_message", sa.Text(), nullable=True),
        sa.Column("paid_reference", sa.String(), nullable=True),
        sa.Column("row_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["batch_id"], ["billing_file_batches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["attempt_id"], ["billing_attempts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["charge_id"], ["billing_charges.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_file_batch_items_batch_line", "billing_file_batch_items", ["batch_id", "line_no"])
    op.create_index("ix_billing_file_batch_items_attempt_id", "billing_file_batch_items", ["attempt_id"])
    op.create_index("ix_billing_file_batch_items_charge_id", "billing_file_batch_items", ["charge_id"])
    op.create_index(
        "ix_billing_file_batch_items_external_reference", "billing_file_batch_items", ["external_reference"]
    )
    op.create_index("ix_billing_file_batch_items_raw_hash", "billing_file_batch_items", ["raw_hash"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("aggregate_type", sa.String(), nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"])
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"])
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"])
    op.create_index("ix_outbox_events_status_created_at", "outbox_events", ["status", "created_at"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("billing_file_batch_items")
    op.drop_index("uq_file_batches_inbound_parent_sha", table_name="billing_file_batches")
    op.drop_table("billing_file_batches")

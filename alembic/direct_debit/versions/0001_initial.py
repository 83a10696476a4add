"""initial billing collection schema

Revision ID: 0001_direct_debit
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_direct_debit"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "billing_cycles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_cycles_agency_id", "billing_cycles", ["agency_id"])
    op.create_index("ix_billing_cycles_status", "billing_cycles", ["status"])

    op.create_table(
        "billing_payment_methods",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("method_type", sa.String(), nullable=False),
        sa.Column("holder_name", sa.String(), nullable=True),
        sa.Column("holder_tax_id", sa.String(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_payment_methods_agency_id", "billing_payment_methods", ["agency_id"])

    op.create_table(
        "billing_mandates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("payment_method_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("cbu_last4", sa.String(length=4), nullable=True),
        sa.ForeignKeyConstraint(["payment_method_id"], ["billing_payment_methods.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_billing_mandates_payment_method_id", "billing_mandates", ["payment_method_id"], unique=True
    )
    op.create_index("ix_billing_mandates_status", "billing_mandates", ["status"])

    op.create_table(
        "billing_charges",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("cycle_id", sa.Integer(), nullable=True),
        sa.Column("selected_method_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("amount_ars_due", sa.Numeric(18, 2), nullable=False),
        sa.Column("amount_ars_paid", sa.Numeric(18, 2), nullable=True),
        sa.Column("paid_currency", sa.String(length=3), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_reference", sa.String(), nullable=True),
        sa.Column("reconciliation_status", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["cycle_id"], ["billing_cycles.id"]),
        sa.ForeignKeyConstraint(["selected_method_id"], ["billing_payment_methods.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_charges_agency_id", "billing_charges", ["agency_id"])
    op.create_index("ix_billing_charges_cycle_id", "billing_charges", ["cycle_id"])
    op.create_index("ix_billing_charges_status", "billing_charges", ["status"])
    op.create_index("ix_billing_charges_paid_reference", "billing_charges", ["paid_reference"])
    op.create_index("ix_billing_charges_reconciliation_status", "billing_charges", ["reconciliation_status"])

    op.create_table(
        "billing_attempts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("charge_id", sa.Integer(), nullable=False),
        sa.Column("payment_method_id", sa.Integer(), nullable=True),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_reference", sa.String(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_code", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("paid_reference", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["charge_id"], ["billing_charges.id"]),
        sa.ForeignKeyConstraint(["payment_method_id"], ["billing_payment_methods.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("charge_id", "attempt_no", name="uq_attempt_charge_no"),
    )
    op.create_index("ix_billing_attempts_charge_id", "billing_attempts", ["charge_id"])
    op.create_index("ix_billing_attempts_payment_method_id", "billing_attempts", ["payment_method_id"])
    op.create_index("ix_billing_attempts_status", "billing_attempts", ["status"])
    op.create_index("ix_billing_attempts_scheduled_for", "billing_attempts", ["scheduled_for"])
    op.create_index("ix_billing_attempts_external_reference", "billing_attempts", ["external_reference"])


def downgrade() -> None:
    op.drop_table("billing_attempts")
    op.drop_table("billing_charges")
    op.drop_table("billing_mandates")
    op.drop_table("billing_payment_methods")
    op.drop_table("billing_cycles")

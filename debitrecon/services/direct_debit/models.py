"""Direct-debit database models.

Cycles, payment methods, mandates, charges and attempts are shared with the
wider billing subsystem; this engine reads them and mutates charge/attempt/cycle
status in place. File batches, their items and the outbox are owned here.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from debitrecon.common.db import Base, JSONType


class BillingCycle(Base):
    """Billing period a charge belongs to."""

    __tablename__ = "billing_cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agency_id: Mapped[int] = mapped_column(Integer, index=True)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, default="OPEN", index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PaymentMethod(Base):
    """Agency payment method used to collect charges."""

    __tablename__ = "billing_payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agency_id: Mapped[int] = mapped_column(Integer, index=True)
    method_type: Mapped[str] = mapped_column(String, default="DIRECT_DEBIT_CBU")
    holder_name: Mapped[str | None] = mapped_column(String, nullable=True)
    holder_tax_id: Mapped[str | None] = mapped_column(String, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    mandate: Mapped["Mandate | None"] = relationship(back_populates="payment_method", uselist=False)


class Mandate(Base):
    """Standing direct-debit authorization for one payment method."""

    __tablename__ = "billing_mandates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_method_id: Mapped[int] = mapped_column(
        ForeignKey("billing_payment_methods.id"), unique=True, index=True
    )
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    cbu_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)

    payment_method: Mapped[PaymentMethod] = relationship(back_populates="mandate")


class Charge(Base):
    """Billable amount due for an agency and cycle."""

    __tablename__ = "billing_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agency_id: Mapped[int] = mapped_column(Integer, index=True)
    cycle_id: Mapped[int | None] = mapped_column(ForeignKey("billing_cycles.id"), nullable=True, index=True)
    selected_method_id: Mapped[int | None] = mapped_column(
        ForeignKey("billing_payment_methods.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String, default="READY", index=True)
    amount_ars_due: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    amount_ars_paid: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    paid_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_reference: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    reconciliation_status: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class CollectionAttempt(Base):
    """One scheduled try to collect a charge through a channel."""

    __tablename__ = "billing_attempts"
    __table_args__ = (UniqueConstraint("charge_id", "attempt_no", name="uq_attempt_charge_no"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    charge_id: Mapped[int] = mapped_column(ForeignKey("billing_charges.id"), index=True)
    payment_method_id: Mapped[int | None] = mapped_column(
        ForeignKey("billing_payment_methods.id"), nullable=True, index=True
    )
    attempt_no: Mapped[int] = mapped_column(Integer)
    channel: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    external_reference: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_code: Mapped[str | None] = mapped_column(String, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    charge: Mapped[Charge] = relationship()
    payment_method: Mapped[PaymentMethod | None] = relationship()


class FileBatch(Base):
    """Generated (OUTBOUND) or ingested (INBOUND) bank file."""

    __tablename__ = "billing_file_batches"
    __table_args__ = (
        Index("ix_file_batches_direction_business_date", "direction", "business_date"),
        Index("ix_file_batches_status_business_date", "status", "business_date"),
        # Duplicate-import guard: one inbound batch per (parent, file digest).
        Index(
            "uq_file_batches_inbound_parent_sha",
            "parent_batch_id",
            "sha256",
            unique=True,
            postgresql_where=text("direction = 'INBOUND'"),
            sqlite_where=text("direction = 'INBOUND'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("billing_file_batches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    direction: Mapped[str] = mapped_column(String)
    channel: Mapped[str] = mapped_column(String)
    file_type: Mapped[str] = mapped_column(String)
    adapter: Mapped[str | None] = mapped_column(String, nullable=True)
    business_date: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String, default="CREATING")
    original_file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    storage_key: Mapped[str | None] = mapped_column(String, nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_rows: Mapped[int] = mapped_column(Integer, default=0)
    total_amount_ars: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    total_paid_rows: Mapped[int] = mapped_column(Integer, default=0)
    total_rejected_rows: Mapped[int] = mapped_column(Integer, default=0)
    total_error_rows: Mapped[int] = mapped_column(Integer, default=0)
    meta: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    parent_batch: Mapped["FileBatch | None"] = relationship(remote_side=[id])
    items: Mapped[list["FileBatchItem"]] = relationship(
        back_populates="batch", order_by="FileBatchItem.line_no"
    )


class FileBatchItem(Base):
    """One row of a generated or ingested batch file."""

    __tablename__ = "billing_file_batch_items"
    __table_args__ = (Index("ix_file_batch_items_batch_line", "batch_id", "line_no"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("billing_file_batches.id", ondelete="CASCADE"))
    attempt_id: Mapped[int | None] = mapped_column(
        ForeignKey("billing_attempts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    charge_id: Mapped[int | None] = mapped_column(
        ForeignKey("billing_charges.id", ondelete="SET NULL"), nullable=True, index=True
    )
    line_no: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_reference: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    raw_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    amount_ars: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    status: Mapped[str] = mapped_column(String, default="PENDING")
    response_code: Mapped[str | None] = mapped_column(String, nullable=True)
    response_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    row_payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    batch: Mapped[FileBatch] = relationship(back_populates="items")


class OutboxEvent(Base):
    """Billing audit events waiting to be published to Kafka."""

    __tablename__ = "outbox_events"
    __table_args__ = (Index("ix_outbox_events_status_created_at", "status", "created_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    aggregate_type: Mapped[str] = mapped_column(String)
    aggregate_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    topic: Mapped[str] = mapped_column(String)
    payload: Mapped[dict] = mapped_column(JSONType)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

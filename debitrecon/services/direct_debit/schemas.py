"""Typed payloads for batch meta, audit events and API responses."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel


class ImportSummary(BaseModel):
    matched_rows: int = 0
    error_rows: int = 0
    rejected: int = 0
    paid: int = 0
    fiscal_issued: int = 0
    fiscal_failed: int = 0


class OutboundBatchMeta(BaseModel):
    kind: Literal["outbound"] = "outbound"
    require_active_mandate: bool
    adapter_rows: int | None = None
    error: str | None = None


class InboundBatchMeta(BaseModel):
    kind: Literal["inbound"] = "inbound"
    summary: ImportSummary | None = None
    error: str | None = None


# Audit event payloads, one shape per event type.


class OutboundCreatedPayload(BaseModel):
    batch_id: int
    business_date: date
    total_rows: int
    total_amount_ars: Decimal
    adapter: str


class InboundImportedPayload(BaseModel):
    outbound_batch_id: int
    inbound_batch_id: int
    business_date: date
    adapter: str
    matched_rows: int
    paid_rows: int
    rejected_rows: int
    error_rows: int
    fiscal_issued: int
    fiscal_failed: int


class AttemptPaidPayload(BaseModel):
    outbound_batch_id: int
    inbound_batch_id: int
    attempt_id: int
    charge_id: int
    paid_reference: str | None
    amount_ars: Decimal


class AttemptRejectedPayload(BaseModel):
    outbound_batch_id: int
    inbound_batch_id: int
    attempt_id: int
    charge_id: int
    rejection_code: str | None
    rejection_reason: str | None


# Caller-facing results.


class BatchSummary(BaseModel):
    id_batch: int
    direction: str
    business_date: date
    status: str
    total_rows: int
    total_amount_ars: Decimal | None
    storage_key: str | None
    sha256: str | None


class PresentmentResult(BaseModel):
    batch: BatchSummary
    download_file_name: str | None


class ImportResult(BaseModel):
    inbound_batch_id: int
    summary: ImportSummary


class ParentBatchRef(BaseModel):
    id_batch: int
    direction: str
    business_date: date


class BatchListItem(BaseModel):
    id_batch: int
    parent_batch_id: int | None
    direction: str
    channel: str
    file_type: str
    adapter: str | None
    business_date: date
    status: str
    storage_key: str | None
    original_file_name: str | None
    sha256: str | None
    total_rows: int
    total_amount_ars: Decimal | None
    total_paid_rows: int
    total_rejected_rows: int
    total_error_rows: int
    created_at: datetime | None
    updated_at: datetime | None
    items_count: int
    parent_batch: ParentBatchRef | None = None


class BatchFile(BaseModel):
    file_name: str
    data: bytes
    content_type: str


class UploadedFile(BaseModel):
    file_name: str
    data: bytes
    content_type: str | None = None

"""Format adapter contract shared by every bank file format.

An adapter turns normalized pending-charge rows into one self-contained
outbound file and turns a bank response file into normalized records. Adapters
do no I/O and must return identical bytes for identical input.
"""

from collections.abc import Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal, Protocol

from pydantic import BaseModel, Field


ResponseResult = Literal["PAID", "REJECTED", "ERROR"]


class PresentmentRow(BaseModel):
    """One pending collection attempt as it is presented to the bank."""

    attempt_id: int
    charge_id: int
    agency_id: int
    external_reference: str = Field(min_length=1)
    amount_ars: Decimal
    scheduled_for: datetime | None = None
    holder_name: str | None = None
    holder_tax_id: str | None = None
    cbu_last4: str | None = None


class PresentmentMeta(BaseModel):
    """Batch context handed to the adapter while building a file."""

    batch_id: int
    company_code: str | None = None


class PresentmentFileMeta(BaseModel):
    adapter: str
    rows: int
    total_amount_ars: Decimal


class BuiltPresentment(BaseModel):
    file_name: str
    data: bytes
    meta: PresentmentFileMeta


class ParsedRecord(BaseModel):
    """One response line normalized by an adapter.

    `raw` maps the adapter's column names to the raw string values read from
    the line, plus `raw_line` with the untouched line for forensic storage.
    """

    line_no: int
    external_reference: str | None
    raw_hash: str
    result: ResponseResult
    amount_ars: Decimal | None = None
    paid_reference: str | None = None
    rejection_code: str | None = None
    rejection_reason: str | None = None
    raw: dict[str, str]


class DirectDebitAdapter(Protocol):
    """Capabilities every bank file format must provide."""

    name: str
    content_type: str
    # Longest external reference the file layout can carry; None means unbounded.
    max_reference_length: int | None

    def build_presentment(
        self,
        business_date: date,
        rows: Sequence[PresentmentRow],
        meta: PresentmentMeta,
    ) -> BuiltPresentment: ...

    def parse_response(self, data: bytes) -> list[ParsedRecord]: ...


def total_amount(rows: Sequence[PresentmentRow]) -> Decimal:
    return sum((row.amount_ars for row in rows), Decimal("0.00"))


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (as returned by SQLite) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")

"""Fixed-width adapter for the bank's direct-debit (Pago Directo) channel.

Records are 120 characters, latin-1, CRLF terminated. Amounts are integer
cents, zero padded; dates are YYYYMMDD.

Outbound:
    H  company_code(10) business_date(8) rows(6) total_cents(15)
    D  reference(22) amount_cents(15) due_date(8) cbu_last4(4) tax_id(11) holder(30)
    T  rows(6) total_cents(15)

Inbound (header/trailer records are skipped):
    R  reference(22) status(2) amount_cents(15) paid_reference(15) reason(rest)

Status `00` is a successful debit; any other two digits is a rejection code.
"""

import codecs
import unicodedata
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from debitrecon.common.config import settings
from debitrecon.services.direct_debit.adapters.base import (
    BuiltPresentment,
    ParsedRecord,
    PresentmentFileMeta,
    PresentmentMeta,
    PresentmentRow,
    as_utc,
    total_amount,
)
from debitrecon.services.direct_debit.hashing import (
    RAW_LINE_FIELD,
    build_raw_hash,
    normalize_external_reference,
    quantize_ars,
)


RECORD_WIDTH = 120
REFERENCE_WIDTH = 22
PAID_STATUS = "00"

# (field, start, end) offsets of a response record.
RESPONSE_LAYOUT = (
    ("record_type", 0, 1),
    ("external_reference", 1, 23),
    ("status_code", 23, 25),
    ("amount_cents", 25, 40),
    ("paid_reference", 40, 55),
    ("rejection_reason", 55, RECORD_WIDTH),
)


def _ascii(value: str | None, width: int) -> str:
    folded = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    return folded.upper()[:width].ljust(width)


def _cents(amount: Decimal, width: int = 15) -> str:
    cents = int(quantize_ars(amount) * 100)
    if cents < 0:
        raise ValueError(f"negative amount cannot be presented: {amount}")
    return str(cents).zfill(width)


def _record(body: str) -> str:
    if len(body) > RECORD_WIDTH:
        raise ValueError(f"record exceeds {RECORD_WIDTH} characters")
    return body.ljust(RECORD_WIDTH)


class GaliciaPdV1Adapter:
    name = "galicia_pd_v1"
    content_type = "text/plain; charset=latin-1"
    max_reference_length = REFERENCE_WIDTH

    def __init__(self, company_code: str | None = None) -> None:
        self.company_code = company_code or settings.pd_company_code

    def build_presentment(
        self,
        business_date: date,
        rows: Sequence[PresentmentRow],
        meta: PresentmentMeta,
    ) -> BuiltPresentment:
        company_code = (meta.company_code or self.company_code).strip()
        total = total_amount(rows)
        stamp = business_date.strftime("%Y%m%d")

        records = [_record(f"H{company_code[:10].zfill(10)}{stamp}{str(len(rows)).zfill(6)}{_cents(total)}")]
        for row in rows:
            if len(row.external_reference) > REFERENCE_WIDTH:
                raise ValueError(f"external reference too long for {self.name}: {row.external_reference}")
            due = as_utc(row.scheduled_for).strftime("%Y%m%d") if row.scheduled_for else stamp
            records.append(
                _record(
                    "D"
                    + row.external_reference.ljust(REFERENCE_WIDTH)
                    + _cents(row.amount_ars)
                    + due
                    + (row.cbu_last4 or "").rjust(4, "0")[-4:]
                    + (row.holder_tax_id or "").replace("-", "")[:11].ljust(11)
                    + _ascii(row.holder_name, 30)
                )
            )
        records.append(_record(f"T{str(len(rows)).zfill(6)}{_cents(total)}"))

        return BuiltPresentment(
            file_name=f"PD{company_code[:10].zfill(10)}_{stamp}_{meta.batch_id}.txt",
            data="".join(f"{record}\r\n" for record in records).encode("latin-1"),
            meta=PresentmentFileMeta(adapter=self.name, rows=len(rows), total_amount_ars=total),
        )

    def parse_response(self, data: bytes) -> list[ParsedRecord]:
        if data.startswith(codecs.BOM_UTF8):
            data = data[len(codecs.BOM_UTF8):]
        records = []
        for line_no, line in enumerate(data.decode("latin-1").splitlines(), start=1):
            if not line.strip() or line[0] in ("H", "T"):
                continue
            records.append(self._parse_line(line_no, line))
        return records

    def _parse_line(self, line_no: int, line: str) -> ParsedRecord:
        raw = {field: line[start:end].strip() for field, start, end in RESPONSE_LAYOUT}
        raw[RAW_LINE_FIELD] = line

        problem = None
        amount = None
        if raw["record_type"] != "R":
            problem = f"unknown record type: {raw['record_type']!r}"
        elif len(line.rstrip()) < 25:
            problem = "truncated record"
        elif not raw["status_code"].isdigit() or len(raw["status_code"]) != 2:
            problem = f"invalid status code: {raw['status_code']!r}"
        elif raw["amount_cents"]:
            if raw["amount_cents"].isdigit():
                amount = quantize_ars(Decimal(int(raw["amount_cents"])) / 100)
            else:
                problem = f"invalid amount: {raw['amount_cents']!r}"

        if problem:
            result = "ERROR"
        elif raw["status_code"] == PAID_STATUS:
            result = "PAID"
        else:
            result = "REJECTED"

        return ParsedRecord(
            line_no=line_no,
            external_reference=normalize_external_reference(raw["external_reference"]),
            raw_hash=build_raw_hash({k: v for k, v in raw.items() if k != "record_type"}),
            result=result,
            amount_ars=amount,
            paid_reference=normalize_external_reference(raw["paid_reference"]),
            rejection_code=None if result != "REJECTED" else raw["status_code"],
            rejection_reason=problem or normalize_external_reference(raw["rejection_reason"]),
            raw=raw,
        )
